"""Local manifest of whole-file hashes for multi-part uploads.

B2 keeps no whole-file SHA1 for objects uploaded in parts, so on its own
a multi-part object can only be checked by size. The manifest remembers
the SHA1 of every file this machine uploaded in parts, letting later runs
also notice same-size content changes.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class UploadManifest:
    """Whole-file hashes of multi-part objects in one bucket."""

    bucket_name: str
    """Bucket the hashes belong to"""

    files: dict[str, str] = field(default_factory=dict)
    """Object name -> lowercase hex SHA1"""

    last_update: Optional[str] = None
    """ISO timestamp of the last save"""

    def to_dict(self) -> dict:
        """Convert manifest to dictionary for JSON serialization."""
        return {
            "bucket_name": self.bucket_name,
            "files": dict(sorted(self.files.items())),
            "last_update": self.last_update,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "UploadManifest":
        """Create UploadManifest from dictionary."""
        return cls(
            bucket_name=data.get("bucket_name", ""),
            files=dict(data.get("files", {})),
            last_update=data.get("last_update"),
        )


class ManifestStore:
    """Persists one manifest file per bucket.

    Files live in ``~/.config/pyb2backup/manifests/`` by default, named by
    a hash of the bucket name.
    """

    def __init__(self, state_dir: Optional[Path] = None):
        """Initialize manifest store.

        Args:
            state_dir: Directory to store manifest files. Defaults to
                      ~/.config/pyb2backup/manifests/
        """
        if state_dir is None:
            state_dir = Path.home() / ".config" / "pyb2backup" / "manifests"
        self.state_dir = state_dir
        self.state_dir.mkdir(parents=True, exist_ok=True)

    def _get_manifest_file(self, bucket_name: str) -> Path:
        key = hashlib.sha256(bucket_name.encode()).hexdigest()[:16]
        return self.state_dir / f"{key}.json"

    def load(self, bucket_name: str) -> UploadManifest:
        """Load the manifest for a bucket (empty if none was saved)."""
        manifest_file = self._get_manifest_file(bucket_name)

        if not manifest_file.exists():
            logger.debug(f"No manifest found at {manifest_file}")
            return UploadManifest(bucket_name=bucket_name)

        try:
            with open(manifest_file, encoding="utf-8") as f:
                manifest = UploadManifest.from_dict(json.load(f))
            logger.debug(
                f"Loaded manifest with {len(manifest.files)} files "
                f"from {manifest.last_update}"
            )
            return manifest
        except (json.JSONDecodeError, KeyError, AttributeError) as e:
            logger.warning(f"Failed to load manifest for {bucket_name}: {e}")
            return UploadManifest(bucket_name=bucket_name)

    def save(self, manifest: UploadManifest) -> None:
        """Write a manifest to disk. Failures are logged, not raised."""
        manifest.last_update = datetime.now().isoformat()
        manifest_file = self._get_manifest_file(manifest.bucket_name)

        try:
            with open(manifest_file, "w", encoding="utf-8") as f:
                json.dump(manifest.to_dict(), f, indent=2)
            logger.debug(
                f"Saved manifest with {len(manifest.files)} files to {manifest_file}"
            )
        except OSError as e:
            logger.warning(f"Failed to save manifest: {e}")

    def clear(self, bucket_name: str) -> bool:
        """Delete the manifest of a bucket.

        Returns:
            True if a manifest was deleted, False if none existed
        """
        manifest_file = self._get_manifest_file(bucket_name)
        if manifest_file.exists():
            manifest_file.unlink()
            logger.debug(f"Cleared manifest at {manifest_file}")
            return True
        return False
