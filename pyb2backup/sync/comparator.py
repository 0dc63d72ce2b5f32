"""Upload decision logic for sync operations."""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from ..models import RemoteObjectRecord
from ..utils import SENTINEL_HASH

REASON_MISSING = "missing remote copy"
REASON_SIZE = "size mismatch"
REASON_HASH = "hash mismatch"
REASON_MANIFEST = "manifest hash mismatch"


class UploadAction(str, Enum):
    """What to do with a single source file."""

    SKIP = "skip"
    """Remote copy is already identical"""

    UPLOAD_WHOLE = "upload_whole"
    """Upload in a single request"""

    UPLOAD_CHUNKED = "upload_chunked"
    """Upload as a multi-part session"""


@dataclass(frozen=True)
class UploadDecision:
    """Represents a decision about how to sync a file."""

    action: UploadAction
    """Action to take"""

    part_count: int
    """Number of parts the file splits into (1 for whole-object files)"""

    reason: str
    """Human-readable reason for this decision"""

    @property
    def needs_upload(self) -> bool:
        return self.action != UploadAction.SKIP


def build_remote_index(
    records: Iterable[RemoteObjectRecord],
) -> dict[str, RemoteObjectRecord]:
    """Map exact object names to their records."""
    return {record.file_name: record for record in records}


class FileComparator:
    """Classifies a file as already synced or needing upload.

    Size is compared before the hash, so a size mismatch never depends
    on the hash value.

    Objects uploaded in parts carry no whole-file hash on the server
    (the record holds the sentinel instead). For those, a size match with
    the sentinel present is the only signal available and counts as synced.
    If a manifest hash from an earlier upload is supplied, it must match
    too.
    """

    def decide(
        self,
        local_size: int,
        local_hash: str,
        existing: Optional[RemoteObjectRecord],
        part_count: int,
        manifest_hash: Optional[str] = None,
    ) -> UploadDecision:
        """Decide whether and how a file needs uploading.

        Args:
            local_size: Size of the local copy in bytes
            local_hash: Lowercase hex SHA1 of the local copy
            existing: Record with the same target path, if any
            part_count: Number of parts the file splits into
            manifest_hash: Whole-file SHA1 recorded when this path was last
                uploaded in parts, if known

        Returns:
            UploadDecision for this file
        """
        if part_count < 1:
            raise ValueError(f"part_count must be at least 1, got {part_count}")

        if existing is None:
            return self._upload(part_count, REASON_MISSING)

        if existing.content_length != local_size:
            return self._upload(part_count, REASON_SIZE)

        if part_count == 1:
            if existing.content_sha1 == local_hash.lower():
                return UploadDecision(
                    UploadAction.SKIP, part_count, "identical size and hash"
                )
            return self._upload(part_count, REASON_HASH)

        if existing.content_sha1 != SENTINEL_HASH:
            # Stored as a single object but now needs parts: not the same upload
            return self._upload(part_count, REASON_HASH)

        if manifest_hash is not None and manifest_hash != local_hash.lower():
            return self._upload(part_count, REASON_MANIFEST)

        return UploadDecision(
            UploadAction.SKIP, part_count, "identical size (multi-part object)"
        )

    def _upload(self, part_count: int, reason: str) -> UploadDecision:
        action = (
            UploadAction.UPLOAD_CHUNKED if part_count > 1 else UploadAction.UPLOAD_WHOLE
        )
        return UploadDecision(action, part_count, reason)
