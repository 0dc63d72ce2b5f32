"""Core sync engine for backing up source groups into buckets."""

import logging
import random
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from rich.progress import BarColumn, Progress, TextColumn, TimeElapsedColumn

from ..api import B2Client
from ..exceptions import B2APIError, B2DuplicateBucketError
from ..models import Bucket, RemoteObjectRecord
from ..output import OutputFormatter
from ..source import SourceTreeProvider
from ..utils import DEFAULT_MAX_ATTEMPTS, calculate_part_count, format_size
from .comparator import FileComparator, UploadAction, build_remote_index
from .group import GroupFilter, SyncGroup, discover_groups
from .operations import UploadCoordinator, stage_file
from .scanner import DirectoryWalker, SourceEntry
from .state import ManifestStore, UploadManifest

logger = logging.getLogger(__name__)


class FileStatus(str, Enum):
    """Final state of one file after a sync."""

    SKIPPED = "skipped"
    UPLOADED = "uploaded"
    PENDING = "pending"
    """Would be uploaded (dry run)"""

    FAILED = "failed"


@dataclass
class FileOutcome:
    """Result of syncing a single file."""

    target_path: str
    status: FileStatus
    reason: str
    parts_uploaded: int = 0
    parts_reused: int = 0


@dataclass
class GroupOutcome:
    """Result of syncing one group."""

    root: str
    bucket_name: str
    files: list[FileOutcome] = field(default_factory=list)
    error: Optional[str] = None
    """Set when the group as a whole failed"""

    def _count(self, status: FileStatus) -> int:
        return sum(1 for f in self.files if f.status == status)

    @property
    def uploads(self) -> int:
        return self._count(FileStatus.UPLOADED)

    @property
    def skips(self) -> int:
        return self._count(FileStatus.SKIPPED)

    @property
    def pending(self) -> int:
        return self._count(FileStatus.PENDING)

    @property
    def failures(self) -> int:
        return self._count(FileStatus.FAILED)

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.failures == 0

    @property
    def stats(self) -> dict:
        return {
            "group": self.root,
            "bucket": self.bucket_name,
            "uploads": self.uploads,
            "skips": self.skips,
            "pending": self.pending,
            "failures": self.failures,
            "parts_uploaded": sum(f.parts_uploaded for f in self.files),
            "parts_reused": sum(f.parts_reused for f in self.files),
            "error": self.error,
        }


class SyncEngine:
    """Core sync engine that backs up source groups into B2 buckets."""

    def __init__(
        self,
        client: B2Client,
        provider: SourceTreeProvider,
        share_name: str,
        output: Optional[OutputFormatter] = None,
        part_size: Optional[int] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay: float = 0.0,
        manifest_store: Optional[ManifestStore] = None,
        staging_dir: Optional[Path] = None,
        rng: Optional[random.Random] = None,
    ):
        """Initialize sync engine.

        Args:
            client: B2 API client
            provider: Source tree to back up
            share_name: Share identifier used to derive bucket names
            output: Output formatter for displaying progress/status
            part_size: Bytes per part (defaults to the server's recommendation)
            max_attempts: Attempt budget for each upload, part and finish call
            retry_delay: Base backoff delay between attempts in seconds
            manifest_store: Enables whole-file hash tracking for multi-part files
            staging_dir: Directory for temporary copies of source files
            rng: Random generator used to shuffle groups and files
        """
        self.client = client
        self.provider = provider
        self.share_name = share_name
        self.output = output or OutputFormatter()
        self.part_size = part_size or client.recommended_part_size
        self.manifest_store = manifest_store
        self.staging_dir = staging_dir
        self.rng = rng or random.Random()
        self.walker = DirectoryWalker(provider)
        self.comparator = FileComparator()
        self.uploader = UploadCoordinator(
            client, self.part_size, max_attempts=max_attempts, retry_delay=retry_delay
        )
        self._buckets: Optional[dict[str, Bucket]] = None
        self._bucket_lock = threading.Lock()
        self._show_progress = True

    # =========================
    # Groups and buckets
    # =========================

    def discover_groups(
        self, group_filter: GroupFilter = GroupFilter.ALL
    ) -> list[SyncGroup]:
        """Find the top-level directories to back up, in random order.

        A missing share root yields no groups rather than an error.
        """
        return discover_groups(self.provider, self.share_name, group_filter, self.rng)

    def _bucket_index(self, refresh: bool = False) -> dict[str, Bucket]:
        if self._buckets is None or refresh:
            self._buckets = {b.bucket_name: b for b in self.client.list_buckets()}
        return self._buckets

    def resolve_bucket(self, group: SyncGroup, create: bool = True) -> Optional[Bucket]:
        """Find the group's bucket, creating it if needed.

        A "bucket already exists" answer counts as success: the bucket list
        is refreshed and the existing bucket is used.

        Args:
            group: Group whose bucket to resolve
            create: Create the bucket when missing

        Returns:
            The bucket, or None if it is missing and ``create`` is False
        """
        with self._bucket_lock:
            bucket = self._bucket_index().get(group.bucket_name)
            if bucket is not None or not create:
                return bucket

            self.output.info(
                f'Bucket "{group.bucket_name}" doesn\'t exist, so creating it...'
            )
            try:
                bucket = self.client.create_bucket(group.bucket_name)
            except B2DuplicateBucketError:
                logger.info(f"Bucket {group.bucket_name} already exists")
                bucket = self._bucket_index(refresh=True).get(group.bucket_name)
                if bucket is None:
                    raise B2APIError(
                        f"Bucket name {group.bucket_name} is taken by another account"
                    ) from None
                return bucket

            self._bucket_index()[group.bucket_name] = bucket
            return bucket

    # =========================
    # Syncing
    # =========================

    def sync_all(
        self,
        groups: list[SyncGroup],
        dry_run: bool = False,
        max_workers: int = 1,
    ) -> list[GroupOutcome]:
        """Sync several groups, isolating failures per group.

        Args:
            groups: Groups to sync
            dry_run: Only report what would be uploaded
            max_workers: Number of groups synced in parallel (default: 1)

        Returns:
            One GroupOutcome per group, in completion order
        """
        if max_workers <= 1 or len(groups) <= 1:
            return [self._sync_group_safely(group, dry_run) for group in groups]

        # Concurrent progress bars would fight over the terminal
        self._show_progress = False
        outcomes: list[GroupOutcome] = []
        logger.debug(f"Syncing {len(groups)} groups with {max_workers} workers")
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {
                executor.submit(self._sync_group_safely, group, dry_run): group
                for group in groups
            }
            for future in as_completed(futures):
                outcomes.append(future.result())
        return outcomes

    def _sync_group_safely(self, group: SyncGroup, dry_run: bool) -> GroupOutcome:
        try:
            return self.sync_group(group, dry_run=dry_run)
        except Exception as e:
            logger.exception(f"Group {group.root} failed")
            self.output.error(f"Failed to sync group {group.root}: {e}")
            return GroupOutcome(
                root=group.root, bucket_name=group.bucket_name, error=str(e)
            )

    def sync_group(self, group: SyncGroup, dry_run: bool = False) -> GroupOutcome:
        """Sync every file of one group into its bucket.

        A file that fails is logged and recorded; the remaining files are
        still processed. Failures to resolve the bucket, list existing
        objects or walk the tree propagate.

        Args:
            group: Group to sync
            dry_run: Classify files without creating buckets or uploading

        Returns:
            GroupOutcome with one FileOutcome per file
        """
        start_time = time.time()
        bucket = self.resolve_bucket(group, create=not dry_run)
        if bucket is None:
            remote_index: dict[str, RemoteObjectRecord] = {}
        else:
            records = self.client.list_objects(bucket.bucket_id)
            remote_index = build_remote_index(records)

        self.output.info(f"Getting files for {group.root}")
        entries = self.walker.walk(group.root)
        self.rng.shuffle(entries)

        manifest: Optional[UploadManifest] = None
        if self.manifest_store is not None:
            manifest = self.manifest_store.load(group.bucket_name)

        files = [entry for entry in entries if not entry.is_directory]
        self.output.info(
            f"Syncing {len(files)} files into bucket {group.bucket_name}"
            + (" (dry run)" if dry_run else "")
        )

        outcome = GroupOutcome(root=group.root, bucket_name=group.bucket_name)
        try:
            if self._show_progress and not self.output.quiet:
                with Progress(
                    TextColumn("[progress.description]{task.description}"),
                    BarColumn(),
                    TextColumn("{task.completed}/{task.total}"),
                    TimeElapsedColumn(),
                    transient=True,
                ) as progress:
                    task = progress.add_task(
                        f"Syncing {group.root}...", total=len(files)
                    )
                    for entry in files:
                        outcome.files.append(
                            self.sync_file(
                                entry, bucket, remote_index, manifest, dry_run
                            )
                        )
                        progress.update(task, advance=1)
            else:
                for entry in files:
                    outcome.files.append(
                        self.sync_file(entry, bucket, remote_index, manifest, dry_run)
                    )
        finally:
            if manifest is not None and not dry_run:
                self.manifest_store.save(manifest)

        elapsed = time.time() - start_time
        logger.debug(f"Group {group.root} took {elapsed:.2f}s")
        self._display_summary(outcome, dry_run)
        return outcome

    def sync_file(
        self,
        entry: SourceEntry,
        bucket: Optional[Bucket],
        remote_index: dict[str, RemoteObjectRecord],
        manifest: Optional[UploadManifest] = None,
        dry_run: bool = False,
    ) -> FileOutcome:
        """Stage, classify and (if needed) upload one file.

        Never raises: every failure becomes a FAILED outcome.
        """
        target_path = entry.target_path
        reason = "not classified"
        staged = None
        try:
            staged = stage_file(self.provider, entry.source_path, self.staging_dir)
            part_count = calculate_part_count(staged.size, self.part_size)
            manifest_hash = manifest.files.get(target_path) if manifest else None
            decision = self.comparator.decide(
                staged.size,
                staged.sha1,
                remote_index.get(target_path),
                part_count,
                manifest_hash=manifest_hash,
            )
            reason = decision.reason

            if not decision.needs_upload:
                self.output.progress_message(
                    f"- {target_path} already backed up and identical. Skipping..."
                )
                return FileOutcome(target_path, FileStatus.SKIPPED, reason)

            self.output.progress_message(
                f"- {target_path} not backed up yet ({reason}), "
                f"{format_size(staged.size)} in {part_count} part(s)"
            )
            if dry_run or bucket is None:
                return FileOutcome(target_path, FileStatus.PENDING, reason)

            result = self.uploader.upload(
                staged, decision, bucket.bucket_id, target_path
            )
            if manifest is not None and decision.action == UploadAction.UPLOAD_CHUNKED:
                manifest.files[target_path] = staged.sha1
            return FileOutcome(
                target_path,
                FileStatus.UPLOADED,
                reason,
                parts_uploaded=result.parts_uploaded,
                parts_reused=result.parts_reused,
            )
        except Exception as e:
            logger.error(f"Failed to sync {target_path} ({reason}): {e}")
            self.output.error(f"Failed to sync {target_path} ({reason}): {e}")
            return FileOutcome(target_path, FileStatus.FAILED, f"{reason}: {e}")
        finally:
            if staged is not None:
                staged.remove()

    def _display_summary(self, outcome: GroupOutcome, dry_run: bool) -> None:
        if self.output.quiet:
            return
        label = "Dry run" if dry_run else "Sync"
        message = (
            f"{label} of {outcome.root} complete: {outcome.uploads} uploaded, "
            f"{outcome.skips} skipped, {outcome.failures} failed"
            + (f", {outcome.pending} to upload" if dry_run else "")
        )
        if outcome.failures:
            self.output.warning(message)
        else:
            self.output.success(message)
