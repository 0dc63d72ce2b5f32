"""Upload operations: staging source files and sending them to B2."""

import hashlib
import logging
import os
import tempfile
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import BinaryIO, Optional

from ..api import B2Client
from ..exceptions import B2BackupError, UploadError
from ..models import UnfinishedSession, UploadedPart, UploadTarget
from ..source import SourceTreeProvider
from ..utils import (
    DEFAULT_MAX_ATTEMPTS,
    READ_BLOCK_SIZE,
    format_size,
    part_range,
    sha1_bytes,
)
from .comparator import UploadAction, UploadDecision
from .retry import retry

logger = logging.getLogger(__name__)


@dataclass
class StagedFile:
    """Local temporary copy of a source file."""

    path: Path
    """Location of the temporary copy"""

    size: int
    """Size in bytes"""

    sha1: str
    """Lowercase hex SHA1 of the whole file"""

    def open(self) -> BinaryIO:
        return open(self.path, "rb")

    def remove(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass


def stage_file(
    provider: SourceTreeProvider,
    source_path: str,
    staging_dir: Optional[Path] = None,
) -> StagedFile:
    """Copy a source file to a local temporary file, hashing it on the way.

    Reading the source once and keeping a seekable local copy lets the
    hash and every part be computed without going back to the share.

    Args:
        provider: Source tree to read from
        source_path: Provider-relative path of the file
        staging_dir: Directory for the temporary copy (system default if None)

    Returns:
        StagedFile; the caller must call ``remove()`` when done
    """
    digest = hashlib.sha1()
    size = 0
    fd, tmp_name = tempfile.mkstemp(
        prefix="pyb2backup-", suffix=".tmp", dir=staging_dir
    )
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as dst, provider.open_for_read(source_path) as src:
            while True:
                block = src.read(READ_BLOCK_SIZE)
                if not block:
                    break
                digest.update(block)
                dst.write(block)
                size += len(block)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise

    return StagedFile(path=tmp_path, size=size, sha1=digest.hexdigest())


@dataclass
class UploadSession:
    """State of one multi-part upload while it is in progress."""

    session_id: str
    """Server-side id of the large file"""

    remote_parts: dict[int, UploadedPart] = field(default_factory=dict)
    """Parts the server held when the session was resumed"""

    part_hashes: list[str] = field(default_factory=list)
    """SHA1 of each part, index 0 is part 1"""

    resumed: bool = False
    """True if the session existed before this run"""

    aborted: bool = False
    """Set once the session has been cancelled"""


@dataclass
class UploadResult:
    """What an upload actually transferred."""

    action: UploadAction
    parts_uploaded: int = 0
    parts_reused: int = 0
    session_id: Optional[str] = None


class UploadCoordinator:
    """Uploads single files as whole objects or resumable multi-part sessions."""

    def __init__(
        self,
        client: B2Client,
        part_size: int,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay: float = 0.0,
    ):
        """Initialize the upload coordinator.

        Args:
            client: B2 API client
            part_size: Bytes per part for multi-part uploads
            max_attempts: Attempt budget for each remote-mutating call
            retry_delay: Base backoff delay between attempts in seconds
        """
        if part_size <= 0:
            raise ValueError(f"Part size must be positive, got {part_size}")
        self.client = client
        self.part_size = part_size
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay

    def upload(
        self,
        staged: StagedFile,
        decision: UploadDecision,
        bucket_id: str,
        target_path: str,
    ) -> UploadResult:
        """Upload a staged file according to its decision.

        Raises:
            UploadError: If the upload failed after all retries
        """
        if decision.action == UploadAction.UPLOAD_WHOLE:
            return self._upload_whole(staged, bucket_id, target_path)
        if decision.action == UploadAction.UPLOAD_CHUNKED:
            return self._upload_chunked(
                staged, decision.part_count, bucket_id, target_path
            )
        raise ValueError(f"Nothing to upload for action {decision.action.value}")

    # =========================
    # Whole-object uploads
    # =========================

    def _upload_whole(
        self, staged: StagedFile, bucket_id: str, target_path: str
    ) -> UploadResult:
        with staged.open() as f:
            data = f.read()

        def put() -> object:
            # A fresh upload URL per attempt, a failed one may stay broken
            target = self.client.get_upload_target(bucket_id)
            return self.client.put_whole_object(target, target_path, data, staged.sha1)

        result = retry(
            put,
            self.max_attempts,
            retry_delay=self.retry_delay,
            description=f"Upload of {target_path}",
        )
        if result.exhausted:
            raise UploadError(
                f"Upload of {target_path} failed after {result.attempts} attempt(s): "
                f"{result.error}"
            ) from result.error

        logger.info(f"Uploaded {target_path} ({format_size(staged.size)})")
        return UploadResult(action=UploadAction.UPLOAD_WHOLE, parts_uploaded=1)

    # =========================
    # Multi-part uploads
    # =========================

    def _open_session(
        self, bucket_id: str, target_path: str, part_count: int
    ) -> UploadSession:
        """Resume the unfinished session for this name, or start a new one.

        Only the most recent unfinished session is kept, older ones are
        cancelled. A session holding parts beyond ``part_count`` was started
        with a different part size and is cancelled as well.
        """
        unfinished = self.client.list_unfinished_sessions(bucket_id, target_path)
        for leftover in unfinished[1:]:
            self._cancel_leftover(leftover, target_path)

        if unfinished:
            latest = unfinished[0]
            remote_parts = self.client.list_confirmed_parts(latest.session_id)
            if all(number <= part_count for number in remote_parts):
                logger.info(f"Resuming multi-part upload of {target_path}")
                return UploadSession(
                    session_id=latest.session_id,
                    remote_parts=remote_parts,
                    resumed=True,
                )
            self._cancel_leftover(latest, target_path)

        session_id = self.client.start_multipart_session(bucket_id, target_path)
        logger.debug(f"Started multi-part upload {session_id} for {target_path}")
        return UploadSession(session_id=session_id)

    def _cancel_leftover(self, leftover: UnfinishedSession, target_path: str) -> None:
        logger.info(
            f"Cancelling stale multi-part upload {leftover.session_id} "
            f"of {target_path}"
        )
        try:
            self.client.abort_session(leftover.session_id)
        except B2BackupError as e:
            logger.warning(
                f"Failed to cancel multi-part upload {leftover.session_id}: {e}"
            )

    def _abort(self, session: UploadSession) -> None:
        if session.aborted:
            return
        session.aborted = True
        logger.warning(f"Cancelling multi-part upload {session.session_id}")
        self.client.abort_session(session.session_id)

    def _put_part(
        self,
        session: UploadSession,
        targets: list[UploadTarget],
        part_number: int,
        data: bytes,
        sha1: str,
    ) -> object:
        if not targets:
            targets.append(self.client.get_part_upload_target(session.session_id))
        try:
            return self.client.put_part(targets[0], part_number, data, sha1)
        except Exception:
            # Fetch a new part URL before the next attempt
            targets.clear()
            raise

    def _upload_chunked(
        self,
        staged: StagedFile,
        part_count: int,
        bucket_id: str,
        target_path: str,
    ) -> UploadResult:
        session = self._open_session(bucket_id, target_path, part_count)
        targets = [self.client.get_part_upload_target(session.session_id)]
        abort = partial(self._abort, session)
        uploaded = 0
        reused = 0

        with staged.open() as f:
            for part_number in range(1, part_count + 1):
                start, end = part_range(part_number, staged.size, self.part_size)
                f.seek(start)
                data = f.read(end - start + 1)
                sha1 = sha1_bytes(data)
                session.part_hashes.append(sha1)

                remote = session.remote_parts.get(part_number)
                if (
                    remote is not None
                    and remote.content_sha1 == sha1
                    and remote.content_length == len(data)
                ):
                    logger.debug(f"Already uploaded {target_path} part {part_number}")
                    reused += 1
                    continue
                if remote is not None:
                    # Uploading under the same number replaces the stored part
                    logger.debug(
                        f"Stored {target_path} part {part_number} differs, "
                        "uploading it again"
                    )

                logger.debug(
                    f"Uploading {target_path} part {part_number}/{part_count} "
                    f"({format_size(len(data))})"
                )
                result = retry(
                    partial(self._put_part, session, targets, part_number, data, sha1),
                    self.max_attempts,
                    cleanup=abort,
                    retry_delay=self.retry_delay,
                    description=f"Upload of {target_path} part {part_number}",
                )
                if result.exhausted:
                    raise UploadError(
                        f"Part {part_number} of {target_path} failed after "
                        f"{result.attempts} attempt(s): {result.error}"
                    ) from result.error
                uploaded += 1

        finalize = partial(
            self.client.finalize_session, session.session_id, session.part_hashes
        )
        result = retry(
            finalize,
            self.max_attempts,
            cleanup=abort,
            retry_delay=self.retry_delay,
            description=f"Finishing {target_path}",
        )
        if result.exhausted:
            raise UploadError(
                f"Finishing {target_path} failed after {result.attempts} "
                f"attempt(s): {result.error}"
            ) from result.error

        logger.info(
            f"Uploaded {target_path} in {part_count} parts "
            f"({uploaded} sent, {reused} already on server)"
        )
        return UploadResult(
            action=UploadAction.UPLOAD_CHUNKED,
            parts_uploaded=uploaded,
            parts_reused=reused,
            session_id=session.session_id,
        )
