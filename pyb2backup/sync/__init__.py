"""Sync engine for pyb2backup - resumable, content-verified backups."""

from .comparator import FileComparator, UploadAction, UploadDecision, build_remote_index
from .engine import FileOutcome, FileStatus, GroupOutcome, SyncEngine
from .group import GroupFilter, SyncGroup, bucket_name_for, discover_groups
from .operations import (
    StagedFile,
    UploadCoordinator,
    UploadResult,
    UploadSession,
    stage_file,
)
from .retry import RetryResult, retry
from .scanner import DirectoryWalker, SourceEntry, to_target_path
from .state import ManifestStore, UploadManifest

__all__ = [
    "SyncEngine",
    "FileOutcome",
    "FileStatus",
    "GroupOutcome",
    "GroupFilter",
    "SyncGroup",
    "bucket_name_for",
    "discover_groups",
    "FileComparator",
    "UploadAction",
    "UploadDecision",
    "build_remote_index",
    "StagedFile",
    "UploadCoordinator",
    "UploadResult",
    "UploadSession",
    "stage_file",
    "RetryResult",
    "retry",
    "DirectoryWalker",
    "SourceEntry",
    "to_target_path",
    "ManifestStore",
    "UploadManifest",
]
