"""pyb2backup - back up SMB shares into Backblaze B2 buckets."""

from .api import B2Client
from .exceptions import (
    B2APIError,
    B2AuthenticationError,
    B2BackupError,
    B2DuplicateBucketError,
    B2InvalidResponseError,
    B2NetworkError,
    B2NotFoundError,
    B2PermissionError,
    B2RateLimitError,
    ConfigError,
    SourceError,
    SourceNotFoundError,
    UploadError,
)
from .source import LocalTreeProvider, SmbTreeProvider

__version__ = "0.1.0"

__all__ = [
    "B2Client",
    "B2APIError",
    "B2AuthenticationError",
    "B2BackupError",
    "B2DuplicateBucketError",
    "B2InvalidResponseError",
    "B2NetworkError",
    "B2NotFoundError",
    "B2PermissionError",
    "B2RateLimitError",
    "ConfigError",
    "SourceError",
    "SourceNotFoundError",
    "UploadError",
    "LocalTreeProvider",
    "SmbTreeProvider",
]
