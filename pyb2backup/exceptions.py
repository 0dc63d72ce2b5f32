"""Exceptions raised by pyb2backup."""


class B2BackupError(Exception):
    """Base exception for all pyb2backup errors."""

    pass


class ConfigError(B2BackupError):
    """Missing or malformed configuration."""

    pass


class B2APIError(B2BackupError):
    """Request to the B2 API failed."""

    def __init__(self, message: str, status: int = 0, code: str = ""):
        super().__init__(message)
        self.status = status
        self.code = code


class B2AuthenticationError(B2APIError):
    """Invalid credentials or expired authorization token."""

    pass


class B2PermissionError(B2APIError):
    """The application key is not allowed to perform the request."""

    pass


class B2NotFoundError(B2APIError):
    """Bucket, file or session does not exist."""

    pass


class B2RateLimitError(B2APIError):
    """Too many requests (HTTP 429)."""

    pass


class B2NetworkError(B2APIError):
    """Transport-level failure (connection reset, timeout, DNS)."""

    pass


class B2InvalidResponseError(B2APIError):
    """The server answered with something that is not the expected JSON."""

    pass


class B2DuplicateBucketError(B2APIError):
    """A bucket with the requested name already exists."""

    pass


class UploadError(B2BackupError):
    """Upload of a single file failed after all retries."""

    pass


class SourceError(B2BackupError):
    """Reading from the source tree failed."""

    pass


class SourceNotFoundError(SourceError):
    """Path does not exist in the source tree."""

    pass
