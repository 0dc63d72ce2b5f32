"""Data models for B2 API responses."""

from dataclasses import dataclass
from typing import Any, Optional

from .utils import normalize_remote_hash


@dataclass
class Authorization:
    """Result of ``b2_authorize_account``."""

    account_id: str
    api_url: str
    authorization_token: str
    recommended_part_size: int
    absolute_minimum_part_size: int

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "Authorization":
        return cls(
            account_id=data["accountId"],
            api_url=data["apiUrl"],
            authorization_token=data["authorizationToken"],
            recommended_part_size=int(data.get("recommendedPartSize", 0)),
            absolute_minimum_part_size=int(data.get("absoluteMinimumPartSize", 0)),
        )


@dataclass
class Bucket:
    """A B2 bucket."""

    bucket_name: str
    bucket_id: str

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "Bucket":
        return cls(bucket_name=data["bucketName"], bucket_id=data["bucketId"])


@dataclass
class RemoteObjectRecord:
    """Metadata of an object already stored in a bucket."""

    file_name: str
    """Full object name, using ``/`` as directory separator"""

    content_length: int
    """Object size in bytes"""

    content_sha1: str
    """Lowercase hex SHA1, or the sentinel ``none`` for multi-part objects"""

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "RemoteObjectRecord":
        return cls(
            file_name=data["fileName"],
            content_length=int(data.get("contentLength", 0)),
            content_sha1=normalize_remote_hash(data.get("contentSha1")),
        )


@dataclass
class UploadTarget:
    """Upload URL plus the token that authorizes uploads to it."""

    url: str
    token: str

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "UploadTarget":
        return cls(url=data["uploadUrl"], token=data["authorizationToken"])


@dataclass
class UnfinishedSession:
    """A multi-part upload that was started but never finished or cancelled."""

    session_id: str
    file_name: str
    upload_timestamp: Optional[int] = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "UnfinishedSession":
        return cls(
            session_id=data["fileId"],
            file_name=data["fileName"],
            upload_timestamp=data.get("uploadTimestamp"),
        )


@dataclass
class UploadedPart:
    """A part the server already holds for an unfinished multi-part upload."""

    part_number: int
    content_sha1: str
    content_length: int

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "UploadedPart":
        return cls(
            part_number=int(data["partNumber"]),
            content_sha1=data.get("contentSha1", ""),
            content_length=int(data.get("contentLength", 0)),
        )
