"""API client for the Backblaze B2 native API."""

from __future__ import annotations

import random
import time
from typing import Any
from urllib.parse import quote

import httpx

from .config import config
from .exceptions import (
    B2APIError,
    B2AuthenticationError,
    B2DuplicateBucketError,
    B2InvalidResponseError,
    B2NetworkError,
    B2NotFoundError,
    B2PermissionError,
    B2RateLimitError,
    ConfigError,
)
from .models import (
    Authorization,
    Bucket,
    RemoteObjectRecord,
    UnfinishedSession,
    UploadedPart,
    UploadTarget,
)
from .utils import (
    DEFAULT_LIST_PAGE_SIZE,
    DEFAULT_PART_LIST_PAGE_SIZE,
    DEFAULT_PART_SIZE,
    MAX_RETRY_DELAY,
)

API_VERSION = "v2"

# Token problems that a fresh b2_authorize_account fixes
REAUTHORIZE_CODES = ("expired_auth_token", "bad_auth_token")


class B2Client:
    """Client for interacting with the B2 object store."""

    def __init__(
        self,
        application_key_id: str | None = None,
        application_key: str | None = None,
        api_url: str | None = None,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        timeout: float = 120.0,
    ):
        """Initialize B2 API client.

        Args:
            application_key_id: Key ID (uses config if not provided)
            application_key: Application key (uses config if not provided)
            api_url: Authorization endpoint base URL (uses config if not provided)
            max_retries: Maximum number of retry attempts for metadata calls
            retry_delay: Initial delay between retries in seconds (default: 1.0)
            timeout: Request timeout in seconds (default: 120.0)
        """
        self.application_key_id = application_key_id or config.application_key_id
        self.application_key = application_key or config.application_key
        self.api_url = api_url or config.api_url
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout

        if not self.application_key_id or not self.application_key:
            raise ConfigError(
                "B2 credentials not configured. Please set B2_APPLICATION_KEY_ID "
                "and B2_APPLICATION_KEY or pass them on the command line."
            )

        self._client: httpx.Client | None = None
        self._auth: Authorization | None = None

    def _get_client(self) -> httpx.Client:
        """Get or create the httpx client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
            )
        return self._client

    def close(self) -> None:
        """Close the client and release connections."""
        if self._client is not None and not self._client.is_closed:
            self._client.close()
            self._client = None

    # =========================
    # Authorization
    # =========================

    def authorize(self) -> Authorization:
        """Authorize the account and remember the session token.

        The token is valid for 24 hours; expired tokens are refreshed
        automatically by ``_request``.
        """
        url = f"{self.api_url.rstrip('/')}/b2api/{API_VERSION}/b2_authorize_account"
        client = self._get_client()
        try:
            response = client.get(
                url, auth=(str(self.application_key_id), str(self.application_key))
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise self._error_from_response(e.response) from e
        except httpx.RequestError as e:
            raise B2NetworkError(f"Network error: {e}") from e

        self._auth = Authorization.from_api_response(self._parse_json(response))
        return self._auth

    @property
    def authorization(self) -> Authorization:
        if self._auth is None:
            return self.authorize()
        return self._auth

    @property
    def recommended_part_size(self) -> int:
        return self.authorization.recommended_part_size or DEFAULT_PART_SIZE

    @property
    def absolute_minimum_part_size(self) -> int:
        return self.authorization.absolute_minimum_part_size

    # =========================
    # Request handling
    # =========================

    def _should_retry(self, exception: Exception, attempt: int) -> bool:
        """Determine if a request should be retried.

        Args:
            exception: The exception that occurred
            attempt: Current attempt number (0-based)

        Returns:
            True if the request should be retried, False otherwise
        """
        if attempt >= self.max_retries:
            return False

        if isinstance(exception, (B2NetworkError, B2RateLimitError)):
            return True

        # Server errors (5xx) are transient; client errors are not
        if isinstance(exception, B2APIError) and 500 <= exception.status < 600:
            return True

        return False

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Calculate delay before next retry using exponential backoff.

        Args:
            attempt: Current attempt number (0-based)

        Returns:
            Delay in seconds
        """
        base_delay = min(self.retry_delay * (2**attempt), MAX_RETRY_DELAY)
        # Add jitter: +/- 25% of base delay
        jitter = base_delay * 0.25 * (2 * random.random() - 1)
        return base_delay + jitter

    def _parse_json(self, response: httpx.Response) -> Any:
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise B2InvalidResponseError(
                "Invalid JSON response from server", status=response.status_code
            ) from e

    def _error_from_response(self, response: httpx.Response) -> B2APIError:
        """Map an error response to the matching exception type.

        B2 error bodies look like ``{"status": 400, "code": "...", "message": "..."}``.
        """
        status = response.status_code
        code = ""
        message = ""
        try:
            if response.content:
                body = response.json()
                if isinstance(body, dict):
                    code = str(body.get("code") or "")
                    message = str(body.get("message") or "")
        except ValueError:
            # Not JSON, keep the status-based message
            pass

        detail = f"{code}: {message}" if code or message else f"HTTP {status}"
        if status == 401:
            return B2AuthenticationError(f"Unauthorized ({detail})", status, code)
        if status == 403:
            return B2PermissionError(f"Access forbidden ({detail})", status, code)
        if status == 404:
            return B2NotFoundError(f"Not found ({detail})", status, code)
        if status == 429:
            return B2RateLimitError(f"Rate limit exceeded ({detail})", status, code)
        if code == "duplicate_bucket_name":
            return B2DuplicateBucketError(
                f"Bucket already exists ({detail})", status, code
            )
        return B2APIError(
            f"API request failed with status {status} ({detail})", status, code
        )

    def _request(
        self, api_name: str, payload: dict[str, Any], retry: bool = True
    ) -> Any:
        """Call a B2 API operation with retry logic.

        Args:
            api_name: Operation name, e.g. ``b2_list_buckets``
            payload: JSON body
            retry: Retry transient failures inside the client. Upload session
                mutations pass False so the caller owns the retry budget.

        Returns:
            Response JSON data

        Raises:
            B2APIError: If the request fails after all retries
        """
        client = self._get_client()
        reauthorized = False
        attempt = 0

        while True:
            auth = self.authorization
            url = f"{auth.api_url}/b2api/{API_VERSION}/{api_name}"
            try:
                response = client.post(
                    url,
                    json=payload,
                    headers={"Authorization": auth.authorization_token},
                )
                response.raise_for_status()
                return self._parse_json(response)

            except httpx.HTTPStatusError as e:
                error = self._error_from_response(e.response)
                if (
                    isinstance(error, B2AuthenticationError)
                    and error.code in REAUTHORIZE_CODES
                    and not reauthorized
                ):
                    reauthorized = True
                    self.authorize()
                    continue
                if retry and self._should_retry(error, attempt):
                    delay = self._retry_after(e.response, attempt)
                    time.sleep(delay)
                    attempt += 1
                    continue
                raise error from e
            except httpx.RequestError as e:
                error = B2NetworkError(f"Network error: {e}")
                if retry and self._should_retry(error, attempt):
                    time.sleep(self._calculate_retry_delay(attempt))
                    attempt += 1
                    continue
                raise error from e

    def _retry_after(self, response: httpx.Response, attempt: int) -> float:
        retry_after = response.headers.get("Retry-After")
        if retry_after and retry_after.isdigit():
            return float(retry_after)
        return self._calculate_retry_delay(attempt)

    def _upload(
        self, target: UploadTarget, headers: dict[str, str], data: bytes
    ) -> Any:
        """POST bytes to an upload URL. Single attempt."""
        client = self._get_client()
        try:
            response = client.post(
                target.url,
                content=data,
                headers={
                    "Authorization": target.token,
                    "Content-Length": str(len(data)),
                    **headers,
                },
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise self._error_from_response(e.response) from e
        except httpx.RequestError as e:
            raise B2NetworkError(f"Network error during upload: {e}") from e
        return self._parse_json(response)

    # =========================
    # Buckets
    # =========================

    def list_buckets(self) -> list[Bucket]:
        """List all buckets of the account."""
        data = self._request(
            "b2_list_buckets", {"accountId": self.authorization.account_id}
        )
        return [Bucket.from_api_response(b) for b in data.get("buckets", [])]

    def create_bucket(
        self, bucket_name: str, bucket_type: str = "allPrivate"
    ) -> Bucket:
        """Create a bucket.

        Raises:
            B2DuplicateBucketError: If the name is already taken
        """
        data = self._request(
            "b2_create_bucket",
            {
                "accountId": self.authorization.account_id,
                "bucketName": bucket_name,
                "bucketType": bucket_type,
            },
        )
        return Bucket.from_api_response(data)

    # =========================
    # Objects
    # =========================

    def list_objects(
        self, bucket_id: str, max_count: int = DEFAULT_LIST_PAGE_SIZE
    ) -> list[RemoteObjectRecord]:
        """List every object name in a bucket, following pagination.

        Args:
            bucket_id: Bucket to list
            max_count: Names requested per call (B2 allows up to 10000)

        Returns:
            All object records in name order
        """
        records: list[RemoteObjectRecord] = []
        payload: dict[str, Any] = {"bucketId": bucket_id, "maxFileCount": max_count}

        while True:
            data = self._request("b2_list_file_names", payload)
            records.extend(
                RemoteObjectRecord.from_api_response(f) for f in data.get("files", [])
            )
            next_name = data.get("nextFileName")
            if not next_name:
                break
            payload = {**payload, "startFileName": next_name}

        return records

    def get_upload_target(self, bucket_id: str) -> UploadTarget:
        data = self._request("b2_get_upload_url", {"bucketId": bucket_id})
        return UploadTarget.from_api_response(data)

    def put_whole_object(
        self, target: UploadTarget, file_name: str, data: bytes, sha1: str
    ) -> Any:
        """Upload a complete object in one request."""
        return self._upload(
            target,
            {
                "X-Bz-File-Name": quote(file_name, safe="/"),
                "Content-Type": "b2/x-auto",
                "X-Bz-Content-Sha1": sha1,
            },
            data,
        )

    # =========================
    # Multi-part sessions
    # =========================

    def start_multipart_session(self, bucket_id: str, file_name: str) -> str:
        """Start a large file upload and return its session (file) id."""
        data = self._request(
            "b2_start_large_file",
            {"bucketId": bucket_id, "fileName": file_name, "contentType": "b2/x-auto"},
            retry=False,
        )
        session_id: str = data["fileId"]
        return session_id

    def list_unfinished_sessions(
        self, bucket_id: str, file_name: str
    ) -> list[UnfinishedSession]:
        """List unfinished large file uploads with exactly this name.

        Returns:
            Matching sessions, most recently started first
        """
        payload: dict[str, Any] = {
            "bucketId": bucket_id,
            "namePrefix": file_name,
            "maxFileCount": 100,
        }
        matches: list[UnfinishedSession] = []

        while True:
            data = self._request("b2_list_unfinished_large_files", payload)
            matches.extend(
                UnfinishedSession.from_api_response(f)
                for f in data.get("files", [])
                if f.get("fileName") == file_name
            )
            next_id = data.get("nextFileId")
            if not next_id:
                break
            payload = {**payload, "startFileId": next_id}

        return sorted(matches, key=lambda s: s.upload_timestamp or 0, reverse=True)

    def get_part_upload_target(self, session_id: str) -> UploadTarget:
        data = self._request("b2_get_upload_part_url", {"fileId": session_id})
        return UploadTarget.from_api_response(data)

    def list_confirmed_parts(
        self, session_id: str, max_count: int = DEFAULT_PART_LIST_PAGE_SIZE
    ) -> dict[int, UploadedPart]:
        """Parts the server already holds for a session, keyed by part number."""
        parts: dict[int, UploadedPart] = {}
        payload: dict[str, Any] = {
            "fileId": session_id,
            "startPartNumber": 1,
            "maxPartCount": max_count,
        }

        while True:
            data = self._request("b2_list_parts", payload)
            for entry in data.get("parts", []):
                part = UploadedPart.from_api_response(entry)
                parts[part.part_number] = part
            next_part = data.get("nextPartNumber")
            if not next_part:
                break
            payload = {**payload, "startPartNumber": next_part}

        return parts

    def put_part(
        self, target: UploadTarget, part_number: int, data: bytes, sha1: str
    ) -> Any:
        """Upload one part of a large file."""
        return self._upload(
            target,
            {"X-Bz-Part-Number": str(part_number), "X-Bz-Content-Sha1": sha1},
            data,
        )

    def finalize_session(self, session_id: str, part_hashes: list[str]) -> Any:
        """Assemble the uploaded parts into the final object."""
        return self._request(
            "b2_finish_large_file",
            {"fileId": session_id, "partSha1Array": part_hashes},
            retry=False,
        )

    def abort_session(self, session_id: str) -> Any:
        """Cancel a large file upload and discard its parts."""
        return self._request(
            "b2_cancel_large_file", {"fileId": session_id}, retry=False
        )
