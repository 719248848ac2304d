"""API client for Google Drive (v3 REST)."""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

import httpx

from .auth import AuthAgent
from .exceptions import (
    GriveAPIError,
    GriveAuthenticationError,
    GriveDownloadError,
    GriveNetworkError,
    GriveNotFoundError,
    GrivePermissionError,
    GriveQuotaExceededError,
    GriveRateLimitError,
    GriveServerError,
    GriveTokenRefreshedError,
    GriveUploadError,
)
from .models import FILE_FIELDS, DriveEntry, FileListResult
from .utils import DEFAULT_CHUNK_SIZE, FOLDER_MIME_TYPE, format_iso_timestamp

if TYPE_CHECKING:
    from .sync.throttle import TransferThrottle

logger = logging.getLogger(__name__)

API_URL = "https://www.googleapis.com/drive/v3"
UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3"

# 403 reasons that mean "slow down" rather than "forbidden"
_RATE_LIMIT_REASONS = {"rateLimitExceeded", "userRateLimitExceeded"}
_QUOTA_REASONS = {"storageQuotaExceeded", "quotaExceeded", "teamDriveFileLimitExceeded"}


class DriveClient:
    """Client for the subset of the Drive API needed for syncing."""

    def __init__(
        self,
        agent: AuthAgent,
        api_url: str = API_URL,
        upload_url: str = UPLOAD_URL,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ):
        """Initialize Drive API client.

        Args:
            agent: Authenticated transport
            api_url: Base URL of the metadata API
            upload_url: Base URL of the upload API
            max_retries: Maximum number of retry attempts (default: 3)
            retry_delay: Initial delay between retries in seconds (default: 1.0)
        """
        self.agent = agent
        self.api_url = api_url.rstrip("/")
        self.upload_url = upload_url.rstrip("/")
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self.agent.http.close()

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Calculate delay before next retry using exponential backoff.

        Args:
            attempt: Current attempt number (0-based)

        Returns:
            Delay in seconds
        """
        base_delay = self.retry_delay * (2**attempt)
        # Add jitter: +/- 25% of base delay
        jitter = base_delay * 0.25 * (2 * random.random() - 1)
        return base_delay + jitter

    def _error_from_response(self, response: httpx.Response) -> GriveAPIError:
        """Map an error response to an exception.

        Args:
            response: Response with a 4xx/5xx status

        Returns:
            The matching exception (not raised)
        """
        status_code = response.status_code
        message = f"API request failed with status {status_code}"
        reason = ""

        try:
            error = response.json().get("error", {})
            if isinstance(error, dict):
                errors = error.get("errors") or [{}]
                reason = errors[0].get("reason", "")
                if error.get("message"):
                    message = f"{message}: {error['message']}"
        except (ValueError, AttributeError, httpx.ResponseNotRead):
            # Body is not JSON, keep the status-based message
            pass

        if status_code == 401:
            return GriveAuthenticationError(
                "Access token rejected - run 'pygrive auth' again", status_code
            )
        if status_code == 403:
            if reason in _RATE_LIMIT_REASONS:
                return GriveRateLimitError(message, status_code)
            if reason in _QUOTA_REASONS:
                return GriveQuotaExceededError(message, status_code)
            return GrivePermissionError(message, status_code)
        if status_code == 404:
            return GriveNotFoundError("Resource not found", status_code)
        if status_code == 429:
            return GriveRateLimitError(
                "Rate limit exceeded - please try again later", status_code
            )
        if 500 <= status_code < 600:
            return GriveServerError(message, status_code)
        return GriveAPIError(message, status_code)

    def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a replayable request with retry logic.

        Raises:
            GriveAPIError: If the request fails after all retries
        """
        last_exception: GriveAPIError | None = None

        for attempt in range(self.max_retries + 1):
            try:
                response = self.agent.request(method, url, **kwargs)
            except httpx.RequestError as e:
                last_exception = GriveNetworkError(f"Network error: {e}")
                if attempt < self.max_retries:
                    time.sleep(self._calculate_retry_delay(attempt))
                    continue
                raise last_exception from e

            if response.is_success:
                return response

            error = self._error_from_response(response)
            last_exception = error
            if (
                isinstance(error, (GriveRateLimitError, GriveServerError))
                and attempt < self.max_retries
            ):
                # Special handling for rate limits: use Retry-After header
                retry_after = response.headers.get("Retry-After", "")
                if retry_after.isdigit():
                    delay = float(retry_after)
                else:
                    delay = self._calculate_retry_delay(attempt)
                logger.debug(
                    "%s %s failed (%s), retrying in %.1fs", method, url, error, delay
                )
                time.sleep(delay)
                continue
            raise error

        # If we get here, we've exhausted all retries
        if last_exception:
            raise last_exception
        raise GriveAPIError("Request failed after all retry attempts")

    def _request(self, method: str, endpoint: str, **kwargs: Any) -> Any:
        """Make a metadata API request and return its JSON body."""
        url = f"{self.api_url}/{endpoint.lstrip('/')}"
        response = self._send(method, url, **kwargs)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise GriveAPIError("Invalid JSON response from server") from e

    # =========================
    # Metadata Operations
    # =========================

    def get_root_id(self) -> str:
        """Return the ID of the 'My Drive' root folder."""
        return self._request("GET", "/files/root", params={"fields": "id"})["id"]

    def get_file(self, file_id: str) -> DriveEntry:
        """Get metadata of a single file or folder."""
        data = self._request("GET", f"/files/{file_id}", params={"fields": FILE_FIELDS})
        return DriveEntry.from_api_response(data)

    def list_children(
        self,
        folder_id: str,
        page_token: str | None = None,
        page_size: int = 1000,
    ) -> FileListResult:
        """List one page of non-trashed children of a folder.

        Args:
            folder_id: ID of the folder
            page_token: Token of the page to fetch (None for the first page)
            page_size: Maximum entries per page

        Returns:
            FileListResult with entries and the next page token
        """
        params: dict[str, Any] = {
            "q": f"'{folder_id}' in parents and trashed = false",
            "fields": f"nextPageToken,files({FILE_FIELDS})",
            "pageSize": page_size,
            "spaces": "drive",
        }
        if page_token:
            params["pageToken"] = page_token
        return FileListResult.from_api_response(
            self._request("GET", "/files", params=params)
        )

    def create_folder(self, name: str, parent_id: str) -> DriveEntry:
        """Create a folder.

        Args:
            name: Name of the new folder
            parent_id: ID of the parent folder

        Returns:
            The created folder
        """
        data = self._request(
            "POST",
            "/files",
            params={"fields": FILE_FIELDS},
            json={"name": name, "mimeType": FOLDER_MIME_TYPE, "parents": [parent_id]},
        )
        return DriveEntry.from_api_response(data)

    def rename_file(self, file_id: str, name: str) -> DriveEntry:
        """Rename a file or folder in place."""
        data = self._request(
            "PATCH",
            f"/files/{file_id}",
            params={"fields": FILE_FIELDS},
            json={"name": name},
        )
        return DriveEntry.from_api_response(data)

    def delete_file(self, file_id: str, permanent: bool = False) -> None:
        """Move a file or folder to the trash, or delete it permanently.

        Args:
            file_id: ID of the entry
            permanent: If True, delete permanently; if False, move to trash
        """
        if permanent:
            self._request("DELETE", f"/files/{file_id}")
        else:
            self._request("PATCH", f"/files/{file_id}", json={"trashed": True})

    # =========================
    # Content Operations
    # =========================

    def upload_file(
        self,
        content: Iterable[bytes],
        size: int,
        name: str,
        parent_id: str | None = None,
        file_id: str | None = None,
        modified_time: float | None = None,
        keep_revision: bool = False,
    ) -> DriveEntry:
        """Upload file content using a resumable upload session.

        Creates a new file when ``file_id`` is None, otherwise uploads a new
        revision of the existing file.

        Args:
            content: Iterable yielding the file bytes (may be throttled)
            size: Total content length in bytes
            name: File name (used when creating)
            parent_id: Parent folder ID (required when creating)
            file_id: ID of the file to update
            modified_time: Modification time to store remotely
            keep_revision: Keep this revision forever

        Returns:
            The uploaded file entry
        """
        metadata: dict[str, Any] = {}
        if modified_time is not None:
            metadata["modifiedTime"] = format_iso_timestamp(modified_time)
        params: dict[str, Any] = {"uploadType": "resumable", "fields": FILE_FIELDS}
        if keep_revision:
            params["keepRevisionForever"] = "true"

        if file_id is None:
            if parent_id is None:
                raise GriveUploadError("parent_id is required to create a file")
            metadata["name"] = name
            metadata["parents"] = [parent_id]
            method, url = "POST", f"{self.upload_url}/files"
        else:
            method, url = "PATCH", f"{self.upload_url}/files/{file_id}"

        session = self._send(
            method,
            url,
            params=params,
            json=metadata,
            headers={"X-Upload-Content-Length": str(size)},
        )
        session_url = session.headers.get("Location")
        if not session_url:
            raise GriveUploadError("Upload session response missing Location header")

        try:
            response = self.agent.request(
                "PUT",
                session_url,
                content=content,
                headers={"Content-Length": str(size)},
            )
        except httpx.RequestError as e:
            raise GriveNetworkError(f"Network error during upload: {e}") from e

        if response.status_code == 401:
            # The agent cannot resend a streamed body; refresh so that the
            # caller can start the upload over
            self.agent.refresh_token()
            raise GriveTokenRefreshedError(
                "Access token expired during upload", status_code=401
            )
        if not response.is_success:
            raise self._error_from_response(response)
        return DriveEntry.from_api_response(response.json())

    def download_file(
        self,
        file_id: str,
        output_path: Path,
        progress_callback: Callable[[int, int], None] | None = None,
        throttle: TransferThrottle | None = None,
        timeout: float = 60.0,
    ) -> Path:
        """Download file content.

        Args:
            file_id: ID of the file to download
            output_path: Path where to save the file
            progress_callback: Optional callback function(bytes_downloaded, total_bytes)
            throttle: Optional bandwidth limiter applied per chunk
            timeout: Request timeout in seconds (default: 60)

        Returns:
            Path where the file was saved
        """
        url = f"{self.api_url}/files/{file_id}"

        try:
            with self.agent.stream(
                "GET", url, params={"alt": "media"}, timeout=timeout
            ) as response:
                if not response.is_success:
                    response.read()
                    raise self._error_from_response(response)

                total_size = int(response.headers.get("Content-Length", 0))
                bytes_downloaded = 0

                with open(output_path, "wb") as f:
                    for chunk in response.iter_bytes(chunk_size=DEFAULT_CHUNK_SIZE):
                        if not chunk:
                            continue
                        if throttle is not None:
                            throttle.consume(len(chunk))
                        f.write(chunk)
                        bytes_downloaded += len(chunk)
                        if progress_callback:
                            progress_callback(bytes_downloaded, total_size)

                return output_path

        except httpx.RequestError as e:
            raise GriveNetworkError(f"Network error during download: {e}") from e
        except OSError as e:
            raise GriveDownloadError(f"Failed to write file: {e}") from e
