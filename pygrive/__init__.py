"""pygrive - keep a local directory in sync with Google Drive."""

from .api import DriveClient
from .exceptions import (
    GriveAPIError,
    GriveAuthenticationError,
    GriveConfigError,
    GriveDownloadError,
    GriveError,
    GriveIntegrityError,
    GriveLockError,
    GriveNetworkError,
    GriveNotFoundError,
    GrivePermissionError,
    GriveQuotaExceededError,
    GriveRateLimitError,
    GriveServerError,
    GriveStaleEntryError,
    GriveSyncAborted,
    GriveUploadError,
)

__version__ = "0.1.0"

__all__ = [
    "DriveClient",
    "GriveError",
    "GriveAPIError",
    "GriveAuthenticationError",
    "GriveConfigError",
    "GriveDownloadError",
    "GriveIntegrityError",
    "GriveLockError",
    "GriveNetworkError",
    "GriveNotFoundError",
    "GrivePermissionError",
    "GriveQuotaExceededError",
    "GriveRateLimitError",
    "GriveServerError",
    "GriveStaleEntryError",
    "GriveSyncAborted",
    "GriveUploadError",
]
