"""Exceptions raised by pygrive."""

from typing import Optional


class GriveError(Exception):
    """Base class for all pygrive errors."""


class GriveConfigError(GriveError):
    """Configuration is missing or invalid.

    Raised before any network or filesystem mutation takes place.
    """


class GriveLockError(GriveError):
    """Another sync run holds the working copy lock."""


class GriveIntegrityError(GriveError):
    """Transferred content does not match the expected checksum."""


class GriveStaleEntryError(GriveError):
    """A local path changed between scanning and applying a change.

    The operation is abandoned for this run; the next run sees the new
    state and classifies it again.
    """


class GriveAPIError(GriveError):
    """Base class for errors reported by the Drive API."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class GriveAuthenticationError(GriveAPIError):
    """Access token was rejected and could not be refreshed."""


class GriveTokenRefreshedError(GriveAPIError):
    """The access token expired while content was being streamed.

    The token has already been refreshed, but a streamed body cannot be
    replayed by the transport: the whole transfer has to be started over.
    """


class GriveQuotaExceededError(GriveAPIError):
    """Storage quota of the account is exhausted."""


class GrivePermissionError(GriveAPIError):
    """Access to a remote object is forbidden."""


class GriveNotFoundError(GriveAPIError):
    """Remote object does not exist (anymore)."""


class GriveRateLimitError(GriveAPIError):
    """Request was rate limited, try again later."""


class GriveServerError(GriveAPIError):
    """Remote service failed with a 5xx status."""


class GriveNetworkError(GriveAPIError):
    """Connection failed or timed out."""


class GriveUploadError(GriveAPIError):
    """Upload could not be completed."""


class GriveDownloadError(GriveAPIError):
    """Download could not be completed."""


class GriveSyncAborted(GriveError):
    """A fatal error stopped the sync run.

    Everything committed before the error is persisted. ``result`` holds
    the partial run result so callers can still report it.
    """

    def __init__(self, message: str, result: object = None):
        super().__init__(message)
        self.result = result


# Errors that must stop the whole run instead of failing a single path.
FATAL_ERRORS = (GriveAuthenticationError, GriveQuotaExceededError, GriveConfigError)

# Errors worth retrying with backoff.
TRANSIENT_ERRORS = (GriveNetworkError, GriveRateLimitError, GriveServerError)
