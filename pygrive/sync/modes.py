"""Sync modes."""

from enum import Enum


class SyncMode(str, Enum):
    """Direction(s) in which changes are propagated."""

    TWO_WAY = "twoWay"
    """Propagate changes in both directions"""

    UPLOAD_ONLY = "uploadOnly"
    """Only propagate local changes to the remote side"""

    DOWNLOAD_ONLY = "downloadOnly"
    """Only propagate remote changes to the local side"""

    @classmethod
    def from_options(cls, upload_only: bool, download_only: bool) -> "SyncMode":
        if upload_only and download_only:
            raise ValueError("upload-only and download-only are mutually exclusive")
        if upload_only:
            return cls.UPLOAD_ONLY
        if download_only:
            return cls.DOWNLOAD_ONLY
        return cls.TWO_WAY

    @property
    def allows_upload(self) -> bool:
        """Local changes may be written to the remote side."""
        return self in (SyncMode.TWO_WAY, SyncMode.UPLOAD_ONLY)

    @property
    def allows_download(self) -> bool:
        """Remote changes may be written to the local side."""
        return self in (SyncMode.TWO_WAY, SyncMode.DOWNLOAD_ONLY)
