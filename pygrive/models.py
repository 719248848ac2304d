"""Data models for Google Drive API responses."""

from dataclasses import dataclass, field
from typing import Any, Optional

from .utils import FOLDER_MIME_TYPE, GOOGLE_APPS_MIME_PREFIX, parse_iso_timestamp

# Fields requested for every file resource
FILE_FIELDS = (
    "id,name,mimeType,parents,size,md5Checksum,headRevisionId,modifiedTime,trashed"
)


@dataclass
class DriveEntry:
    """A file or folder resource as returned by the Drive API."""

    id: str
    name: str
    mime_type: str
    parent_id: Optional[str] = None
    size: int = 0
    md5_checksum: Optional[str] = None
    revision: Optional[str] = None
    modified_time: Optional[float] = None
    trashed: bool = False

    @property
    def is_folder(self) -> bool:
        return self.mime_type == FOLDER_MIME_TYPE

    @property
    def is_google_document(self) -> bool:
        """Google-native documents have no downloadable binary content."""
        return not self.is_folder and self.mime_type.startswith(GOOGLE_APPS_MIME_PREFIX)

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "DriveEntry":
        """Create a DriveEntry from a Drive ``File`` resource."""
        parents = data.get("parents") or []
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            mime_type=data.get("mimeType", "application/octet-stream"),
            parent_id=parents[0] if parents else None,
            size=int(data.get("size", 0) or 0),
            md5_checksum=data.get("md5Checksum"),
            revision=data.get("headRevisionId"),
            modified_time=parse_iso_timestamp(data.get("modifiedTime")),
            trashed=bool(data.get("trashed", False)),
        )


@dataclass
class FileListResult:
    """One page of a ``files.list`` call."""

    entries: list[DriveEntry] = field(default_factory=list)
    next_page_token: Optional[str] = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "FileListResult":
        return cls(
            entries=[DriveEntry.from_api_response(f) for f in data.get("files", [])],
            next_page_token=data.get("nextPageToken"),
        )
