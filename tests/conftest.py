"""Shared fixtures: an in-memory stand-in for the Drive API client."""

import hashlib
import itertools
from dataclasses import replace
from pathlib import Path
from typing import Optional

import pytest

from pygrive.exceptions import GriveNotFoundError
from pygrive.models import DriveEntry, FileListResult
from pygrive.utils import FOLDER_MIME_TYPE

ROOT_ID = "root"
DEFAULT_MTIME = 1_700_000_000.0


class FakeDriveClient:
    """Implements the DriveClient methods the sync engine uses, in memory.

    ``errors`` maps a method name to exceptions raised by its next calls
    (one per call); ``upload_errors`` maps a file name to an exception
    raised by every upload of that name; ``corrupt`` holds file IDs whose
    downloads deliver wrong bytes.
    """

    def __init__(self):
        self.entries: dict[str, DriveEntry] = {}
        self.content: dict[str, bytes] = {}
        self.errors: dict[str, list[Exception]] = {}
        self.upload_errors: dict[str, Exception] = {}
        self.corrupt: set[str] = set()
        self.calls: list[tuple] = []
        self._ids = itertools.count(1)
        self._revisions = itertools.count(1)
        self.closed = False

    # -- test helpers -------------------------------------------------------

    def _next_id(self) -> str:
        return f"id{next(self._ids)}"

    def _maybe_fail(self, method: str) -> None:
        pending = self.errors.get(method)
        if pending:
            raise pending.pop(0)

    def find(self, path: str) -> Optional[DriveEntry]:
        """Resolve a relative path to a live entry (first match per name)."""
        parent_id = ROOT_ID
        entry = None
        for name in path.split("/"):
            entry = next(
                (
                    e
                    for e in self.entries.values()
                    if e.parent_id == parent_id and e.name == name and not e.trashed
                ),
                None,
            )
            if entry is None:
                return None
            parent_id = entry.id
        return entry

    def add_folder(self, path: str) -> str:
        """Create a folder (and missing parents); return its ID."""
        parent_id = ROOT_ID
        for depth, name in enumerate(path.split("/"), start=1):
            existing = self.find("/".join(path.split("/")[:depth]))
            if existing is not None:
                parent_id = existing.id
                continue
            parent_id = self.create_folder(name, parent_id).id
        return parent_id

    def add_file(
        self,
        path: str,
        data: bytes,
        modified_time: float = DEFAULT_MTIME,
        mime_type: str = "application/octet-stream",
    ) -> str:
        """Create a file at ``path`` (duplicates allowed); return its ID."""
        folder, _, name = path.rpartition("/")
        parent_id = self.add_folder(folder) if folder else ROOT_ID
        file_id = self._next_id()
        self.entries[file_id] = DriveEntry(
            id=file_id,
            name=name,
            mime_type=mime_type,
            parent_id=parent_id,
            size=len(data),
            md5_checksum=hashlib.md5(data).hexdigest(),
            revision=f"rev{next(self._revisions)}",
            modified_time=modified_time,
        )
        self.content[file_id] = data
        return file_id

    def change_file(self, path: str, data: bytes) -> None:
        """Store a new revision of an existing file."""
        entry = self.find(path)
        assert entry is not None, path
        self._store(entry.id, data)

    def remove(self, path: str) -> None:
        entry = self.find(path)
        assert entry is not None, path
        entry.trashed = True

    def _store(self, file_id: str, data: bytes) -> DriveEntry:
        entry = self.entries[file_id]
        entry.size = len(data)
        entry.md5_checksum = hashlib.md5(data).hexdigest()
        entry.revision = f"rev{next(self._revisions)}"
        self.content[file_id] = data
        return entry

    def _path_of(self, entry: DriveEntry) -> str:
        names = [entry.name]
        while entry.parent_id != ROOT_ID:
            entry = self.entries[entry.parent_id]
            names.append(entry.name)
        return "/".join(reversed(names))

    def tree(self) -> dict[str, Optional[bytes]]:
        """Live entries by path; folders map to None."""
        result = {}
        for entry in self.entries.values():
            if entry.trashed or self._in_trash(entry):
                continue
            path = self._path_of(entry)
            result[path] = None if entry.is_folder else self.content[entry.id]
        return result

    def _in_trash(self, entry: DriveEntry) -> bool:
        while entry.parent_id != ROOT_ID:
            entry = self.entries[entry.parent_id]
            if entry.trashed:
                return True
        return False

    # -- DriveClient interface ---------------------------------------------

    def close(self) -> None:
        self.closed = True

    def get_root_id(self) -> str:
        self._maybe_fail("get_root_id")
        return ROOT_ID

    def get_file(self, file_id: str) -> DriveEntry:
        entry = self.entries.get(file_id)
        if entry is None:
            raise GriveNotFoundError("Resource not found", 404)
        return replace(entry)

    def list_children(
        self,
        folder_id: str,
        page_token: Optional[str] = None,
        page_size: int = 1000,
    ) -> FileListResult:
        self._maybe_fail("list_children")
        self.calls.append(("list_children", folder_id, page_token))
        children = sorted(
            (
                e
                for e in self.entries.values()
                if e.parent_id == folder_id and not e.trashed
            ),
            key=lambda e: (e.name, e.id),
        )
        start = int(page_token or 0)
        page = children[start : start + page_size]
        next_token = (
            str(start + page_size) if start + page_size < len(children) else None
        )
        return FileListResult(
            entries=[replace(e) for e in page], next_page_token=next_token
        )

    def create_folder(self, name: str, parent_id: str) -> DriveEntry:
        self._maybe_fail("create_folder")
        self.calls.append(("create_folder", name, parent_id))
        folder_id = self._next_id()
        self.entries[folder_id] = DriveEntry(
            id=folder_id,
            name=name,
            mime_type=FOLDER_MIME_TYPE,
            parent_id=parent_id,
        )
        return replace(self.entries[folder_id])

    def rename_file(self, file_id: str, name: str) -> DriveEntry:
        self._maybe_fail("rename_file")
        self.calls.append(("rename_file", file_id, name))
        entry = self.entries.get(file_id)
        if entry is None or entry.trashed:
            raise GriveNotFoundError("Resource not found", 404)
        entry.name = name
        return replace(entry)

    def delete_file(self, file_id: str, permanent: bool = False) -> None:
        self._maybe_fail("delete_file")
        self.calls.append(("delete_file", file_id))
        entry = self.entries.get(file_id)
        if entry is None or entry.trashed:
            raise GriveNotFoundError("Resource not found", 404)
        entry.trashed = True

    def upload_file(
        self,
        content,
        size: int,
        name: str,
        parent_id: Optional[str] = None,
        file_id: Optional[str] = None,
        modified_time: Optional[float] = None,
        keep_revision: bool = False,
    ) -> DriveEntry:
        self._maybe_fail("upload_file")
        if name in self.upload_errors:
            raise self.upload_errors[name]
        data = b"".join(content)
        self.calls.append(("upload_file", name, parent_id, file_id, keep_revision))
        if file_id is None:
            file_id = self._next_id()
            self.entries[file_id] = DriveEntry(
                id=file_id,
                name=name,
                mime_type="application/octet-stream",
                parent_id=parent_id,
            )
        elif file_id not in self.entries:
            raise GriveNotFoundError("Resource not found", 404)
        entry = self._store(file_id, data)
        entry.modified_time = modified_time
        return replace(entry)

    def download_file(
        self,
        file_id: str,
        output_path: Path,
        progress_callback=None,
        throttle=None,
        timeout: float = 60.0,
    ) -> Path:
        self._maybe_fail("download_file")
        self.calls.append(("download_file", file_id))
        if file_id not in self.content:
            raise GriveNotFoundError("Resource not found", 404)
        data = self.content[file_id]
        if file_id in self.corrupt:
            data = data + b"garbage"
        if throttle is not None:
            throttle.consume(len(data))
        Path(output_path).write_bytes(data)
        if progress_callback:
            progress_callback(len(data), len(data))
        return Path(output_path)


@pytest.fixture
def fake_drive():
    """Provide an empty in-memory Drive."""
    return FakeDriveClient()


@pytest.fixture
def workdir(tmp_path):
    """Provide an empty working copy directory."""
    root = tmp_path / "drive"
    root.mkdir()
    return root
