"""Immutable point-in-time views of a file tree.

A :class:`Snapshot` maps normalized relative paths (forward slashes, no
leading slash, root excluded) to :class:`PathEntry` records. The same
types describe the local tree, the remote tree and the state persisted
after the previous sync.
"""

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Optional

from ..utils import is_within, parent_path


class EntryKind(str, Enum):
    """Kind of a tree entry."""

    FILE = "file"
    FOLDER = "folder"


@dataclass(frozen=True)
class PathEntry:
    """One file or folder at a relative path."""

    path: str
    """Normalized relative path (unique key within a snapshot)"""

    kind: EntryKind
    """File or folder"""

    size: Optional[int] = None
    """Size in bytes (files only)"""

    mtime: Optional[float] = None
    """Modification time as Unix timestamp (files only)"""

    checksum: Optional[str] = None
    """MD5 hex digest of the content (files only)"""

    remote_id: Optional[str] = None
    """Identifier assigned by the remote service"""

    remote_revision: Optional[str] = None
    """Remote version marker used to detect remote modifications"""

    parent_id: Optional[str] = None
    """Remote identifier of the containing folder"""

    @property
    def is_folder(self) -> bool:
        return self.kind == EntryKind.FOLDER

    @property
    def name(self) -> str:
        return self.path.rpartition("/")[2]

    @property
    def parent(self) -> str:
        return parent_path(self.path)

    def evolve(self, **changes: Any) -> "PathEntry":
        """Return a copy with some fields replaced."""
        return replace(self, **changes)

    def to_dict(self) -> dict:
        """Convert to a JSON-serializable dictionary (without the path)."""
        return {
            "kind": self.kind.value,
            "size": self.size,
            "mtime": self.mtime,
            "checksum": self.checksum,
            "remote_id": self.remote_id,
            "remote_revision": self.remote_revision,
            "parent_id": self.parent_id,
        }

    @classmethod
    def from_dict(cls, path: str, data: dict) -> "PathEntry":
        """Create a PathEntry from :meth:`to_dict` output."""
        return cls(
            path=path,
            kind=EntryKind(data.get("kind", EntryKind.FILE.value)),
            size=data.get("size"),
            mtime=data.get("mtime"),
            checksum=data.get("checksum"),
            remote_id=data.get("remote_id"),
            remote_revision=data.get("remote_revision"),
            parent_id=data.get("parent_id"),
        )


class Snapshot(Mapping[str, PathEntry]):
    """Read-only mapping from path to :class:`PathEntry`."""

    __slots__ = ("_entries",)

    def __init__(self, entries: Iterable[PathEntry] = ()):
        data: dict[str, PathEntry] = {}
        for entry in entries:
            if entry.path in data:
                raise ValueError(f"Duplicate path in snapshot: {entry.path}")
            data[entry.path] = entry
        self._entries = MappingProxyType(data)

    def __getitem__(self, path: str) -> PathEntry:
        return self._entries[path]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"Snapshot({len(self)} entries)"

    def missing_parents(self) -> list[str]:
        """Return paths whose parent folder is not part of the snapshot.

        An empty list means every non-root path has its parent present.
        """
        missing = []
        for path in self._entries:
            parent = parent_path(path)
            if not parent:
                continue
            entry = self._entries.get(parent)
            if entry is None or not entry.is_folder:
                missing.append(path)
        return sorted(missing)

    def restrict(self, subdir: str) -> "Snapshot":
        """Return the subtree rooted at ``subdir`` plus its ancestor folders."""
        if not subdir:
            return self
        ancestors = set()
        head = parent_path(subdir)
        while head:
            ancestors.add(head)
            head = parent_path(head)
        return Snapshot(
            entry
            for path, entry in self._entries.items()
            if path in ancestors or is_within(path, subdir)
        )

    def files(self) -> list[PathEntry]:
        return [e for e in self._entries.values() if not e.is_folder]

    def folders(self) -> list[PathEntry]:
        return [e for e in self._entries.values() if e.is_folder]
