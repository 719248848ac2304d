"""Fingerprint store: the state recorded after the last successful sync.

The store remembers, per relative path, what the file looked like on both
sides when it was last known to be in sync. Comparing it against fresh
local and remote snapshots tells "changed since last sync" apart from
"always different", which is what makes deletion and conflict detection
possible.
"""

import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Optional

from filelock import FileLock, Timeout

from ..config import LOCK_FILE_NAME, METADATA_DIR_NAME, STATE_FILE_NAME
from ..exceptions import GriveConfigError, GriveLockError
from .snapshot import PathEntry, Snapshot

logger = logging.getLogger(__name__)

STATE_VERSION = 1


class FingerprintStore:
    """Persistent per-path record of the last synced state.

    The store is loaded once per run, read through :meth:`snapshot` while
    diffing, and mutated one path at a time with :meth:`record` and
    :meth:`forget` as operations commit. :meth:`save` writes the whole file
    atomically (temp file + rename), so a crash never leaves a half-written
    store behind.
    """

    def __init__(self, state_file: Path):
        """Initialize an empty store bound to ``state_file``.

        Args:
            state_file: JSON file used by :meth:`load` and :meth:`save`
        """
        self.state_file = state_file
        self._entries: dict[str, PathEntry] = {}
        self.root_id: Optional[str] = None
        self.last_sync: Optional[str] = None
        self._dirty = False

    @classmethod
    def for_working_copy(cls, root: Path) -> "FingerprintStore":
        """Create a store located in the working copy's metadata directory."""
        return cls(root / METADATA_DIR_NAME / STATE_FILE_NAME)

    def load(self) -> "FingerprintStore":
        """(Re)load the store from disk; a missing file means first run.

        Raises:
            GriveConfigError: If the file exists but cannot be parsed
        """
        self._entries = {}
        self.root_id = None
        self.last_sync = None
        self._dirty = False

        if not self.state_file.exists():
            logger.debug(f"No sync state found at {self.state_file}")
            return self

        try:
            with open(self.state_file, encoding="utf-8") as f:
                data = json.load(f)
            entries = {
                path: PathEntry.from_dict(path, fields)
                for path, fields in data.get("entries", {}).items()
            }
        except (OSError, json.JSONDecodeError, ValueError, AttributeError) as e:
            raise GriveConfigError(
                f"Sync state {self.state_file} is unreadable: {e}. "
                "Move it away to start over with a full comparison."
            ) from e

        self._entries = entries
        self.root_id = data.get("root_id")
        self.last_sync = data.get("last_sync")
        logger.debug(
            f"Loaded sync state with {len(self._entries)} entries "
            f"from {self.last_sync}"
        )
        return self

    def save(self, finished: bool = False) -> None:
        """Persist the store atomically.

        Args:
            finished: Stamp the end of a run as ``last_sync``
        """
        if finished:
            self.last_sync = datetime.now().isoformat()
        elif not self._dirty and self.state_file.exists():
            return

        data = {
            "version": STATE_VERSION,
            "root_id": self.root_id,
            "last_sync": self.last_sync,
            "entries": {
                path: self._entries[path].to_dict() for path in sorted(self._entries)
            },
        }
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(
            dir=self.state_file.parent, prefix=".state-", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=1)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, self.state_file)
        except BaseException:
            Path(temp_path).unlink(missing_ok=True)
            raise
        self._dirty = False
        logger.debug(f"Saved sync state with {len(self._entries)} entries")

    def snapshot(self) -> Snapshot:
        """Return an immutable view of the recorded state."""
        return Snapshot(self._entries.values())

    def get(self, path: str) -> Optional[PathEntry]:
        return self._entries.get(path)

    def __contains__(self, path: object) -> bool:
        return path in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def record(self, entry: PathEntry) -> None:
        """Record the synced state of one path."""
        if self._entries.get(entry.path) != entry:
            self._entries[entry.path] = entry
            self._dirty = True

    def forget(self, path: str) -> None:
        """Drop the record of one path."""
        if self._entries.pop(path, None) is not None:
            self._dirty = True

    def set_root_id(self, root_id: str) -> None:
        if self.root_id != root_id:
            self.root_id = root_id
            self._dirty = True


def acquire_working_copy_lock(root: Path) -> FileLock:
    """Take the exclusive lock of a working copy without waiting.

    Returns:
        The held lock; release it with ``lock.release()``

    Raises:
        GriveLockError: If another run holds the lock
    """
    lock_path = root / METADATA_DIR_NAME / LOCK_FILE_NAME
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    lock = FileLock(str(lock_path), timeout=0)
    try:
        lock.acquire()
    except Timeout as e:
        raise GriveLockError(
            f"Another sync is already running on {root} (lock: {lock_path})"
        ) from e
    return lock
