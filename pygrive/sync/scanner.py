"""Local directory scanning for sync operations."""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..utils import md5_file
from .ignore import IgnoreRules
from .snapshot import EntryKind, PathEntry, Snapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScanWarning:
    """A path the scanner could not read."""

    path: str
    reason: str


@dataclass
class ScanResult:
    """Outcome of a local scan."""

    snapshot: Snapshot
    """Every readable file and folder"""

    warnings: list[ScanWarning] = field(default_factory=list)
    """Per-path problems; those paths are missing from the snapshot"""

    hashed: int = 0
    """Number of files whose checksum had to be computed"""

    @property
    def unreadable(self) -> frozenset[str]:
        """Paths that exist but could not be read.

        Nothing at or below these paths may be treated as deleted.
        """
        return frozenset(w.path for w in self.warnings)


class LocalScanner:
    """Walks the working copy and builds a fingerprinted snapshot.

    Checksums are expensive, so a file is only hashed when its
    ``(size, mtime)`` pair differs from the one recorded in the prior state;
    otherwise the recorded checksum is reused.

    Examples:
        >>> scanner = LocalScanner(IgnoreRules(["*.tmp"]))
        >>> result = scanner.scan(Path("/sync/folder"), prior=Snapshot())
        >>> for path, entry in result.snapshot.items():
        ...     print(path, entry.checksum)
    """

    def __init__(self, ignore: Optional[IgnoreRules] = None):
        """Initialize local scanner.

        Args:
            ignore: Ignore rules (metadata is always excluded)
        """
        self.ignore = ignore or IgnoreRules()

    def scan(
        self,
        root: Path,
        prior: Optional[Snapshot] = None,
        subdir: str = "",
    ) -> ScanResult:
        """Recursively scan the working copy.

        Args:
            root: Working copy root
            prior: State of the previous sync, used to skip re-hashing
            subdir: Only scan this relative subdirectory (plus its ancestors)

        Returns:
            ScanResult with the snapshot and per-path warnings
        """
        start = time.time()
        prior = prior if prior is not None else Snapshot()
        entries: list[PathEntry] = []
        result = ScanResult(snapshot=Snapshot())

        start_dir: Optional[Path] = root
        if subdir:
            # Materialize ancestor folders so the snapshot stays closed
            parts = subdir.split("/")
            for depth in range(1, len(parts) + 1):
                rel = "/".join(parts[:depth])
                if not (root / rel).is_dir() or (root / rel).is_symlink():
                    start_dir = None
                    break
                entries.append(PathEntry(path=rel, kind=EntryKind.FOLDER))
            else:
                start_dir = root / subdir

        if start_dir is not None:
            self._scan_dir(start_dir, root, prior, entries, result)

        result.snapshot = Snapshot(entries)
        logger.debug(
            f"Local scan took {time.time() - start:.2f}s: "
            f"{len(entries)} entries, {result.hashed} hashed, "
            f"{len(result.warnings)} warnings"
        )
        return result

    def _scan_dir(
        self,
        directory: Path,
        root: Path,
        prior: Snapshot,
        entries: list[PathEntry],
        result: ScanResult,
    ) -> None:
        try:
            items = sorted(directory.iterdir())
        except OSError as e:
            # Covers PermissionError; the folder itself is already listed
            rel = directory.relative_to(root).as_posix()
            self._warn(result, "" if rel == "." else rel, e)
            return

        for item in items:
            # Use as_posix() to ensure forward slashes on all platforms
            relative_path = item.relative_to(root).as_posix()
            try:
                if item.is_symlink() and item.is_dir():
                    logger.debug(f"Not following directory symlink: {relative_path}")
                    continue
                is_dir = item.is_dir()
                if self.ignore.is_ignored(relative_path, is_dir=is_dir):
                    logger.debug(f"Ignoring (from rules): {relative_path}")
                    continue

                if is_dir:
                    entries.append(PathEntry(path=relative_path, kind=EntryKind.FOLDER))
                    self._scan_dir(item, root, prior, entries, result)
                elif item.is_file():
                    entries.append(self._file_entry(item, relative_path, prior, result))
                elif item.is_symlink():
                    self._warn(result, relative_path, "broken symbolic link")
                else:
                    logger.debug(f"Skipping special file: {relative_path}")
            except OSError as e:
                self._warn(result, relative_path, e)

    def _file_entry(
        self,
        item: Path,
        relative_path: str,
        prior: Snapshot,
        result: ScanResult,
    ) -> PathEntry:
        stat = item.stat()
        previous = prior.get(relative_path)
        if (
            previous is not None
            and not previous.is_folder
            and previous.checksum
            and previous.size == stat.st_size
            and previous.mtime == stat.st_mtime
        ):
            checksum = previous.checksum
        else:
            checksum = md5_file(item)
            result.hashed += 1

        return PathEntry(
            path=relative_path,
            kind=EntryKind.FILE,
            size=stat.st_size,
            mtime=stat.st_mtime,
            checksum=checksum,
        )

    def _warn(self, result: ScanResult, path: str, reason: object) -> None:
        logger.warning(f"Cannot read {path}: {reason}")
        result.warnings.append(ScanWarning(path=path, reason=str(reason)))
