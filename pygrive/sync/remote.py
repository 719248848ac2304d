"""Remote tree listing with automatic pagination."""

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Optional

from ..api import DriveClient
from ..models import DriveEntry
from .ignore import IgnoreRules
from .snapshot import EntryKind, PathEntry, Snapshot

logger = logging.getLogger(__name__)


@dataclass
class RemoteListing:
    """Outcome of a remote listing."""

    snapshot: Snapshot
    root_id: str
    warnings: list[str] = field(default_factory=list)


def entry_from_remote(path: str, entry: DriveEntry) -> PathEntry:
    """Convert an API entry to a snapshot entry at ``path``."""
    if entry.is_folder:
        return PathEntry(
            path=path,
            kind=EntryKind.FOLDER,
            remote_id=entry.id,
            parent_id=entry.parent_id,
        )
    return PathEntry(
        path=path,
        kind=EntryKind.FILE,
        size=entry.size,
        mtime=entry.modified_time,
        checksum=entry.md5_checksum,
        remote_id=entry.id,
        remote_revision=entry.revision,
        parent_id=entry.parent_id,
    )


class RemoteLister:
    """Builds a snapshot of the remote tree below the Drive root.

    A listing error propagates: a partial remote listing would make
    missing entries look deleted.
    """

    def __init__(
        self,
        client: DriveClient,
        ignore: Optional[IgnoreRules] = None,
        page_size: int = 1000,
    ):
        """Initialize the remote lister.

        Args:
            client: Drive API client
            ignore: Ignore rules applied to remote paths as well
            page_size: Number of entries per page
        """
        self.client = client
        self.ignore = ignore or IgnoreRules()
        self.page_size = page_size

    def list_folder(self, folder_id: str) -> list[DriveEntry]:
        """Get all direct children of a folder, following page tokens."""
        entries: list[DriveEntry] = []
        page_token: Optional[str] = None
        while True:
            page = self.client.list_children(
                folder_id, page_token=page_token, page_size=self.page_size
            )
            entries.extend(page.entries)
            if not page.next_page_token:
                return entries
            page_token = page.next_page_token

    def _usable_children(
        self, folder_id: str, folder_path: str, warnings: list[str]
    ) -> dict[str, DriveEntry]:
        """List a folder and resolve names to one entry each."""
        chosen: dict[str, DriveEntry] = {}
        for entry in self.list_folder(folder_id):
            path = f"{folder_path}/{entry.name}" if folder_path else entry.name
            if entry.trashed:
                continue
            if entry.is_google_document:
                logger.debug(f"Skipping Google document without content: {path}")
                continue
            if not entry.name or "/" in entry.name or entry.name in (".", ".."):
                warnings.append(f"Unsupported remote name, skipped: {path!r}")
                continue

            existing = chosen.get(entry.name)
            if existing is not None:
                # Drive allows duplicate names; keep the most recent one
                keep, drop = existing, entry
                if (entry.modified_time or 0) > (existing.modified_time or 0):
                    keep, drop = entry, existing
                warnings.append(
                    f"Duplicate remote name {path!r}: using id {keep.id}, "
                    f"ignoring id {drop.id}"
                )
                chosen[entry.name] = keep
            else:
                chosen[entry.name] = entry
        return chosen

    def list_tree(self, subdir: str = "") -> RemoteListing:
        """List every file and folder below the root (or ``subdir``).

        Args:
            subdir: Restrict the listing to this relative subtree; its
                ancestor folders are included so the snapshot stays closed

        Returns:
            RemoteListing with the snapshot and the root folder ID
        """
        start = time.time()
        root_id = self.client.get_root_id()
        warnings: list[str] = []
        entries: list[PathEntry] = []

        start_id: Optional[str] = root_id
        start_path = ""
        if subdir:
            for name in subdir.split("/"):
                children = self._usable_children(start_id, start_path, warnings)
                found = children.get(name)
                path = f"{start_path}/{name}" if start_path else name
                if found is None or not found.is_folder:
                    logger.debug(f"Remote folder {path} does not exist yet")
                    start_id = None
                    break
                entries.append(entry_from_remote(path, found))
                start_id, start_path = found.id, path

        if start_id is not None:
            self._walk(start_id, start_path, entries, warnings)

        for warning in warnings:
            logger.warning(warning)
        logger.debug(
            f"Remote listing took {time.time() - start:.2f}s: {len(entries)} entries"
        )
        return RemoteListing(
            snapshot=Snapshot(entries), root_id=root_id, warnings=warnings
        )

    def _walk(
        self,
        folder_id: str,
        folder_path: str,
        entries: list[PathEntry],
        warnings: list[str],
    ) -> None:
        # Breadth-first so parents always precede their children
        queue = deque([(folder_id, folder_path)])
        visited: set[str] = set()
        while queue:
            current_id, current_path = queue.popleft()
            # Prevent infinite loops through multi-parent folders
            if current_id in visited:
                continue
            visited.add(current_id)

            children = self._usable_children(current_id, current_path, warnings)
            for name in sorted(children):
                entry = children[name]
                path = f"{current_path}/{name}" if current_path else name
                if self.ignore.is_ignored(path, is_dir=entry.is_folder):
                    logger.debug(f"Ignoring remote (from rules): {path}")
                    continue
                entries.append(entry_from_remote(path, entry))
                if entry.is_folder:
                    queue.append((entry.id, path))
