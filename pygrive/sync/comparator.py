"""Three-way change detection for sync operations.

:class:`ChangeDetector` compares the state recorded after the previous
sync (*prior*) with fresh *local* and *remote* snapshots and classifies
every path that needs work:

==================  ==================  =================
local vs prior      remote vs prior     category
==================  ==================  =================
new                 absent              local-new
absent              new                 remote-new
changed             unchanged           local-modified
unchanged           changed             remote-modified
changed             changed             conflict
removed             unchanged           deleted-locally
unchanged           removed             deleted-remotely
removed             removed             (settled, no entry)
==================  ==================  =================

A modification always beats a deletion on the other side, so content is
never lost: ``removed/changed`` restores the remote copy locally and
``changed/removed`` re-uploads the local copy.
"""

import bisect
import logging
from collections import Counter
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ..utils import is_within
from .modes import SyncMode
from .snapshot import PathEntry, Snapshot

logger = logging.getLogger(__name__)


class ChangeCategory(str, Enum):
    """Classification of a path after the three-way comparison."""

    UNCHANGED = "unchanged"
    """Nothing to do (never part of a change set)"""

    LOCAL_NEW = "local-new"
    """Created locally -> upload"""

    REMOTE_NEW = "remote-new"
    """Created remotely -> download"""

    LOCAL_MODIFIED = "local-modified"
    """Changed locally -> upload"""

    REMOTE_MODIFIED = "remote-modified"
    """Changed remotely -> download"""

    DELETED_LOCALLY = "deleted-locally"
    """Removed locally -> delete remote"""

    DELETED_REMOTELY = "deleted-remotely"
    """Removed remotely -> delete local"""

    CONFLICT = "conflict"
    """Changed on both sides -> tie-break"""

    @property
    def is_deletion(self) -> bool:
        return self in (ChangeCategory.DELETED_LOCALLY, ChangeCategory.DELETED_REMOTELY)

    @property
    def is_upload(self) -> bool:
        return self in (ChangeCategory.LOCAL_NEW, ChangeCategory.LOCAL_MODIFIED)

    @property
    def is_download(self) -> bool:
        return self in (ChangeCategory.REMOTE_NEW, ChangeCategory.REMOTE_MODIFIED)

    @property
    def symbol(self) -> str:
        """Short marker used when printing a change set."""
        return _SYMBOLS[self]


_SYMBOLS = {
    ChangeCategory.UNCHANGED: "=",
    ChangeCategory.LOCAL_NEW: "↑",
    ChangeCategory.LOCAL_MODIFIED: "↑",
    ChangeCategory.REMOTE_NEW: "↓",
    ChangeCategory.REMOTE_MODIFIED: "↓",
    ChangeCategory.DELETED_LOCALLY: "✗",
    ChangeCategory.DELETED_REMOTELY: "✗",
    ChangeCategory.CONFLICT: "⚠",
}


@dataclass(frozen=True)
class ChangeEntry:
    """One unit of work in a change set."""

    path: str
    """Relative path of the file or folder"""

    category: ChangeCategory
    """What happened to the path"""

    local: Optional[PathEntry] = None
    """Current local entry (if any)"""

    remote: Optional[PathEntry] = None
    """Current remote entry (if any)"""

    prior: Optional[PathEntry] = None
    """Entry recorded by the previous sync (if any)"""

    reason: str = ""
    """Human-readable reason for this classification"""

    @property
    def is_folder(self) -> bool:
        """Whether the entry being created or deleted is a folder."""
        source = {
            ChangeCategory.LOCAL_NEW: self.local,
            ChangeCategory.LOCAL_MODIFIED: self.local,
            ChangeCategory.REMOTE_NEW: self.remote,
            ChangeCategory.REMOTE_MODIFIED: self.remote,
            ChangeCategory.DELETED_LOCALLY: self.remote or self.prior,
            ChangeCategory.DELETED_REMOTELY: self.local or self.prior,
        }.get(self.category)
        return source is not None and source.is_folder


@dataclass(frozen=True)
class SettledEntry:
    """A path that is already converged but whose record is stale.

    ``record`` is the new fingerprint, or None when the path vanished from
    both sides and its record should be dropped.
    """

    path: str
    record: Optional[PathEntry]


@dataclass(frozen=True)
class ChangeSet:
    """Ordered change entries plus record-only updates."""

    changes: tuple[ChangeEntry, ...] = ()
    settled: tuple[SettledEntry, ...] = field(default=())

    def __iter__(self) -> Iterator[ChangeEntry]:
        return iter(self.changes)

    def __len__(self) -> int:
        return len(self.changes)

    def is_empty(self) -> bool:
        return not self.changes

    def paths(self) -> list[str]:
        return [c.path for c in self.changes]

    def counts(self) -> dict[ChangeCategory, int]:
        """Number of entries per category."""
        return dict(Counter(c.category for c in self.changes))


def synced_record(local: PathEntry, remote: PathEntry) -> PathEntry:
    """Build the fingerprint of a path that is identical on both sides."""
    if local.is_folder:
        return PathEntry(
            path=local.path,
            kind=local.kind,
            remote_id=remote.remote_id,
            parent_id=remote.parent_id,
        )
    return PathEntry(
        path=local.path,
        kind=local.kind,
        size=local.size,
        mtime=local.mtime,
        checksum=local.checksum,
        remote_id=remote.remote_id,
        remote_revision=remote.remote_revision,
        parent_id=remote.parent_id,
    )


def ordering_key(entry: ChangeEntry) -> tuple:
    """Sort key giving the reconciliation order of a change set.

    Deletions come first, deepest paths first, so a folder is only removed
    after its children and a path is freed before it is re-created with a
    different kind. Everything else follows in tree order, so a folder is
    created before anything nested in it.
    """
    parts = tuple(entry.path.split("/"))
    if entry.category.is_deletion:
        return (0, -len(parts), parts)
    return (1, parts)


class ChangeDetector:
    """Computes the change set from prior, local and remote snapshots."""

    def detect(
        self,
        prior: Snapshot,
        local: Snapshot,
        remote: Snapshot,
        protected: frozenset[str] = frozenset(),
    ) -> ChangeSet:
        """Classify every path of the three snapshots.

        Args:
            prior: State recorded after the previous sync
            local: Current local snapshot
            remote: Current remote snapshot
            protected: Local paths that exist but could not be read;
                nothing at or below them is treated as locally removed

        Returns:
            ChangeSet ordered for reconciliation
        """
        changes: list[ChangeEntry] = []
        settled: list[SettledEntry] = []

        for path in sorted(set(prior) | set(local) | set(remote)):
            p, l, r = prior.get(path), local.get(path), remote.get(path)
            if l is None and p is not None and self._is_protected(path, protected):
                logger.debug(f"Skipping unreadable local path: {path}")
                continue
            entries, settle = self._classify(path, p, l, r)
            changes.extend(entries)
            if settle is not None:
                settled.append(settle)

        changes = self._keep_needed_folders(changes, protected)
        changes.sort(key=ordering_key)
        logger.debug(
            f"Detected {len(changes)} change(s) and {len(settled)} settled record(s)"
        )
        return ChangeSet(changes=tuple(changes), settled=tuple(settled))

    @staticmethod
    def _is_protected(path: str, protected: frozenset[str]) -> bool:
        return any(is_within(path, p) for p in protected)

    @staticmethod
    def _local_changed(prior: PathEntry, local: PathEntry) -> bool:
        if local.kind != prior.kind:
            return True
        if local.is_folder:
            return False
        return local.checksum != prior.checksum

    @staticmethod
    def _remote_changed(prior: PathEntry, remote: PathEntry) -> bool:
        if remote.kind != prior.kind:
            return True
        if remote.is_folder:
            return False
        if prior.remote_id and remote.remote_id != prior.remote_id:
            return True
        if prior.remote_revision and remote.remote_revision:
            return remote.remote_revision != prior.remote_revision
        return remote.checksum != prior.checksum

    @staticmethod
    def _same_content(local: PathEntry, remote: PathEntry) -> bool:
        if local.kind != remote.kind:
            return False
        return local.is_folder or (
            local.checksum is not None and local.checksum == remote.checksum
        )

    def _classify(
        self,
        path: str,
        p: Optional[PathEntry],
        l: Optional[PathEntry],  # noqa: E741
        r: Optional[PathEntry],
    ) -> tuple[list[ChangeEntry], Optional[SettledEntry]]:
        """Classify a single path.

        Returns:
            Tuple of (change entries, settled record update)
        """

        def change(category: ChangeCategory, reason: str, **sides) -> ChangeEntry:
            values = {"local": l, "remote": r, "prior": p}
            values.update(sides)
            return ChangeEntry(path=path, category=category, reason=reason, **values)

        if p is None:
            if l is not None and r is None:
                return [change(ChangeCategory.LOCAL_NEW, "New local entry")], None
            if r is not None and l is None:
                return [change(ChangeCategory.REMOTE_NEW, "New remote entry")], None
            if l is not None and r is not None:
                if self._same_content(l, r):
                    return [], SettledEntry(path, synced_record(l, r))
                return [change(ChangeCategory.CONFLICT, "Created on both sides")], None
            return [], None

        if l is None:
            if r is None:
                return [], SettledEntry(path, None)
            if self._remote_changed(p, r):
                return [
                    change(
                        ChangeCategory.REMOTE_MODIFIED,
                        "Changed remotely after local deletion",
                    )
                ], None
            return [change(ChangeCategory.DELETED_LOCALLY, "Deleted locally")], None

        if r is None:
            if self._local_changed(p, l):
                return [
                    change(
                        ChangeCategory.LOCAL_MODIFIED,
                        "Changed locally after remote deletion",
                    )
                ], None
            return [change(ChangeCategory.DELETED_REMOTELY, "Deleted remotely")], None

        local_changed = self._local_changed(p, l)
        remote_changed = self._remote_changed(p, r)

        if local_changed and remote_changed:
            if self._same_content(l, r):
                return [], SettledEntry(path, synced_record(l, r))
            return [change(ChangeCategory.CONFLICT, "Changed on both sides")], None

        if local_changed:
            if l.kind != p.kind:
                # Replace, not update: free the path, then create the new kind
                return [
                    change(
                        ChangeCategory.DELETED_LOCALLY,
                        f"Local {p.kind.value} replaced by a {l.kind.value}",
                        local=None,
                    ),
                    change(
                        ChangeCategory.LOCAL_NEW,
                        f"Local {l.kind.value} replaces a {p.kind.value}",
                        remote=None,
                    ),
                ], None
            return [change(ChangeCategory.LOCAL_MODIFIED, "Changed locally")], None

        if remote_changed:
            if r.kind != p.kind:
                return [
                    change(
                        ChangeCategory.DELETED_REMOTELY,
                        f"Remote {p.kind.value} replaced by a {r.kind.value}",
                        remote=None,
                    ),
                    change(
                        ChangeCategory.REMOTE_NEW,
                        f"Remote {r.kind.value} replaces a {p.kind.value}",
                        local=None,
                    ),
                ], None
            return [change(ChangeCategory.REMOTE_MODIFIED, "Changed remotely")], None

        # Unchanged on both sides; refresh a stale record (e.g. touched file)
        record = synced_record(l, r)
        if record != p:
            return [], SettledEntry(path, record)
        return [], None

    def _keep_needed_folders(
        self, changes: list[ChangeEntry], protected: frozenset[str]
    ) -> list[ChangeEntry]:
        """Withhold folder deletions that would destroy surviving content.

        A folder deleted on one side is re-created instead when anything
        beneath it still has to be transferred, and a local folder is kept
        when it contains unreadable paths.
        """
        surviving = sorted(c.path for c in changes if not c.category.is_deletion)
        result: list[ChangeEntry] = []

        for entry in changes:
            if not (entry.category.is_deletion and entry.is_folder):
                result.append(entry)
                continue

            prefix = entry.path + "/"
            index = bisect.bisect_left(surviving, prefix)
            has_survivor = index < len(surviving) and surviving[index].startswith(
                prefix
            )

            if entry.category == ChangeCategory.DELETED_REMOTELY and any(
                is_within(p, entry.path) for p in protected
            ):
                logger.debug(f"Keeping {entry.path}: contains unreadable paths")
                continue

            if not has_survivor:
                result.append(entry)
                continue

            if entry.category == ChangeCategory.DELETED_LOCALLY:
                logger.debug(f"Restoring locally deleted folder {entry.path}")
                result.append(
                    ChangeEntry(
                        path=entry.path,
                        category=ChangeCategory.REMOTE_MODIFIED,
                        local=None,
                        remote=entry.remote,
                        prior=entry.prior,
                        reason="Deleted locally but remote content changed",
                    )
                )
            else:
                logger.debug(f"Re-creating remotely deleted folder {entry.path}")
                result.append(
                    ChangeEntry(
                        path=entry.path,
                        category=ChangeCategory.LOCAL_MODIFIED,
                        local=entry.local,
                        remote=None,
                        prior=entry.prior,
                        reason="Deleted remotely but local content changed",
                    )
                )
        return result


def force_remote(change_set: ChangeSet) -> ChangeSet:
    """Turn local modifications of files that still exist remotely into conflicts.

    Used with ``--force``: the conflict resolution then keeps the local
    copy under a conflict name and restores the remote content.
    """
    changes = []
    for entry in change_set.changes:
        if (
            entry.category == ChangeCategory.LOCAL_MODIFIED
            and entry.local is not None
            and entry.remote is not None
            and not entry.local.is_folder
            and not entry.remote.is_folder
        ):
            entry = ChangeEntry(
                path=entry.path,
                category=ChangeCategory.CONFLICT,
                local=entry.local,
                remote=entry.remote,
                prior=entry.prior,
                reason="Local change overridden by remote (forced)",
            )
        changes.append(entry)
    return ChangeSet(changes=tuple(changes), settled=change_set.settled)


def _not_local(entry: ChangeEntry) -> bool:
    """True for downloads that would create a file missing locally."""
    if entry.category == ChangeCategory.REMOTE_NEW:
        return True
    return entry.category == ChangeCategory.REMOTE_MODIFIED and entry.local is None


def restrict_to_mode(
    change_set: ChangeSet,
    mode: SyncMode,
    no_remote_new: bool = False,
) -> tuple[ChangeSet, list[ChangeEntry]]:
    """Drop the entries a sync mode does not allow.

    Conflicts are kept in every mode; the reconciler resolves them in the
    direction the mode permits.

    Returns:
        Tuple of (allowed change set, skipped entries)
    """
    kept: list[ChangeEntry] = []
    skipped: list[ChangeEntry] = []

    for entry in change_set.changes:
        category = entry.category
        allowed = True
        if category in (
            ChangeCategory.LOCAL_NEW,
            ChangeCategory.LOCAL_MODIFIED,
            ChangeCategory.DELETED_LOCALLY,
        ):
            allowed = mode.allows_upload
        elif category in (
            ChangeCategory.REMOTE_NEW,
            ChangeCategory.REMOTE_MODIFIED,
            ChangeCategory.DELETED_REMOTELY,
        ):
            allowed = mode.allows_download
        if allowed and no_remote_new and _not_local(entry):
            allowed = False
        (kept if allowed else skipped).append(entry)

    return ChangeSet(changes=tuple(kept), settled=change_set.settled), skipped
