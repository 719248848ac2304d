"""Applies a change set to both sides and commits fingerprints.

Operations run on a thread pool but respect the tree: a folder is
created before anything inside it, children are deleted before their
folder, and a path is freed before it is re-created with another kind.
Only the calling thread mutates the fingerprint store; each finished
operation is committed and checkpointed before the next result is
processed, so an interrupted run loses at most the operations in flight.
"""

import heapq
import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from ..exceptions import (
    FATAL_ERRORS,
    TRANSIENT_ERRORS,
    GriveAuthenticationError,
    GriveError,
    GriveIntegrityError,
    GriveSyncAborted,
    GriveTokenRefreshedError,
)
from ..utils import parent_path
from .comparator import ChangeCategory, ChangeEntry, ChangeSet
from .modes import SyncMode
from .operations import SyncOperations, conflict_name
from .options import ConflictNaming, SyncOptions
from .progress import SyncProgressTracker
from .snapshot import PathEntry, Snapshot
from .state import FingerprintStore

logger = logging.getLogger(__name__)

# (path, record) pairs; a None record drops the path from the store
Commit = tuple[str, Optional[PathEntry]]


class OutcomeStatus(str, Enum):
    """Result of applying one change entry."""

    DONE = "done"
    FAILED = "failed"

    BLOCKED = "blocked"
    """Not attempted because an operation it depends on failed"""

    ABORTED = "aborted"
    """Not attempted because the run was stopped"""


@dataclass
class Outcome:
    """What happened to one change entry."""

    entry: ChangeEntry
    status: OutcomeStatus
    action: str = ""
    error: Optional[str] = None
    elapsed: float = 0.0

    @property
    def path(self) -> str:
        return self.entry.path

    @property
    def ok(self) -> bool:
        return self.status == OutcomeStatus.DONE


@dataclass
class ReconcileReport:
    """Outcomes of a reconciliation run, in change-set order."""

    outcomes: list[Outcome] = field(default_factory=list)

    @property
    def failed(self) -> list[Outcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def succeeded(self) -> list[Outcome]:
        return [o for o in self.outcomes if o.ok]


def _local_side(entry: ChangeEntry) -> PathEntry:
    if entry.local is None:
        raise GriveError(
            f"{entry.category.value} change for {entry.path} has no local entry"
        )
    return entry.local


def _remote_side(entry: ChangeEntry) -> PathEntry:
    if entry.remote is None:
        raise GriveError(
            f"{entry.category.value} change for {entry.path} has no remote entry"
        )
    return entry.remote


def build_dependencies(changes: list[ChangeEntry]) -> dict[int, set[int]]:
    """Map each entry index to the indices it must wait for.

    * a deletion waits for the nearest deletions below it
    * any other entry waits for a deletion of the same path (kind swap)
      and for the nearest ancestor entry that creates or restores a folder
    """
    deletions: dict[str, int] = {}
    others: dict[str, int] = {}
    for index, entry in enumerate(changes):
        (deletions if entry.category.is_deletion else others)[entry.path] = index

    deps: dict[int, set[int]] = {index: set() for index in range(len(changes))}
    for index, entry in enumerate(changes):
        ancestor = parent_path(entry.path)
        if entry.category.is_deletion:
            while ancestor:
                if ancestor in deletions:
                    deps[deletions[ancestor]].add(index)
                    break
                ancestor = parent_path(ancestor)
            continue

        if entry.path in deletions:
            deps[index].add(deletions[entry.path])
        while ancestor:
            if ancestor in others:
                deps[index].add(others[ancestor])
                break
            ancestor = parent_path(ancestor)
    return deps


class Reconciler:
    """Executes change entries and keeps the fingerprint store current.

    Examples:
        >>> reconciler = Reconciler(operations, store, options, root_id)
        >>> report = reconciler.run(change_set)
        >>> print(f"{len(report.failed)} path(s) failed")
    """

    def __init__(
        self,
        operations: SyncOperations,
        store: FingerprintStore,
        options: SyncOptions,
        root_id: str,
        remote: Optional[Snapshot] = None,
        local: Optional[Snapshot] = None,
        tracker: Optional[SyncProgressTracker] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the reconciler.

        Args:
            operations: Side-effect implementation
            store: Fingerprint store (mutated from the calling thread only)
            options: Options of this run
            root_id: Remote ID of the Drive root
            remote: Remote snapshot of this run (parent IDs, name checks)
            local: Local snapshot of this run (name checks)
            tracker: Progress tracker
            sleep: Function used for retry backoff
        """
        self.operations = operations
        self.store = store
        self.options = options
        self.mode: SyncMode = options.sync_mode
        self.root_id = root_id
        self.remote = remote if remote is not None else Snapshot()
        self.local = local if local is not None else Snapshot()
        self.tracker = tracker
        self._sleep = sleep
        self._store_lock = threading.Lock()

    # =========================
    # Scheduling
    # =========================

    def apply_settled(self, change_set: ChangeSet) -> None:
        """Record converged paths without any transfer."""
        if not change_set.settled:
            return
        self._commit([(s.path, s.record) for s in change_set.settled])
        self.store.save()
        logger.debug(f"Recorded {len(change_set.settled)} settled path(s)")

    def run(self, change_set: ChangeSet) -> ReconcileReport:
        """Apply a change set.

        Returns:
            ReconcileReport with one outcome per entry

        Raises:
            GriveSyncAborted: On an error that makes continuing pointless
                (authentication, quota, configuration); ``result`` holds
                the report
        """
        self.apply_settled(change_set)

        changes = list(change_set.changes)
        report = ReconcileReport()
        if not changes:
            return report

        if self.tracker is not None:
            self.tracker.start_run(len(changes))

        outcomes: dict[int, Outcome] = {}
        deps = build_dependencies(changes)
        dependents: dict[int, list[int]] = {index: [] for index in deps}
        for index, waits_for in deps.items():
            for other in waits_for:
                dependents[other].append(index)

        # Lowest index first keeps a single worker in change-set order
        ready = [index for index, waits_for in deps.items() if not waits_for]
        heapq.heapify(ready)
        fatal: Optional[BaseException] = None
        workers = self.options.max_workers

        logger.debug(f"Applying {len(changes)} change(s) with {workers} worker(s)")
        with ThreadPoolExecutor(max_workers=workers) as executor:
            running: dict[Future, int] = {}
            while ready or running:
                while ready and fatal is None and len(running) < workers:
                    index = heapq.heappop(ready)
                    future = executor.submit(self._execute, changes[index])
                    running[future] = index
                if not running:
                    break

                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in sorted(done, key=lambda f: running[f]):
                    index = running.pop(future)
                    outcome, commits, error = future.result()
                    outcomes[index] = outcome
                    if commits:
                        self._commit(commits)
                        self.store.save()
                    if self.tracker is not None:
                        self.tracker.finish_operation(outcome.path, outcome.ok)

                    if outcome.ok:
                        for dependent in dependents[index]:
                            deps[dependent].discard(index)
                            if not deps[dependent]:
                                heapq.heappush(ready, dependent)
                    else:
                        self._block_dependents(index, changes, dependents, outcomes)
                    if error is not None and fatal is None:
                        fatal = error

        for index, entry in enumerate(changes):
            if index not in outcomes:
                outcomes[index] = Outcome(entry, OutcomeStatus.ABORTED)
        report.outcomes = [outcomes[index] for index in range(len(changes))]

        if fatal is not None:
            raise GriveSyncAborted(f"Sync aborted: {fatal}", result=report) from fatal
        return report

    def _block_dependents(
        self,
        index: int,
        changes: list[ChangeEntry],
        dependents: dict[int, list[int]],
        outcomes: dict[int, Outcome],
    ) -> None:
        failed_path = changes[index].path
        stack = list(dependents[index])
        while stack:
            dependent = stack.pop()
            if dependent in outcomes:
                continue
            outcomes[dependent] = Outcome(
                changes[dependent],
                OutcomeStatus.BLOCKED,
                error=f"Depends on failed operation for {failed_path}",
            )
            logger.warning(f"Skipping {changes[dependent].path}: {failed_path} failed")
            stack.extend(dependents[dependent])

    def _commit(self, commits: list[Commit]) -> None:
        with self._store_lock:
            for path, record in commits:
                if record is None:
                    self.store.forget(path)
                else:
                    self.store.record(record)

    # =========================
    # Execution (worker threads)
    # =========================

    def _execute(
        self, entry: ChangeEntry
    ) -> tuple[Outcome, list[Commit], Optional[BaseException]]:
        """Apply one entry; expected errors become a failed outcome.

        Returns:
            Tuple of (outcome, store commits, fatal error or None)
        """
        start = time.time()
        commits: list[Commit] = []
        try:
            action = self._apply(entry, commits)
        except FATAL_ERRORS as e:
            logger.error(f"Fatal error while syncing {entry.path}: {e}")
            return self._failed(entry, e, start), commits, e
        except (GriveError, OSError) as e:
            logger.error(f"Error syncing {entry.path}: {e}")
            return self._failed(entry, e, start), commits, None

        elapsed = time.time() - start
        logger.debug(f"Completed {entry.path} ({action}) in {elapsed:.2f}s")
        outcome = Outcome(entry, OutcomeStatus.DONE, action, elapsed=elapsed)
        return outcome, commits, None

    @staticmethod
    def _failed(entry: ChangeEntry, error: BaseException, start: float) -> Outcome:
        return Outcome(
            entry,
            OutcomeStatus.FAILED,
            error=str(error),
            elapsed=time.time() - start,
        )

    def _call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run one operation, retrying transient and integrity failures.

        Transient errors are retried ``max_retries`` times with exponential
        backoff; a checksum mismatch is retried once, and so is a transfer
        cut short by an expired access token.
        """
        retries = 0
        integrity_retried = False
        token_retried = False
        while True:
            try:
                return func(*args, **kwargs)
            except GriveTokenRefreshedError as e:
                if token_retried:
                    raise GriveAuthenticationError(
                        f"Access token rejected again after refreshing: {e}",
                        status_code=e.status_code,
                    ) from e
                token_retried = True
                logger.info(f"{func.__name__}: {e}; starting over")
            except GriveIntegrityError as e:
                if integrity_retried:
                    raise
                integrity_retried = True
                logger.warning(f"{e}; retrying once")
            except TRANSIENT_ERRORS as e:
                if retries >= self.options.max_retries:
                    raise
                delay = self.options.retry_delay * (2**retries)
                retries += 1
                logger.warning(
                    f"{func.__name__} failed ({e}), retry {retries}/"
                    f"{self.options.max_retries} in {delay:.1f}s"
                )
                self._sleep(delay)

    def _parent_id(self, path: str) -> str:
        """Remote ID of the folder containing ``path``."""
        parent = parent_path(path)
        if not parent:
            return self.root_id
        with self._store_lock:
            record = self.store.get(parent)
        if record is not None and record.is_folder and record.remote_id:
            return record.remote_id
        remote = self.remote.get(parent)
        if remote is not None and remote.is_folder and remote.remote_id:
            return remote.remote_id
        raise GriveError(f"Remote folder {parent} of {path} is not available")

    def _upload(self, local: PathEntry, path: str, file_id: Optional[str] = None):
        return self._call(
            self.operations.upload,
            local,
            self._parent_id(path),
            file_id=file_id,
        )

    def _create_remote_folder(self, path: str) -> PathEntry:
        return self._call(
            self.operations.create_remote_folder, path, self._parent_id(path)
        )

    def _apply(self, entry: ChangeEntry, commits: list[Commit]) -> str:
        """Perform the side effects of one entry.

        Store updates are appended to ``commits`` as they become true, so
        a failure halfway through still records the finished steps.

        Returns:
            Short description of what was done
        """
        ops = self.operations
        category = entry.category

        if category.is_upload:
            local = _local_side(entry)
            if local.is_folder:
                commits.append((entry.path, self._create_remote_folder(entry.path)))
                return "create remote folder"
            file_id = None
            if entry.remote is not None and not entry.remote.is_folder:
                file_id = entry.remote.remote_id
            commits.append((entry.path, self._upload(local, entry.path, file_id)))
            return "upload" if file_id is None else "update remote"

        if category.is_download:
            remote = _remote_side(entry)
            if remote.is_folder:
                commits.append((entry.path, ops.create_local_folder(remote)))
                return "create local folder"
            record = self._call(ops.download, remote, expected_local=entry.local)
            commits.append((entry.path, record))
            return "download"

        if category == ChangeCategory.DELETED_LOCALLY:
            self._call(ops.delete_remote, _remote_side(entry))
            commits.append((entry.path, None))
            return "delete remote"

        if category == ChangeCategory.DELETED_REMOTELY:
            ops.delete_local(_local_side(entry))
            commits.append((entry.path, None))
            return "delete local"

        if category == ChangeCategory.CONFLICT:
            return self._resolve_conflict(entry, commits)

        raise ValueError(f"Cannot apply change of category {category.value}")

    # =========================
    # Conflicts
    # =========================

    def local_wins(self) -> bool:
        """Decide which side keeps the original path of a conflict."""
        if self.options.force_download or self.mode == SyncMode.DOWNLOAD_ONLY:
            return False
        return self.options.prefer_local or self.mode == SyncMode.UPLOAD_ONLY

    def _path_taken(self, path: str) -> bool:
        if path in self.local or path in self.remote:
            return True
        with self._store_lock:
            if path in self.store:
                return True
        if self.operations.local_path(path).exists():
            return True
        return not self.operations.reserve(path)

    def _conflict_path(self, path: str) -> str:
        naming = ConflictNaming(self.options.conflict_naming)
        return conflict_name(path, naming, self._path_taken)

    def _resolve_conflict(self, entry: ChangeEntry, commits: list[Commit]) -> str:
        """Keep both versions: one under the path, one under a conflict name.

        In two-way mode a folder always keeps the path against a file.
        Otherwise the winner (see :meth:`local_wins`) keeps it. The
        preserved copy is sent to the other side when the sync mode allows
        that direction.
        """
        local, remote = _local_side(entry), _remote_side(entry)
        preserved = self._conflict_path(entry.path)

        if local.kind != remote.kind and self.mode == SyncMode.TWO_WAY:
            keep_local = local.is_folder
        else:
            keep_local = self.local_wins()

        if keep_local:
            self._keep_local(entry.path, local, remote, preserved, commits)
            logger.warning(
                f"Conflict at {entry.path}: local {local.kind.value} kept, "
                f"remote {remote.kind.value} renamed to {preserved}"
            )
            return "conflict: kept local"

        self._keep_remote(entry.path, local, remote, preserved, commits)
        logger.warning(
            f"Conflict at {entry.path}: remote {remote.kind.value} kept, "
            f"local {local.kind.value} moved to {preserved}"
        )
        return "conflict: kept remote"

    def _keep_local(
        self,
        path: str,
        local: PathEntry,
        remote: PathEntry,
        preserved: str,
        commits: list[Commit],
    ) -> None:
        ops = self.operations
        renamed = self._call(ops.preserve_remote, remote, preserved)
        if self.mode.allows_download and not renamed.is_folder:
            commits.append((preserved, self._call(ops.download, renamed)))
        if local.is_folder:
            commits.append((path, self._create_remote_folder(path)))
        else:
            commits.append((path, self._upload(local, path)))

    def _keep_remote(
        self,
        path: str,
        local: PathEntry,
        remote: PathEntry,
        preserved: str,
        commits: list[Commit],
    ) -> None:
        ops = self.operations
        kept = ops.preserve_local(local, preserved)
        if remote.is_folder:
            commits.append((path, ops.create_local_folder(remote)))
        else:
            commits.append((path, self._call(ops.download, remote)))
        if self.mode.allows_upload and not kept.is_folder:
            commits.append((preserved, self._upload(kept, preserved)))
