"""Core sync engine: one complete sync run of a working copy."""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from ..api import DriveClient
from ..exceptions import GriveConfigError, GriveSyncAborted
from ..output import OutputFormatter
from .comparator import (
    ChangeCategory,
    ChangeDetector,
    ChangeEntry,
    ChangeSet,
    force_remote,
    restrict_to_mode,
)
from .ignore import IgnoreRules
from .operations import SyncOperations
from .options import SyncOptions
from .progress import SyncProgressTracker
from .reconciler import Outcome, ReconcileReport, Reconciler
from .remote import RemoteLister, RemoteListing
from .scanner import LocalScanner, ScanResult, ScanWarning
from .state import FingerprintStore, acquire_working_copy_lock
from .throttle import TransferThrottle

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Everything a sync run did (or would do, for a dry run)."""

    change_set: ChangeSet
    """Entries the run attempted (after mode restrictions)"""

    skipped: list[ChangeEntry] = field(default_factory=list)
    """Entries left out because of the sync mode"""

    outcomes: list[Outcome] = field(default_factory=list)
    """One outcome per attempted entry (empty for a dry run)"""

    scan_warnings: list[ScanWarning] = field(default_factory=list)
    remote_warnings: list[str] = field(default_factory=list)
    dry_run: bool = False
    elapsed: float = 0.0

    @property
    def failed(self) -> list[Outcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def stats(self) -> dict:
        """Counters keyed like the summary printed by the CLI."""
        stats = {
            "uploads": 0,
            "downloads": 0,
            "deletes_local": 0,
            "deletes_remote": 0,
            "conflicts": 0,
            "skipped": len(self.skipped),
            "settled": len(self.change_set.settled),
            "failed": len(self.failed),
        }
        entries = (
            [o.entry for o in self.outcomes if o.ok]
            if not self.dry_run
            else list(self.change_set)
        )
        for entry in entries:
            if entry.category.is_upload:
                stats["uploads"] += 1
            elif entry.category.is_download:
                stats["downloads"] += 1
            elif entry.category == ChangeCategory.DELETED_REMOTELY:
                stats["deletes_local"] += 1
            elif entry.category == ChangeCategory.DELETED_LOCALLY:
                stats["deletes_remote"] += 1
            elif entry.category == ChangeCategory.CONFLICT:
                stats["conflicts"] += 1
        return stats

    def to_dict(self) -> dict:
        """JSON-serializable summary."""
        return {
            "dry_run": self.dry_run,
            "elapsed": round(self.elapsed, 3),
            "stats": self.stats,
            "changes": [
                {"path": c.path, "category": c.category.value, "reason": c.reason}
                for c in self.change_set
            ],
            "skipped": [
                {"path": c.path, "category": c.category.value} for c in self.skipped
            ],
            "failed": [
                {"path": o.path, "status": o.status.value, "error": o.error}
                for o in self.failed
            ],
            "warnings": [f"{w.path}: {w.reason}" for w in self.scan_warnings]
            + self.remote_warnings,
        }


class SyncEngine:
    """Orchestrates a sync run.

    Steps: lock the working copy, load the fingerprint store, scan the
    local tree and list the remote tree (concurrently), detect changes,
    drop what the sync mode forbids, then either print the plan (dry run)
    or reconcile and persist.

    Examples:
        >>> engine = SyncEngine(client)
        >>> result = engine.sync(Path("/home/me/drive"), SyncOptions(dry_run=True))
        >>> print(result.stats["uploads"])
    """

    def __init__(
        self,
        client: DriveClient,
        output: Optional[OutputFormatter] = None,
        tracker: Optional[SyncProgressTracker] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize sync engine.

        Args:
            client: Drive API client
            output: Output formatter for displaying plan and summary
            tracker: Progress tracker for transfers
            sleep: Function used for retry backoff
        """
        self.client = client
        self.output = output or OutputFormatter(quiet=True)
        self.tracker = tracker
        self._sleep = sleep
        self.detector = ChangeDetector()

    def sync(self, root: Path, options: SyncOptions) -> SyncResult:
        """Run one sync of the working copy at ``root``.

        Returns:
            SyncResult of the run

        Raises:
            GriveConfigError: If the root or the options are invalid
            GriveLockError: If another run holds the working copy
            GriveSyncAborted: If a fatal error stopped reconciliation
            GriveAPIError: If the remote tree could not be listed
        """
        start = time.time()
        if not root.exists():
            raise GriveConfigError(f"Working copy does not exist: {root}")
        if not root.is_dir():
            raise GriveConfigError(f"Working copy is not a directory: {root}")
        options.validate()
        root = root.resolve()

        lock = acquire_working_copy_lock(root)
        try:
            store = FingerprintStore.for_working_copy(root).load()
            finished = False
            try:
                result = self._run(root, options, store)
                result.elapsed = time.time() - start
                finished = True
                return result
            except GriveSyncAborted as e:
                if isinstance(e.result, ReconcileReport):
                    e.result = self._partial_result(e.result, options, start)
                    self._display_summary(e.result)
                raise
            finally:
                # Keep whatever was committed, even when interrupted
                if not options.dry_run:
                    store.save(finished=finished)
        finally:
            lock.release()

    def _partial_result(
        self, report: ReconcileReport, options: SyncOptions, start: float
    ) -> SyncResult:
        attempted = tuple(o.entry for o in report.outcomes)
        return SyncResult(
            change_set=ChangeSet(changes=attempted),
            outcomes=report.outcomes,
            dry_run=options.dry_run,
            elapsed=time.time() - start,
        )

    def _gather(
        self, root: Path, options: SyncOptions, store: FingerprintStore
    ) -> tuple[ScanResult, RemoteListing]:
        """Scan locally and list remotely at the same time."""
        ignore = IgnoreRules.for_working_copy(root, options.ignore_patterns)
        scanner = LocalScanner(ignore)
        lister = RemoteLister(self.client, ignore)
        prior = store.snapshot()

        with ThreadPoolExecutor(max_workers=2) as executor:
            scan_future = executor.submit(scanner.scan, root, prior, options.subdir)
            list_future = executor.submit(lister.list_tree, options.subdir)
            # Listing errors propagate: a partial listing would look like deletions
            listing = list_future.result()
            scan = scan_future.result()
        return scan, listing

    def _run(
        self, root: Path, options: SyncOptions, store: FingerprintStore
    ) -> SyncResult:
        out = self.output
        mode = options.sync_mode
        if not out.quiet:
            out.info(f"Syncing: {root}")
            out.info(f"Mode: {mode.value}")
            if options.subdir:
                out.info(f"Only: {options.subdir}")
            if options.dry_run:
                out.info("Dry run: No changes will be made")
            out.print("")

        scan, listing = self._gather(root, options, store)
        if store.root_id is not None and store.root_id != listing.root_id:
            logger.warning(
                f"Drive root changed from {store.root_id} to {listing.root_id}"
            )
        if not options.dry_run:
            store.set_root_id(listing.root_id)

        prior = store.snapshot().restrict(options.subdir)
        change_set = self.detector.detect(
            prior, scan.snapshot, listing.snapshot, protected=scan.unreadable
        )
        if options.force_download:
            change_set = force_remote(change_set)
        change_set, skipped = restrict_to_mode(change_set, mode, options.no_remote_new)

        result = SyncResult(
            change_set=change_set,
            skipped=skipped,
            scan_warnings=scan.warnings,
            remote_warnings=listing.warnings,
            dry_run=options.dry_run,
        )
        self._display_plan(result)

        if options.dry_run:
            self._display_summary(result)
            return result

        operations = SyncOperations(
            self.client,
            root,
            use_local_trash=options.use_local_trash,
            upload_throttle=TransferThrottle(options.upload_rate_limit),
            download_throttle=TransferThrottle(options.download_rate_limit),
            tracker=self.tracker,
            new_revision=options.new_revision,
        )
        reconciler = Reconciler(
            operations,
            store,
            options,
            listing.root_id,
            remote=listing.snapshot,
            local=scan.snapshot,
            tracker=self.tracker,
            sleep=self._sleep,
        )
        report = reconciler.run(change_set)
        result.outcomes = report.outcomes
        self._display_summary(result)
        return result

    def _display_plan(self, result: SyncResult) -> None:
        out = self.output
        if out.quiet:
            return

        for warning in result.scan_warnings:
            out.warning(f"Cannot read {warning.path or '.'}: {warning.reason}")
        for warning in result.remote_warnings:
            out.warning(warning)

        if result.change_set.is_empty():
            return
        out.info("Sync plan:")
        for entry in result.change_set:
            out.info(f"  {entry.category.symbol} {entry.category.value}: {entry.path}")
        if result.skipped:
            out.info(f"  = Skipped by sync mode: {len(result.skipped)} change(s)")
        out.print("")

    def _display_summary(self, result: SyncResult) -> None:
        out = self.output
        stats = result.stats
        for outcome in result.failed:
            out.error(f"{outcome.path}: {outcome.error or outcome.status.value}")

        if out.quiet:
            return
        out.print("")
        if result.dry_run:
            out.success("Dry run complete!")
        elif result.ok:
            out.success("Sync complete!")
        else:
            out.warning(f"Sync finished with {stats['failed']} failure(s)")

        total = (
            stats["uploads"]
            + stats["downloads"]
            + stats["deletes_local"]
            + stats["deletes_remote"]
            + stats["conflicts"]
        )
        if total == 0 and not result.failed:
            out.info("No changes needed - everything is in sync!")
            return
        labels = _DRY_RUN_LABELS if result.dry_run else _LABELS
        out.info(f"Total actions: {total}")
        for key, label in labels.items():
            if stats[key]:
                out.info(f"  {label}: {stats[key]}")


_LABELS = {
    "uploads": "Uploaded",
    "downloads": "Downloaded",
    "deletes_local": "Deleted locally",
    "deletes_remote": "Deleted remotely",
    "conflicts": "Conflicts resolved",
}

_DRY_RUN_LABELS = {
    "uploads": "Would upload",
    "downloads": "Would download",
    "deletes_local": "Would delete locally",
    "deletes_remote": "Would delete remotely",
    "conflicts": "Would resolve conflicts",
}
