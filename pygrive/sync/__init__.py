"""Sync engine for pygrive - three-way directory synchronization."""

from .comparator import (
    ChangeCategory,
    ChangeDetector,
    ChangeEntry,
    ChangeSet,
    SettledEntry,
    restrict_to_mode,
)
from .engine import SyncEngine, SyncResult
from .ignore import IgnoreRule, IgnoreRules
from .modes import SyncMode
from .operations import SyncOperations
from .options import ConflictNaming, SyncOptions
from .progress import SyncProgressEvent, SyncProgressInfo, SyncProgressTracker
from .reconciler import Outcome, OutcomeStatus, ReconcileReport, Reconciler
from .remote import RemoteLister, RemoteListing
from .scanner import LocalScanner, ScanResult, ScanWarning
from .snapshot import EntryKind, PathEntry, Snapshot
from .state import FingerprintStore, acquire_working_copy_lock
from .throttle import TransferThrottle

__all__ = [
    "SyncEngine",
    "SyncResult",
    "SyncMode",
    "SyncOptions",
    "ConflictNaming",
    "SyncOperations",
    "ChangeCategory",
    "ChangeDetector",
    "ChangeEntry",
    "ChangeSet",
    "SettledEntry",
    "restrict_to_mode",
    "IgnoreRule",
    "IgnoreRules",
    "SyncProgressEvent",
    "SyncProgressInfo",
    "SyncProgressTracker",
    "Outcome",
    "OutcomeStatus",
    "ReconcileReport",
    "Reconciler",
    "RemoteLister",
    "RemoteListing",
    "LocalScanner",
    "ScanResult",
    "ScanWarning",
    "EntryKind",
    "PathEntry",
    "Snapshot",
    "FingerprintStore",
    "acquire_working_copy_lock",
    "TransferThrottle",
]
