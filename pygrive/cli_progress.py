"""CLI progress display for sync operations.

This module provides a Rich-based progress display fed by the
SyncProgressTracker of the sync engine.
"""

import threading
from typing import Optional

from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
    TransferSpeedColumn,
)

from .sync.progress import SyncProgressEvent, SyncProgressInfo, SyncProgressTracker


class SyncProgressDisplay:
    """Rich-based progress display for sync operations.

    Shows one overall task counting finished operations, plus one byte
    progress bar per transfer in flight (workers may run several at once).
    """

    def __init__(self) -> None:
        """Initialize the progress display."""
        self._progress: Optional[Progress] = None
        self._overall: Optional[TaskID] = None
        self._transfers: dict[tuple[str, str], TaskID] = {}
        self._lock = threading.Lock()

    def create_tracker(self) -> SyncProgressTracker:
        """Create a SyncProgressTracker that updates this display."""
        return SyncProgressTracker(callback=self._handle_event)

    def _handle_event(self, info: SyncProgressInfo) -> None:
        """Handle a progress event from the tracker (any thread)."""
        progress = self._progress
        if progress is None:
            return

        key = (info.path, info.direction)
        if info.event == SyncProgressEvent.RUN_START:
            if self._overall is not None:
                progress.update(
                    self._overall,
                    description="Syncing",
                    total=info.operations_total,
                    completed=0,
                )

        elif info.event == SyncProgressEvent.TRANSFER_START:
            arrow = "↑" if info.direction == "upload" else "↓"
            with self._lock:
                self._transfers[key] = progress.add_task(
                    f"{arrow} {info.path}", total=info.bytes_total or None
                )

        elif info.event == SyncProgressEvent.TRANSFER_PROGRESS:
            with self._lock:
                task = self._transfers.get(key)
            if task is not None:
                progress.update(
                    task,
                    completed=info.bytes_done,
                    total=info.bytes_total or None,
                )

        elif info.event == SyncProgressEvent.TRANSFER_COMPLETE:
            with self._lock:
                task = self._transfers.pop(key, None)
            if task is not None:
                progress.remove_task(task)

        elif info.event == SyncProgressEvent.OPERATION_COMPLETE:
            if self._overall is not None:
                progress.update(self._overall, completed=info.operations_done)

    def __enter__(self) -> "SyncProgressDisplay":
        """Enter context manager - start progress display."""
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeElapsedColumn(),
            refresh_per_second=4,
            transient=True,
        )
        self._progress.__enter__()
        self._overall = self._progress.add_task("Preparing sync...", total=None)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit context manager - stop progress display."""
        if self._progress is not None:
            self._progress.__exit__(exc_type, exc_val, exc_tb)
            self._progress = None
            self._overall = None
            self._transfers.clear()
