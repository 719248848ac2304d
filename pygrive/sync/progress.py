"""Progress reporting for sync runs.

The reconciler reports through a :class:`SyncProgressTracker`; front ends
(e.g. the rich display in :mod:`pygrive.cli_progress`) subscribe with a
callback. Events may arrive from several worker threads.
"""

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional


class SyncProgressEvent(str, Enum):
    """Kinds of progress events."""

    RUN_START = "run_start"
    TRANSFER_START = "transfer_start"
    TRANSFER_PROGRESS = "transfer_progress"
    TRANSFER_COMPLETE = "transfer_complete"
    OPERATION_COMPLETE = "operation_complete"


@dataclass
class SyncProgressInfo:
    """Snapshot of the progress state sent with every event."""

    event: SyncProgressEvent
    path: str = ""
    direction: str = ""
    """"upload" or "download" for transfer events"""

    bytes_done: int = 0
    bytes_total: int = 0
    operations_done: int = 0
    operations_total: int = 0
    success: bool = True


class SyncProgressTracker:
    """Collects progress from workers and forwards it to a callback."""

    def __init__(self, callback: Optional[Callable[[SyncProgressInfo], None]] = None):
        self.callback = callback
        self._lock = threading.Lock()
        self.operations_total = 0
        self.operations_done = 0
        self.bytes_transferred = 0

    def _emit(self, info: SyncProgressInfo) -> None:
        if self.callback is not None:
            self.callback(info)

    def start_run(self, operations_total: int) -> None:
        with self._lock:
            self.operations_total = operations_total
            self.operations_done = 0
        self._emit(
            SyncProgressInfo(
                SyncProgressEvent.RUN_START, operations_total=operations_total
            )
        )

    def start_transfer(
        self, path: str, direction: str, total: int
    ) -> Callable[[int, int], None]:
        """Announce a transfer and return its byte-progress callback.

        The returned callable has the ``(bytes_done, bytes_total)``
        signature used by :class:`~pygrive.api.DriveClient`.
        """
        self._emit(
            SyncProgressInfo(
                SyncProgressEvent.TRANSFER_START,
                path=path,
                direction=direction,
                bytes_total=total,
            )
        )
        last = [0]

        def update(done: int, bytes_total: int) -> None:
            with self._lock:
                self.bytes_transferred += done - last[0]
                last[0] = done
            self._emit(
                SyncProgressInfo(
                    SyncProgressEvent.TRANSFER_PROGRESS,
                    path=path,
                    direction=direction,
                    bytes_done=done,
                    bytes_total=bytes_total or total,
                )
            )

        return update

    def finish_transfer(self, path: str, direction: str) -> None:
        self._emit(
            SyncProgressInfo(
                SyncProgressEvent.TRANSFER_COMPLETE, path=path, direction=direction
            )
        )

    def finish_operation(self, path: str, success: bool) -> None:
        with self._lock:
            self.operations_done += 1
            done, total = self.operations_done, self.operations_total
        self._emit(
            SyncProgressInfo(
                SyncProgressEvent.OPERATION_COMPLETE,
                path=path,
                operations_done=done,
                operations_total=total,
                success=success,
            )
        )
