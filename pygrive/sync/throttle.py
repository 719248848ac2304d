"""Bandwidth limiting for transfers."""

import threading
import time
from collections.abc import Iterable, Iterator
from typing import Callable, Optional


class TransferThrottle:
    """Token bucket limiting the aggregate byte rate of one direction.

    One throttle is shared by all workers transferring in the same
    direction, so the ceiling applies to the sum of concurrent transfers.
    Idle time is not saved up: every chunk is paid for when it is
    consumed, so S bytes always take at least S / ``rate`` seconds, even
    for a transfer that starts after a pause.

    Examples:
        >>> throttle = TransferThrottle(100_000)  # 100 kB/s
        >>> for chunk in throttled(chunks, throttle):
        ...     send(chunk)
    """

    def __init__(
        self,
        rate: Optional[int],
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the throttle.

        Args:
            rate: Maximum bytes per second (None disables throttling)
            clock: Monotonic time source
            sleep: Function used to wait
        """
        if rate is not None and rate <= 0:
            raise ValueError(f"rate must be positive, got {rate}")
        self.rate = rate
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._tokens = 0.0
        self._last = clock()

    @property
    def enabled(self) -> bool:
        return self.rate is not None

    def consume(self, nbytes: int) -> float:
        """Account for ``nbytes`` and block until the rate allows them.

        Returns:
            Seconds spent waiting
        """
        if self.rate is None or nbytes <= 0:
            return 0.0

        with self._lock:
            now = self._clock()
            elapsed = max(0.0, now - self._last)
            self._last = now
            # Only debt is carried over; idle time earns no burst
            self._tokens = min(0.0, self._tokens + elapsed * self.rate)
            self._tokens -= nbytes
            wait = -self._tokens / self.rate if self._tokens < 0 else 0.0

        if wait > 0:
            self._sleep(wait)
        return wait


def throttled(
    chunks: Iterable[bytes], throttle: Optional[TransferThrottle]
) -> Iterator[bytes]:
    """Yield ``chunks`` no faster than ``throttle`` allows."""
    for chunk in chunks:
        if throttle is not None:
            throttle.consume(len(chunk))
        yield chunk
