"""Run-wide throttling of DLP backend calls.

A single :class:`RateLimiter` is shared by every worker of a run. It caps the
number of outstanding backend calls and, optionally, the number of call starts
within a sliding time window (``10rps`` or ``600rpm`` style limits).
"""

from __future__ import annotations

import threading
import time
from collections import deque
from contextlib import contextmanager
from typing import Callable, Deque, Iterator, Optional

from .errors import ConfigurationError


class RateLimiter:
    """Blocking slot allocator guarded by one condition variable.

    Parameters
    ----------
    capacity:
        Maximum number of concurrently outstanding calls.
    per:
        Optional window in seconds; when set at most ``capacity`` calls may
        start within any window of that length.
    """

    def __init__(
        self,
        capacity: int,
        per: Optional[float] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        if capacity < 1:
            raise ValueError("Limit value should be more than zero")
        if per is not None and per <= 0:
            raise ValueError("Limit duration should be more than zero")
        self.capacity = capacity
        self.per = per
        self._clock = clock
        self._cond = threading.Condition()
        self._outstanding = 0
        self._starts: Deque[float] = deque()
        self.peak = 0
        self.total = 0

    @property
    def outstanding(self) -> int:
        with self._cond:
            return self._outstanding

    def _window_wait(self, now: float) -> float:
        if self.per is None:
            return 0.0
        while self._starts and now - self._starts[0] >= self.per:
            self._starts.popleft()
        if len(self._starts) < self.capacity:
            return 0.0
        return self.per - (now - self._starts[0])

    def acquire(self) -> None:
        with self._cond:
            while True:
                now = self._clock()
                wait = self._window_wait(now)
                if self._outstanding < self.capacity and wait <= 0:
                    break
                self._cond.wait(timeout=wait if wait > 0 else None)
            self._outstanding += 1
            self.total += 1
            self.peak = max(self.peak, self._outstanding)
            if self.per is not None:
                self._starts.append(self._clock())

    def release(self) -> None:
        with self._cond:
            self._outstanding -= 1
            self._cond.notify_all()

    @contextmanager
    def slot(self) -> Iterator[None]:
        self.acquire()
        try:
            yield
        finally:
            self.release()

    @staticmethod
    def parse(limit: Optional[str]) -> Optional["RateLimiter"]:
        """Build a limiter from ``N``, ``Nrps`` or ``Nrpm``; ``None`` disables it."""
        if limit is None or not str(limit).strip():
            return None
        s = str(limit).strip().lower()
        idx = len(s)
        for i, ch in enumerate(s):
            if not ch.isdigit():
                idx = i
                break
        number, unit = s[:idx], s[idx:]
        if not number:
            raise ConfigurationError(f"Failed to parse number in DLP request limit: {limit}")
        value = int(number)
        if value <= 0:
            raise ConfigurationError("Limit value should be more than zero")
        if unit == "":
            return RateLimiter(value)
        if unit == "rps":
            return RateLimiter(value, per=1.0)
        if unit == "rpm":
            return RateLimiter(value, per=60.0)
        raise ConfigurationError(f"Unknown unit specified: {unit}")


class Unlimited(RateLimiter):
    """Limiter that never blocks, used when no limit is configured."""

    def __init__(self) -> None:
        super().__init__(capacity=1)

    def acquire(self) -> None:
        with self._cond:
            self._outstanding += 1
            self.total += 1
            self.peak = max(self.peak, self._outstanding)


__all__ = ["RateLimiter", "Unlimited"]
