from __future__ import annotations

import threading
import time
from typing import Callable


class RateLimiter:
    """Minimum interval between calls to one identity source.

    Each source owns its own limiter, so pacing one remote service never
    delays another.
    """

    def __init__(
        self,
        interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if interval < 0:
            raise ValueError("interval must not be negative")
        self.interval = interval
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_call: float | None = None

    def wait(self) -> float:
        """Block until the next call is allowed; return the seconds waited."""
        with self._lock:
            waited = 0.0
            now = self._clock()
            if self._last_call is not None:
                remaining = self.interval - (now - self._last_call)
                if remaining > 0:
                    self._sleep(remaining)
                    waited = remaining
                    now = self._clock()
            self._last_call = now
            return waited

    def reset(self) -> None:
        with self._lock:
            self._last_call = None

    def __enter__(self) -> "RateLimiter":
        self.wait()
        return self

    def __exit__(self, exc_type, exc, tb):
        return False
