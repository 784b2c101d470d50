# mediameta/fetch/throttle.py
from __future__ import annotations

import random
import threading
import time

from ..exceptions import FetchCancelled

# --------------------------------------------------------------------------------------
# Clock / sleep (module-level so tests can monkeypatch time.monotonic / time.sleep)
# --------------------------------------------------------------------------------------


def _now() -> float:
    return time.monotonic()


def cancellable_sleep(dt: float, cancel: threading.Event | None = None) -> bool:
    """
    Sleep for ``dt`` seconds. Returns True if ``cancel`` fired before the
    delay elapsed (the sleep is cut short), False otherwise.
    """
    if cancel is not None and cancel.is_set():
        return True
    if dt <= 0:
        return False
    if cancel is None:
        time.sleep(dt)
        return False
    return cancel.wait(dt)


# --------------------------------------------------------------------------------------
# Token bucket
# --------------------------------------------------------------------------------------


class RateLimiter:
    """
    Token bucket: ``rate`` tokens per second up to ``burst`` capacity.

    wait() reserves a token while holding the lock and sleeps outside it, so
    any number of threads can queue up; long-run issuance never exceeds
    ``rate`` but waiters are not served in a guaranteed order.
    """

    def __init__(self, rate: float, burst: int = 1) -> None:
        if rate <= 0:
            raise ValueError("rate must be positive")
        self.rate = float(rate)
        self.burst = max(1, int(burst))
        self._tokens = float(self.burst)
        self._last = _now()
        self._lock = threading.Lock()

    def _reserve(self) -> float:
        with self._lock:
            now = _now()
            elapsed = max(0.0, now - self._last)
            self._tokens = min(float(self.burst), self._tokens + elapsed * self.rate)
            self._last = now
            self._tokens -= 1.0
            if self._tokens >= 0:
                return 0.0
            return -self._tokens / self.rate

    def _cancel_reservation(self) -> None:
        with self._lock:
            self._tokens = min(float(self.burst), self._tokens + 1.0)

    def wait(self, cancel: threading.Event | None = None) -> float:
        """
        Block until a token is available. Returns the seconds waited.

        Raises FetchCancelled (and gives the token back) if ``cancel`` fires first.
        """
        if cancel is not None and cancel.is_set():
            raise FetchCancelled("cancelled before rate limiter wait")
        delay = self._reserve()
        if delay <= 0:
            return 0.0
        if cancellable_sleep(delay, cancel):
            self._cancel_reservation()
            raise FetchCancelled("cancelled while waiting for rate limiter")
        return delay


# --------------------------------------------------------------------------------------
# Backoff helpers
# --------------------------------------------------------------------------------------


def jitter(lo: float, hi: float) -> float:
    """Uniform random delay in [lo, hi); returns lo when the range is empty."""
    if hi <= lo:
        return max(0.0, lo)
    return random.uniform(lo, hi)


def backoff_delay(
    backoff: float,
    *,
    cap: float,
    jitter_min: float,
    jitter_max: float,
    retry_after: float | None = None,
) -> float:
    """
    Delay before the next attempt: min(backoff, cap) plus uniform jitter.

    A server Retry-After hint raises the base delay, but never above ``cap``.
    """
    base = min(backoff, cap)
    if retry_after is not None and retry_after > 0:
        base = max(base, min(retry_after, cap))
    return base + jitter(jitter_min, jitter_max)


__all__ = [
    "RateLimiter",
    "cancellable_sleep",
    "backoff_delay",
    "jitter",
]
