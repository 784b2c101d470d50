# mediameta/fetch/metrics.py
from __future__ import annotations

import threading
import time
from dataclasses import asdict, dataclass, replace
from typing import Any

from ..utils import utc_iso_z


@dataclass(frozen=True)
class ClientMetrics:
    """Point-in-time copy of a Fetcher's counters. Counters only ever grow."""

    total_requests: int = 0
    successful_requests: int = 0
    blocked_requests: int = 0
    timeout_requests: int = 0
    failed_requests: int = 0
    retry_count: int = 0
    # wall-clock epoch seconds, None until the first event
    last_request_at: float | None = None
    last_blocked_at: float | None = None

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["last_request_at"] = utc_iso_z(self.last_request_at)
        d["last_blocked_at"] = utc_iso_z(self.last_blocked_at)
        return d


class MetricsRecorder:
    """
    Owns one ClientMetrics value behind its own lock. Each record_* call swaps
    in a new frozen snapshot, so snapshot() never observes a half-applied update.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._m = ClientMetrics()

    def snapshot(self) -> ClientMetrics:
        with self._lock:
            return self._m

    def record_request(self) -> None:
        with self._lock:
            self._m = replace(
                self._m,
                total_requests=self._m.total_requests + 1,
                last_request_at=time.time(),
            )

    def record_success(self) -> None:
        with self._lock:
            self._m = replace(self._m, successful_requests=self._m.successful_requests + 1)

    def record_blocked(self) -> None:
        with self._lock:
            self._m = replace(
                self._m,
                blocked_requests=self._m.blocked_requests + 1,
                last_blocked_at=time.time(),
            )

    def record_timeout(self) -> None:
        with self._lock:
            self._m = replace(self._m, timeout_requests=self._m.timeout_requests + 1)

    def record_failure(self) -> None:
        with self._lock:
            self._m = replace(self._m, failed_requests=self._m.failed_requests + 1)

    def record_retry(self) -> None:
        with self._lock:
            self._m = replace(self._m, retry_count=self._m.retry_count + 1)


__all__ = ["ClientMetrics", "MetricsRecorder"]
