# mediameta/cache/ttl_cache.py
from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from dataclasses import asdict, dataclass
from typing import Any

from ..config import CacheConfig
from .store import SQLiteStore

log = logging.getLogger(__name__)

# --------------------------------------------------------------------------------------
# Sweeper registry: at most one background sweeper per (database, table).
# _PEERS lists live caches per identity in open order; _OWNERS names the sweeping one.
# --------------------------------------------------------------------------------------

_PEERS: dict[tuple[str, str], list[TTLCache]] = {}
_OWNERS: dict[tuple[str, str], TTLCache] = {}
_REGISTRY_LOCK = threading.Lock()


def _now() -> float:
    # Wall clock; expiry timestamps are persisted across restarts
    return time.time()


@dataclass(frozen=True)
class CacheStats:
    total: int = 0
    valid: int = 0
    expired: int = 0
    ttl_s: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class TTLCache:
    """
    JSON values with a per-row expiry on top of a SQLiteStore.

    Expiry visibility is decided at read time: a row with ``expires_at <= now``
    is a miss whether or not the sweeper has reached it yet. The sweeper only
    reclaims space.

    With ``store=None`` or ``config.enabled=False`` every operation is a no-op.
    """

    def __init__(self, store: SQLiteStore | None, config: CacheConfig | None = None):
        self.config = config or CacheConfig()
        self.store = store
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._closed = False
        self._close_lock = threading.Lock()

        if self.enabled:
            self._start_sweeper()

    @property
    def enabled(self) -> bool:
        return self.store is not None and self.config.enabled

    @property
    def ttl_s(self) -> float:
        return float(self.config.default_ttl_s)

    # ---- sweeper ---------------------------------------------------------------------

    @property
    def sweep_running(self) -> bool:
        t = self._thread
        return t is not None and t.is_alive()

    def _start_sweeper(self) -> None:
        assert self.store is not None
        ident = self.store.identity
        with _REGISTRY_LOCK:
            _PEERS.setdefault(ident, []).append(self)
            if ident in _OWNERS:
                log.info("cache: sweeper already running table=%s", self.store.table)
                return
            _OWNERS[ident] = self
            self._spawn_sweeper()

    def _spawn_sweeper(self) -> None:
        # caller holds _REGISTRY_LOCK
        self._thread = threading.Thread(
            target=self._sweep_loop,
            name=f"cache-sweep-{self.store.table}",
            daemon=True,
        )
        self._thread.start()
        log.debug(
            "cache: sweeper started table=%s interval=%.0fs",
            self.store.table,
            self.config.cleanup_interval_s,
        )

    def _leave_registry(self) -> bool:
        """Drop self from the live peers; return True if self was the sweeping owner."""
        ident = self.store.identity
        with _REGISTRY_LOCK:
            peers = _PEERS.get(ident, [])
            if self in peers:
                peers.remove(self)
            if not peers:
                _PEERS.pop(ident, None)
            return _OWNERS.get(ident) is self

    def _hand_off_sweeper(self) -> None:
        ident = self.store.identity
        with _REGISTRY_LOCK:
            if _OWNERS.get(ident) is not self:
                return
            successor = next((c for c in _PEERS.get(ident, []) if not c._stop.is_set()), None)
            if successor is None:
                del _OWNERS[ident]
                return
            _OWNERS[ident] = successor
            successor._spawn_sweeper()
        log.info("cache: sweeper handed off table=%s", self.store.table)

    def _sweep_loop(self) -> None:
        interval = max(0.01, float(self.config.cleanup_interval_s))
        while not self._stop.wait(interval):
            try:
                self.delete_expired()
            except sqlite3.Error:
                log.exception("cache: sweep failed table=%s", self.store.table)

    # ---- public API ------------------------------------------------------------------

    def get(self, key: str) -> tuple[Any, bool]:
        """Return (value, found). Expired rows are misses."""
        if not self.enabled:
            return None, False
        now = _now()
        row = self.store.get(key)
        if row is None:
            return None, False
        if not row.is_live(now):
            if self.config.reclaim_on_read:
                self.store.delete_if_expired(key, now)
            return None, False
        if row.value is None:
            return None, True
        try:
            return json.loads(row.value), True
        except json.JSONDecodeError as exc:
            log.warning("cache: undecodable row key=%s error=%s", key, exc)
            self.store.delete(key)
            return None, False

    def set(self, key: str, value: Any, ttl_s: float | None = None) -> None:
        if not self.enabled:
            return
        if not key:
            raise ValueError("cache key must be non-empty")
        if ttl_s is None:
            ttl_s = self.config.default_ttl_s
        if ttl_s <= 0:
            raise ValueError(f"ttl_s must be positive; got {ttl_s!r}")
        now = _now()
        payload = json.dumps(value, ensure_ascii=False)
        self.store.upsert(key, payload, now, now + float(ttl_s))

    def delete(self, key: str) -> None:
        if not self.enabled:
            return
        self.store.delete(key)

    def clear(self) -> None:
        if not self.enabled:
            return
        self.store.clear()
        log.info("cache: cleared table=%s", self.store.table)

    def delete_expired(self) -> int:
        if not self.enabled:
            return 0
        n = self.store.delete_expired(_now())
        if n:
            log.info("cache: deleted expired rows table=%s count=%d", self.store.table, n)
        return n

    def stats(self) -> CacheStats:
        if not self.enabled:
            return CacheStats()
        total, valid = self.store.counts(_now())
        return CacheStats(total=total, valid=valid, expired=total - valid, ttl_s=self.ttl_s)

    # ---- lifecycle -------------------------------------------------------------------

    def close(self) -> None:
        """
        Stop and join the sweeper, then close the store. Safe to call twice.

        If this cache was sweeping and other caches on the same table are still open,
        the oldest of them starts sweeping once this one has stopped.
        """
        with self._close_lock:
            if self._closed:
                return
            self._closed = True

        self._stop.set()
        was_owner = self.store is not None and self._leave_registry()

        t = self._thread
        if t is not None:
            t.join()
            log.debug("cache: sweeper stopped table=%s", self.store.table)

        if self.store is not None:
            if was_owner:
                self._hand_off_sweeper()
            self.store.close()

    def __enter__(self) -> TTLCache:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def open_cache(db_path: str, table: str, config: CacheConfig) -> TTLCache:
    """Build an enabled or disabled TTLCache for one table of ``db_path``."""
    if not config.enabled:
        return TTLCache(None, config)
    return TTLCache(SQLiteStore(db_path, table), config)


__all__ = ["CacheStats", "TTLCache", "open_cache"]
