# mediameta/cache/__init__.py
"""
Persistent TTL cache: SQLite-backed key/value rows with read-time expiry and a
background sweeper that reclaims expired rows.
"""

from .store import CacheRow, SQLiteStore
from .ttl_cache import CacheStats, TTLCache, open_cache

__all__ = [
    "CacheRow",
    "SQLiteStore",
    "CacheStats",
    "TTLCache",
    "open_cache",
]
