# mediameta/cache/store.py
from __future__ import annotations

import os
import re
import sqlite3
import threading
from dataclasses import dataclass

_TABLE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# --------------------------------------------------------------------------------------
# Model
# --------------------------------------------------------------------------------------


@dataclass(frozen=True)
class CacheRow:
    key: str
    value: str | None
    created_at: float
    expires_at: float

    def is_live(self, now: float) -> bool:
        return self.expires_at > now


# --------------------------------------------------------------------------------------
# Store
# --------------------------------------------------------------------------------------


class SQLiteStore:
    """
    One key/value table in a SQLite file. Every statement runs under ``_lock``
    on a single shared connection, so an upsert and a concurrent
    delete_expired() never interleave.
    """

    def __init__(self, db_path: str, table: str = "cache_entries"):
        if not _TABLE_RE.match(table):
            raise ValueError(f"invalid table name: {table!r}")
        self.db_path = db_path
        self.table = table
        self._lock = threading.Lock()
        self._closed = False
        self._cx = sqlite3.connect(db_path, check_same_thread=False, timeout=30.0)
        self._cx.execute("PRAGMA journal_mode=WAL;")
        self._cx.execute("PRAGMA synchronous=NORMAL;")
        self._ensure_schema()

    @property
    def identity(self) -> tuple[str, str]:
        """Stable key for "the same table in the same database"."""
        if self.db_path == ":memory:":
            return (f":memory:{id(self)}", self.table)
        return (os.path.realpath(self.db_path), self.table)

    # ---- schema ----------------------------------------------------------------------

    def _ensure_schema(self) -> None:
        t = self.table
        with self._lock:
            self._cx.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {t} (
                  key        TEXT NOT NULL UNIQUE,
                  value      TEXT,
                  created_at REAL NOT NULL,
                  expires_at REAL NOT NULL
                )
                """
            )
            self._cx.execute(f"CREATE INDEX IF NOT EXISTS idx_{t}_key ON {t}(key)")
            self._cx.execute(f"CREATE INDEX IF NOT EXISTS idx_{t}_expires_at ON {t}(expires_at)")
            self._cx.commit()

    # ---- public API ------------------------------------------------------------------

    def get(self, key: str) -> CacheRow | None:
        with self._lock:
            row = self._cx.execute(
                f"SELECT key, value, created_at, expires_at FROM {self.table} WHERE key=?",
                (key,),
            ).fetchone()
        if not row:
            return None
        return CacheRow(
            key=row[0], value=row[1], created_at=float(row[2]), expires_at=float(row[3])
        )

    def upsert(self, key: str, value: str, created_at: float, expires_at: float) -> None:
        with self._lock:
            self._cx.execute(
                f"""
                INSERT INTO {self.table} (key, value, created_at, expires_at)
                VALUES (?,?,?,?)
                ON CONFLICT (key) DO UPDATE SET
                    value=excluded.value,
                    created_at=excluded.created_at,
                    expires_at=excluded.expires_at
                """,
                (key, value, float(created_at), float(expires_at)),
            )
            self._cx.commit()

    def delete(self, key: str) -> None:
        with self._lock:
            self._cx.execute(f"DELETE FROM {self.table} WHERE key=?", (key,))
            self._cx.commit()

    def delete_if_expired(self, key: str, now: float) -> int:
        with self._lock:
            cur = self._cx.execute(
                f"DELETE FROM {self.table} WHERE key=? AND expires_at<=?", (key, float(now))
            )
            self._cx.commit()
            return cur.rowcount

    def delete_expired(self, now: float) -> int:
        with self._lock:
            cur = self._cx.execute(
                f"DELETE FROM {self.table} WHERE expires_at<=?", (float(now),)
            )
            self._cx.commit()
            return cur.rowcount

    def clear(self) -> None:
        with self._lock:
            self._cx.execute(f"DELETE FROM {self.table}")
            self._cx.commit()

    def counts(self, now: float) -> tuple[int, int]:
        """Return (total, valid) row counts."""
        with self._lock:
            row = self._cx.execute(
                f"SELECT COUNT(*), COALESCE(SUM(CASE WHEN expires_at>? THEN 1 ELSE 0 END), 0) "
                f"FROM {self.table}",
                (float(now),),
            ).fetchone()
        return int(row[0]), int(row[1])

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._cx.close()


__all__ = ["CacheRow", "SQLiteStore"]
