# mediameta/utils.py
"""
Shared utility functions used across the codebase.

This module centralizes common helpers to avoid duplication.
"""
from __future__ import annotations

from datetime import UTC, datetime


def utc_iso_z(ts: float | None) -> str | None:
    """
    Format an epoch timestamp as a UTC ISO 8601 string with 'Z' suffix.

    Returns None when ts is None.

    Example: "2025-01-15T14:30:00Z"
    """
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def humanize_seconds(seconds: float) -> str:
    """
    Render a duration the way operators read TTLs: "7d", "24h", "90s".
    """
    s = int(seconds)
    if s and s % 86400 == 0:
        return f"{s // 86400}d"
    if s and s % 3600 == 0:
        return f"{s // 3600}h"
    if s and s % 60 == 0:
        return f"{s // 60}m"
    return f"{seconds:g}s"


__all__ = [
    "utc_iso_z",
    "humanize_seconds",
]
