# mediameta/sources/base.py
from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

from ..cache import TTLCache
from ..fetch import ClientMetrics, Fetcher

log = logging.getLogger(__name__)


class Source:
    """
    Shared shape of every metadata source: an injected Fetcher and TTLCache,
    read-through caching of JSON-serialisable results.
    """

    name = "source"

    def __init__(self, fetcher: Fetcher, cache: TTLCache):
        self.fetcher = fetcher
        self.cache = cache

    def is_enabled(self) -> bool:
        return self.fetcher.is_enabled()

    @property
    def metrics(self) -> ClientMetrics:
        return self.fetcher.metrics

    def _cached(self, key: str, produce: Callable[[], Any]) -> Any:
        value, found = self.cache.get(key)
        if found:
            log.debug("%s: cache hit key=%s", self.name, key)
            return value
        value = produce()
        self.cache.set(key, value)
        return value

    def close(self) -> None:
        self.fetcher.close()
        self.cache.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


Cancel = threading.Event | None

__all__ = ["Source", "Cancel"]
