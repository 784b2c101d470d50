# mediameta/sources/__init__.py
"""
Metadata source adapters. Each one takes an explicit Fetcher and TTLCache;
build_sources() wires all three from an AppConfig.
"""

from __future__ import annotations

from ..cache import open_cache
from ..config import AppConfig, SourceConfig
from ..fetch import Fetcher, build_fetcher
from .base import Source
from .douban import DoubanSource, SearchResult
from .tmdb import TMDbSource
from .wikipedia import WikiImageInfo, WikiPage, WikipediaSource, WikiSearchResult


def _fetcher_for(name: str, sc: SourceConfig, settings: AppConfig) -> Fetcher:
    return build_fetcher(
        sc.client,
        name=name,
        robots_origin=sc.robots_origin,
        robots_user_agent=settings.robots_user_agent,
        robots_ttl_s=settings.robots_ttl_s,
        robots_timeout_s=settings.robots_timeout_s,
    )


def build_sources(settings: AppConfig) -> dict[str, Source]:
    """Construct every adapter with its own Fetcher and cache table."""
    db = settings.cache_db_path
    return {
        "douban": DoubanSource(
            _fetcher_for("douban", settings.douban, settings),
            open_cache(db, "douban_cache", settings.douban.cache),
            base_url=settings.douban.base_url,
        ),
        "wikipedia": WikipediaSource(
            _fetcher_for("wikipedia", settings.wikipedia, settings),
            open_cache(db, "wikipedia_cache", settings.wikipedia.cache),
            api_url=settings.wikipedia.base_url,
        ),
        "tmdb": TMDbSource(
            _fetcher_for("tmdb", settings.tmdb, settings),
            open_cache(db, "tmdb_cache", settings.tmdb.cache),
            api_key=settings.tmdb.api_key,
            language=settings.tmdb.language,
            languages=settings.tmdb.languages,
            base_url=settings.tmdb.base_url,
        ),
    }


__all__ = [
    "Source",
    "DoubanSource",
    "SearchResult",
    "WikipediaSource",
    "WikiSearchResult",
    "WikiPage",
    "WikiImageInfo",
    "TMDbSource",
    "build_sources",
]
