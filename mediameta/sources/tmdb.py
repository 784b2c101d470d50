# mediameta/sources/tmdb.py
from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any

from ..cache import TTLCache
from ..exceptions import BlockedError, FetchCancelled, FetchError, NotFoundError, ParseError
from ..fetch import Fetcher
from .base import Cancel, Source

log = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.themoviedb.org/3"
DEFAULT_LANGUAGE = "zh-TW"

# Traditional Chinese, then Simplified Chinese, then English
DEFAULT_FALLBACK_LANGUAGES: tuple[str, ...] = ("zh-TW", "zh-CN", "en")


def _localized(item: dict[str, Any], title_field: str) -> bool:
    return bool(item.get(title_field)) and bool(item.get("overview"))


def _title_field(kind: str) -> str:
    return "title" if kind == "movie" else "name"


class TMDbSource(Source):
    """
    TMDb v3 API. Responses are returned as decoded JSON objects and cached
    under ``tmdb:<kind>:<language>:<args>`` keys.

    The ``*_with_fallback`` methods walk ``languages`` in order and stop at the
    first response carrying a localized title and overview.
    """

    name = "tmdb"

    def __init__(
        self,
        fetcher: Fetcher,
        cache: TTLCache,
        *,
        api_key: str,
        language: str = DEFAULT_LANGUAGE,
        languages: Sequence[str] | None = None,
        base_url: str = DEFAULT_BASE_URL,
    ):
        super().__init__(fetcher, cache)
        self.api_key = api_key
        self.language = language or DEFAULT_LANGUAGE
        chain = [lang for lang in (languages or DEFAULT_FALLBACK_LANGUAGES) if lang]
        self.languages: tuple[str, ...] = tuple(dict.fromkeys(chain)) or (self.language,)
        self.base_url = base_url.rstrip("/")

    def is_enabled(self) -> bool:
        return bool(self.api_key) and super().is_enabled()

    def _get(
        self, path: str, params: dict[str, Any], language: str, cancel: Cancel
    ) -> dict[str, Any]:
        if not self.api_key:
            raise BlockedError("missing-api-key")
        q: dict[str, Any] = {"api_key": self.api_key, "language": language}
        q.update(params)
        data = self.fetcher.get_json(f"{self.base_url}{path}", params=q, cancel=cancel)
        if not isinstance(data, dict):
            raise ParseError(path, f"expected an object, got {type(data).__name__}")
        return data

    # ---- search ----------------------------------------------------------------------

    def _search(
        self, kind: str, query: str, page: int, language: str | None, cancel: Cancel
    ) -> dict[str, Any]:
        query = (query or "").strip()
        if not query:
            raise ValueError("query must be non-empty")
        page = max(1, int(page))
        lang = language or self.language

        def produce() -> dict[str, Any]:
            data = self._get(f"/search/{kind}", {"query": query, "page": page}, lang, cancel)
            if "results" not in data:
                raise ParseError("results", "missing from response")
            log.debug(
                "tmdb: search kind=%s lang=%s query=%s page=%d results=%d",
                kind,
                lang,
                query,
                page,
                len(data["results"]),
            )
            return data

        return self._cached(f"tmdb:search_{kind}:{lang}:{query}:{page}", produce)

    def search_movies(
        self, query: str, page: int = 1, *, language: str | None = None, cancel: Cancel = None
    ) -> dict:
        return self._search("movie", query, page, language, cancel)

    def search_tv(
        self, query: str, page: int = 1, *, language: str | None = None, cancel: Cancel = None
    ) -> dict:
        return self._search("tv", query, page, language, cancel)

    # ---- details ---------------------------------------------------------------------

    def _details(
        self, kind: str, item_id: int, language: str | None, cancel: Cancel
    ) -> dict[str, Any]:
        item_id = int(item_id)
        if item_id <= 0:
            raise ValueError(f"invalid {kind} id: {item_id!r}")
        lang = language or self.language

        def produce() -> dict[str, Any]:
            try:
                return self._get(f"/{kind}/{item_id}", {}, lang, cancel)
            except NotFoundError as exc:
                raise NotFoundError(id=f"{kind}/{item_id}") from exc

        return self._cached(f"tmdb:{kind}:{lang}:{item_id}", produce)

    def movie_details(
        self, movie_id: int, *, language: str | None = None, cancel: Cancel = None
    ) -> dict:
        return self._details("movie", movie_id, language, cancel)

    def tv_details(self, tv_id: int, *, language: str | None = None, cancel: Cancel = None) -> dict:
        return self._details("tv", tv_id, language, cancel)

    # ---- language fallback -----------------------------------------------------------

    def _with_fallback(
        self,
        what: str,
        call: Callable[[str], dict[str, Any]],
        localized: Callable[[dict[str, Any]], bool],
    ) -> tuple[dict[str, Any], str]:
        """
        Try each language until ``localized`` accepts the response.

        Returns (data, language). When no language is localized the last successful
        response is returned; when every language failed the last error is raised.
        Cancellation is never swallowed.
        """
        last: tuple[dict[str, Any], str] | None = None
        last_error: FetchError | None = None
        for lang in self.languages:
            try:
                data = call(lang)
            except FetchCancelled:
                raise
            except FetchError as exc:
                log.debug("tmdb: fallback failed what=%s lang=%s error=%s", what, lang, exc)
                last_error = exc
                continue
            last = (data, lang)
            if localized(data):
                log.debug("tmdb: fallback hit what=%s lang=%s", what, lang)
                return last
            log.debug("tmdb: fallback not localized what=%s lang=%s", what, lang)

        if last is None:
            raise last_error
        return last

    def _search_with_fallback(
        self, kind: str, query: str, page: int, cancel: Cancel
    ) -> tuple[dict[str, Any], str]:
        field = _title_field(kind)
        return self._with_fallback(
            f"search_{kind}:{query}",
            lambda lang: self._search(kind, query, page, lang, cancel),
            lambda data: any(_localized(r, field) for r in data.get("results") or []),
        )

    def _details_with_fallback(
        self, kind: str, item_id: int, cancel: Cancel
    ) -> tuple[dict[str, Any], str]:
        field = _title_field(kind)
        return self._with_fallback(
            f"{kind}/{item_id}",
            lambda lang: self._details(kind, item_id, lang, cancel),
            lambda data: _localized(data, field),
        )

    def search_movies_with_fallback(
        self, query: str, page: int = 1, *, cancel: Cancel = None
    ) -> tuple[dict, str]:
        return self._search_with_fallback("movie", query, page, cancel)

    def search_tv_with_fallback(
        self, query: str, page: int = 1, *, cancel: Cancel = None
    ) -> tuple[dict, str]:
        return self._search_with_fallback("tv", query, page, cancel)

    def movie_details_with_fallback(
        self, movie_id: int, *, cancel: Cancel = None
    ) -> tuple[dict, str]:
        return self._details_with_fallback("movie", movie_id, cancel)

    def tv_details_with_fallback(self, tv_id: int, *, cancel: Cancel = None) -> tuple[dict, str]:
        return self._details_with_fallback("tv", tv_id, cancel)


__all__ = ["DEFAULT_FALLBACK_LANGUAGES", "TMDbSource"]
