# mediameta/sources/wikipedia.py
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any

from ..cache import TTLCache
from ..exceptions import NotFoundError, ParseError
from ..fetch import Fetcher
from .base import Cancel, Source

log = logging.getLogger(__name__)

DEFAULT_API_URL = "https://zh.wikipedia.org/w/api.php"
DEFAULT_SEARCH_LIMIT = 5
MAX_SEARCH_LIMIT = 10

# MediaWiki error codes that mean "no such page"
_MISSING_CODES = frozenset({"missingtitle", "invalidtitle", "nosuchpageid"})


@dataclass(frozen=True)
class WikiSearchResult:
    page_id: int
    title: str
    snippet: str = ""
    word_count: int = 0
    timestamp: str = ""


@dataclass(frozen=True)
class WikiPage:
    page_id: int
    title: str
    wikitext: str


@dataclass(frozen=True)
class WikiImageInfo:
    title: str
    url: str
    description_url: str = ""
    width: int = 0
    height: int = 0
    size: int = 0
    mime: str = ""


def _check_api_error(data: Any, *, title: str | None = None) -> None:
    if not isinstance(data, dict):
        raise ParseError("response", f"expected an object, got {type(data).__name__}")
    err = data.get("error")
    if not err:
        return
    code = str(err.get("code") or "")
    info = str(err.get("info") or "")
    if title is not None and code in _MISSING_CODES:
        raise NotFoundError(id=title)
    raise ParseError("error", f"{code}: {info}" if info else code)


class WikipediaSource(Source):
    """MediaWiki action API client (search, raw wikitext and file info)."""

    name = "wikipedia"

    def __init__(self, fetcher: Fetcher, cache: TTLCache, *, api_url: str = DEFAULT_API_URL):
        super().__init__(fetcher, cache)
        self.api_url = api_url

    def _call(self, params: dict[str, Any], cancel: Cancel) -> Any:
        q = {"format": "json", "formatversion": "2", "utf8": "1"}
        q.update(params)
        return self.fetcher.get_json(self.api_url, params=q, cancel=cancel)

    def search(
        self, query: str, limit: int = DEFAULT_SEARCH_LIMIT, *, cancel: Cancel = None
    ) -> list[WikiSearchResult]:
        query = (query or "").strip()
        if not query:
            raise ValueError("query must be non-empty")
        if limit <= 0 or limit > MAX_SEARCH_LIMIT:
            limit = DEFAULT_SEARCH_LIMIT

        def produce() -> list[dict]:
            data = self._call(
                {"action": "query", "list": "search", "srsearch": query, "srlimit": limit},
                cancel,
            )
            _check_api_error(data)
            hits = (data.get("query") or {}).get("search")
            if hits is None:
                raise ParseError("query.search", "missing from response")
            results = [
                WikiSearchResult(
                    page_id=int(h.get("pageid") or 0),
                    title=str(h.get("title") or ""),
                    snippet=str(h.get("snippet") or ""),
                    word_count=int(h.get("wordcount") or 0),
                    timestamp=str(h.get("timestamp") or ""),
                )
                for h in hits
            ]
            if not results:
                raise NotFoundError(query=query)
            log.debug("wikipedia: search query=%s results=%d", query, len(results))
            return [asdict(r) for r in results]

        rows = self._cached(f"wikipedia:search:{query}:{limit}", produce)
        return [WikiSearchResult(**r) for r in rows]

    def get_page_wikitext(self, title: str, *, cancel: Cancel = None) -> WikiPage:
        title = (title or "").strip()
        if not title:
            raise ValueError("title must be non-empty")

        def produce() -> dict:
            data = self._call(
                {"action": "parse", "page": title, "prop": "wikitext", "redirects": "1"},
                cancel,
            )
            _check_api_error(data, title=title)
            parsed = data.get("parse")
            if not isinstance(parsed, dict):
                raise ParseError("parse", "missing from response")
            wikitext = parsed.get("wikitext")
            # formatversion=1 nests the text under "*"
            if isinstance(wikitext, dict):
                wikitext = wikitext.get("*")
            if not isinstance(wikitext, str):
                raise ParseError("parse.wikitext", "missing from response")
            page = WikiPage(
                page_id=int(parsed.get("pageid") or 0),
                title=str(parsed.get("title") or title),
                wikitext=wikitext,
            )
            return asdict(page)

        return WikiPage(**self._cached(f"wikipedia:page:{title}", produce))

    def get_image_info(self, filename: str, *, cancel: Cancel = None) -> WikiImageInfo:
        """
        Resolve a file name (with or without the ``File:`` prefix) to its URL,
        dimensions, byte size and MIME type via ``prop=imageinfo``.

        Files hosted on Commons come back flagged ``missing`` but still carry
        imageinfo, so only an absent imageinfo list counts as not found.
        """
        title = (filename or "").strip()
        if not title:
            raise ValueError("filename must be non-empty")
        if not title.lower().startswith("file:"):
            title = f"File:{title}"

        def produce() -> dict:
            data = self._call(
                {
                    "action": "query",
                    "titles": title,
                    "prop": "imageinfo",
                    "iiprop": "url|size|mime",
                },
                cancel,
            )
            _check_api_error(data, title=title)
            pages = (data.get("query") or {}).get("pages")
            # formatversion=1 keys pages by id
            if isinstance(pages, dict):
                pages = list(pages.values())
            if not isinstance(pages, list):
                raise ParseError("query.pages", "missing from response")
            for page in pages:
                infos = page.get("imageinfo") or []
                if not infos:
                    continue
                ii = infos[0]
                info = WikiImageInfo(
                    title=str(page.get("title") or title),
                    url=str(ii.get("url") or ""),
                    description_url=str(ii.get("descriptionurl") or ""),
                    width=int(ii.get("width") or 0),
                    height=int(ii.get("height") or 0),
                    size=int(ii.get("size") or 0),
                    mime=str(ii.get("mime") or ""),
                )
                log.debug("wikipedia: image info title=%s url=%s", info.title, info.url)
                return asdict(info)
            raise NotFoundError(id=title)

        return WikiImageInfo(**self._cached(f"wikipedia:image:{title}", produce))


__all__ = ["WikiSearchResult", "WikiPage", "WikiImageInfo", "WikipediaSource"]
