# mediameta/sources/douban.py
from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass

import httpx
from bs4 import BeautifulSoup, Tag

from ..cache import TTLCache
from ..exceptions import NotFoundError, ParseError
from ..fetch import Fetcher
from .base import Cancel, Source

log = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://movie.douban.com"
DEFAULT_SEARCH_URL = "https://search.douban.com/movie/subject_search"
# Movies/TV category on the search page
SEARCH_CATEGORY = "1002"

_SUBJECT_RE = re.compile(r"/subject/(\d+)")
_YEAR_RE = re.compile(r"\b(?:19|20)\d{2}\b")


@dataclass(frozen=True)
class SearchResult:
    id: str
    title: str
    url: str
    year: int | None = None


# --------------------------------------------------------------------------------------
# HTML helpers
# --------------------------------------------------------------------------------------


def extract_subject_id(href: str) -> str | None:
    m = _SUBJECT_RE.search(href or "")
    return m.group(1) if m else None


def _extract_year(text: str) -> int | None:
    m = _YEAR_RE.search(text or "")
    return int(m.group(0)) if m else None


def _anchor_title(a: Tag) -> str:
    text = a.get_text(" ", strip=True)
    if text:
        return text
    return str(a.get("title") or "").strip()


def parse_search_results(html: str) -> list[SearchResult]:
    """
    Collect subject links from a search results page, one result per subject id
    in document order. Image-only anchors are merged with their text anchor.
    """
    soup = BeautifulSoup(html, "html.parser")
    found: dict[str, SearchResult] = {}

    for a in soup.select('a[href*="/subject/"]'):
        href = str(a.get("href") or "")
        sid = extract_subject_id(href)
        if not sid:
            continue
        title = _anchor_title(a)
        container = a.find_parent(["li", "div"])
        context = container.get_text(" ", strip=True) if container is not None else title
        result = SearchResult(id=sid, title=title, url=href, year=_extract_year(context))

        prev = found.get(sid)
        if prev is None or (not prev.title and title):
            found[sid] = result

    return [r for r in found.values() if r.title]


# --------------------------------------------------------------------------------------
# Source
# --------------------------------------------------------------------------------------


class DoubanSource(Source):
    """Scrapes search and subject pages. Detail HTML is cached per subject id."""

    name = "douban"

    def __init__(
        self,
        fetcher: Fetcher,
        cache: TTLCache,
        *,
        base_url: str = DEFAULT_BASE_URL,
        search_base_url: str = DEFAULT_SEARCH_URL,
    ):
        super().__init__(fetcher, cache)
        self.base_url = base_url.rstrip("/")
        self.search_base_url = search_base_url

    def search_url(self, query: str) -> str:
        params = {"search_text": query, "cat": SEARCH_CATEGORY}
        return str(httpx.URL(self.search_base_url, params=params))

    def detail_url(self, subject_id: str) -> str:
        return f"{self.base_url}/subject/{subject_id}/"

    def search(self, query: str, *, cancel: Cancel = None) -> list[SearchResult]:
        query = (query or "").strip()
        if not query:
            raise ValueError("query must be non-empty")

        def produce() -> list[dict]:
            html = self.fetcher.get_text(self.search_url(query), cancel=cancel)
            results = parse_search_results(html)
            if not results:
                raise NotFoundError(query=query)
            log.debug("douban: search query=%s results=%d", query, len(results))
            return [asdict(r) for r in results]

        rows = self._cached(f"douban:search:{query}", produce)
        return [SearchResult(**r) for r in rows]

    def fetch_detail_html(self, subject_id: str, *, cancel: Cancel = None) -> str:
        subject_id = str(subject_id).strip()
        if not subject_id.isdigit():
            raise ValueError(f"invalid subject id: {subject_id!r}")

        def produce() -> str:
            try:
                html = self.fetcher.get_text(self.detail_url(subject_id), cancel=cancel)
            except NotFoundError as exc:
                raise NotFoundError(id=subject_id) from exc
            if not html.strip():
                raise ParseError("document", "empty page", snippet=None)
            return html

        return self._cached(f"douban:detail:{subject_id}", produce)


__all__ = [
    "SearchResult",
    "DoubanSource",
    "parse_search_results",
    "extract_subject_id",
]
