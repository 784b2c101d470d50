# tests/test_sources.py
from __future__ import annotations

import threading

import pytest
import respx
from httpx import Response

from mediameta.cache import SQLiteStore, TTLCache
from mediameta.config import (
    JSON_ACCEPT,
    AppConfig,
    CacheConfig,
    ClientConfig,
    SourceConfig,
    TMDbConfig,
)
from mediameta.exceptions import BlockedError, FetchCancelled, NotFoundError, ParseError
from mediameta.fetch import Fetcher
from mediameta.sources import (
    DoubanSource,
    TMDbSource,
    WikipediaSource,
    build_sources,
)
from mediameta.sources.douban import extract_subject_id, parse_search_results

DOUBAN = "https://movie.test"
SEARCH = "https://search.test/movie/subject_search"
WIKI_API = "https://wiki.test/w/api.php"
TMDB = "https://tmdb.test/3"

CACHE_CFG = CacheConfig(default_ttl_s=3600.0, cleanup_interval_s=3600.0)

SEARCH_HTML = """
<html><body>
<div class="item-root">
  <a href="https://movie.test/subject/1291557/" class="cover-link"><img src="x.jpg"></a>
  <div class="detail">
    <div class="title"><a href="https://movie.test/subject/1291557/">花樣年華 (2000)</a></div>
  </div>
</div>
<div class="item-root">
  <div class="title"><a href="https://movie.test/subject/1292052/">肖申克的救贖 (1994)</a></div>
</div>
<a href="https://movie.test/celebrity/1000/">not a subject</a>
</body></html>
"""


def _html_fetcher() -> Fetcher:
    return Fetcher(ClientConfig(requests_per_second=100.0, max_retries=1), name="douban")


def _json_fetcher() -> Fetcher:
    cfg = ClientConfig(
        requests_per_second=100.0,
        max_retries=1,
        expected_content_type="application/json",
        accept=JSON_ACCEPT,
    )
    return Fetcher(cfg, name="api")


@pytest.fixture
def make_cache(cache_db):
    made: list[TTLCache] = []

    def _make(table: str) -> TTLCache:
        c = TTLCache(SQLiteStore(cache_db, table), CACHE_CFG)
        made.append(c)
        return c

    yield _make
    for c in made:
        c.close()


# -------------------------------- douban ----------------------------------------------


def test_extract_subject_id():
    assert extract_subject_id("https://movie.douban.com/subject/1292052/") == "1292052"
    assert extract_subject_id("/subject/42") == "42"
    assert extract_subject_id("/celebrity/42/") is None


def test_parse_search_results_dedupes_and_reads_year():
    results = parse_search_results(SEARCH_HTML)
    assert [r.id for r in results] == ["1291557", "1292052"]
    assert results[0].title == "花樣年華 (2000)"
    assert results[0].year == 2000
    assert results[1].year == 1994


def test_douban_urls(make_cache):
    src = DoubanSource(
        _html_fetcher(), make_cache("douban"), base_url=DOUBAN, search_base_url=SEARCH
    )
    assert src.detail_url("1292052") == f"{DOUBAN}/subject/1292052/"
    url = src.search_url("花樣年華")
    assert url.startswith(SEARCH)
    assert "search_text=" in url and "cat=1002" in url


@respx.mock
def test_douban_search_and_cache(fake_clock, make_cache):
    route = respx.get(SEARCH, params={"search_text": "花樣年華"}).mock(
        return_value=Response(200, html=SEARCH_HTML)
    )
    src = DoubanSource(
        _html_fetcher(), make_cache("douban"), base_url=DOUBAN, search_base_url=SEARCH
    )

    first = src.search("花樣年華")
    second = src.search("花樣年華")

    assert first == second
    assert first[0].id == "1291557"
    assert route.call_count == 1


@respx.mock
def test_douban_search_without_results_is_not_found(fake_clock, make_cache):
    respx.get(SEARCH).mock(return_value=Response(200, html="<html><body></body></html>"))
    src = DoubanSource(
        _html_fetcher(), make_cache("douban"), base_url=DOUBAN, search_base_url=SEARCH
    )

    with pytest.raises(NotFoundError) as ei:
        src.search("nothing")
    assert ei.value.query == "nothing"


@respx.mock
def test_douban_detail_cached_by_subject_id(fake_clock, make_cache):
    route = respx.get(f"{DOUBAN}/subject/1292052/").mock(
        return_value=Response(200, html="<html><h1>肖申克的救贖</h1></html>")
    )
    src = DoubanSource(_html_fetcher(), make_cache("douban"), base_url=DOUBAN)

    assert "肖申克" in src.fetch_detail_html("1292052")
    assert "肖申克" in src.fetch_detail_html("1292052")
    assert route.call_count == 1
    assert src.cache.get("douban:detail:1292052")[1] is True


@respx.mock
def test_douban_detail_404_is_not_found(fake_clock, make_cache):
    respx.get(f"{DOUBAN}/subject/1/").mock(return_value=Response(404))
    src = DoubanSource(_html_fetcher(), make_cache("douban"), base_url=DOUBAN)

    with pytest.raises(NotFoundError) as ei:
        src.fetch_detail_html("1")
    assert ei.value.id == "1"


@respx.mock
def test_douban_empty_detail_is_parse_error_and_not_cached(fake_clock, make_cache):
    route = respx.get(f"{DOUBAN}/subject/7/").mock(return_value=Response(200, html="   "))
    src = DoubanSource(_html_fetcher(), make_cache("douban"), base_url=DOUBAN)

    for _ in range(2):
        with pytest.raises(ParseError) as ei:
            src.fetch_detail_html("7")
        assert ei.value.field == "document"
    assert route.call_count == 2


def test_douban_rejects_non_numeric_id(make_cache):
    src = DoubanSource(_html_fetcher(), make_cache("douban"), base_url=DOUBAN)
    with pytest.raises(ValueError):
        src.fetch_detail_html("../etc")


def test_source_reflects_fetcher_enabled_flag(make_cache):
    fetcher = _html_fetcher()
    src = DoubanSource(fetcher, make_cache("douban"), base_url=DOUBAN)
    assert src.is_enabled() is True
    fetcher.set_enabled(False)
    assert src.is_enabled() is False
    with pytest.raises(BlockedError):
        src.fetch_detail_html("1")


# -------------------------------- wikipedia -------------------------------------------


@respx.mock
def test_wikipedia_search(fake_clock, make_cache):
    route = respx.get(WIKI_API, params={"list": "search", "srsearch": "花樣年華"}).mock(
        return_value=Response(
            200,
            json={
                "query": {
                    "search": [
                        {
                            "pageid": 12,
                            "title": "花樣年華 (電影)",
                            "snippet": "王家衛",
                            "wordcount": 900,
                            "timestamp": "2024-01-01T00:00:00Z",
                        }
                    ]
                }
            },
        )
    )
    src = WikipediaSource(_json_fetcher(), make_cache("wikipedia"), api_url=WIKI_API)

    results = src.search("花樣年華", limit=3)
    again = src.search("花樣年華", limit=3)

    assert results == again
    assert results[0].page_id == 12
    assert results[0].title == "花樣年華 (電影)"
    assert route.call_count == 1
    assert route.calls.last.request.url.params["srlimit"] == "3"


@respx.mock
def test_wikipedia_empty_search_is_not_found(fake_clock, make_cache):
    respx.get(WIKI_API).mock(return_value=Response(200, json={"query": {"search": []}}))
    src = WikipediaSource(_json_fetcher(), make_cache("wikipedia"), api_url=WIKI_API)

    with pytest.raises(NotFoundError):
        src.search("zzzz")


@respx.mock
def test_wikipedia_api_error_is_parse_error(fake_clock, make_cache):
    respx.get(WIKI_API).mock(
        return_value=Response(200, json={"error": {"code": "badvalue", "info": "nope"}})
    )
    src = WikipediaSource(_json_fetcher(), make_cache("wikipedia"), api_url=WIKI_API)

    with pytest.raises(ParseError) as ei:
        src.search("x")
    assert "badvalue" in ei.value.reason


@respx.mock
def test_wikipedia_page_wikitext(fake_clock, make_cache):
    route = respx.get(WIKI_API, params={"action": "parse", "page": "花樣年華"}).mock(
        return_value=Response(
            200,
            json={"parse": {"title": "花樣年華", "pageid": 12, "wikitext": "{{Infobox film}}"}},
        )
    )
    src = WikipediaSource(_json_fetcher(), make_cache("wikipedia"), api_url=WIKI_API)

    page = src.get_page_wikitext("花樣年華")
    assert page.page_id == 12
    assert page.wikitext == "{{Infobox film}}"
    assert src.get_page_wikitext("花樣年華") == page
    assert route.call_count == 1


@respx.mock
def test_wikipedia_missing_page_is_not_found(fake_clock, make_cache):
    respx.get(WIKI_API).mock(
        return_value=Response(
            200, json={"error": {"code": "missingtitle", "info": "The page does not exist."}}
        )
    )
    src = WikipediaSource(_json_fetcher(), make_cache("wikipedia"), api_url=WIKI_API)

    with pytest.raises(NotFoundError) as ei:
        src.get_page_wikitext("不存在")
    assert ei.value.id == "不存在"


@respx.mock
def test_wikipedia_image_info(fake_clock, make_cache):
    route = respx.get(WIKI_API, params={"prop": "imageinfo", "titles": "File:Poster.jpg"}).mock(
        return_value=Response(
            200,
            json={
                "query": {
                    "pages": [
                        {
                            "ns": 6,
                            "title": "File:Poster.jpg",
                            "missing": True,
                            "known": True,
                            "imagerepository": "shared",
                            "imageinfo": [
                                {
                                    "url": "https://upload.test/Poster.jpg",
                                    "descriptionurl": "https://commons.test/File:Poster.jpg",
                                    "width": 800,
                                    "height": 1200,
                                    "size": 204800,
                                    "mime": "image/jpeg",
                                }
                            ],
                        }
                    ]
                }
            },
        )
    )
    src = WikipediaSource(_json_fetcher(), make_cache("wikipedia"), api_url=WIKI_API)

    info = src.get_image_info("Poster.jpg")
    assert info.url == "https://upload.test/Poster.jpg"
    assert (info.width, info.height, info.size) == (800, 1200, 204800)
    assert info.mime == "image/jpeg"
    # prefixed and unprefixed names share one cache entry
    assert src.get_image_info("File:Poster.jpg") == info
    assert route.call_count == 1
    assert route.calls.last.request.url.params["iiprop"] == "url|size|mime"


@respx.mock
def test_wikipedia_image_without_imageinfo_is_not_found(fake_clock, make_cache):
    respx.get(WIKI_API).mock(
        return_value=Response(
            200, json={"query": {"pages": [{"ns": 6, "title": "File:Gone.png", "missing": True}]}}
        )
    )
    src = WikipediaSource(_json_fetcher(), make_cache("wikipedia"), api_url=WIKI_API)

    with pytest.raises(NotFoundError) as ei:
        src.get_image_info("Gone.png")
    assert ei.value.id == "File:Gone.png"


# -------------------------------- tmdb ------------------------------------------------


@respx.mock
def test_tmdb_search_sets_key_and_language(fake_clock, make_cache):
    route = respx.get(f"{TMDB}/search/movie").mock(
        return_value=Response(200, json={"page": 1, "results": [{"id": 843}]})
    )
    src = TMDbSource(_json_fetcher(), make_cache("tmdb"), api_key="secret", base_url=TMDB)

    data = src.search_movies("花樣年華")
    assert data["results"][0]["id"] == 843
    src.search_movies("花樣年華")

    assert route.call_count == 1
    params = route.calls.last.request.url.params
    assert params["api_key"] == "secret"
    assert params["language"] == "zh-TW"
    assert params["query"] == "花樣年華"
    assert params["page"] == "1"
    assert src.cache.get("tmdb:search_movie:zh-TW:花樣年華:1")[1] is True


@respx.mock
def test_tmdb_details_cached_per_kind(fake_clock, make_cache):
    movie = respx.get(f"{TMDB}/movie/843").mock(return_value=Response(200, json={"id": 843}))
    tv = respx.get(f"{TMDB}/tv/843").mock(return_value=Response(200, json={"id": 843}))
    src = TMDbSource(_json_fetcher(), make_cache("tmdb"), api_key="k", base_url=TMDB)

    src.movie_details(843)
    src.movie_details(843)
    src.tv_details(843)

    assert movie.call_count == 1
    assert tv.call_count == 1


@respx.mock
def test_tmdb_404_is_not_found(fake_clock, make_cache):
    respx.get(f"{TMDB}/tv/1").mock(return_value=Response(404, json={"status_code": 34}))
    src = TMDbSource(_json_fetcher(), make_cache("tmdb"), api_key="k", base_url=TMDB)

    with pytest.raises(NotFoundError) as ei:
        src.tv_details(1)
    assert ei.value.id == "tv/1"


def test_tmdb_without_api_key_is_disabled(make_cache):
    src = TMDbSource(_json_fetcher(), make_cache("tmdb"), api_key="", base_url=TMDB)
    assert src.is_enabled() is False
    with pytest.raises(BlockedError):
        src.search_tv("x")


def _by_language(responses: dict[str, Response]):
    def side_effect(request):
        return responses[request.url.params["language"]]

    return side_effect


@respx.mock
def test_tmdb_search_falls_back_until_localized(fake_clock, make_cache):
    route = respx.get(f"{TMDB}/search/movie").mock(
        side_effect=_by_language(
            {
                "zh-TW": Response(200, json={"results": [{"id": 1, "title": "x", "overview": ""}]}),
                "zh-CN": Response(
                    200, json={"results": [{"id": 1, "title": "花样年华", "overview": "1962年"}]}
                ),
                "en": Response(200, json={"results": []}),
            }
        )
    )
    src = TMDbSource(_json_fetcher(), make_cache("tmdb"), api_key="k", base_url=TMDB)

    data, lang = src.search_movies_with_fallback("花樣年華")

    assert lang == "zh-CN"
    assert data["results"][0]["title"] == "花样年华"
    assert [c.request.url.params["language"] for c in route.calls] == ["zh-TW", "zh-CN"]
    assert src.cache.get("tmdb:search_movie:zh-CN:花樣年華:1")[1] is True


@respx.mock
def test_tmdb_details_fallback_skips_errors(fake_clock, make_cache):
    respx.get(f"{TMDB}/tv/7").mock(
        side_effect=_by_language(
            {
                "zh-TW": Response(404, json={"status_code": 34}),
                "zh-CN": Response(200, json={"id": 7, "name": "", "overview": ""}),
                "en": Response(200, json={"id": 7, "name": "Show", "overview": "A show."}),
            }
        )
    )
    src = TMDbSource(_json_fetcher(), make_cache("tmdb"), api_key="k", base_url=TMDB)

    data, lang = src.tv_details_with_fallback(7)

    assert lang == "en"
    assert data["name"] == "Show"


@respx.mock
def test_tmdb_fallback_returns_last_success_when_nothing_localized(fake_clock, make_cache):
    respx.get(f"{TMDB}/movie/9").mock(
        side_effect=_by_language(
            {
                "zh-TW": Response(200, json={"id": 9, "title": "", "overview": ""}),
                "en": Response(404, json={"status_code": 34}),
            }
        )
    )
    src = TMDbSource(
        _json_fetcher(), make_cache("tmdb"), api_key="k", languages=["zh-TW", "en"], base_url=TMDB
    )

    data, lang = src.movie_details_with_fallback(9)

    assert lang == "zh-TW"
    assert data["id"] == 9


@respx.mock
def test_tmdb_fallback_raises_last_error_when_every_language_fails(fake_clock, make_cache):
    route = respx.get(f"{TMDB}/movie/5").mock(return_value=Response(404, json={}))
    src = TMDbSource(_json_fetcher(), make_cache("tmdb"), api_key="k", base_url=TMDB)

    with pytest.raises(NotFoundError) as ei:
        src.movie_details_with_fallback(5)
    assert ei.value.id == "movie/5"
    assert route.call_count == len(src.languages)


def test_tmdb_fallback_stops_on_cancel(make_cache):
    cancel = threading.Event()
    cancel.set()
    src = TMDbSource(_json_fetcher(), make_cache("tmdb"), api_key="k", base_url=TMDB)

    with respx.mock:
        route = respx.get(f"{TMDB}/search/tv").mock(return_value=Response(200, json={}))
        with pytest.raises(FetchCancelled):
            src.search_tv_with_fallback("x", cancel=cancel)
    assert route.call_count == 0


def test_tmdb_language_chain_is_deduplicated(make_cache):
    src = TMDbSource(
        _json_fetcher(),
        make_cache("tmdb"),
        api_key="k",
        languages=["zh-TW", "", "zh-TW", "en"],
        base_url=TMDB,
    )
    assert src.languages == ("zh-TW", "en")


# -------------------------------- wiring ----------------------------------------------


def test_build_sources_wires_independent_clients(cache_db):
    settings = AppConfig(
        douban=SourceConfig(
            client=ClientConfig(),
            cache=CACHE_CFG,
            base_url=DOUBAN,
            robots_origin=DOUBAN,
        ),
        wikipedia=SourceConfig(client=ClientConfig(), cache=CACHE_CFG, base_url=WIKI_API),
        tmdb=TMDbConfig(
            client=ClientConfig(), cache=CacheConfig(enabled=False), base_url=TMDB, api_key="k"
        ),
        cache_db_path=cache_db,
    )
    sources = build_sources(settings)
    try:
        assert set(sources) == {"douban", "wikipedia", "tmdb"}
        assert sources["douban"].fetcher.guard is not None
        assert sources["wikipedia"].fetcher.guard is None
        assert sources["douban"].fetcher is not sources["wikipedia"].fetcher
        assert sources["tmdb"].cache.enabled is False
    finally:
        for src in sources.values():
            src.close()
