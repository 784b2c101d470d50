# mediameta/cli.py
"""
Diagnostic CLI for the fetch layer.

Usage:

  python -m mediameta fetch "https://movie.douban.com/subject/1292052/" --source douban
  python -m mediameta robots https://movie.douban.com /subject/1292052/
  python -m mediameta cache-stats
  python -m mediameta cache-sweep

Every command ends with a single-line RESULT that scripts can parse.
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from typing import Any

from .cache import open_cache
from .config import AppConfig, load_settings
from .exceptions import ConfigError, FetchError
from .fetch import PolitenessGuard, build_fetcher
from .utils import humanize_seconds

log = logging.getLogger(__name__)

SOURCES = ("douban", "wikipedia", "tmdb")
CACHE_TABLES = {
    "douban": "douban_cache",
    "wikipedia": "wikipedia_cache",
    "tmdb": "tmdb_cache",
}


def _result(**fields: Any) -> None:
    print("RESULT " + " ".join(f"{k}={v}" for k, v in fields.items()))


def _configure_logging(verbose: bool) -> None:
    if logging.getLogger().handlers:
        return
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


# --------------------------------------------------------------------------------------
# Commands
# --------------------------------------------------------------------------------------


def _cmd_fetch(settings: AppConfig, args: argparse.Namespace) -> int:
    sc = getattr(settings, args.source)
    fetcher = build_fetcher(
        sc.client,
        name=args.source,
        robots_origin=sc.robots_origin,
        robots_user_agent=settings.robots_user_agent,
        robots_ttl_s=settings.robots_ttl_s,
        robots_timeout_s=settings.robots_timeout_s,
    )

    start = time.time()
    with fetcher:
        try:
            resp = fetcher.fetch("GET", args.url)
        except FetchError as e:
            elapsed = time.time() - start
            m = fetcher.metrics
            print(f"[cli] Error ........: {e}", file=sys.stderr)
            _result(
                status=getattr(e, "status_code", None) or "-",
                reason=e.code,
                attempts=m.total_requests,
                retries=m.retry_count,
                elapsed_s=f"{elapsed:.3f}",
            )
            return 1

        elapsed = time.time() - start
        m = fetcher.metrics
        body = resp.content

        if args.print_body:
            try:
                sys.stdout.write(resp.text)
                if not resp.text.endswith("\n"):
                    sys.stdout.write("\n")
            except BrokenPipeError:
                return 0

        _result(
            status=resp.status_code,
            reason="ok",
            content_type=(resp.headers.get("Content-Type") or "-").split(";", 1)[0],
            bytes=len(body),
            attempts=m.total_requests,
            retries=m.retry_count,
            elapsed_s=f"{elapsed:.3f}",
        )
    return 0


def _cmd_robots(settings: AppConfig, args: argparse.Namespace) -> int:
    guard = PolitenessGuard(
        args.origin,
        user_agent=settings.robots_user_agent,
        ttl_s=settings.robots_ttl_s,
        timeout_s=settings.robots_timeout_s,
    )
    path = args.path if args.path.startswith("/") else f"/{args.path}"
    allowed = guard.check(f"{guard.origin}{path}")
    rules = guard.rules
    _result(
        allowed=allowed,
        rules_loaded=rules is not None,
        disallowed_paths=len(rules.disallowed_paths) if rules is not None else 0,
        crawl_delay=guard.crawl_delay_s if guard.crawl_delay_s is not None else "-",
    )
    return 0


def _cmd_cache_stats(settings: AppConfig, args: argparse.Namespace) -> int:
    totals = {"total": 0, "valid": 0, "expired": 0}
    for name in SOURCES:
        sc = getattr(settings, name)
        with open_cache(settings.cache_db_path, CACHE_TABLES[name], sc.cache) as cache:
            st = cache.stats()
        ttl = humanize_seconds(st.ttl_s) if cache.enabled else "disabled"
        print(
            f"  {name:10} total={st.total:6d} valid={st.valid:6d} "
            f"expired={st.expired:6d} ttl={ttl}"
        )
        totals["total"] += st.total
        totals["valid"] += st.valid
        totals["expired"] += st.expired
    _result(db=settings.cache_db_path, **totals)
    return 0


def _cmd_cache_sweep(settings: AppConfig, args: argparse.Namespace) -> int:
    deleted = 0
    for name in SOURCES:
        sc = getattr(settings, name)
        with open_cache(settings.cache_db_path, CACHE_TABLES[name], sc.cache) as cache:
            n = cache.delete_expired()
        print(f"  {name:10} deleted={n}")
        deleted += n
    _result(db=settings.cache_db_path, deleted=deleted)
    return 0


# --------------------------------------------------------------------------------------
# Entry point
# --------------------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="mediameta", description="Polite fetch layer diagnostics."
    )
    ap.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
    sub = ap.add_subparsers(dest="command", required=True)

    p_fetch = sub.add_parser("fetch", help="Fetch a URL through a source's client")
    p_fetch.add_argument("url")
    p_fetch.add_argument("--source", choices=SOURCES, default="douban")
    p_fetch.add_argument("--print-body", action="store_true", help="Write body to stdout")
    p_fetch.set_defaults(func=_cmd_fetch)

    p_robots = sub.add_parser("robots", help="Evaluate a path against an origin's robots.txt")
    p_robots.add_argument("origin", help="e.g. https://movie.douban.com")
    p_robots.add_argument("path", help="e.g. /subject/1292052/")
    p_robots.set_defaults(func=_cmd_robots)

    p_stats = sub.add_parser("cache-stats", help="Row counts per cache table")
    p_stats.set_defaults(func=_cmd_cache_stats)

    p_sweep = sub.add_parser("cache-sweep", help="Delete expired rows now")
    p_sweep.set_defaults(func=_cmd_cache_sweep)

    return ap


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)
    try:
        settings = load_settings()
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    return int(args.func(settings, args))


if __name__ == "__main__":
    raise SystemExit(main())
