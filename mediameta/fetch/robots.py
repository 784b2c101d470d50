# mediameta/fetch/robots.py
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from urllib.parse import urlsplit

import httpx

from .. import config

log = logging.getLogger(__name__)

# --------------------------------------------------------------------------------------
# Data structures
# --------------------------------------------------------------------------------------


@dataclass(frozen=True)
class RobotsRules:
    """Rules that apply to us: ordered disallow prefixes + optional crawl-delay."""

    disallowed_paths: tuple[str, ...] = ()
    crawl_delay_s: float | None = None


# --------------------------------------------------------------------------------------
# Helpers
# --------------------------------------------------------------------------------------


def _now() -> float:
    # use monotonic so tests can freeze time via monkeypatch
    return time.monotonic()


def _split_kv(line: str) -> tuple[str, str] | None:
    if ":" not in line:
        return None
    k, v = line.split(":", 1)
    return k.strip().lower(), v.strip()


def _agent_applies(agent: str) -> bool:
    agent = agent.lower()
    return agent == "*" or "bot" in agent or "crawler" in agent


def parse_robots(text: str) -> RobotsRules:
    """
    Line-oriented robots.txt parser.

    A ``User-agent:`` line opens a section; the section applies to us if its
    agent is ``*`` or mentions "bot"/"crawler". Inside an applicable section,
    ``Disallow:`` accumulates path prefixes and ``Crawl-delay:`` sets the delay.
    Comments, blank lines and any other directive are ignored.
    """
    disallowed: list[str] = []
    crawl_delay: float | None = None
    in_section = False

    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        kv = _split_kv(line)
        if not kv:
            continue
        key, val = kv

        if key == "user-agent":
            in_section = _agent_applies(val)
            continue

        if not in_section:
            continue

        if key == "disallow":
            # strip trailing inline comment
            val = val.split("#", 1)[0].strip()
            if val and val not in disallowed:
                disallowed.append(val)
        elif key == "crawl-delay":
            try:
                cd = float(val)
            except ValueError:
                continue
            if cd >= 0:
                crawl_delay = cd

    return RobotsRules(disallowed_paths=tuple(disallowed), crawl_delay_s=crawl_delay)


def is_path_allowed(rules: RobotsRules | None, url: str) -> bool:
    """Prefix-match ``url``'s path against ``rules``. None rules allow everything."""
    if rules is None:
        return True
    try:
        path = urlsplit(url).path
    except ValueError:
        return True
    if not path:
        path = "/"
    for prefix in rules.disallowed_paths:
        if path.startswith(prefix):
            log.warning("robots: path disallowed path=%s rule=%s", path, prefix)
            return False
    return True


# --------------------------------------------------------------------------------------
# Guard
# --------------------------------------------------------------------------------------


class PolitenessGuard:
    """
    Fetches, caches and evaluates one origin's robots.txt.

    Lock-to-field mapping: ``_lock`` guards ``_rules`` and ``_checked_at``
    during refresh. Readers take a lock-free snapshot; attribute reads are
    atomic, and a refresh replaces both fields before releasing the lock.

    Fail-open: any refresh failure leaves ``rules`` as None (allow all) and
    still stamps ``checked_at`` so we do not hammer a broken origin.
    """

    def __init__(
        self,
        origin: str,
        *,
        user_agent: str | None = None,
        ttl_s: float | None = None,
        timeout_s: float | None = None,
    ) -> None:
        self.origin = origin.rstrip("/")
        self.user_agent = user_agent or config.ROBOTS_USER_AGENT
        self.ttl_s = float(ttl_s if ttl_s is not None else config.ROBOTS_TTL_SECONDS)
        if timeout_s is None:
            timeout_s = config.ROBOTS_TIMEOUT_SECONDS
        self.timeout_s = float(timeout_s)
        self._rules: RobotsRules | None = None
        self._checked_at: float | None = None
        self._lock = threading.Lock()

    # ---- state -----------------------------------------------------------------------

    @property
    def robots_url(self) -> str:
        return f"{self.origin}/robots.txt"

    @property
    def rules(self) -> RobotsRules | None:
        return self._rules

    @property
    def checked_at(self) -> float | None:
        return self._checked_at

    @property
    def crawl_delay_s(self) -> float | None:
        rules = self._rules
        return rules.crawl_delay_s if rules is not None else None

    def _is_stale(self) -> bool:
        checked_at = self._checked_at
        return checked_at is None or (_now() - checked_at) >= self.ttl_s

    # ---- refresh ---------------------------------------------------------------------

    def ensure_fresh(self) -> None:
        """Refresh the rules if they were never fetched or are older than ttl_s."""
        if not self._is_stale():
            return
        with self._lock:
            # Another thread may have refreshed while we waited for the lock
            if not self._is_stale():
                return
            self._refresh_locked()

    def refresh(self) -> RobotsRules | None:
        """Force a refresh regardless of staleness."""
        with self._lock:
            self._refresh_locked()
            return self._rules

    def reset(self) -> None:
        """Forget cached rules; the next gated call refetches."""
        with self._lock:
            self._rules = None
            self._checked_at = None

    def _refresh_locked(self) -> None:
        log.info("robots: fetching url=%s", self.robots_url)
        rules = self._fetch_rules()
        self._rules = rules
        self._checked_at = _now()
        if rules is not None:
            log.info(
                "robots: parsed url=%s disallowed_paths=%d crawl_delay=%s",
                self.robots_url,
                len(rules.disallowed_paths),
                rules.crawl_delay_s,
            )

    def _fetch_rules(self) -> RobotsRules | None:
        # Unthrottled client with its own UA, outside the limiter and retry budget
        try:
            with httpx.Client(
                timeout=self.timeout_s,
                follow_redirects=True,
                max_redirects=config.DEFAULT_MAX_REDIRECTS,
                headers={"User-Agent": self.user_agent},
            ) as client:
                resp = client.get(self.robots_url)
        except httpx.HTTPError as exc:
            log.warning("robots: fetch failed url=%s error=%s", self.robots_url, exc)
            return None

        if resp.status_code != 200:
            log.info(
                "robots: not available url=%s status=%s", self.robots_url, resp.status_code
            )
            return None

        try:
            return parse_robots(resp.text or "")
        except UnicodeDecodeError as exc:
            log.warning("robots: unreadable body url=%s error=%s", self.robots_url, exc)
            return None

    # ---- evaluation ------------------------------------------------------------------

    def is_path_allowed(self, url: str) -> bool:
        return is_path_allowed(self._rules, url)

    def check(self, url: str) -> bool:
        """Refresh if stale, then evaluate ``url``. Never raises for robots failures."""
        self.ensure_fresh()
        return self.is_path_allowed(url)


__all__ = [
    "RobotsRules",
    "PolitenessGuard",
    "parse_robots",
    "is_path_allowed",
]
