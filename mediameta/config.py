from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .exceptions import ConfigError


def _getenv_int(name: str, default: int) -> int:
    v = os.getenv(name, str(default)).strip()
    try:
        return int(v)
    except ValueError as err:
        raise ConfigError(f"Environment variable {name} must be an integer; got {v!r}") from err


def _getenv_float(name: str, default: float) -> float:
    v = os.getenv(name, str(default)).strip()
    try:
        return float(v)
    except ValueError as err:
        raise ConfigError(f"Environment variable {name} must be a number; got {v!r}") from err


def _getenv_str(name: str, default: str) -> str:
    return os.getenv(name, default).strip()


def _getenv_list_str(name: str, default_csv: str, sep: str = ",") -> list[str]:
    raw = os.getenv(name, default_csv).strip()
    out: list[str] = []
    for tok in (t.strip() for t in raw.split(sep)):
        if tok:
            out.append(tok)
    return out


def _getenv_bool(name: str, default: bool) -> bool:
    """
    Read a loosely-typed boolean from the environment.

    Treats "1", "true", "yes", "on" (case-insensitive) as True;
    "0", "false", "no", "off", "" as False. If unset, returns default.
    """
    raw = os.getenv(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in {"1", "true", "yes", "on"}:
        return True
    if v in {"0", "false", "no", "off", ""}:
        return False
    return True


# Load .env from project root if present
ROOT = Path(__file__).resolve().parents[1]
load_dotenv(ROOT / ".env", override=False)

# ---- Identity ----
BOT_NAME = "MediaMetaBot"
CONTACT_URL = "https://github.com/mediameta/mediameta"

# Realistic desktop browser strings; rotated round-robin by scraping clients
DEFAULT_USER_AGENTS: tuple[str, ...] = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.2 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
)

HTML_ACCEPT = (
    "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8"
)
JSON_ACCEPT = "application/json"
DEFAULT_ACCEPT_LANGUAGE = "zh-TW,zh;q=0.9,en-US;q=0.8,en;q=0.7"

# -------------------------------
# Client defaults (applied to zero/negative fields of ClientConfig)
# -------------------------------
DEFAULT_REQUESTS_PER_SECOND = 0.5  # 1 request every 2 seconds
DEFAULT_BURST = 1
DEFAULT_TIMEOUT_S = 30.0
DEFAULT_MAX_RETRIES = 5
DEFAULT_INITIAL_BACKOFF_S = 1.0
DEFAULT_MAX_BACKOFF_S = 16.0
DEFAULT_BACKOFF_MULTIPLIER = 2.0
DEFAULT_JITTER_MIN_S = 0.1
DEFAULT_JITTER_MAX_S = 0.5
DEFAULT_MAX_REDIRECTS = 3

# -------------------------------
# robots.txt and cache defaults; the environment is read by load_settings()
# -------------------------------
ROBOTS_USER_AGENT: str = f"{BOT_NAME}/1.0 (metadata fetcher)"
ROBOTS_TTL_SECONDS: float = 86400.0  # 24h
ROBOTS_TIMEOUT_SECONDS: float = 10.0

CACHE_DB_PATH: str = (ROOT / "cache.db").as_posix()
CACHE_CLEANUP_INTERVAL_SECONDS: float = 3600.0

DAY_S = 24 * 3600.0


@dataclass(frozen=True)
class ClientConfig:
    """
    Per-source fetch policy. Immutable; zero or negative numeric fields are
    replaced with the module defaults at construction time.
    """

    requests_per_second: float = 0.0
    burst: int = 0
    timeout_s: float = 0.0
    max_retries: int = 0
    initial_backoff_s: float = 0.0
    max_backoff_s: float = 0.0
    backoff_multiplier: float = 0.0
    jitter_min_s: float = 0.0
    jitter_max_s: float = 0.0
    max_redirects: int = 0
    enabled: bool = True
    # None disables the content-type check on 200 responses
    expected_content_type: str | None = "text/html"
    accept: str = HTML_ACCEPT
    accept_language: str = DEFAULT_ACCEPT_LANGUAGE
    user_agents: tuple[str, ...] = DEFAULT_USER_AGENTS

    def __post_init__(self) -> None:
        defaults = {
            "requests_per_second": DEFAULT_REQUESTS_PER_SECOND,
            "burst": DEFAULT_BURST,
            "timeout_s": DEFAULT_TIMEOUT_S,
            "max_retries": DEFAULT_MAX_RETRIES,
            "initial_backoff_s": DEFAULT_INITIAL_BACKOFF_S,
            "max_backoff_s": DEFAULT_MAX_BACKOFF_S,
            "backoff_multiplier": DEFAULT_BACKOFF_MULTIPLIER,
            "jitter_min_s": DEFAULT_JITTER_MIN_S,
            "jitter_max_s": DEFAULT_JITTER_MAX_S,
            "max_redirects": DEFAULT_MAX_REDIRECTS,
        }
        for name, default in defaults.items():
            if getattr(self, name) <= 0:
                object.__setattr__(self, name, default)
        if not self.user_agents:
            object.__setattr__(self, "user_agents", DEFAULT_USER_AGENTS)
        else:
            object.__setattr__(self, "user_agents", tuple(self.user_agents))


@dataclass(frozen=True)
class CacheConfig:
    default_ttl_s: float = 7 * DAY_S
    cleanup_interval_s: float = 3600.0
    enabled: bool = True
    # Delete an expired row inline when a read finds it
    reclaim_on_read: bool = False


@dataclass(frozen=True)
class SourceConfig:
    client: ClientConfig
    cache: CacheConfig
    base_url: str
    robots_origin: str | None = None


@dataclass(frozen=True)
class TMDbConfig(SourceConfig):
    api_key: str = ""
    language: str = "zh-TW"
    languages: tuple[str, ...] = ("zh-TW", "zh-CN", "en")


@dataclass(frozen=True)
class AppConfig:
    douban: SourceConfig
    wikipedia: SourceConfig
    tmdb: TMDbConfig
    cache_db_path: str = CACHE_DB_PATH
    robots_user_agent: str = ROBOTS_USER_AGENT
    robots_ttl_s: float = ROBOTS_TTL_SECONDS
    robots_timeout_s: float = ROBOTS_TIMEOUT_SECONDS


def _api_user_agent() -> str:
    return f"{BOT_NAME}/1.0 (+{CONTACT_URL})"


def load_client_config(
    prefix: str,
    *,
    requests_per_second: float,
    timeout_s: float,
    max_retries: int,
    burst: int = 1,
    expected_content_type: str | None = "text/html",
    accept: str = HTML_ACCEPT,
    user_agents: tuple[str, ...] = DEFAULT_USER_AGENTS,
) -> ClientConfig:
    """
    Build a ClientConfig from ``{prefix}_*`` environment variables.

    Raises ConfigError on malformed values; intended for startup only.
    """
    ua_override = _getenv_list_str(f"{prefix}_USER_AGENTS", "", sep="|")
    return ClientConfig(
        requests_per_second=_getenv_float(f"{prefix}_REQUESTS_PER_SECOND", requests_per_second),
        burst=_getenv_int(f"{prefix}_BURST", burst),
        timeout_s=_getenv_float(f"{prefix}_TIMEOUT_SECONDS", timeout_s),
        max_retries=_getenv_int(f"{prefix}_MAX_RETRIES", max_retries),
        initial_backoff_s=_getenv_float(
            f"{prefix}_INITIAL_BACKOFF_SECONDS", DEFAULT_INITIAL_BACKOFF_S
        ),
        max_backoff_s=_getenv_float(f"{prefix}_MAX_BACKOFF_SECONDS", DEFAULT_MAX_BACKOFF_S),
        backoff_multiplier=_getenv_float(
            f"{prefix}_BACKOFF_MULTIPLIER", DEFAULT_BACKOFF_MULTIPLIER
        ),
        jitter_min_s=_getenv_float(f"{prefix}_JITTER_MIN_SECONDS", DEFAULT_JITTER_MIN_S),
        jitter_max_s=_getenv_float(f"{prefix}_JITTER_MAX_SECONDS", DEFAULT_JITTER_MAX_S),
        enabled=_getenv_bool(f"{prefix}_ENABLED", True),
        expected_content_type=expected_content_type,
        accept=accept,
        user_agents=tuple(ua_override) or user_agents,
    )


def load_cache_config(prefix: str, *, default_ttl_s: float) -> CacheConfig:
    return CacheConfig(
        default_ttl_s=_getenv_float(f"{prefix}_CACHE_TTL_SECONDS", default_ttl_s),
        cleanup_interval_s=_getenv_float(
            "CACHE_CLEANUP_INTERVAL_SECONDS", CACHE_CLEANUP_INTERVAL_SECONDS
        ),
        enabled=_getenv_bool(f"{prefix}_CACHE_ENABLED", True),
    )


def load_settings() -> AppConfig:
    """Read every source's configuration from the environment."""
    douban = SourceConfig(
        client=load_client_config(
            "DOUBAN",
            requests_per_second=0.5,
            timeout_s=30.0,
            max_retries=5,
        ),
        cache=load_cache_config("DOUBAN", default_ttl_s=7 * DAY_S),
        base_url=_getenv_str("DOUBAN_BASE_URL", "https://movie.douban.com"),
        robots_origin=_getenv_str("DOUBAN_ROBOTS_ORIGIN", "https://movie.douban.com"),
    )
    wikipedia = SourceConfig(
        client=load_client_config(
            "WIKIPEDIA",
            requests_per_second=1.0,
            timeout_s=10.0,
            max_retries=3,
            expected_content_type="application/json",
            accept=JSON_ACCEPT,
            user_agents=(_api_user_agent(),),
        ),
        cache=load_cache_config("WIKIPEDIA", default_ttl_s=7 * DAY_S),
        base_url=_getenv_str("WIKIPEDIA_BASE_URL", "https://zh.wikipedia.org/w/api.php"),
    )
    tmdb = TMDbConfig(
        client=load_client_config(
            "TMDB",
            # 40 requests per 10 seconds
            requests_per_second=4.0,
            burst=40,
            timeout_s=30.0,
            max_retries=3,
            expected_content_type="application/json",
            accept=JSON_ACCEPT,
            user_agents=(_api_user_agent(),),
        ),
        cache=load_cache_config("TMDB", default_ttl_s=DAY_S),
        base_url=_getenv_str("TMDB_BASE_URL", "https://api.themoviedb.org/3"),
        api_key=_getenv_str("TMDB_API_KEY", ""),
        language=_getenv_str("TMDB_LANGUAGE", "zh-TW"),
        languages=tuple(_getenv_list_str("TMDB_LANGUAGES", "zh-TW,zh-CN,en")),
    )
    return AppConfig(
        douban=douban,
        wikipedia=wikipedia,
        tmdb=tmdb,
        cache_db_path=_getenv_str("CACHE_DB_PATH", CACHE_DB_PATH),
        robots_user_agent=_getenv_str("ROBOTS_USER_AGENT", ROBOTS_USER_AGENT),
        robots_ttl_s=_getenv_float("ROBOTS_TTL_SECONDS", ROBOTS_TTL_SECONDS),
        robots_timeout_s=_getenv_float("ROBOTS_TIMEOUT_SECONDS", ROBOTS_TIMEOUT_SECONDS),
    )


__all__ = [
    "ClientConfig",
    "CacheConfig",
    "SourceConfig",
    "TMDbConfig",
    "AppConfig",
    "load_client_config",
    "load_cache_config",
    "load_settings",
    "BOT_NAME",
    "DEFAULT_USER_AGENTS",
    "HTML_ACCEPT",
    "JSON_ACCEPT",
    "ROBOTS_USER_AGENT",
    "ROBOTS_TTL_SECONDS",
    "ROBOTS_TIMEOUT_SECONDS",
    "CACHE_DB_PATH",
    "CACHE_CLEANUP_INTERVAL_SECONDS",
]
