# mediameta/fetch/__init__.py
"""
Polite fetch layer: token-bucket throttling, robots.txt enforcement, block
classification and a retrying httpx client.

Adapter-facing API:
  - Fetcher(config, guard=...).fetch(method, url, cancel=...) -> httpx.Response
  - build_fetcher(config, name=..., robots_origin=...)

Other public entry points:
  - PolitenessGuard, RobotsRules, parse_robots
  - RateLimiter, backoff_delay, cancellable_sleep
  - classify, Success, RetryableBlock, FatalBlock
  - ClientMetrics
"""

from .classify import FatalBlock, RetryableBlock, Success, classify
from .client import Fetcher, build_fetcher
from .metrics import ClientMetrics
from .robots import PolitenessGuard, RobotsRules, parse_robots
from .throttle import RateLimiter, backoff_delay, cancellable_sleep

__all__ = [
    # client
    "Fetcher",
    "build_fetcher",
    "ClientMetrics",
    # robots
    "PolitenessGuard",
    "RobotsRules",
    "parse_robots",
    # throttle
    "RateLimiter",
    "backoff_delay",
    "cancellable_sleep",
    # classification
    "classify",
    "Success",
    "RetryableBlock",
    "FatalBlock",
]
