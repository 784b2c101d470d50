# mediameta/fetch/classify.py
"""
Pure response classification for the Fetcher's retry state machine.

    classify(response, expected_content_type) -> Success | RetryableBlock | FatalBlock

Policy:
  - 403 / 429 / 503                           -> RetryableBlock(kind="block")
      429 carries the server's Retry-After hint (seconds or HTTP-date)
  - 200 with the wrong content type           -> RetryableBlock(kind="block")
  - 404 / 410                                 -> FatalBlock (resource absent)
  - any other non-2xx                         -> RetryableBlock(kind="status")
  - everything else                           -> Success
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from email.utils import parsedate_to_datetime

import httpx

GONE_STATUSES = frozenset({404, 410})


@dataclass(frozen=True)
class Success:
    response: httpx.Response


@dataclass(frozen=True)
class RetryableBlock:
    reason: str
    status_code: int
    retry_after: float | None = None
    # "block": anti-scraping / throttling; "status": some other non-2xx
    kind: str = "block"


@dataclass(frozen=True)
class FatalBlock:
    reason: str
    status_code: int


Outcome = Success | RetryableBlock | FatalBlock


def parse_retry_after(value: str | None, *, now: float | None = None) -> float | None:
    """
    Parse a Retry-After header: delta-seconds or an HTTP-date.
    Returns seconds to wait (>= 0) or None if absent/unparsable.
    """
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        ts = parsedate_to_datetime(value).timestamp()
    except (TypeError, ValueError):
        return None
    if now is None:
        now = time.time()
    return max(0.0, ts - now)


def _media_type(content_type: str | None) -> str:
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def content_type_matches(content_type: str | None, expected: str | None) -> bool:
    if expected is None:
        return True
    return expected.lower() in _media_type(content_type)


def classify(response: httpx.Response, expected_content_type: str | None = None) -> Outcome:
    status = int(response.status_code)

    if status == 403:
        return RetryableBlock(reason="forbidden (403)", status_code=status)
    if status == 429:
        return RetryableBlock(
            reason="rate limited (429)",
            status_code=status,
            retry_after=parse_retry_after(response.headers.get("Retry-After")),
        )
    if status == 503:
        return RetryableBlock(reason="service unavailable (503)", status_code=status)

    if status in GONE_STATUSES:
        return FatalBlock(reason=f"not found ({status})", status_code=status)

    if not 200 <= status < 300:
        return RetryableBlock(
            reason=f"unexpected status ({status})", status_code=status, kind="status"
        )

    if status == 200:
        ct = response.headers.get("Content-Type")
        if not content_type_matches(ct, expected_content_type):
            # Most likely a CAPTCHA or login interstitial
            return RetryableBlock(
                reason=f"unexpected content type: {ct or '-'}", status_code=status
            )

    return Success(response=response)


__all__ = [
    "Success",
    "RetryableBlock",
    "FatalBlock",
    "Outcome",
    "classify",
    "parse_retry_after",
    "content_type_matches",
]
