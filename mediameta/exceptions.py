# mediameta/exceptions.py
"""
Shared exception classes used across the codebase.

This module centralizes the fetch-layer error taxonomy so that source
adapters and the CLI can branch on a stable ``code`` instead of parsing
messages.

Retry policy by class:
    - BlockedError, UnexpectedStatusError, transport errors: retried by the
      Fetcher up to its budget, then wrapped in RetriesExhaustedError
    - ParseError, NotFoundError, RedirectLimitError: never retried
    - FetchCancelled: propagated verbatim, never retried
"""

from __future__ import annotations


class ConfigError(ValueError):
    """Raised at startup when an environment value cannot be parsed."""


class FetchError(Exception):
    """Base class for everything the fetch layer raises."""

    code = "FETCH_ERROR"


class BlockedError(FetchError):
    """
    Raised when politeness rules or anti-scraping defenses stop a request.

    Examples:
        - client administratively disabled (reason="disabled")
        - path disallowed by robots.txt (reason="robots-disallowed")
        - 403 / 429 / 503 responses
        - 200 with an unexpected content type (likely a CAPTCHA interstitial)
    """

    code = "BLOCKED"

    def __init__(
        self,
        reason: str,
        *,
        status_code: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        self.reason = reason
        self.status_code = status_code
        self.retry_after = retry_after
        msg = f"blocked - {reason}"
        if status_code is not None:
            msg = f"{msg} (status={status_code})"
        super().__init__(msg)


class ParseError(FetchError):
    """Raised when a payload is malformed or does not have the expected shape."""

    code = "PARSE_ERROR"

    def __init__(self, field: str, reason: str, *, snippet: str | None = None) -> None:
        self.field = field
        self.reason = reason
        self.snippet = snippet
        super().__init__(f"parse error for {field} - {reason}")


class NotFoundError(FetchError):
    """Raised when the remote resource does not exist."""

    code = "NOT_FOUND"

    def __init__(self, *, query: str | None = None, id: str | None = None) -> None:
        self.query = query
        self.id = id
        if id:
            msg = f"not found: {id}"
        else:
            msg = f"no results for query: {query}"
        super().__init__(msg)


class UnexpectedStatusError(FetchError):
    """A non-2xx status that is neither a block nor a not-found."""

    code = "UNEXPECTED_STATUS"

    def __init__(self, status_code: int, url: str | None = None) -> None:
        self.status_code = status_code
        self.url = url
        super().__init__(f"unexpected status code: {status_code}")


class FetchTimeout(FetchError):
    """A single attempt exceeded the configured timeout."""

    code = "TIMEOUT"


class RedirectLimitError(FetchError):
    """The redirect chain exceeded the configured hop cap."""

    code = "REDIRECT_LIMIT"


class FetchCancelled(FetchError):
    """The caller's cancel signal fired while the request was waiting or sleeping."""

    code = "CANCELLED"


class RetriesExhaustedError(FetchError):
    """
    Raised after every attempt failed. ``last_error`` is also chained as
    ``__cause__``; ``status_code`` is set when the last failure had one.
    """

    code = "RETRIES_EXHAUSTED"

    def __init__(self, attempts: int, last_error: BaseException | None) -> None:
        self.attempts = attempts
        self.last_error = last_error
        self.status_code = getattr(last_error, "status_code", None)
        if last_error is not None:
            msg = f"all {attempts} attempts failed: {last_error}"
        else:
            msg = f"all {attempts} attempts failed"
        super().__init__(msg)


__all__ = [
    "ConfigError",
    "FetchError",
    "BlockedError",
    "ParseError",
    "NotFoundError",
    "UnexpectedStatusError",
    "FetchTimeout",
    "RedirectLimitError",
    "FetchCancelled",
    "RetriesExhaustedError",
]
