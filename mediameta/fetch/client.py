# mediameta/fetch/client.py
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from collections.abc import Mapping
from typing import Any

import httpx

from ..config import ClientConfig
from ..exceptions import (
    BlockedError,
    FetchCancelled,
    FetchTimeout,
    NotFoundError,
    ParseError,
    RedirectLimitError,
    RetriesExhaustedError,
    UnexpectedStatusError,
)
from .classify import FatalBlock, RetryableBlock, Success, classify
from .metrics import ClientMetrics, MetricsRecorder
from .robots import PolitenessGuard
from .throttle import RateLimiter, backoff_delay, cancellable_sleep

log = logging.getLogger(__name__)

# Only encodings httpx can decode without optional extras
ACCEPT_ENCODING = "gzip, deflate"

# Worker threads carrying in-flight requests for cancellable fetches
HTTP_WORKERS = 16

# How often a cancellable fetch re-checks its cancel event while a request is in flight
CANCEL_POLL_S = 0.02

# --------------------------------------------------------------------------------------------------
# Client
# --------------------------------------------------------------------------------------------------


class Fetcher:
    """
    Polite HTTP client shared by every source adapter.

    Flow per fetch():
      0) disabled?                    -> BlockedError("disabled"), no network
         guard denies the path?       -> BlockedError("robots-disallowed"), no network
      for attempt in 0..max_retries:
      1) limiter.wait(cancel)         -> FetchCancelled propagates as-is
      2) rotate User-Agent + content-negotiation headers
      3) HTTP call (timeout-bounded)  -> transport error: record, back off, retry
                                         cancel fires in flight: FetchCancelled
                                         too many redirects: RedirectLimitError
      4) classify(response)
           Success        -> return
           FatalBlock     -> NotFoundError
           RetryableBlock -> record, back off (cancel-aware), retry
      5) budget exhausted             -> RetriesExhaustedError(attempts, last cause)

    Lock-to-field mapping:
      _enabled_lock -> _enabled
      _ua_lock      -> _ua_index
      limiter, guard and metrics each carry their own lock.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        guard: PolitenessGuard | None = None,
        name: str = "fetcher",
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.config = config or ClientConfig()
        self.name = name
        self.guard = guard
        self.limiter = RateLimiter(self.config.requests_per_second, self.config.burst)
        self._metrics = MetricsRecorder()

        self._enabled = self.config.enabled
        self._enabled_lock = threading.Lock()

        self._ua_index = 0
        self._ua_lock = threading.Lock()

        self._client = httpx.Client(
            timeout=self.config.timeout_s,
            follow_redirects=True,
            max_redirects=self.config.max_redirects,
            transport=transport,
        )
        self._executor = ThreadPoolExecutor(
            max_workers=HTTP_WORKERS, thread_name_prefix=f"{name}-http"
        )

    # ---- state -----------------------------------------------------------------------

    def is_enabled(self) -> bool:
        with self._enabled_lock:
            return self._enabled

    def set_enabled(self, enabled: bool) -> None:
        with self._enabled_lock:
            self._enabled = bool(enabled)
        log.info("%s: enabled=%s", self.name, enabled)

    @property
    def metrics(self) -> ClientMetrics:
        return self._metrics.snapshot()

    def _next_user_agent(self) -> str:
        with self._ua_lock:
            agents = self.config.user_agents
            ua = agents[self._ua_index % len(agents)]
            self._ua_index = (self._ua_index + 1) % len(agents)
            return ua

    def _build_headers(self, extra: Mapping[str, str] | None) -> dict[str, str]:
        headers = {
            "User-Agent": self._next_user_agent(),
            "Accept": self.config.accept,
            "Accept-Language": self.config.accept_language,
            "Accept-Encoding": ACCEPT_ENCODING,
            "Connection": "keep-alive",
            "Upgrade-Insecure-Requests": "1",
        }
        if extra:
            headers.update(extra)
        return headers

    def _send(self, request: httpx.Request, cancel: threading.Event | None) -> httpx.Response:
        """
        Run one round trip. Without a cancel event this is a plain blocking send.

        With one, the send runs on the fetcher's worker pool and the caller waits on
        the future, re-checking ``cancel`` every CANCEL_POLL_S. On cancel the caller
        leaves at once; a response that arrives later is closed by the worker.
        """
        if cancel is None:
            return self._client.send(request)

        future = self._executor.submit(self._client.send, request)
        done = threading.Event()
        future.add_done_callback(lambda _f: done.set())
        while not done.wait(CANCEL_POLL_S):
            if cancel.is_set():
                if not future.cancel():
                    future.add_done_callback(_discard_late_response)
                raise FetchCancelled(f"cancelled during request: {request.url}")
        return future.result()

    # ---- core fetch ------------------------------------------------------------------

    def fetch(
        self,
        method: str,
        url: str,
        *,
        body: bytes | str | None = None,
        headers: Mapping[str, str] | None = None,
        cancel: threading.Event | None = None,
    ) -> httpx.Response:
        if not self.is_enabled():
            raise BlockedError("disabled")

        if self.guard is not None and not self.guard.check(url):
            raise BlockedError("robots-disallowed")

        cfg = self.config
        attempts = cfg.max_retries + 1
        backoff = cfg.initial_backoff_s
        last_error: BaseException | None = None

        for attempt in range(attempts):
            self.limiter.wait(cancel)

            self._metrics.record_request()
            retry_after: float | None = None
            try:
                request = self._client.build_request(
                    method, url, content=body, headers=self._build_headers(headers)
                )
                resp = self._send(request, cancel)
            except httpx.TooManyRedirects as exc:
                self._metrics.record_failure()
                raise RedirectLimitError(
                    f"stopped after {cfg.max_redirects} redirects: {url}"
                ) from exc
            except httpx.TimeoutException as exc:
                self._metrics.record_timeout()
                last_error = FetchTimeout(f"timed out after {cfg.timeout_s:g}s: {url}")
                last_error.__cause__ = exc
                log.warning(
                    "%s: request timed out attempt=%d url=%s", self.name, attempt, url
                )
            except httpx.RequestError as exc:
                self._metrics.record_failure()
                last_error = exc
                log.warning(
                    "%s: request failed attempt=%d url=%s error=%s", self.name, attempt, url, exc
                )
            else:
                if cancel is not None and cancel.is_set():
                    resp.close()
                    raise FetchCancelled(f"cancelled during request: {url}")

                outcome = classify(resp, cfg.expected_content_type)

                if isinstance(outcome, Success):
                    self._metrics.record_success()
                    return resp

                resp.close()

                if isinstance(outcome, FatalBlock):
                    log.info("%s: not found status=%d url=%s", self.name, outcome.status_code, url)
                    raise NotFoundError(id=url)

                if not isinstance(outcome, RetryableBlock):
                    raise TypeError(f"unknown classification: {outcome!r}")

                retry_after = outcome.retry_after
                if outcome.kind == "block":
                    self._metrics.record_blocked()
                    last_error = BlockedError(
                        outcome.reason,
                        status_code=outcome.status_code,
                        retry_after=outcome.retry_after,
                    )
                    log.warning(
                        "%s: request blocked attempt=%d status=%d reason=%s url=%s",
                        self.name,
                        attempt,
                        outcome.status_code,
                        outcome.reason,
                        url,
                    )
                else:
                    self._metrics.record_failure()
                    last_error = UnexpectedStatusError(outcome.status_code, url)
                    log.warning(
                        "%s: unexpected status attempt=%d status=%d url=%s",
                        self.name,
                        attempt,
                        outcome.status_code,
                        url,
                    )

            if attempt + 1 >= attempts:
                break

            self._metrics.record_retry()
            delay = backoff_delay(
                backoff,
                cap=cfg.max_backoff_s,
                jitter_min=cfg.jitter_min_s,
                jitter_max=cfg.jitter_max_s,
                retry_after=retry_after,
            )
            log.info(
                "%s: retrying attempt=%d backoff=%.3fs url=%s", self.name, attempt + 1, delay, url
            )
            if cancellable_sleep(delay, cancel):
                raise FetchCancelled(f"cancelled during backoff: {url}")
            backoff = min(backoff * cfg.backoff_multiplier, cfg.max_backoff_s)

        raise RetriesExhaustedError(attempts, last_error) from last_error

    # ----------------------------------------------------------------------------------
    # Convenience methods
    # ----------------------------------------------------------------------------------

    def get(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        cancel: threading.Event | None = None,
    ) -> httpx.Response:
        if params:
            url = str(httpx.URL(url, params=dict(params)))
        return self.fetch("GET", url, cancel=cancel)

    def get_text(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        cancel: threading.Event | None = None,
    ) -> str:
        return self.get(url, params=params, cancel=cancel).text

    def get_json(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        cancel: threading.Event | None = None,
    ) -> Any:
        resp = self.get(url, params=params, cancel=cancel)
        try:
            return resp.json()
        except ValueError as exc:
            raise ParseError("body", f"invalid JSON: {exc}", snippet=resp.text[:200]) from exc

    # ----------------------------------------------------------------------------------
    # Context manager
    # ----------------------------------------------------------------------------------

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
        self._client.close()

    def __enter__(self) -> Fetcher:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def _discard_late_response(future: Future) -> None:
    if future.cancelled() or future.exception() is not None:
        return
    future.result().close()


def build_fetcher(
    config: ClientConfig,
    *,
    name: str,
    robots_origin: str | None = None,
    robots_user_agent: str | None = None,
    robots_ttl_s: float | None = None,
    robots_timeout_s: float | None = None,
) -> Fetcher:
    """Wire a Fetcher with its own PolitenessGuard when a robots origin is given."""
    guard = None
    if robots_origin:
        guard = PolitenessGuard(
            robots_origin,
            user_agent=robots_user_agent,
            ttl_s=robots_ttl_s,
            timeout_s=robots_timeout_s,
        )
    return Fetcher(config, guard=guard, name=name)


__all__ = [
    "Fetcher",
    "build_fetcher",
    "ACCEPT_ENCODING",
]
