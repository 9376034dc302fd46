"""
Bounded-concurrency request scheduler on top of httpx.

Every outbound fetch of a scan goes through one scheduler instance, which
enforces the global in-flight ceiling, paces dispatches with an adaptive
delay and requeues rate-limited requests at the front of the queue. Network
and decoding failures never raise: the caller receives ``None``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Mapping, Optional, Set

import httpx
from fake_useragent import UserAgent

from core.cancellation import ScanControl
from core.exponential_backoff import AdaptiveDelay, BackoffConfig, ErrorType
from utils.error_handling import ErrorReporter

DEFAULT_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

DEFAULT_HEADERS = {
    "Accept": "application/json, text/plain, */*",
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "no-cache",
}

EXPECT_JSON = "json"
EXPECT_TEXT = "text"
EXPECT_STATUS = "status"


@dataclass
class RequestStats:
    """Metrics for tracking request outcomes"""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    rate_limited: int = 0
    peak_active: int = 0
    failures: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    response_times: Deque[float] = field(default_factory=lambda: deque(maxlen=500))

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.successful_requests / self.total_requests

    @property
    def avg_response_time(self) -> float:
        if not self.response_times:
            return 0.0
        return sum(self.response_times) / len(self.response_times)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "rate_limited": self.rate_limited,
            "peak_active": self.peak_active,
            "failures": dict(self.failures),
            "success_rate": round(self.success_rate, 4),
            "avg_response_time": round(self.avg_response_time, 4),
        }


@dataclass
class _PendingRequest:
    method: str
    url: str
    params: Optional[Mapping[str, Any]]
    expect: str
    future: "asyncio.Future[Any]"
    rate_limit_retries: int = 0


class RequestScheduler:
    """Queue-based fetcher with a global concurrency ceiling and adaptive pacing."""

    def __init__(
        self,
        *,
        max_concurrent: int = 35,
        timeout: float = 8.0,
        backoff: Optional[BackoffConfig] = None,
        max_rate_limit_retries: int = 10,
        control: Optional[ScanControl] = None,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        proxy_url: Optional[str] = None,
        user_agent: Optional[str] = None,
        reporter: Optional[ErrorReporter] = None,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.logger = logging.getLogger(__name__)
        self.max_concurrent = max_concurrent
        self.timeout = timeout
        self.max_rate_limit_retries = max_rate_limit_retries
        self.control = control or ScanControl()
        self.delay = AdaptiveDelay(backoff or BackoffConfig())
        self.stats = RequestStats()
        self.reporter = reporter or ErrorReporter()

        self._queue: Deque[_PendingRequest] = deque()
        self._active = 0
        self._tasks: Set[asyncio.Task] = set()
        self._resume_watcher: Optional[asyncio.Task] = None
        self._dispatch_handle: Optional[asyncio.TimerHandle] = None
        self._owns_client = client is None

        headers = dict(DEFAULT_HEADERS)
        headers["User-Agent"] = user_agent or self._pick_user_agent()
        if client is None:
            client_kwargs: Dict[str, Any] = {
                "headers": headers,
                "timeout": httpx.Timeout(timeout),
                "follow_redirects": True,
                "max_redirects": 2,
                "limits": httpx.Limits(
                    max_connections=max(max_concurrent, 10),
                    max_keepalive_connections=10,
                ),
            }
            if transport is not None:
                client_kwargs["transport"] = transport
            elif proxy_url:
                client_kwargs["proxy"] = proxy_url
            client = httpx.AsyncClient(**client_kwargs)
        self.client = client

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "RequestScheduler":
        """Build a scheduler from settings; explicit keyword arguments win."""
        backoff = BackoffConfig(
            base_delay=settings.base_delay_seconds,
            max_delay=settings.max_delay_seconds,
        )
        kwargs.setdefault("proxy_url", settings.proxy_url)
        kwargs.setdefault("user_agent", settings.user_agent)
        return cls(
            max_concurrent=settings.max_concurrent,
            timeout=settings.request_timeout_seconds,
            backoff=backoff,
            max_rate_limit_retries=settings.max_rate_limit_retries,
            **kwargs,
        )

    def _pick_user_agent(self) -> str:
        try:
            return UserAgent().chrome
        except Exception as e:
            self.logger.warning(f"Failed to initialize UserAgent: {e}")
            return DEFAULT_USER_AGENT

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def active_requests(self) -> int:
        return self._active

    @property
    def pending_requests(self) -> int:
        return len(self._queue)

    async def fetch_json(self, url: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        """GET ``url`` and return the decoded JSON body, or ``None``."""
        return await self._submit("GET", url, params, EXPECT_JSON)

    async def fetch_text(self, url: str, params: Optional[Mapping[str, Any]] = None) -> Optional[str]:
        """GET ``url`` and return the raw body text, or ``None``."""
        return await self._submit("GET", url, params, EXPECT_TEXT)

    async def probe(self, url: str) -> bool:
        """HEAD ``url``; ``True`` only for a 2xx answer."""
        result = await self._submit("HEAD", url, None, EXPECT_STATUS)
        return bool(result)

    async def drain(self) -> None:
        """Wait for every queued and in-flight request to settle."""
        while self._queue or self._tasks:
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            elif self.control.paused:
                await self.control.wait_if_paused()
                self._dispatch()
            else:
                await asyncio.sleep(self.delay.current or 0)
                self._dispatch()

    async def aclose(self) -> None:
        if self._dispatch_handle is not None:
            self._dispatch_handle.cancel()
        if self._resume_watcher is not None and not self._resume_watcher.done():
            self._resume_watcher.cancel()
        for pending in self._queue:
            if not pending.future.done():
                pending.future.set_result(None)
        self._queue.clear()
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "RequestScheduler":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Queue machinery
    # ------------------------------------------------------------------

    async def _submit(
        self,
        method: str,
        url: str,
        params: Optional[Mapping[str, Any]],
        expect: str,
    ) -> Any:
        loop = asyncio.get_running_loop()
        pending = _PendingRequest(method, url, params, expect, loop.create_future())
        self._queue.append(pending)
        self._dispatch()
        return await pending.future

    def _dispatch(self) -> None:
        self._dispatch_handle = None
        if self.control.paused:
            self._watch_for_resume()
            return
        while self._queue and self._active < self.max_concurrent and not self.control.paused:
            pending = self._queue.popleft()
            self._active += 1
            self.stats.peak_active = max(self.stats.peak_active, self._active)
            task = asyncio.create_task(self._execute(pending))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    def _schedule_dispatch(self, delay: float) -> None:
        if self._dispatch_handle is not None:
            return
        loop = asyncio.get_running_loop()
        if delay > 0:
            self._dispatch_handle = loop.call_later(delay, self._dispatch)
        else:
            self._dispatch_handle = loop.call_soon(self._dispatch)

    def _watch_for_resume(self) -> None:
        if self._resume_watcher is not None and not self._resume_watcher.done():
            return

        async def _wait_and_dispatch() -> None:
            await self.control.wait_if_paused()
            self._dispatch()

        self._resume_watcher = asyncio.create_task(_wait_and_dispatch())

    async def _requeue_after(self, pending: _PendingRequest, delay: float) -> None:
        await asyncio.sleep(delay)
        self._queue.appendleft(pending)
        self._dispatch()

    def _fail(self, pending: _PendingRequest, kind: ErrorType, message: str) -> None:
        self.stats.failed_requests += 1
        self.stats.failures[kind.value] += 1
        self.reporter.report(kind.value, message, pending.url)
        if not pending.future.done():
            pending.future.set_result(False if pending.expect == EXPECT_STATUS else None)

    def _succeed(self, pending: _PendingRequest, value: Any) -> None:
        self.stats.successful_requests += 1
        if not pending.future.done():
            pending.future.set_result(value)

    async def _execute(self, pending: _PendingRequest) -> None:
        self.stats.total_requests += 1
        started = time.perf_counter()
        requeue_delay: Optional[float] = None
        try:
            response = await self.client.request(
                pending.method, pending.url, params=pending.params, timeout=self.timeout
            )
        except httpx.TimeoutException as e:
            self.delay.record_failure()
            self.logger.debug(f"Timeout for {pending.url}: {e}")
            self._fail(pending, ErrorType.TIMEOUT, str(e) or "timeout")
        except httpx.HTTPError as e:
            self.delay.record_failure()
            self.logger.debug(f"Request failed for {pending.url}: {e}")
            self._fail(pending, ErrorType.NETWORK, str(e) or type(e).__name__)
        except Exception as e:
            # Futures must always resolve; anything unexpected is a plain miss
            self.delay.record_failure()
            self.logger.warning(f"Unexpected error requesting {pending.url}: {e}")
            self._fail(pending, ErrorType.UNKNOWN, str(e))
        else:
            self.stats.response_times.append(time.perf_counter() - started)
            if response.status_code == 429:
                self.stats.rate_limited += 1
                if pending.rate_limit_retries < self.max_rate_limit_retries:
                    pending.rate_limit_retries += 1
                    requeue_delay = self.delay.record_rate_limit()
                    self.logger.debug(
                        f"429 for {pending.url}, requeue #{pending.rate_limit_retries} in {requeue_delay:.2f}s"
                    )
                else:
                    self.delay.record_failure()
                    self._fail(pending, ErrorType.RATE_LIMIT, "rate limit retries exhausted")
            elif response.is_success:
                self.delay.record_success()
                self._resolve_body(pending, response)
            else:
                self.delay.record_failure()
                self.logger.debug(f"HTTP {response.status_code} for {pending.url}")
                self._fail(
                    pending,
                    ErrorType.from_status(response.status_code),
                    f"HTTP {response.status_code}",
                )
        finally:
            self._active -= 1
            if requeue_delay is not None:
                task = asyncio.create_task(self._requeue_after(pending, requeue_delay))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
            self._schedule_dispatch(self.delay.current)

    def _resolve_body(self, pending: _PendingRequest, response: httpx.Response) -> None:
        if pending.expect == EXPECT_STATUS:
            self._succeed(pending, True)
        elif pending.expect == EXPECT_TEXT:
            self._succeed(pending, response.text)
        else:
            try:
                self._succeed(pending, response.json())
            except ValueError as e:
                self.logger.debug(f"Malformed JSON from {pending.url}: {e}")
                self._fail(pending, ErrorType.MALFORMED, "invalid JSON body")
