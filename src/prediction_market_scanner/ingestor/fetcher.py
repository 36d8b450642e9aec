"""Rate-limited, timeout-bounded JSON fetcher with a batch helper.

Fetch failures never raise: non-2xx responses, timeouts, transport errors
and undecodable bodies all come back as ``None`` (a soft null) so callers can
fall back to a stale cache entry or an empty collection. There is no retry
loop here; callers may simply invoke again.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

# Constants
DEFAULT_TIMEOUT_SECONDS = 8.0
DEFAULT_MAX_CONCURRENCY = 25
MAX_REQUESTS_PER_SECOND = 40

Sleep = Callable[[float], Awaitable[None]]


class FetcherError(Exception):
    """Base exception for fetcher errors."""


class PayloadUnavailableError(FetcherError):
    """Raised by adapters when a fetch produced a soft null.

    Raising (instead of caching the null) lets the TTL cache serve a stale
    entry and keeps failed fetches out of the cache.
    """

    def __init__(self, url: str) -> None:
        super().__init__(f"No payload from {url}")
        self.url = url


class RateLimiter:
    """Minimum-interval rate limiter for outbound requests."""

    def __init__(
        self,
        max_requests_per_second: float = MAX_REQUESTS_PER_SECOND,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """Initialize the rate limiter.

        Args:
            max_requests_per_second: Maximum request starts allowed per second.
            sleep: Awaitable sleep used while waiting for a slot.
        """
        self._min_interval = 1.0 / max_requests_per_second
        self._last_request_time: float = 0.0
        self._lock = asyncio.Lock()
        self._sleep = sleep

    async def acquire(self) -> None:
        """Wait until a request slot is available."""
        async with self._lock:
            elapsed = time.monotonic() - self._last_request_time
            if elapsed < self._min_interval:
                await self._sleep(self._min_interval - elapsed)
            self._last_request_time = time.monotonic()


@dataclass
class FetchStats:
    """Counters for fetch outcomes."""

    requests: int = 0
    succeeded: int = 0
    non_2xx: int = 0
    timeouts: int = 0
    transport_errors: int = 0
    parse_errors: int = 0

    @property
    def failed(self) -> int:
        return self.non_2xx + self.timeouts + self.transport_errors + self.parse_errors


async def run_in_batches(
    items: Sequence[T],
    fn: Callable[[T], Awaitable[R]],
    *,
    batch_size: int,
    delay_ms: int = 0,
    should_stop: Callable[[], bool] | None = None,
    sleep: Sleep = asyncio.sleep,
) -> list[tuple[T, R | BaseException]]:
    """Run ``fn`` over ``items`` in concurrent chunks.

    Items are split into chunks of ``batch_size``; every call inside a chunk
    runs concurrently and the whole chunk is awaited before the next one
    starts, with ``delay_ms`` between chunks. ``should_stop`` is consulted
    only between chunks, so a chunk that has started always drains.

    Args:
        items: Inputs in processing order.
        fn: Coroutine function applied to each item.
        batch_size: Chunk size (values below 1 are treated as 1).
        delay_ms: Pause between chunks in milliseconds.
        should_stop: Optional predicate checked before each chunk.
        sleep: Awaitable sleep used for the inter-chunk delay.

    Returns:
        ``(item, result)`` pairs in input order for every processed item.
        A failed call yields its exception as the result.
    """
    size = max(1, batch_size)
    results: list[tuple[T, R | BaseException]] = []

    for start in range(0, len(items), size):
        if should_stop is not None and should_stop():
            logger.info("Batch run stopped after %d of %d items", start, len(items))
            break
        if start > 0 and delay_ms > 0:
            await sleep(delay_ms / 1000.0)

        chunk = items[start : start + size]
        outcomes = await asyncio.gather(*(fn(item) for item in chunk), return_exceptions=True)
        results.extend(zip(chunk, outcomes, strict=True))

    return results


class Fetcher:
    """Bounded-concurrency JSON fetcher over ``httpx.AsyncClient``.

    Every request passes through a semaphore (max in-flight requests) and a
    rate limiter (minimum spacing between request starts) and carries a hard
    timeout.

    Example:
        ```python
        fetcher = Fetcher(timeout=8.0, max_concurrency=25)
        markets = await fetcher.get_json(
            "https://gamma-api.polymarket.com/markets",
            params={"closed": "false", "limit": 50},
        )
        if markets is None:
            ...  # soft null: fall back to cache or empty
        await fetcher.aclose()
        ```
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        requests_per_second: float = MAX_REQUESTS_PER_SECOND,
        user_agent: str | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """Initialize the fetcher.

        Args:
            client: Pre-built client (tests pass one with a MockTransport).
            timeout: Per-request timeout in seconds.
            max_concurrency: Maximum simultaneous requests.
            requests_per_second: Request start rate.
            user_agent: Optional User-Agent header for an owned client.
            sleep: Awaitable sleep used for rate limiting and batch delays.
        """
        headers = {"User-Agent": user_agent} if user_agent else None
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(headers=headers, follow_redirects=True)
        self._timeout = timeout
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._rate_limiter = RateLimiter(requests_per_second, sleep=sleep)
        self._sleep = sleep
        self._stats = FetchStats()

    @property
    def stats(self) -> FetchStats:
        return self._stats

    async def get_json(
        self,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any | None:
        """GET ``url`` and decode its JSON body.

        Args:
            url: Absolute URL.
            params: Optional query parameters.
            timeout: Override for the default per-request timeout.

        Returns:
            Decoded JSON value, or None on non-2xx, timeout, transport
            failure or an undecodable body.
        """
        self._stats.requests += 1
        async with self._semaphore:
            await self._rate_limiter.acquire()
            try:
                response = await self._client.get(
                    url, params=params, timeout=timeout or self._timeout
                )
            except httpx.TimeoutException:
                self._stats.timeouts += 1
                logger.warning("Timeout fetching %s", url)
                return None
            except httpx.HTTPError as e:
                self._stats.transport_errors += 1
                logger.warning("Transport error fetching %s: %s", url, e)
                return None

        if not response.is_success:
            self._stats.non_2xx += 1
            logger.warning("HTTP %d from %s", response.status_code, url)
            return None

        try:
            payload = response.json()
        except ValueError:
            self._stats.parse_errors += 1
            logger.warning("Undecodable JSON body from %s", url)
            return None

        self._stats.succeeded += 1
        return payload

    async def batch(
        self,
        items: Sequence[T],
        fn: Callable[[T], Awaitable[R]],
        *,
        batch_size: int,
        delay_ms: int = 0,
        should_stop: Callable[[], bool] | None = None,
    ) -> list[tuple[T, R | BaseException]]:
        """Run ``fn`` over ``items`` in chunks; see :func:`run_in_batches`."""
        return await run_in_batches(
            items,
            fn,
            batch_size=batch_size,
            delay_ms=delay_ms,
            should_stop=should_stop,
            sleep=self._sleep,
        )

    async def sleep_ms(self, delay_ms: int) -> None:
        if delay_ms > 0:
            await self._sleep(delay_ms / 1000.0)

    async def aclose(self) -> None:
        """Close the underlying client if this fetcher created it."""
        if self._owns_client:
            await self._client.aclose()
