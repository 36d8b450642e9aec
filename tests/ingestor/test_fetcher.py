"""Tests for the JSON fetcher and batch helper."""

from __future__ import annotations

import httpx
import pytest

from prediction_market_scanner.ingestor.fetcher import (
    Fetcher,
    PayloadUnavailableError,
    RateLimiter,
    run_in_batches,
)

URL = "https://gamma-api.polymarket.com/markets"


async def _no_sleep(_: float) -> None:
    return None


def _fetcher(handler) -> Fetcher:  # type: ignore[no-untyped-def]
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return Fetcher(client, requests_per_second=1000, sleep=_no_sleep)


class TestGetJson:
    @pytest.mark.asyncio
    async def test_decodes_json_with_params(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[{"id": 1}])

        fetcher = _fetcher(handler)
        assert await fetcher.get_json(URL, params={"limit": 5}) == [{"id": 1}]
        assert seen[0].url.params["limit"] == "5"
        assert fetcher.stats.succeeded == 1

    @pytest.mark.asyncio
    async def test_non_2xx_is_soft_null(self) -> None:
        fetcher = _fetcher(lambda request: httpx.Response(500, text="boom"))
        assert await fetcher.get_json(URL) is None
        assert fetcher.stats.non_2xx == 1

    @pytest.mark.asyncio
    async def test_bad_json_is_soft_null(self) -> None:
        fetcher = _fetcher(lambda request: httpx.Response(200, text="<html>"))
        assert await fetcher.get_json(URL) is None
        assert fetcher.stats.parse_errors == 1

    @pytest.mark.asyncio
    async def test_timeout_is_soft_null(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        fetcher = _fetcher(handler)
        assert await fetcher.get_json(URL) is None
        assert fetcher.stats.timeouts == 1

    @pytest.mark.asyncio
    async def test_transport_error_is_soft_null(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        fetcher = _fetcher(handler)
        assert await fetcher.get_json(URL) is None
        assert fetcher.stats.transport_errors == 1
        assert fetcher.stats.failed == 1

    @pytest.mark.asyncio
    async def test_does_not_close_injected_client(self) -> None:
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        await Fetcher(client).aclose()
        assert not client.is_closed
        await client.aclose()


class TestRunInBatches:
    @pytest.mark.asyncio
    async def test_results_in_input_order(self) -> None:
        async def double(x: int) -> int:
            return x * 2

        results = await run_in_batches([1, 2, 3, 4, 5], double, batch_size=2, sleep=_no_sleep)
        assert results == [(1, 2), (2, 4), (3, 6), (4, 8), (5, 10)]

    @pytest.mark.asyncio
    async def test_failures_are_returned_not_raised(self) -> None:
        async def fail_on_two(x: int) -> int:
            if x == 2:
                raise ValueError("two")
            return x

        results = await run_in_batches([1, 2, 3], fail_on_two, batch_size=3, sleep=_no_sleep)
        assert results[0] == (1, 1)
        assert isinstance(results[1][1], ValueError)
        assert results[2] == (3, 3)

    @pytest.mark.asyncio
    async def test_should_stop_checked_between_chunks(self) -> None:
        processed: list[int] = []

        async def record(x: int) -> int:
            processed.append(x)
            return x

        results = await run_in_batches(
            list(range(10)),
            record,
            batch_size=3,
            should_stop=lambda: len(processed) >= 4,
            sleep=_no_sleep,
        )
        # second chunk started before the stop condition held, so it drains
        assert processed == [0, 1, 2, 3, 4, 5]
        assert len(results) == 6

    @pytest.mark.asyncio
    async def test_delay_between_chunks(self) -> None:
        delays: list[float] = []

        async def sleep(seconds: float) -> None:
            delays.append(seconds)

        async def identity(x: int) -> int:
            return x

        await run_in_batches([1, 2, 3], identity, batch_size=1, delay_ms=250, sleep=sleep)
        assert delays == [0.25, 0.25]


class TestMisc:
    @pytest.mark.asyncio
    async def test_rate_limiter_waits_for_interval(self) -> None:
        waits: list[float] = []

        async def sleep(seconds: float) -> None:
            waits.append(seconds)

        limiter = RateLimiter(1, sleep=sleep)
        await limiter.acquire()
        await limiter.acquire()
        assert len(waits) == 1
        assert 0 < waits[0] <= 1.0

    def test_payload_unavailable_carries_url(self) -> None:
        error = PayloadUnavailableError(URL)
        assert error.url == URL
        assert URL in str(error)
