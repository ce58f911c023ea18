"""
Unit tests for dex_arbitrage/cache.py

Freshness, request coalescing, retry/backoff and tiered fallback.
"""

import asyncio
from decimal import Decimal

import pytest
from prometheus_client import CollectorRegistry

from dex_arbitrage.cache import CacheState, PriceQuoteCache
from dex_arbitrage.exceptions import InvalidInputError, QuoteSourceUnavailableError
from dex_arbitrage.metrics import ScanMetrics
from dex_arbitrage.sources import (
    HistoricalQuoteTier,
    InMemoryQuoteStore,
    LiveQuoteTier,
    SyntheticQuoteTier,
)
from dex_arbitrage.types import Provenance, TokenIdentity
from fakes import FakeQuoteSource, live_rows

ROWS = live_rows(uniswap=3200, sushiswap=3210, curve=3195)


def make_cache(source, clock, **kwargs):
    history = kwargs.pop("history_store", None)
    fallback = kwargs.pop("fallback_tiers", None)
    if fallback is None:
        fallback = [SyntheticQuoteTier(clock=clock)]
    return PriceQuoteCache(
        live_tier=LiveQuoteTier(source, clock=clock),
        fallback_tiers=fallback,
        history_store=history,
        clock=clock,
        **kwargs,
    )


async def settle(rounds: int = 5):
    """Let background tasks and their done-callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class TestFreshness:
    @pytest.mark.asyncio
    async def test_fresh_entry_is_served_from_cache(self, weth, usdc, clock):
        source = FakeQuoteSource(ROWS)
        cache = make_cache(source, clock)

        assert cache.state(weth, usdc) is CacheState.EMPTY
        first = await cache.get(weth, usdc)
        clock.advance_time(19)
        second = await cache.get(weth, usdc)

        assert source.calls == 1
        assert first == second
        assert cache.state(weth, usdc) is CacheState.FRESH

    @pytest.mark.asyncio
    async def test_returned_map_is_a_copy(self, weth, usdc, clock):
        cache = make_cache(FakeQuoteSource(ROWS), clock)

        quotes = await cache.get(weth, usdc)
        quotes.pop("uniswap")

        assert "uniswap" in await cache.get(weth, usdc)

    @pytest.mark.asyncio
    async def test_stale_entry_served_while_revalidating(self, weth, usdc, clock):
        updated = live_rows(uniswap=3300, sushiswap=3310, curve=3295)
        source = FakeQuoteSource(ROWS, updated)
        cache = make_cache(source, clock)

        await cache.get(weth, usdc)
        clock.advance_time(21)
        assert cache.state(weth, usdc) is CacheState.STALE

        stale = await cache.get(weth, usdc)
        assert stale["uniswap"].price == Decimal("3200")

        await settle()
        assert source.calls == 2
        refreshed = await cache.get(weth, usdc)
        assert refreshed["uniswap"].price == Decimal("3300")
        assert cache.state(weth, usdc) is CacheState.FRESH

    @pytest.mark.asyncio
    async def test_stale_entry_blocks_without_revalidation(self, weth, usdc, clock):
        updated = live_rows(uniswap=3300, sushiswap=3310)
        source = FakeQuoteSource(ROWS, updated)
        cache = make_cache(source, clock, stale_while_revalidate=False)

        await cache.get(weth, usdc)
        clock.advance_time(21)
        quotes = await cache.get(weth, usdc)

        assert quotes["uniswap"].price == Decimal("3300")
        assert source.calls == 2

    @pytest.mark.asyncio
    async def test_force_refresh_bypasses_fresh_entry(self, weth, usdc, clock):
        source = FakeQuoteSource(ROWS)
        cache = make_cache(source, clock)

        await cache.get(weth, usdc)
        await cache.get(weth, usdc, force_refresh=True)

        assert source.calls == 2

    @pytest.mark.asyncio
    async def test_pairs_are_cached_independently(self, weth, usdc, wbtc, clock):
        source = FakeQuoteSource(ROWS)
        cache = make_cache(source, clock)

        await cache.get(weth, usdc)
        await cache.get(wbtc, usdc)

        assert source.calls == 2


class TestCoalescing:
    @pytest.mark.asyncio
    async def test_concurrent_reads_share_one_fetch(self, weth, usdc, clock):
        source = FakeQuoteSource(ROWS, gated=True)
        cache = make_cache(source, clock)

        readers = [asyncio.ensure_future(cache.get(weth, usdc)) for _ in range(10)]
        await settle()
        assert cache.is_fetching(weth, usdc)

        source.release.set()
        results = await asyncio.gather(*readers)

        assert source.calls == 1
        assert all(r == results[0] for r in results)
        assert not cache.is_fetching(weth, usdc)

    @pytest.mark.asyncio
    async def test_concurrent_refreshes_of_expired_key(self, weth, usdc, clock):
        source = FakeQuoteSource(ROWS)
        cache = make_cache(source, clock, stale_while_revalidate=False)
        await cache.get(weth, usdc)
        clock.advance_time(30)

        source.gated = True
        readers = [asyncio.ensure_future(cache.get(weth, usdc)) for _ in range(5)]
        await settle()
        source.release.set()
        await asyncio.gather(*readers)

        assert source.calls == 2

    @pytest.mark.asyncio
    async def test_cancelled_reader_does_not_cancel_shared_fetch(self, weth, usdc, clock):
        source = FakeQuoteSource(ROWS, gated=True)
        cache = make_cache(source, clock)

        first = asyncio.ensure_future(cache.get(weth, usdc))
        second = asyncio.ensure_future(cache.get(weth, usdc))
        await settle()
        first.cancel()
        source.release.set()

        quotes = await second
        assert set(quotes) == {"uniswap", "sushiswap", "curve"}
        assert first.cancelled()


class TestRetryAndFallback:
    @pytest.mark.asyncio
    async def test_retries_with_exponential_backoff(self, weth, usdc, clock):
        source = FakeQuoteSource(
            QuoteSourceUnavailableError("timeout"),
            QuoteSourceUnavailableError("timeout"),
            ROWS,
        )
        cache = make_cache(source, clock)

        quotes = await cache.get(weth, usdc)

        assert source.calls == 3
        assert clock.sleeps == [2.0, 4.0]
        assert all(q.provenance is Provenance.LIVE for q in quotes.values())
        assert cache.state(weth, usdc) is CacheState.FRESH

    @pytest.mark.asyncio
    async def test_synthetic_fallback_after_exhaustion(self, weth, usdc, clock):
        source = FakeQuoteSource(QuoteSourceUnavailableError("down"))
        cache = make_cache(source, clock)

        quotes = await cache.get(weth, usdc)

        assert source.calls == 3  # one attempt plus two retries
        assert set(quotes) == {"uniswap", "sushiswap", "curve"}
        assert all(q.provenance is Provenance.SYNTHETIC for q in quotes.values())
        # Degraded data is never cached
        assert cache.state(weth, usdc) is CacheState.EMPTY

    @pytest.mark.asyncio
    async def test_historical_fallback_preferred_over_synthetic(self, weth, usdc, clock):
        store = InMemoryQuoteStore()
        source = FakeQuoteSource(ROWS, QuoteSourceUnavailableError("down"))
        cache = make_cache(
            source,
            clock,
            history_store=store,
            fallback_tiers=[HistoricalQuoteTier(store), SyntheticQuoteTier(clock=clock)],
            max_retries=0,
        )

        await cache.get(weth, usdc)
        cache.invalidate(weth, usdc)
        quotes = await cache.get(weth, usdc)

        assert quotes["sushiswap"].price == Decimal("3210")
        assert all(q.provenance is Provenance.FALLBACK for q in quotes.values())

    @pytest.mark.asyncio
    async def test_unavailable_when_no_fallback_has_data(self, weth, usdc, clock):
        source = FakeQuoteSource(QuoteSourceUnavailableError("down", source="http"))
        cache = make_cache(
            source,
            clock,
            fallback_tiers=[HistoricalQuoteTier(InMemoryQuoteStore())],
            max_retries=1,
        )

        with pytest.raises(QuoteSourceUnavailableError) as exc_info:
            await cache.get(weth, usdc)

        assert exc_info.value.source == "http"
        assert clock.sleeps == [2.0]

    @pytest.mark.asyncio
    async def test_empty_live_result_falls_through(self, weth, usdc, clock):
        cache = make_cache(FakeQuoteSource({}), clock, fallback_tiers=[])

        assert await cache.get(weth, usdc) == {}

    @pytest.mark.asyncio
    async def test_failing_fallback_tier_is_skipped(self, weth, usdc, clock):
        class BrokenTier:
            name = "broken"

            async def resolve(self, base, quote):
                raise RuntimeError("store offline")

        source = FakeQuoteSource(QuoteSourceUnavailableError("down"))
        cache = make_cache(
            source,
            clock,
            fallback_tiers=[BrokenTier(), SyntheticQuoteTier(clock=clock)],
            max_retries=0,
        )

        quotes = await cache.get(weth, usdc)
        assert all(q.provenance is Provenance.SYNTHETIC for q in quotes.values())


class TestInvalidation:
    @pytest.mark.asyncio
    async def test_invalidate_forces_live_fetch(self, weth, usdc, clock):
        source = FakeQuoteSource(ROWS)
        cache = make_cache(source, clock)

        await cache.get(weth, usdc)
        cache.invalidate(weth, usdc)
        assert cache.state(weth, usdc) is CacheState.EMPTY

        await cache.get(weth, usdc)
        assert source.calls == 2

    @pytest.mark.asyncio
    async def test_fetch_finishing_after_invalidate_does_not_repopulate(
        self, weth, usdc, clock
    ):
        source = FakeQuoteSource(ROWS, gated=True)
        cache = make_cache(source, clock)

        reader = asyncio.ensure_future(cache.get(weth, usdc))
        await settle()
        cache.invalidate(weth, usdc)
        source.release.set()

        # The waiting reader still gets its data
        assert set(await reader) == {"uniswap", "sushiswap", "curve"}
        assert cache.entry(weth, usdc) is None

    @pytest.mark.asyncio
    async def test_clear(self, weth, usdc, wbtc, clock):
        cache = make_cache(FakeQuoteSource(ROWS), clock)
        await cache.get(weth, usdc)
        await cache.get(wbtc, usdc)

        cache.clear()

        assert cache.state(weth, usdc) is CacheState.EMPTY
        assert cache.state(wbtc, usdc) is CacheState.EMPTY


class TestValidation:
    @pytest.mark.asyncio
    async def test_missing_token(self, weth, clock):
        cache = make_cache(FakeQuoteSource(ROWS), clock)
        with pytest.raises(InvalidInputError):
            await cache.get(weth, None)

    @pytest.mark.asyncio
    async def test_same_token_twice(self, weth, clock):
        cache = make_cache(FakeQuoteSource(ROWS), clock)
        with pytest.raises(InvalidInputError):
            await cache.get(weth, weth)

    @pytest.mark.asyncio
    async def test_mismatched_chains(self, weth, clock):
        usdc_polygon = TokenIdentity(
            "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359", "USDC", 6, 137
        )
        cache = make_cache(FakeQuoteSource(ROWS), clock)
        with pytest.raises(InvalidInputError):
            await cache.get(weth, usdc_polygon)

    @pytest.mark.asyncio
    async def test_malformed_live_rows_do_not_abort_fetch(self, weth, usdc, clock):
        rows = live_rows(a=100, b=102)
        rows["c"] = {"price": 101, "timestamp": "not-a-time"}
        rows["d"] = {"price": 101, "fee_rate": float("nan")}
        cache = make_cache(FakeQuoteSource(rows), clock)

        quotes = await cache.get(weth, usdc)

        assert set(quotes) == {"a", "b"}
        assert all(q.provenance is Provenance.LIVE for q in quotes.values())


@pytest.mark.asyncio
async def test_cache_records_metrics(weth, usdc, clock):
    registry = CollectorRegistry()
    source = FakeQuoteSource(QuoteSourceUnavailableError("down"), ROWS)
    cache = make_cache(source, clock, metrics=ScanMetrics(registry), max_retries=1)

    await cache.get(weth, usdc)
    await cache.get(weth, usdc)

    assert registry.get_sample_value(
        "dex_arbitrage_cache_reads_total", {"state": "empty"}
    ) == 1.0
    assert registry.get_sample_value(
        "dex_arbitrage_cache_reads_total", {"state": "fresh"}
    ) == 1.0
    assert registry.get_sample_value(
        "dex_arbitrage_quote_fetches_total", {"tier": "live", "outcome": "error"}
    ) == 1.0
    assert registry.get_sample_value(
        "dex_arbitrage_quote_fetches_total", {"tier": "live", "outcome": "ok"}
    ) == 1.0
