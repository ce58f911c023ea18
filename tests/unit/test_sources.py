"""
Unit tests for the quote tiers and quote collaborators.
"""

from decimal import Decimal

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from dex_arbitrage.exceptions import QuoteSourceUnavailableError
from dex_arbitrage.sources import (
    HistoricalQuoteTier,
    HttpQuoteSource,
    InMemoryQuoteStore,
    LiveQuoteTier,
    SyntheticQuoteTier,
)
from dex_arbitrage.types import Provenance, TokenIdentity
from fakes import FakeQuoteSource, make_quote


class TestLiveQuoteTier:
    @pytest.mark.asyncio
    async def test_rows_become_live_quotes(self, weth, usdc, clock):
        source = FakeQuoteSource(
            {
                "uniswap": {"price": 3200, "fee_rate": 0.003, "liquidity_usd": 500000},
                "curve": {"price": "3205.5"},
            }
        )
        tier = LiveQuoteTier(source, clock=clock)

        quotes = await tier.resolve(weth, usdc)

        assert set(quotes) == {"uniswap", "curve"}
        assert quotes["uniswap"].price == Decimal("3200")
        assert quotes["uniswap"].provenance is Provenance.LIVE
        # Missing fields fall back to the fee table and default liquidity
        assert quotes["curve"].fee_rate == Decimal("0.0004")
        assert quotes["curve"].liquidity_usd == Decimal("100000")
        assert quotes["curve"].timestamp == clock.current_timestamp()

    @pytest.mark.asyncio
    async def test_invalid_rows_are_dropped(self, weth, usdc, clock):
        source = FakeQuoteSource(
            {
                "good": {"price": 3200},
                "zero": {"price": 0},
                "missing": {"liquidity": 1000},
            }
        )
        quotes = await LiveQuoteTier(source, clock=clock).resolve(weth, usdc)

        assert list(quotes) == ["good"]

    @pytest.mark.asyncio
    async def test_malformed_numbers_are_dropped(self, weth, usdc, clock):
        source = FakeQuoteSource(
            {
                "a": {"price": 100},
                "b": {"price": 102},
                "bad_time": {"price": 101, "timestamp": "not-a-time"},
                "nan_fee": {"price": 101, "fee_rate": float("nan")},
                "inf_liquidity": {"price": 101, "liquidity_usd": float("inf")},
            }
        )
        quotes = await LiveQuoteTier(source, clock=clock).resolve(weth, usdc)

        assert set(quotes) == {"a", "b"}

    @pytest.mark.asyncio
    async def test_flagged_rows_keep_their_provenance(self, weth, usdc, clock):
        source = FakeQuoteSource(
            {
                "cached": {"price": 3200, "is_fallback": True},
                "mock": {"price": 3210, "is_mock": True},
            }
        )
        quotes = await LiveQuoteTier(source, clock=clock).resolve(weth, usdc)

        assert quotes["cached"].provenance is Provenance.FALLBACK
        assert quotes["mock"].provenance is Provenance.SYNTHETIC

    @pytest.mark.asyncio
    async def test_source_errors_propagate(self, weth, usdc):
        source = FakeQuoteSource(QuoteSourceUnavailableError("down"))
        with pytest.raises(QuoteSourceUnavailableError):
            await LiveQuoteTier(source).resolve(weth, usdc)


class TestHistoricalQuoteTier:
    @pytest.mark.asyncio
    async def test_most_recent_row_per_venue(self, weth, usdc):
        store = InMemoryQuoteStore()
        await store.record_quotes(
            "WETH/USDC", 1, {"uniswap": make_quote("uniswap", 3100, timestamp=100.0)}
        )
        await store.record_quotes(
            "WETH/USDC",
            1,
            {
                "uniswap": make_quote("uniswap", 3200, timestamp=200.0),
                "curve": make_quote("curve", 3190, timestamp=200.0),
            },
        )

        quotes = await HistoricalQuoteTier(store).resolve(weth, usdc)

        assert quotes["uniswap"].price == Decimal("3200")
        assert quotes["curve"].price == Decimal("3190")
        assert all(q.provenance is Provenance.FALLBACK for q in quotes.values())

    @pytest.mark.asyncio
    async def test_empty_store(self, weth, usdc):
        assert await HistoricalQuoteTier(InMemoryQuoteStore()).resolve(weth, usdc) == {}

    @pytest.mark.asyncio
    async def test_store_is_keyed_by_chain(self):
        store = InMemoryQuoteStore()
        await store.record_quotes("WETH/USDC", 1, {"a": make_quote("a", 1)})

        assert await store.get_recent_quotes("WETH/USDC", 137, 10) == []
        assert len(await store.get_recent_quotes("WETH/USDC", 1, 10)) == 1

    @pytest.mark.asyncio
    async def test_store_is_bounded(self):
        store = InMemoryQuoteStore(max_rows=3)
        for i in range(5):
            await store.record_quotes(
                "WETH/USDC", 1, {"a": make_quote("a", 100 + i, timestamp=float(i))}
            )

        rows = await store.get_recent_quotes("WETH/USDC", 1, 10)
        assert [q.price for q in rows] == [Decimal("104"), Decimal("103"), Decimal("102")]


class TestSyntheticQuoteTier:
    @pytest.mark.asyncio
    async def test_ethereum_venues_spread_around_base_price(self, weth, usdc, clock):
        quotes = await SyntheticQuoteTier(clock=clock).resolve(weth, usdc)

        assert list(quotes) == ["uniswap", "sushiswap", "curve"]
        assert quotes["uniswap"].price == Decimal("3136")
        assert quotes["sushiswap"].price == Decimal("3200")
        assert quotes["curve"].price == Decimal("3264")
        assert all(q.provenance is Provenance.SYNTHETIC for q in quotes.values())
        assert quotes["curve"].fee_rate == Decimal("0.0004")

    @pytest.mark.asyncio
    async def test_solana_venues(self):
        sol = TokenIdentity("So11111111111111111111111111111111111111112", "SOL", 9, 101)
        usdc_sol = TokenIdentity("EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v", "USDC", 6, 101)

        quotes = await SyntheticQuoteTier().resolve(sol, usdc_sol)

        assert list(quotes) == ["jupiter", "orca", "raydium"]
        assert quotes["orca"].price == Decimal("150")

    @pytest.mark.asyncio
    async def test_unknown_symbol_and_overrides(self, usdc):
        pepe = TokenIdentity("0x6982508145454Ce325dDbE47a25d4ec3d2311933", "PEPE", 18, 1)

        default = await SyntheticQuoteTier().resolve(pepe, usdc)
        override = await SyntheticQuoteTier(base_prices={"pepe": 2}).resolve(pepe, usdc)

        assert default["sushiswap"].price == Decimal("10")
        assert override["sushiswap"].price == Decimal("2")


class TestHttpQuoteSource:
    @pytest.mark.asyncio
    async def test_parses_prices(self, weth, usdc):
        seen = {}

        async def handler(request):
            seen.update(await request.json())
            return web.json_response(
                {
                    "prices": {
                        "uniswap": {
                            "price": 3200.5,
                            "liquidity": 2500000,
                            "tradingFee": 0.003,
                            "timestamp": 1700000000000,
                        },
                        "curve": {"price": 3199, "isFallback": True},
                    }
                }
            )

        app = web.Application()
        app.router.add_post("/prices", handler)
        async with TestServer(app) as server:
            source = HttpQuoteSource(str(server.make_url("/prices")))
            rows = await source.fetch_quotes(weth, usdc)

        assert seen["baseToken"]["symbol"] == "WETH"
        assert seen["quoteToken"]["chainId"] == 1
        assert rows["uniswap"]["price"] == 3200.5
        assert rows["uniswap"]["fee_rate"] == 0.003
        assert rows["uniswap"]["liquidity_usd"] == 2500000
        assert rows["uniswap"]["timestamp"] == 1700000000.0
        assert rows["curve"]["is_fallback"] is True

    @pytest.mark.asyncio
    async def test_row_with_bad_timestamp_is_skipped(self, weth, usdc):
        async def handler(request):
            return web.json_response(
                {
                    "prices": {
                        "uniswap": {"price": 3200, "timestamp": 1700000000000},
                        "curve": {"price": 3199, "timestamp": "yesterday"},
                    }
                }
            )

        app = web.Application()
        app.router.add_post("/prices", handler)
        async with TestServer(app) as server:
            source = HttpQuoteSource(str(server.make_url("/prices")))
            rows = await source.fetch_quotes(weth, usdc)

        assert list(rows) == ["uniswap"]

    @pytest.mark.asyncio
    async def test_http_error_is_unavailable(self, weth, usdc):
        async def handler(request):
            return web.Response(status=503)

        app = web.Application()
        app.router.add_post("/prices", handler)
        async with TestServer(app) as server:
            source = HttpQuoteSource(str(server.make_url("/prices")))
            with pytest.raises(QuoteSourceUnavailableError) as exc_info:
                await source.fetch_quotes(weth, usdc)

        assert exc_info.value.status_code == 503
        assert exc_info.value.source == "http"

    @pytest.mark.asyncio
    async def test_malformed_body_is_unavailable(self, weth, usdc):
        async def handler(request):
            return web.json_response({"error": "nope"})

        app = web.Application()
        app.router.add_post("/prices", handler)
        async with TestServer(app) as server:
            source = HttpQuoteSource(str(server.make_url("/prices")))
            with pytest.raises(QuoteSourceUnavailableError):
                await source.fetch_quotes(weth, usdc)
