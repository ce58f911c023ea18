"""
Quote tiers and quote collaborators.

Quotes are resolved through an ordered chain of tiers:

1. LiveQuoteTier       - the live quote source (tagged ``live``)
2. HistoricalQuoteTier - most recent persisted quotes (tagged ``fallback``)
3. SyntheticQuoteTier  - placeholder prices from a base price table
                         (tagged ``synthetic``)

Each tier is independently usable; the PriceQuoteCache walks them in order.
"""

import asyncio
import math
from collections import defaultdict, deque
from decimal import Decimal
from typing import Any, Deque, Dict, List, Mapping, Optional, Protocol, Sequence

import aiohttp

from .exceptions import InvalidQuoteError, QuoteSourceUnavailableError
from .fees import FeeModel, network_name
from .interfaces import HistoricalQuoteStore, QuoteSource, TimeProvider
from .types import PriceQuote, Provenance, TokenIdentity, pair_label
from .utils import get_logger, to_decimal

logger = get_logger(__name__)

DEFAULT_LIQUIDITY_USD = Decimal("100000")
SYNTHETIC_LIQUIDITY_USD = Decimal("1000000")

# Placeholder USD prices per base symbol for the synthetic tier
DEFAULT_SYNTHETIC_BASE_PRICES: Dict[str, Decimal] = {
    "ETH": Decimal("3200"),
    "WETH": Decimal("3200"),
    "BTC": Decimal("65000"),
    "WBTC": Decimal("65000"),
    "SOL": Decimal("150"),
    "BNB": Decimal("550"),
}
DEFAULT_SYNTHETIC_PRICE = Decimal("10")

SYNTHETIC_VENUES_BY_NETWORK: Dict[str, List[str]] = {
    "solana": ["jupiter", "orca", "raydium"],
    "bnb": ["pancakeswap", "apeswap", "biswap"],
}
DEFAULT_SYNTHETIC_VENUES = ["uniswap", "sushiswap", "curve"]

# Spread applied to consecutive synthetic venues: -2%, 0, +2%
SYNTHETIC_SPREAD = Decimal("0.02")


class QuoteTier(Protocol):
    """One link in the quote fallback chain."""

    name: str

    async def resolve(
        self, base: TokenIdentity, quote: TokenIdentity
    ) -> Dict[str, PriceQuote]:
        """Return venue -> quote, or an empty dict when the tier has no data."""
        ...


class LiveQuoteTier:
    """
    Wrap a QuoteSource and turn its raw rows into validated live quotes.

    Rows that fail validation are skipped with a warning rather than failing
    the whole fetch.

    Args:
        source: Live quote source
        fee_model: Supplies fee rates when a row has none
        gas_estimate_usd: Per-swap gas estimate recorded on each quote
        clock: Stamps rows that carry no timestamp
    """

    name = "live"

    def __init__(
        self,
        source: QuoteSource,
        fee_model: Optional[FeeModel] = None,
        gas_estimate_usd=Decimal("0"),
        clock: Optional[TimeProvider] = None,
    ):
        self.source = source
        self.fee_model = fee_model or FeeModel()
        self.gas_estimate_usd = to_decimal(gas_estimate_usd)
        self.clock = clock

    async def resolve(
        self, base: TokenIdentity, quote: TokenIdentity
    ) -> Dict[str, PriceQuote]:
        """
        Fetch live quotes.

        Raises:
            QuoteSourceUnavailableError: If the source fails
        """
        raw = await self.source.fetch_quotes(base, quote)
        now = self.clock.current_timestamp() if self.clock else 0.0

        quotes: Dict[str, PriceQuote] = {}
        for venue, row in (raw or {}).items():
            try:
                quotes[venue] = self._to_quote(venue, row, now)
            except (InvalidQuoteError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Dropping invalid live quote from {venue}: {e}")
        return quotes

    def _to_quote(self, venue: str, row: Mapping[str, Any], now: float) -> PriceQuote:
        fee_rate = row.get("fee_rate", row.get("trading_fee"))
        liquidity = row.get("liquidity_usd", row.get("liquidity"))
        return PriceQuote(
            venue_name=venue,
            price=row["price"],
            fee_rate=(
                self.fee_model.fee_rate_for(venue) if fee_rate is None else fee_rate
            ),
            liquidity_usd=DEFAULT_LIQUIDITY_USD if not liquidity else liquidity,
            gas_estimate_usd=self.gas_estimate_usd,
            timestamp=row.get("timestamp") or now,
            provenance=_row_provenance(row),
        )


def _row_provenance(row: Mapping[str, Any]) -> Provenance:
    # Some sources flag their own degraded rows
    if row.get("is_mock"):
        return Provenance.SYNTHETIC
    if row.get("is_fallback"):
        return Provenance.FALLBACK
    return Provenance.LIVE


class HistoricalQuoteTier:
    """
    Read the most recent persisted quote per venue.

    Args:
        store: Historical quote store
        limit: How many recent rows to read
    """

    name = "historical"

    def __init__(self, store: HistoricalQuoteStore, limit: int = 20):
        self.store = store
        self.limit = limit

    async def resolve(
        self, base: TokenIdentity, quote: TokenIdentity
    ) -> Dict[str, PriceQuote]:
        rows = await self.store.get_recent_quotes(
            pair_label(base, quote), base.chain_id, self.limit
        )
        quotes: Dict[str, PriceQuote] = {}
        # Rows come newest first; keep the first seen per venue
        for row in rows:
            if row.venue_name not in quotes:
                quotes[row.venue_name] = row.with_provenance(Provenance.FALLBACK)

        if quotes:
            logger.info(
                f"Found {len(quotes)} venues with stored prices for {pair_label(base, quote)}"
            )
        return quotes


class SyntheticQuoteTier:
    """
    Placeholder quotes derived from a per-symbol base price table.

    Always produces data, so it terminates the fallback chain. Every quote
    is tagged ``synthetic`` so consumers can tell it is not real signal.
    """

    name = "synthetic"

    def __init__(
        self,
        base_prices: Optional[Mapping[str, object]] = None,
        default_price=DEFAULT_SYNTHETIC_PRICE,
        fee_model: Optional[FeeModel] = None,
        gas_estimate_usd=Decimal("0"),
        clock: Optional[TimeProvider] = None,
    ):
        self.base_prices: Dict[str, Decimal] = dict(DEFAULT_SYNTHETIC_BASE_PRICES)
        for symbol, price in (base_prices or {}).items():
            self.base_prices[symbol.upper()] = to_decimal(price)
        self.default_price = to_decimal(default_price)
        self.fee_model = fee_model or FeeModel()
        self.gas_estimate_usd = to_decimal(gas_estimate_usd)
        self.clock = clock

    def venues_for(self, chain_id: int) -> List[str]:
        return SYNTHETIC_VENUES_BY_NETWORK.get(
            network_name(chain_id), DEFAULT_SYNTHETIC_VENUES
        )

    async def resolve(
        self, base: TokenIdentity, quote: TokenIdentity
    ) -> Dict[str, PriceQuote]:
        base_price = self.base_prices.get(base.symbol.upper(), self.default_price)
        now = self.clock.current_timestamp() if self.clock else 0.0

        logger.warning(
            f"Generating synthetic prices for {pair_label(base, quote)} "
            f"(base price {base_price})"
        )

        quotes: Dict[str, PriceQuote] = {}
        for index, venue in enumerate(self.venues_for(base.chain_id)):
            modifier = Decimal("1") + (index - 1) * SYNTHETIC_SPREAD
            quotes[venue] = PriceQuote(
                venue_name=venue,
                price=base_price * modifier,
                fee_rate=self.fee_model.fee_rate_for(venue),
                liquidity_usd=SYNTHETIC_LIQUIDITY_USD,
                gas_estimate_usd=self.gas_estimate_usd,
                timestamp=now,
                provenance=Provenance.SYNTHETIC,
            )
        return quotes


class HttpQuoteSource:
    """
    Quote source backed by an HTTP price endpoint.

    POSTs ``{"baseToken": {...}, "quoteToken": {...}}`` and expects
    ``{"prices": {venue: {"price", "liquidity", "tradingFee", "timestamp"}}}``.

    Args:
        url: Endpoint URL
        timeout_sec: Total request timeout
        headers: Extra request headers (e.g., an API key)
        session: Shared aiohttp session; one is created per request if None
    """

    name = "http"

    def __init__(
        self,
        url: str,
        timeout_sec: float = 10.0,
        headers: Optional[Dict[str, str]] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.url = url
        self.timeout = aiohttp.ClientTimeout(total=timeout_sec)
        self.headers = headers or {}
        self._session = session

    @staticmethod
    def _token_payload(token: TokenIdentity) -> Dict[str, Any]:
        return {
            "address": token.address,
            "symbol": token.symbol,
            "decimals": token.decimals,
            "chainId": token.chain_id,
        }

    async def fetch_quotes(
        self, base: TokenIdentity, quote: TokenIdentity
    ) -> Dict[str, Dict[str, Any]]:
        payload = {
            "baseToken": self._token_payload(base),
            "quoteToken": self._token_payload(quote),
        }
        try:
            if self._session is not None:
                data = await self._post(self._session, payload)
            else:
                async with aiohttp.ClientSession(timeout=self.timeout) as session:
                    data = await self._post(session, payload)
        except aiohttp.ClientResponseError as e:
            raise QuoteSourceUnavailableError(
                f"Price endpoint returned HTTP {e.status}",
                source=self.name,
                endpoint=self.url,
                status_code=e.status,
            ) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise QuoteSourceUnavailableError(
                f"Price endpoint request failed: {e}",
                source=self.name,
                endpoint=self.url,
            ) from e

        prices = data.get("prices") if isinstance(data, dict) else None
        if not isinstance(prices, dict):
            raise QuoteSourceUnavailableError(
                "Price endpoint response has no 'prices' object",
                source=self.name,
                endpoint=self.url,
                details={"body": data},
            )

        rows: Dict[str, Dict[str, Any]] = {}
        for venue, info in prices.items():
            if not isinstance(info, dict):
                continue
            try:
                timestamp = _to_seconds(info.get("timestamp"))
            except (TypeError, ValueError) as e:
                logger.warning(f"Skipping {venue} price with bad timestamp: {e}")
                continue
            rows[venue] = {
                "price": info.get("price"),
                "fee_rate": info.get("tradingFee"),
                "liquidity_usd": info.get("liquidity"),
                "timestamp": timestamp,
                "is_fallback": bool(info.get("isFallback")),
                "is_mock": bool(info.get("isMock")),
            }
        return rows

    async def _post(self, session: aiohttp.ClientSession, payload: Dict[str, Any]):
        async with session.post(
            self.url, json=payload, headers=self.headers, timeout=self.timeout
        ) as response:
            response.raise_for_status()
            try:
                return await response.json(content_type=None)
            except ValueError as e:
                raise QuoteSourceUnavailableError(
                    f"Price endpoint returned invalid JSON: {e}",
                    source=self.name,
                    endpoint=self.url,
                    status_code=response.status,
                ) from e


def _to_seconds(timestamp) -> Optional[float]:
    """Endpoints report milliseconds; normalize to Unix seconds."""
    if timestamp is None:
        return None
    value = float(timestamp)
    if not math.isfinite(value):
        raise ValueError(f"timestamp {timestamp!r} is not finite")
    return value / 1000.0 if value > 1e11 else value


class InMemoryQuoteStore:
    """
    Bounded in-process historical quote store.

    Keeps the newest ``max_rows`` quotes per (pair, chain), newest first.
    """

    def __init__(self, max_rows: int = 200):
        self.max_rows = max_rows
        self._rows: Dict[tuple, Deque[PriceQuote]] = defaultdict(
            lambda: deque(maxlen=self.max_rows)
        )

    async def record_quotes(
        self, token_pair: str, chain_id: int, quotes: Mapping[str, PriceQuote]
    ) -> None:
        rows = self._rows[(token_pair, chain_id)]
        for quote in sorted(quotes.values(), key=lambda q: q.timestamp):
            rows.appendleft(quote)

    async def get_recent_quotes(
        self, token_pair: str, chain_id: int, limit: int
    ) -> List[PriceQuote]:
        rows = self._rows.get((token_pair, chain_id))
        if not rows:
            return []
        return list(rows)[:limit]


def describe_tiers(tiers: Sequence[QuoteTier]) -> str:
    return " -> ".join(tier.name for tier in tiers)
