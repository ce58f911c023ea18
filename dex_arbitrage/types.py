"""
Core data types for cross-DEX arbitrage scanning.
"""

import math
from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, NamedTuple

from .exceptions import InvalidInputError, InvalidQuoteError
from .utils import timestamp_to_iso, to_decimal


class Provenance(str, Enum):
    """Where a quote came from, ordered from most to least trustworthy."""

    LIVE = "live"
    FALLBACK = "fallback"
    SYNTHETIC = "synthetic"

    @property
    def rank(self) -> int:
        """Trust rank: 0 for live, higher is less trustworthy."""
        return _PROVENANCE_RANK[self]

    @classmethod
    def weakest(cls, *values: "Provenance") -> "Provenance":
        """Return the least trustworthy provenance among ``values``."""
        return max(values, key=lambda p: p.rank)


_PROVENANCE_RANK = {
    Provenance.LIVE: 0,
    Provenance.FALLBACK: 1,
    Provenance.SYNTHETIC: 2,
}


class RiskLevel(str, Enum):
    """Execution risk bucket derived from the net profit margin."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class TokenIdentity:
    """
    A token on a specific chain.

    Attributes:
        address: Token contract/mint address
        symbol: Ticker symbol (e.g., "ETH")
        decimals: Token decimals
        chain_id: Numeric chain id (1 ethereum, 56 bnb, 101 solana, ...)
    """

    address: str
    symbol: str
    decimals: int
    chain_id: int

    def __post_init__(self):
        if not self.address or not isinstance(self.address, str):
            raise InvalidInputError("Token address is required")
        if not self.symbol or not isinstance(self.symbol, str):
            raise InvalidInputError(
                "Token symbol is required", {"address": self.address}
            )
        if not isinstance(self.decimals, int) or self.decimals < 0:
            raise InvalidInputError(
                f"Token {self.symbol} has invalid decimals: {self.decimals}"
            )
        if not isinstance(self.chain_id, int):
            raise InvalidInputError(
                f"Token {self.symbol} has invalid chain id: {self.chain_id}"
            )


class CacheKey(NamedTuple):
    """Cache key for one token pair on one chain."""

    base_address: str
    quote_address: str
    chain_id: int

    @classmethod
    def for_pair(cls, base: TokenIdentity, quote: TokenIdentity) -> "CacheKey":
        return cls(base.address.lower(), quote.address.lower(), base.chain_id)


def pair_label(base: TokenIdentity, quote: TokenIdentity) -> str:
    """Human-readable pair label, e.g. ``"ETH/USDC"``."""
    return f"{base.symbol}/{quote.symbol}"


_NUMERIC_QUOTE_FIELDS = ("price", "fee_rate", "liquidity_usd", "gas_estimate_usd")


@dataclass(frozen=True)
class PriceQuote:
    """
    One venue's quote for a token pair.

    Numeric fields are coerced to Decimal on construction.

    Attributes:
        venue_name: Name of the DEX (e.g., "uniswap")
        price: Quote tokens per base token, > 0
        fee_rate: Trading fee as a fraction in [0, 1) (0.003 for 30 bps)
        liquidity_usd: Pool liquidity in USD, >= 0
        gas_estimate_usd: Gas cost estimate for one swap on this venue
        timestamp: Unix seconds when the quote was taken
        provenance: live, fallback or synthetic
    """

    venue_name: str
    price: Decimal
    fee_rate: Decimal
    liquidity_usd: Decimal
    gas_estimate_usd: Decimal = Decimal("0")
    timestamp: float = 0.0
    provenance: Provenance = Provenance.LIVE

    def __post_init__(self):
        if not self.venue_name:
            raise InvalidQuoteError("Quote is missing a venue name")
        try:
            for name in _NUMERIC_QUOTE_FIELDS:
                object.__setattr__(self, name, to_decimal(getattr(self, name)))
            object.__setattr__(self, "timestamp", float(self.timestamp))
        except (TypeError, ValueError, ArithmeticError) as e:
            raise InvalidQuoteError(
                f"Quote from {self.venue_name} has a non-numeric field: {e}",
                venue=self.venue_name,
            ) from e
        object.__setattr__(self, "provenance", Provenance(self.provenance))

        # Reject NaN and infinities before any comparison
        for name in _NUMERIC_QUOTE_FIELDS:
            if not getattr(self, name).is_finite():
                raise InvalidQuoteError(
                    f"Quote from {self.venue_name} has non-finite {name}",
                    venue=self.venue_name,
                )
        if not math.isfinite(self.timestamp):
            raise InvalidQuoteError(
                f"Quote from {self.venue_name} has non-finite timestamp",
                venue=self.venue_name,
            )

        if self.price <= 0:
            raise InvalidQuoteError(
                f"Quote from {self.venue_name} has non-positive price {self.price}",
                venue=self.venue_name,
            )
        if not (Decimal("0") <= self.fee_rate < Decimal("1")):
            raise InvalidQuoteError(
                f"Quote from {self.venue_name} has fee rate {self.fee_rate} outside [0, 1)",
                venue=self.venue_name,
            )
        if self.liquidity_usd < 0:
            raise InvalidQuoteError(
                f"Quote from {self.venue_name} has negative liquidity {self.liquidity_usd}",
                venue=self.venue_name,
            )
        if self.gas_estimate_usd < 0:
            raise InvalidQuoteError(
                f"Quote from {self.venue_name} has negative gas estimate",
                venue=self.venue_name,
            )

    def with_provenance(self, provenance: Provenance) -> "PriceQuote":
        """Return a copy retagged with ``provenance``."""
        return replace(self, provenance=provenance)


@dataclass(frozen=True)
class ArbitrageOpportunity:
    """
    A fee-adjusted buy-low/sell-high opportunity between two venues.

    Built wholesale by the opportunity finder and never mutated. All money
    values are Decimal USD; ``*_pct`` values are percent (1.5 means 1.5%).
    """

    id: str
    token_pair: str
    buy_venue: str
    sell_venue: str
    buy_price: Decimal
    sell_price: Decimal
    adjusted_buy_price: Decimal
    adjusted_sell_price: Decimal
    buy_price_impact_pct: Decimal
    sell_price_impact_pct: Decimal
    trading_fees: Decimal
    platform_fee: Decimal
    gas_fee: Decimal
    gross_profit: Decimal
    net_profit: Decimal
    net_profit_pct: Decimal
    investment_amount: Decimal
    liquidity_usd: Decimal
    network: str
    created_at: float

    # Inputs kept so the opportunity can be re-simulated at another size
    price_difference_pct: Decimal = Decimal("0")
    buy_fee_rate: Decimal = Decimal("0")
    sell_fee_rate: Decimal = Decimal("0")
    buy_liquidity_usd: Decimal = Decimal("0")
    sell_liquidity_usd: Decimal = Decimal("0")
    provenance: Provenance = Provenance.LIVE

    @property
    def total_fees(self) -> Decimal:
        return self.trading_fees + self.platform_fee + self.gas_fee

    @property
    def low_confidence(self) -> bool:
        """True when either side was priced from fallback or synthetic data."""
        return self.provenance is not Provenance.LIVE

    @property
    def risk_level(self) -> RiskLevel:
        if self.net_profit_pct >= 2:
            return RiskLevel.LOW
        if self.net_profit_pct >= 1:
            return RiskLevel.MEDIUM
        return RiskLevel.HIGH

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "token_pair": self.token_pair,
            "buy_venue": self.buy_venue,
            "sell_venue": self.sell_venue,
            "buy_price": float(self.buy_price),
            "sell_price": float(self.sell_price),
            "adjusted_buy_price": float(self.adjusted_buy_price),
            "adjusted_sell_price": float(self.adjusted_sell_price),
            "buy_price_impact_pct": float(self.buy_price_impact_pct),
            "sell_price_impact_pct": float(self.sell_price_impact_pct),
            "price_difference_pct": float(self.price_difference_pct),
            "trading_fees": float(self.trading_fees),
            "platform_fee": float(self.platform_fee),
            "gas_fee": float(self.gas_fee),
            "gross_profit": float(self.gross_profit),
            "net_profit": float(self.net_profit),
            "net_profit_pct": float(self.net_profit_pct),
            "investment_amount": float(self.investment_amount),
            "liquidity_usd": float(self.liquidity_usd),
            "network": self.network,
            "provenance": self.provenance.value,
            "low_confidence": self.low_confidence,
            "risk_level": self.risk_level.value,
            "created_at": timestamp_to_iso(self.created_at),
        }

    def format_log(self) -> str:
        """Format for consistent logging."""
        return (
            f"{self.token_pair} buy {self.buy_venue} @ {self.buy_price:.6f} -> "
            f"sell {self.sell_venue} @ {self.sell_price:.6f}: "
            f"Net {self.net_profit_pct:.3f}% "
            f"(Gross ${self.gross_profit:.2f} - "
            f"Fees ${self.trading_fees:.2f} - "
            f"Platform ${self.platform_fee:.2f} - "
            f"Gas ${self.gas_fee:.2f}) "
            f"= ${self.net_profit:.2f} @ ${self.investment_amount:.0f}"
            f" [{self.provenance.value}]"
        )
