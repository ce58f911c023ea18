"""
Fee and gas cost model for cross-DEX arbitrage.

Trading fees use each venue's own fee tier; the platform fee is a fixed
percentage of the invested amount. Gas costs come from a GasEstimator.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Mapping, Optional

from .exceptions import InvalidAmountError
from .types import PriceQuote
from .utils import get_logger, to_decimal

logger = get_logger(__name__)

# Default fee map for known venues (fraction of notional)
DEFAULT_FEE_RATES: Dict[str, Decimal] = {
    "uniswap": Decimal("0.003"),  # 0.30%
    "sushiswap": Decimal("0.003"),  # 0.30%
    "pancakeswap": Decimal("0.0025"),  # 0.25%
    "curve": Decimal("0.0004"),  # 0.04%
    "balancer": Decimal("0.002"),  # 0.20%
    "orca": Decimal("0.003"),
    "jupiter": Decimal("0.0035"),  # 0.35%
    "raydium": Decimal("0.003"),
    "quickswap": Decimal("0.003"),
    "1inch": Decimal("0.003"),
}
DEFAULT_FEE_RATE = Decimal("0.003")

# Platform fee as percent of the invested amount
DEFAULT_PLATFORM_FEE_PCT = Decimal("0.5")

NETWORK_NAMES: Dict[int, str] = {
    1: "ethereum",
    56: "bnb",
    137: "polygon",
    42161: "arbitrum",
    10: "optimism",
    8453: "base",
    101: "solana",
}

# USD cost per operation when no live gas data is available
DEFAULT_GAS_USD: Dict[str, Dict[str, Decimal]] = {
    "ethereum": {"swap": Decimal("5.0"), "approval": Decimal("1.5")},
    "bnb": {"swap": Decimal("0.3"), "approval": Decimal("0.1")},
    "polygon": {"swap": Decimal("0.05"), "approval": Decimal("0.02")},
    "arbitrum": {"swap": Decimal("0.1"), "approval": Decimal("0.03")},
    "optimism": {"swap": Decimal("0.1"), "approval": Decimal("0.03")},
    "base": {"swap": Decimal("0.05"), "approval": Decimal("0.02")},
    "solana": {"swap": Decimal("0.00025"), "approval": Decimal("0")},
}


def network_name(chain_id: int) -> str:
    """Map a chain id to the network name used in fee tables."""
    return NETWORK_NAMES.get(chain_id, "unknown")


@dataclass(frozen=True)
class FeeBreakdown:
    """All cost components for one buy/sell round trip, in USD."""

    trading: Decimal
    platform: Decimal
    gas: Decimal

    @property
    def total(self) -> Decimal:
        return self.trading + self.platform + self.gas


class FeeModel:
    """
    Pure fee calculations.

    Args:
        platform_fee_pct: Platform fee as percent of investment (0.5 = 0.5%)
        fee_rates: Per-venue fee rate overrides (merged over the defaults)
        default_fee_rate: Rate for venues missing from the table
    """

    def __init__(
        self,
        platform_fee_pct=DEFAULT_PLATFORM_FEE_PCT,
        fee_rates: Optional[Mapping[str, object]] = None,
        default_fee_rate=DEFAULT_FEE_RATE,
    ):
        self.platform_fee_pct = to_decimal(platform_fee_pct)
        self.default_fee_rate = to_decimal(default_fee_rate)
        self.fee_rates: Dict[str, Decimal] = dict(DEFAULT_FEE_RATES)
        for venue, rate in (fee_rates or {}).items():
            self.fee_rates[venue.lower()] = to_decimal(rate)

    def fee_rate_for(self, venue: str) -> Decimal:
        """Fee rate for a venue name (case-insensitive)."""
        return self.fee_rates.get(venue.lower(), self.default_fee_rate)

    def trading_fees(
        self,
        amount,
        buy_quote: PriceQuote,
        sell_quote: PriceQuote,
        sell_notional=None,
    ) -> Decimal:
        """
        Combined buy and sell trading fees in USD.

        The buy fee is charged on the invested amount at the buy venue's rate.
        The sell fee is charged on what is sold at the sell venue's rate; when
        ``sell_notional`` is not given it is approximated as the amount left
        after the buy fee.

        Raises:
            InvalidAmountError: If amount <= 0
        """
        amount_d = self._check_amount(amount)
        buy_fee = amount_d * buy_quote.fee_rate

        if sell_notional is None:
            sell_notional_d = amount_d - buy_fee
        else:
            sell_notional_d = self._check_amount(sell_notional)
        sell_fee = sell_notional_d * sell_quote.fee_rate

        return buy_fee + sell_fee

    def platform_fee(self, amount) -> Decimal:
        """
        Platform fee on the gross investment amount, regardless of venue.

        Raises:
            InvalidAmountError: If amount <= 0
        """
        amount_d = self._check_amount(amount)
        return amount_d * self.platform_fee_pct / Decimal("100")

    def fee_breakdown(
        self,
        amount,
        buy_quote: PriceQuote,
        sell_quote: PriceQuote,
        gas_fee,
        sell_notional=None,
    ) -> FeeBreakdown:
        return FeeBreakdown(
            trading=self.trading_fees(amount, buy_quote, sell_quote, sell_notional),
            platform=self.platform_fee(amount),
            gas=to_decimal(gas_fee),
        )

    @staticmethod
    def _check_amount(amount) -> Decimal:
        amount_d = to_decimal(amount)
        if not amount_d.is_finite() or amount_d <= 0:
            raise InvalidAmountError(
                f"Amount must be positive, got {amount}", amount=amount
            )
        return amount_d


class StaticGasEstimator:
    """
    Gas estimator backed by a per-network USD table.

    Args:
        table: Per-network overrides, ``{network: {"swap": usd, "approval": usd}}``
        default_swap_usd: Swap cost for unknown networks
        default_approval_usd: Approval cost for unknown networks
    """

    def __init__(
        self,
        table: Optional[Mapping[str, Mapping[str, object]]] = None,
        default_swap_usd=Decimal("1.0"),
        default_approval_usd=Decimal("0"),
    ):
        self.table: Dict[str, Dict[str, Decimal]] = {
            network: dict(costs) for network, costs in DEFAULT_GAS_USD.items()
        }
        for network, costs in (table or {}).items():
            entry = self.table.setdefault(network.lower(), {})
            for operation, usd in costs.items():
                entry[operation] = to_decimal(usd)
        self.defaults = {
            "swap": to_decimal(default_swap_usd),
            "approval": to_decimal(default_approval_usd),
        }

    async def estimate_gas(self, network: str, operation: str) -> Decimal:
        costs = self.table.get(network.lower(), {})
        if operation in costs:
            return costs[operation]
        logger.debug(f"No gas table entry for {network}/{operation}, using default")
        return self.defaults.get(operation, Decimal("0"))
