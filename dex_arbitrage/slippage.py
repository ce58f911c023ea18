"""
Price impact (slippage) model for DEX trades.

Estimates how much worse than the quoted price a trade executes given its
size relative to pool liquidity. The default is a linear approximation; a
constant product (x * y = k) variant is available for closer AMM pricing.
Both are monotonic in trade size and vanish as liquidity grows.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Literal

from .exceptions import ConfigurationError, InvalidAmountError, InvalidLiquidityError
from .utils import get_logger, to_decimal

logger = get_logger(__name__)

ImpactModelKind = Literal["linear", "constant_product"]

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class SlippageAdjustment:
    """
    Slippage-adjusted prices for a buy leg and a sell leg.

    Impacts are percent values (0.1 means 0.1%).
    """

    adjusted_buy_price: Decimal
    adjusted_sell_price: Decimal
    buy_impact_pct: Decimal
    sell_impact_pct: Decimal


class PriceImpactModel:
    """
    Compute price impact and slippage-adjusted execution prices.

    Args:
        model: "linear" or "constant_product"
        impact_coefficient: Scales the impact; with 1.0 a linear trade of 1%
            of liquidity moves the price by 1%
        max_impact_pct: Upper bound on the impact of a single leg

    Example:
        >>> model = PriceImpactModel()
        >>> model.price_impact_pct(Decimal("1000"), Decimal("1000000")) == Decimal("0.1")
        True
    """

    def __init__(
        self,
        model: ImpactModelKind = "linear",
        impact_coefficient=Decimal("1.0"),
        max_impact_pct=Decimal("10"),
    ):
        if model not in ("linear", "constant_product"):
            raise ConfigurationError(
                f"Unknown price impact model '{model}' (must be linear or constant_product)"
            )
        self.model = model
        self.impact_coefficient = to_decimal(impact_coefficient)
        self.max_impact_pct = to_decimal(max_impact_pct)
        if self.impact_coefficient <= 0:
            raise ConfigurationError("impact_coefficient must be positive")
        if not (Decimal("0") < self.max_impact_pct < HUNDRED):
            raise ConfigurationError("max_impact_pct must be in (0, 100)")

    def price_impact_pct(self, trade_amount, liquidity) -> Decimal:
        """
        Price impact in percent for a trade of ``trade_amount`` USD.

        Raises:
            InvalidLiquidityError: If liquidity <= 0
            InvalidAmountError: If trade_amount <= 0
        """
        amount = to_decimal(trade_amount)
        liquidity_d = to_decimal(liquidity)

        if not liquidity_d.is_finite() or liquidity_d <= 0:
            raise InvalidLiquidityError(
                f"Liquidity must be positive, got {liquidity}", liquidity=liquidity
            )
        if not amount.is_finite() or amount <= 0:
            raise InvalidAmountError(
                f"Trade amount must be positive, got {trade_amount}",
                amount=trade_amount,
            )

        if self.model == "linear":
            fraction = amount / liquidity_d
        else:
            # Liquidity is split evenly across both reserves:
            # impact = 1 - out_actual / out_spot = amount / (reserve_in + amount)
            reserve_in = liquidity_d / Decimal("2")
            fraction = amount / (reserve_in + amount)

        impact = fraction * self.impact_coefficient * HUNDRED
        return min(impact, self.max_impact_pct)

    def slippage_adjusted_prices(
        self,
        buy_price,
        sell_price,
        buy_liquidity,
        sell_liquidity,
        trade_amount,
    ) -> SlippageAdjustment:
        """
        Adjust nominal prices for the impact of trading ``trade_amount``.

        The buyer pays more and the seller receives less:
        ``adjusted_buy = buy * (1 + impact/100)``,
        ``adjusted_sell = sell * (1 - impact/100)``.
        """
        buy_impact = self.price_impact_pct(trade_amount, buy_liquidity)
        sell_impact = self.price_impact_pct(trade_amount, sell_liquidity)

        adjusted_buy = to_decimal(buy_price) * (Decimal("1") + buy_impact / HUNDRED)
        adjusted_sell = to_decimal(sell_price) * (Decimal("1") - sell_impact / HUNDRED)

        logger.debug(
            f"Slippage: buy impact {float(buy_impact):.4f}%, "
            f"sell impact {float(sell_impact):.4f}% "
            f"for ${float(to_decimal(trade_amount)):,.2f}"
        )

        return SlippageAdjustment(
            adjusted_buy_price=adjusted_buy,
            adjusted_sell_price=adjusted_sell,
            buy_impact_pct=buy_impact,
            sell_impact_pct=sell_impact,
        )

    def max_trade_size(self, liquidity, max_impact_pct) -> Decimal:
        """
        Largest trade whose impact stays at or under ``max_impact_pct``.

        Uses binary search so it works for every model variant.
        """
        liquidity_d = to_decimal(liquidity)
        limit = to_decimal(max_impact_pct)
        if liquidity_d <= 0:
            raise InvalidLiquidityError(
                f"Liquidity must be positive, got {liquidity}", liquidity=liquidity
            )
        if limit >= self.max_impact_pct:
            # The cap makes every size acceptable
            return liquidity_d

        low = Decimal("0")
        high = liquidity_d
        for _ in range(40):
            mid = (low + high) / Decimal("2")
            if mid > 0 and self.price_impact_pct(mid, liquidity_d) <= limit:
                low = mid
            else:
                high = mid
        return low
