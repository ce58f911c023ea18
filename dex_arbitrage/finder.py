"""
Cross-venue opportunity finder.

Single place where arbitrage profit is computed. Every ordered venue pair
whose sell price beats its buy price is run through the price impact model
and the fee model; only candidates that stay profitable after all costs are
returned, best first.

Profit math for one candidate (all Decimal, USD):
    tokens_bought  = investment / adjusted_buy_price
    gross_proceeds = tokens_bought * adjusted_sell_price
    gross_profit   = gross_proceeds - investment
    net_profit     = gross_profit - trading_fees - platform_fee - gas_fee
    net_profit_pct = net_profit / investment * 100
"""

from decimal import Decimal, getcontext
from itertools import permutations
from typing import List, Mapping, Optional

from .exceptions import InsufficientQuotesError, InvalidInputError
from .fees import FeeModel
from .interfaces import SystemTimeProvider, TimeProvider
from .slippage import PriceImpactModel
from .types import ArbitrageOpportunity, PriceQuote, Provenance
from .utils import get_logger, to_decimal

# Set high precision for all decimal operations
getcontext().prec = 50

logger = get_logger(__name__)

HUNDRED = Decimal("100")


def make_opportunity_id(
    token_pair: str, buy_venue: str, sell_venue: str, scan_timestamp: float
) -> str:
    """
    Stable identifier for an opportunity within one scan.

    Venue pairs are unique per scan, so (pair, buy, sell, scan time) never
    collides even when many opportunities share the same millisecond.
    """
    pair_slug = token_pair.replace("/", "-")
    return f"{pair_slug}-{buy_venue}-{sell_venue}-{int(scan_timestamp * 1000)}"


def _ranking_key(opp: ArbitrageOpportunity):
    return (-opp.net_profit_pct, -opp.net_profit, f"{opp.buy_venue}->{opp.sell_venue}")


class OpportunityFinder:
    """
    Turn a venue -> quote map into ranked, fee-adjusted opportunities.

    Stateless apart from its injected models; never mutates the quotes it
    is given.

    Args:
        fee_model: Fee model (defaults to the standard fee table)
        impact_model: Price impact model (defaults to linear)
        min_liquidity_coverage: Skip pairs whose shallower pool holds less
            than this multiple of the investment (0 disables the guard)
        clock: Time provider used to stamp scans and simulations
    """

    def __init__(
        self,
        fee_model: Optional[FeeModel] = None,
        impact_model: Optional[PriceImpactModel] = None,
        min_liquidity_coverage=Decimal("0"),
        clock: Optional[TimeProvider] = None,
    ):
        self.fee_model = fee_model or FeeModel()
        self.impact_model = impact_model or PriceImpactModel()
        self.min_liquidity_coverage = to_decimal(min_liquidity_coverage)
        self.clock = clock or SystemTimeProvider()

    def find(
        self,
        quotes: Mapping[str, PriceQuote],
        token_pair: str,
        investment_amount,
        min_profit_pct,
        network: str,
        gas_estimate_usd,
        approval_gas_estimate_usd=Decimal("0"),
        scan_timestamp: Optional[float] = None,
    ) -> List[ArbitrageOpportunity]:
        """
        Find all profitable buy/sell venue pairs.

        Args:
            quotes: Venue name -> quote, all for ``token_pair`` on one chain
            token_pair: Pair label (e.g., "ETH/USDC")
            investment_amount: USD invested on the buy leg
            min_profit_pct: Minimum net profit percent to keep a candidate
            network: Network name recorded on each opportunity
            gas_estimate_usd: Swap gas cost in USD
            approval_gas_estimate_usd: Token approval gas cost in USD
            scan_timestamp: Scan time used for ids (defaults to now)

        Returns:
            Opportunities sorted by net profit percent, best first (may be empty)

        Raises:
            InvalidInputError: If investment_amount <= 0
            InsufficientQuotesError: If fewer than two venues are quoted
        """
        investment = to_decimal(investment_amount)
        if not investment.is_finite() or investment <= 0:
            raise InvalidInputError(
                f"Investment amount must be positive, got {investment_amount}"
            )
        if len(quotes) < 2:
            raise InsufficientQuotesError(
                f"Need quotes from at least 2 venues for {token_pair}, got {len(quotes)}",
                venue_count=len(quotes),
                token_pair=token_pair,
            )

        min_profit = to_decimal(min_profit_pct)
        gas_fee = to_decimal(gas_estimate_usd) + to_decimal(approval_gas_estimate_usd)
        if scan_timestamp is None:
            scan_timestamp = self.clock.current_timestamp()

        opportunities: List[ArbitrageOpportunity] = []
        venues = sorted(quotes)

        for buy_venue, sell_venue in permutations(venues, 2):
            buy_quote = quotes[buy_venue]
            sell_quote = quotes[sell_venue]

            # Strict: equal prices are never a candidate
            if not sell_quote.price > buy_quote.price:
                continue

            if buy_quote.liquidity_usd <= 0 or sell_quote.liquidity_usd <= 0:
                logger.debug(
                    f"Skipping {buy_venue}->{sell_venue}: no liquidity reported"
                )
                continue

            if self.min_liquidity_coverage > 0:
                shallow = min(buy_quote.liquidity_usd, sell_quote.liquidity_usd)
                if shallow < investment * self.min_liquidity_coverage:
                    logger.debug(
                        f"Skipping {buy_venue}->{sell_venue}: liquidity ${shallow:,.0f} "
                        f"below {self.min_liquidity_coverage}x coverage"
                    )
                    continue

            opp = self.evaluate(
                buy_quote,
                sell_quote,
                token_pair=token_pair,
                investment_amount=investment,
                network=network,
                gas_fee=gas_fee,
                created_at=scan_timestamp,
            )

            if opp.net_profit > 0 and opp.net_profit_pct >= min_profit:
                logger.debug(f"Candidate kept: {opp.format_log()}")
                opportunities.append(opp)
            else:
                logger.debug(f"Candidate dropped: {opp.format_log()}")

        opportunities.sort(key=_ranking_key)

        logger.info(
            f"{token_pair}: {len(opportunities)} opportunities across "
            f"{len(venues)} venues (min {min_profit}%)"
        )
        return opportunities

    def evaluate(
        self,
        buy_quote: PriceQuote,
        sell_quote: PriceQuote,
        token_pair: str,
        investment_amount,
        network: str,
        gas_fee,
        created_at: float,
    ) -> ArbitrageOpportunity:
        """
        Price one buy/sell pair without any profitability filtering.

        Raises:
            InvalidAmountError: If investment_amount <= 0
            InvalidLiquidityError: If either quote has no liquidity
        """
        investment = to_decimal(investment_amount)
        gas = to_decimal(gas_fee)

        adjustment = self.impact_model.slippage_adjusted_prices(
            buy_quote.price,
            sell_quote.price,
            buy_quote.liquidity_usd,
            sell_quote.liquidity_usd,
            investment,
        )

        tokens_bought = investment / adjustment.adjusted_buy_price
        gross_proceeds = tokens_bought * adjustment.adjusted_sell_price
        gross_profit = gross_proceeds - investment

        trading_fees = self.fee_model.trading_fees(
            investment, buy_quote, sell_quote, sell_notional=gross_proceeds
        )
        platform_fee = self.fee_model.platform_fee(investment)

        net_profit = gross_profit - trading_fees - platform_fee - gas
        net_profit_pct = net_profit / investment * HUNDRED
        price_difference_pct = (
            (sell_quote.price - buy_quote.price) / buy_quote.price * HUNDRED
        )

        return ArbitrageOpportunity(
            id=make_opportunity_id(
                token_pair, buy_quote.venue_name, sell_quote.venue_name, created_at
            ),
            token_pair=token_pair,
            buy_venue=buy_quote.venue_name,
            sell_venue=sell_quote.venue_name,
            buy_price=buy_quote.price,
            sell_price=sell_quote.price,
            adjusted_buy_price=adjustment.adjusted_buy_price,
            adjusted_sell_price=adjustment.adjusted_sell_price,
            buy_price_impact_pct=adjustment.buy_impact_pct,
            sell_price_impact_pct=adjustment.sell_impact_pct,
            trading_fees=trading_fees,
            platform_fee=platform_fee,
            gas_fee=gas,
            gross_profit=gross_profit,
            net_profit=net_profit,
            net_profit_pct=net_profit_pct,
            investment_amount=investment,
            liquidity_usd=min(buy_quote.liquidity_usd, sell_quote.liquidity_usd),
            network=network,
            created_at=created_at,
            price_difference_pct=price_difference_pct,
            buy_fee_rate=buy_quote.fee_rate,
            sell_fee_rate=sell_quote.fee_rate,
            buy_liquidity_usd=buy_quote.liquidity_usd,
            sell_liquidity_usd=sell_quote.liquidity_usd,
            provenance=Provenance.weakest(buy_quote.provenance, sell_quote.provenance),
        )

    def simulate(
        self,
        opportunity: ArbitrageOpportunity,
        investment_amount,
        created_at: Optional[float] = None,
    ) -> ArbitrageOpportunity:
        """
        Re-price an opportunity at a different trade size ("what-if").

        Uses the prices, fee rates, liquidity and gas recorded on the
        opportunity; no quotes are fetched. The result is returned even when
        it is no longer profitable.

        Raises:
            InvalidInputError: If investment_amount <= 0
        """
        investment = to_decimal(investment_amount)
        if not investment.is_finite() or investment <= 0:
            raise InvalidInputError(
                f"Investment amount must be positive, got {investment_amount}"
            )

        buy_quote = PriceQuote(
            venue_name=opportunity.buy_venue,
            price=opportunity.buy_price,
            fee_rate=opportunity.buy_fee_rate,
            liquidity_usd=opportunity.buy_liquidity_usd,
            timestamp=opportunity.created_at,
            provenance=opportunity.provenance,
        )
        sell_quote = PriceQuote(
            venue_name=opportunity.sell_venue,
            price=opportunity.sell_price,
            fee_rate=opportunity.sell_fee_rate,
            liquidity_usd=opportunity.sell_liquidity_usd,
            timestamp=opportunity.created_at,
            provenance=opportunity.provenance,
        )

        if created_at is None:
            created_at = self.clock.current_timestamp()

        return self.evaluate(
            buy_quote,
            sell_quote,
            token_pair=opportunity.token_pair,
            investment_amount=investment,
            network=opportunity.network,
            gas_fee=opportunity.gas_fee,
            created_at=created_at,
        )
