"""
Wire the scanner components together from an EngineConfig.
"""

from dataclasses import dataclass
from typing import Optional

from .cache import PriceQuoteCache
from .config import ConfigError, EngineConfig
from .fees import FeeModel, StaticGasEstimator
from .finder import OpportunityFinder
from .interfaces import HistoricalQuoteStore, QuoteSource, SystemTimeProvider, TimeProvider
from .metrics import ScanMetrics
from .scanner import ScanOrchestrator
from .slippage import PriceImpactModel
from .sources import (
    HistoricalQuoteTier,
    HttpQuoteSource,
    InMemoryQuoteStore,
    LiveQuoteTier,
    SyntheticQuoteTier,
)
from .utils import get_logger

logger = get_logger(__name__)


@dataclass
class Engine:
    """Assembled scanner components."""

    config: EngineConfig
    fee_model: FeeModel
    impact_model: PriceImpactModel
    gas_estimator: StaticGasEstimator
    finder: OpportunityFinder
    cache: PriceQuoteCache
    orchestrator: ScanOrchestrator
    history_store: HistoricalQuoteStore
    metrics: Optional[ScanMetrics] = None


def build_engine(
    config: EngineConfig,
    quote_source: Optional[QuoteSource] = None,
    history_store: Optional[HistoricalQuoteStore] = None,
    clock: Optional[TimeProvider] = None,
    metrics: Optional[ScanMetrics] = None,
) -> Engine:
    """
    Build an engine with the configured pair already selected.

    Args:
        config: Validated configuration
        quote_source: Live source; an HttpQuoteSource on
            ``config.quote_source_url`` when omitted
        history_store: Historical store; in-memory when omitted
        clock: Time provider shared by all components
        metrics: Optional metrics sink

    Raises:
        ConfigError: If no live quote source is available
    """
    clock = clock or SystemTimeProvider()

    if quote_source is None:
        if not config.quote_source_url:
            raise ConfigError(
                "No live quote source: set quote_source.url or DEX_ARB_QUOTE_SOURCE_URL"
            )
        quote_source = HttpQuoteSource(
            config.quote_source_url, timeout_sec=config.quote_source_timeout_sec
        )
    history_store = history_store if history_store is not None else InMemoryQuoteStore()

    fee_model = FeeModel(
        platform_fee_pct=config.platform_fee_pct,
        fee_rates=config.venue_fee_rates,
        default_fee_rate=config.default_fee_rate,
    )
    impact_model = PriceImpactModel(
        model=config.impact_model,
        impact_coefficient=config.impact_coefficient,
        max_impact_pct=config.max_impact_pct,
    )
    gas_estimator = StaticGasEstimator(
        config.gas_networks,
        default_swap_usd=config.default_swap_gas_usd,
        default_approval_usd=config.default_approval_gas_usd,
    )
    finder = OpportunityFinder(
        fee_model=fee_model,
        impact_model=impact_model,
        min_liquidity_coverage=config.min_liquidity_coverage,
        clock=clock,
    )
    cache = PriceQuoteCache(
        live_tier=LiveQuoteTier(quote_source, fee_model=fee_model, clock=clock),
        fallback_tiers=[
            HistoricalQuoteTier(history_store, limit=config.history_limit),
            SyntheticQuoteTier(
                base_prices=config.synthetic_base_prices,
                default_price=config.synthetic_default_price,
                fee_model=fee_model,
                clock=clock,
            ),
        ],
        cache_duration_sec=config.cache_duration_sec,
        max_retries=config.max_retries,
        retry_delay_sec=config.retry_delay_sec,
        stale_while_revalidate=config.stale_while_revalidate,
        history_store=history_store,
        clock=clock,
        metrics=metrics,
    )
    orchestrator = ScanOrchestrator(
        cache=cache,
        finder=finder,
        gas_estimator=gas_estimator,
        clock=clock,
        interval_sec=config.interval_sec,
        max_backoff_sec=config.max_backoff_sec,
        default_investment_amount=config.investment_amount,
        default_min_profit_pct=config.min_profit_pct,
        metrics=metrics,
    )
    orchestrator.set_active_pair(config.base_token, config.quote_token)

    logger.info(
        f"Engine ready for {config.base_token.symbol}/{config.quote_token.symbol} "
        f"({config.impact_model} impact, ttl {config.cache_duration_sec:g}s)"
    )
    return Engine(
        config=config,
        fee_model=fee_model,
        impact_model=impact_model,
        gas_estimator=gas_estimator,
        finder=finder,
        cache=cache,
        orchestrator=orchestrator,
        history_store=history_store,
        metrics=metrics,
    )
