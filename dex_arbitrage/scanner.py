"""
Scan orchestration.

Pulls quotes for the active token pair through the PriceQuoteCache, runs the
OpportunityFinder and publishes the ranked result with a timestamp. Scans
run on demand or on a PeriodicScheduler; overlapping triggers are coalesced
and repeated failures back off.
"""

import asyncio
from collections import Counter
from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Tuple,
)

from .cache import PriceQuoteCache, validate_pair
from .exceptions import DexArbitrageError, InvalidInputError
from .fees import network_name
from .finder import OpportunityFinder
from .interfaces import GasEstimator, SystemTimeProvider, TimeProvider
from .scheduler import PeriodicScheduler
from .types import ArbitrageOpportunity, PriceQuote, Provenance, TokenIdentity, pair_label
from .utils import format_duration, get_logger, to_decimal

if TYPE_CHECKING:
    from .metrics import ScanMetrics

logger = get_logger(__name__)

DEFAULT_SCAN_INTERVAL_SEC = 30.0
DEFAULT_MAX_BACKOFF_SEC = 300.0
MAX_BACKOFF_EXPONENT = 32


@dataclass(frozen=True)
class ScanRequest:
    """The pair and trade parameters being scanned."""

    base: TokenIdentity
    quote: TokenIdentity
    investment_amount: Decimal
    min_profit_pct: Decimal

    @property
    def token_pair(self) -> str:
        return pair_label(self.base, self.quote)


@dataclass(frozen=True)
class ScanError:
    """Structured description of why a scan produced no result."""

    kind: str
    message: str
    details: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_exception(cls, error: Exception) -> "ScanError":
        details = getattr(error, "details", None) or {}
        return cls(kind=type(error).__name__, message=str(error), details=dict(details))


@dataclass(frozen=True)
class ScanResult:
    """
    One published scan.

    Attributes:
        token_pair: Pair label
        opportunities: Ranked opportunities, best first
        quotes: Venue -> quote snapshot the scan was computed from
        last_scanned: Unix seconds when the scan finished
        error: Set when the scan failed; opportunities are then empty
    """

    token_pair: str
    opportunities: Tuple[ArbitrageOpportunity, ...]
    quotes: Mapping[str, PriceQuote]
    last_scanned: float
    error: Optional[ScanError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def provenance_counts(self) -> Dict[str, int]:
        return dict(Counter(q.provenance.value for q in self.quotes.values()))

    @property
    def low_confidence(self) -> bool:
        """True when any quote behind the scan is fallback or synthetic data."""
        return any(q.provenance is not Provenance.LIVE for q in self.quotes.values())


ScanListener = Callable[[ScanResult], None]


class ScanOrchestrator:
    """
    Drive scans for one active token pair.

    Args:
        cache: Quote cache
        finder: Opportunity finder
        gas_estimator: Supplies swap and approval gas costs in USD
        clock: Time provider
        interval_sec: Delay between automatic scans
        max_backoff_sec: Cap on the delay after repeated failures
        default_investment_amount: Used when a request gives no amount
        default_min_profit_pct: Used when a request gives no threshold
        metrics: Optional metrics sink
    """

    def __init__(
        self,
        cache: PriceQuoteCache,
        finder: OpportunityFinder,
        gas_estimator: GasEstimator,
        clock: Optional[TimeProvider] = None,
        interval_sec: float = DEFAULT_SCAN_INTERVAL_SEC,
        max_backoff_sec: float = DEFAULT_MAX_BACKOFF_SEC,
        default_investment_amount=Decimal("1000"),
        default_min_profit_pct=Decimal("0.5"),
        metrics: Optional["ScanMetrics"] = None,
    ):
        self.cache = cache
        self.finder = finder
        self.gas_estimator = gas_estimator
        self.clock = clock or SystemTimeProvider()
        self.interval_sec = interval_sec
        self.max_backoff_sec = max_backoff_sec
        self.default_investment_amount = to_decimal(default_investment_amount)
        self.default_min_profit_pct = to_decimal(default_min_profit_pct)
        self.metrics = metrics

        self.consecutive_failures = 0
        self._active: Optional[ScanRequest] = None
        self._generation = 0
        self._latest: Optional[ScanResult] = None
        self._listeners: List[ScanListener] = []

        self._scan_task: Optional[asyncio.Task] = None
        self._rerun_pending = False
        self._rerun_force = False
        self._scheduler: Optional[PeriodicScheduler] = None

    # ------------------------------------------------------------------
    # Direct API
    # ------------------------------------------------------------------

    async def scan(
        self,
        base: TokenIdentity,
        quote: TokenIdentity,
        investment_amount=None,
        min_profit_pct=None,
        force_refresh: bool = False,
    ) -> List[ArbitrageOpportunity]:
        """
        Scan a pair once and return ranked opportunities (possibly empty).

        Raises:
            InvalidInputError: If tokens are missing/invalid or the amount <= 0
            InsufficientQuotesError: If fewer than two venues quote the pair
            QuoteSourceUnavailableError: If no quotes could be obtained at all
        """
        request = self._build_request(base, quote, investment_amount, min_profit_pct)
        _, opportunities = await self._collect(request, force_refresh)
        return opportunities

    def simulate(
        self, opportunity: ArbitrageOpportunity, investment_amount
    ) -> ArbitrageOpportunity:
        """Re-price an opportunity at another trade size without rescanning."""
        return self.finder.simulate(opportunity, investment_amount)

    # ------------------------------------------------------------------
    # Active pair and published state
    # ------------------------------------------------------------------

    @property
    def active_request(self) -> Optional[ScanRequest]:
        return self._active

    @property
    def latest(self) -> Optional[ScanResult]:
        return self._latest

    @property
    def last_scanned(self) -> Optional[float]:
        return self._latest.last_scanned if self._latest else None

    def set_active_pair(
        self,
        base: TokenIdentity,
        quote: TokenIdentity,
        investment_amount=None,
        min_profit_pct=None,
    ) -> ScanRequest:
        """
        Select the pair to scan.

        Results of scans started for a previous selection are discarded
        when they complete.
        """
        request = self._build_request(base, quote, investment_amount, min_profit_pct)
        if request != self._active:
            self._generation += 1
            self._active = request
            self._latest = None
            self.consecutive_failures = 0
            logger.info(
                f"Active pair set to {request.token_pair} "
                f"(${request.investment_amount}, min {request.min_profit_pct}%)"
            )
        return request

    def subscribe(self, listener: ScanListener) -> Callable[[], None]:
        """Register a callback for published results; returns an unsubscribe."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Triggered scans
    # ------------------------------------------------------------------

    async def trigger(self, force_refresh: bool = False) -> Optional[ScanResult]:
        """
        Scan the active pair (one tick).

        If a scan is already running, no second scan is started: exactly one
        rerun is queued and the caller waits for it. Never raises for scan
        failures; they are published as ScanResult.error.

        Returns:
            The published result, or None if there is no active pair or the
            selection changed while scanning
        """
        if self._active is None:
            logger.warning("Scan triggered with no active token pair")
            return None

        if self._scan_task is not None and not self._scan_task.done():
            self._rerun_pending = True
            self._rerun_force = self._rerun_force or force_refresh
            logger.debug("Scan already running; queued one rerun")
        else:
            self._scan_task = asyncio.ensure_future(self._scan_until_idle(force_refresh))

        return await asyncio.shield(self._scan_task)

    async def rescan(self) -> Optional[ScanResult]:
        """
        Manual rescan: drop cached quotes and scan now.

        Allowed at any time, including while automatic scans are backing off.
        """
        if self._active is not None:
            self.cache.invalidate(self._active.base, self._active.quote)
        return await self.trigger(force_refresh=True)

    def next_delay(self) -> float:
        """Delay before the next automatic scan, with capped exponential backoff."""
        if self.consecutive_failures == 0:
            return self.interval_sec
        # Past the cap the exponent no longer matters
        exponent = min(self.consecutive_failures, MAX_BACKOFF_EXPONENT)
        delay = self.interval_sec * (2 ** exponent)
        return min(delay, self.max_backoff_sec)

    def start(self) -> asyncio.Task:
        """Start automatic scanning of the active pair."""
        if self._scheduler is None:
            self._scheduler = PeriodicScheduler(
                callback=self.trigger,
                delay=self.next_delay,
                clock=self.clock,
                name="scan-orchestrator",
                fallback_delay=self.max_backoff_sec,
            )
        return self._scheduler.start()

    async def stop(self) -> None:
        """Stop automatic scanning and wait for a running scan to finish."""
        if self._scheduler is not None:
            await self._scheduler.stop()
        if self._scan_task is not None:
            await asyncio.gather(self._scan_task, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _build_request(
        self,
        base: TokenIdentity,
        quote: TokenIdentity,
        investment_amount,
        min_profit_pct,
    ) -> ScanRequest:
        validate_pair(base, quote)
        try:
            amount = to_decimal(
                self.default_investment_amount if investment_amount is None else investment_amount
            )
            min_profit = to_decimal(
                self.default_min_profit_pct if min_profit_pct is None else min_profit_pct
            )
        except (TypeError, ArithmeticError) as e:
            raise InvalidInputError(
                f"Investment amount and min profit must be numbers: {e}"
            ) from e
        if not amount.is_finite() or amount <= 0:
            raise InvalidInputError(
                f"Investment amount must be positive, got {investment_amount}"
            )
        return ScanRequest(base, quote, amount, min_profit)

    async def _collect(
        self, request: ScanRequest, force_refresh: bool
    ) -> Tuple[Dict[str, PriceQuote], List[ArbitrageOpportunity]]:
        # All quotes resolve before any opportunity is built
        quotes = await self.cache.get(
            request.base, request.quote, force_refresh=force_refresh
        )

        network = network_name(request.base.chain_id)
        swap_gas = await self.gas_estimator.estimate_gas(network, "swap")
        approval_gas = await self.gas_estimator.estimate_gas(network, "approval")

        opportunities = self.finder.find(
            quotes,
            token_pair=request.token_pair,
            investment_amount=request.investment_amount,
            min_profit_pct=request.min_profit_pct,
            network=network,
            gas_estimate_usd=swap_gas,
            approval_gas_estimate_usd=approval_gas,
            scan_timestamp=self.clock.current_timestamp(),
        )
        return quotes, opportunities

    async def _scan_until_idle(self, force_refresh: bool) -> Optional[ScanResult]:
        result = await self._run_scan(force_refresh)
        while self._rerun_pending:
            force_refresh = self._rerun_force
            self._rerun_pending = False
            self._rerun_force = False
            result = await self._run_scan(force_refresh)
        return result

    async def _run_scan(self, force_refresh: bool) -> Optional[ScanResult]:
        request = self._active
        generation = self._generation
        started = self.clock.current_timestamp()

        quotes: Dict[str, PriceQuote] = {}
        opportunities: List[ArbitrageOpportunity] = []
        error: Optional[ScanError] = None
        try:
            quotes, opportunities = await self._collect(request, force_refresh)
        except DexArbitrageError as e:
            error = ScanError.from_exception(e)
            logger.warning(f"Scan of {request.token_pair} failed: {error.kind}: {e}")
        except Exception as e:
            error = ScanError.from_exception(e)
            logger.error(f"Scan of {request.token_pair} crashed: {e}", exc_info=True)

        finished = self.clock.current_timestamp()

        if generation != self._generation:
            logger.warning(
                f"Discarding scan of {request.token_pair}: active pair changed while scanning"
            )
            return None

        result = ScanResult(
            token_pair=request.token_pair,
            opportunities=tuple(opportunities),
            quotes=MappingProxyType(dict(quotes)),
            last_scanned=finished,
            error=error,
        )
        self._publish(result, finished - started)
        return result

    def _publish(self, result: ScanResult, duration: float) -> None:
        if result.ok:
            self.consecutive_failures = 0
        else:
            self.consecutive_failures += 1
            logger.warning(
                f"{self.consecutive_failures} consecutive failed scans; "
                f"next automatic scan in {format_duration(self.next_delay())}"
            )

        if result.ok and result.low_confidence:
            logger.warning(
                f"{result.token_pair}: scan used non-live data "
                f"{result.provenance_counts}; results are low confidence"
            )

        if result.opportunities:
            logger.info(f"Best: {result.opportunities[0].format_log()}")

        if self.metrics:
            best = result.opportunities[0].net_profit_pct if result.opportunities else None
            self.metrics.record_scan(
                result.token_pair,
                outcome="ok" if result.ok else "error",
                duration_seconds=duration,
                opportunity_count=len(result.opportunities),
                best_net_profit_pct=float(best) if best is not None else None,
            )
            self.metrics.update_consecutive_failures(
                result.token_pair, self.consecutive_failures
            )

        self._latest = result
        for listener in list(self._listeners):
            try:
                listener(result)
            except Exception as e:
                logger.error(f"Scan listener failed: {e}", exc_info=True)
