"""
Dependency injection interfaces for improved testability and modularity.

Provides lightweight protocols for the clock and for the external
collaborators the engine consumes (quote source, historical quote store and
gas estimator). Components receive these explicitly; there are no
process-wide singletons.
"""

import asyncio
import time
from decimal import Decimal
from typing import Any, Dict, List, Literal, Mapping, Protocol, runtime_checkable

from .types import PriceQuote, TokenIdentity

GasOperation = Literal["swap", "approval"]


@runtime_checkable
class TimeProvider(Protocol):
    """Protocol for time-related operations."""

    def current_timestamp(self) -> float:
        """Get current Unix timestamp."""
        ...

    async def sleep(self, duration: float) -> None:
        """Suspend for specified duration in seconds."""
        ...


class SystemTimeProvider:
    """Production time provider using system time."""

    def current_timestamp(self) -> float:
        return time.time()

    async def sleep(self, duration: float) -> None:
        await asyncio.sleep(duration)


class DeterministicTimeProvider:
    """Deterministic time provider for testing."""

    def __init__(self, start_time: float = 1640995200.0):  # 2022-01-01
        self._current_time = start_time
        self.sleeps: List[float] = []

    def current_timestamp(self) -> float:
        return self._current_time

    async def sleep(self, duration: float) -> None:
        """Advance time by duration instead of actually sleeping."""
        self.sleeps.append(duration)
        self._current_time += duration
        await asyncio.sleep(0)

    def advance_time(self, seconds: float) -> None:
        """Manually advance time by specified seconds."""
        self._current_time += seconds

    def set_time(self, timestamp: float) -> None:
        """Set current time to specific timestamp."""
        self._current_time = timestamp


@runtime_checkable
class QuoteSource(Protocol):
    """
    Live quote capability.

    Returns ``{venue: {"price", "fee_rate", "liquidity_usd", "timestamp"}}``
    and raises QuoteSourceUnavailableError on network/API errors.
    """

    async def fetch_quotes(
        self, base: TokenIdentity, quote: TokenIdentity
    ) -> Mapping[str, Mapping[str, Any]]:
        ...


@runtime_checkable
class HistoricalQuoteStore(Protocol):
    """Persisted quotes, read back most recent first."""

    async def get_recent_quotes(
        self, token_pair: str, chain_id: int, limit: int
    ) -> List[PriceQuote]:
        ...


@runtime_checkable
class RecordingQuoteStore(HistoricalQuoteStore, Protocol):
    """A historical store that also accepts new quotes."""

    async def record_quotes(
        self, token_pair: str, chain_id: int, quotes: Dict[str, PriceQuote]
    ) -> None:
        ...


@runtime_checkable
class GasEstimator(Protocol):
    """USD cost of one operation on a network."""

    async def estimate_gas(self, network: str, operation: GasOperation) -> Decimal:
        ...
