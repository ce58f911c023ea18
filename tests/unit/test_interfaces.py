"""Tests for dependency injection interfaces."""

import time

import pytest

from dex_arbitrage.fees import StaticGasEstimator
from dex_arbitrage.interfaces import (
    DeterministicTimeProvider,
    GasEstimator,
    HistoricalQuoteStore,
    QuoteSource,
    RecordingQuoteStore,
    SystemTimeProvider,
    TimeProvider,
)
from dex_arbitrage.sources import HttpQuoteSource, InMemoryQuoteStore
from fakes import FakeQuoteSource


def test_system_time_provider():
    """Test SystemTimeProvider."""
    provider = SystemTimeProvider()

    ts1 = provider.current_timestamp()
    time.sleep(0.01)
    ts2 = provider.current_timestamp()
    assert ts2 > ts1


@pytest.mark.asyncio
async def test_deterministic_time_provider():
    """Test DeterministicTimeProvider."""
    provider = DeterministicTimeProvider(start_time=1000.0)
    assert provider.current_timestamp() == 1000.0

    await provider.sleep(5.0)
    assert provider.current_timestamp() == 1005.0
    assert provider.sleeps == [5.0]

    provider.advance_time(10.0)
    assert provider.current_timestamp() == 1015.0

    provider.set_time(2000.0)
    assert provider.current_timestamp() == 2000.0


def test_protocol_conformance():
    """Concrete collaborators satisfy the runtime-checkable protocols."""
    assert isinstance(SystemTimeProvider(), TimeProvider)
    assert isinstance(DeterministicTimeProvider(), TimeProvider)
    assert isinstance(HttpQuoteSource("http://localhost/prices"), QuoteSource)
    assert isinstance(FakeQuoteSource(), QuoteSource)
    assert isinstance(StaticGasEstimator(), GasEstimator)

    store = InMemoryQuoteStore()
    assert isinstance(store, HistoricalQuoteStore)
    assert isinstance(store, RecordingQuoteStore)


def test_read_only_store_is_not_recording():
    class ReadOnlyStore:
        async def get_recent_quotes(self, token_pair, chain_id, limit):
            return []

    assert isinstance(ReadOnlyStore(), HistoricalQuoteStore)
    assert not isinstance(ReadOnlyStore(), RecordingQuoteStore)
