"""Tests for periodic scheduling and cancellation."""

import asyncio

import pytest

from dex_arbitrage.interfaces import SystemTimeProvider
from dex_arbitrage.scheduler import CancellationToken, PeriodicScheduler


@pytest.mark.asyncio
async def test_runs_requested_ticks_with_delays(clock):
    calls = []

    async def tick():
        calls.append(clock.current_timestamp())

    scheduler = PeriodicScheduler(tick, delay=lambda: 30, clock=clock)
    ticks = await scheduler.run(max_ticks=3)

    assert ticks == 3
    assert len(calls) == 3
    assert clock.sleeps == [30, 30]
    assert calls[2] - calls[0] == 60


@pytest.mark.asyncio
async def test_delay_is_recomputed_every_tick(clock):
    delays = iter([10, 20, 40])

    async def tick():
        pass

    scheduler = PeriodicScheduler(tick, delay=lambda: next(delays), clock=clock)
    await scheduler.run(max_ticks=4)

    assert clock.sleeps == [10, 20, 40]


@pytest.mark.asyncio
async def test_failing_tick_does_not_stop_loop(clock):
    calls = []

    async def tick():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("first tick fails")

    scheduler = PeriodicScheduler(tick, delay=lambda: 1, clock=clock)
    assert await scheduler.run(max_ticks=3) == 3
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_cancelled_token_runs_nothing(clock):
    calls = []

    async def tick():
        calls.append(1)

    token = CancellationToken()
    token.cancel()

    assert await PeriodicScheduler(tick, delay=lambda: 1, clock=clock).run(token) == 0
    assert calls == []


@pytest.mark.asyncio
async def test_cancel_interrupts_sleep():
    token = CancellationToken()
    asyncio.get_running_loop().call_later(0.01, token.cancel)

    completed = await asyncio.wait_for(token.sleep(SystemTimeProvider(), 30), timeout=2)

    assert completed is False
    assert token.cancelled


@pytest.mark.asyncio
async def test_sleep_completes_when_not_cancelled(clock):
    token = CancellationToken()
    assert await token.sleep(clock, 5) is True
    assert clock.sleeps == [5]


@pytest.mark.asyncio
async def test_start_and_stop():
    calls = []

    async def tick():
        calls.append(1)

    scheduler = PeriodicScheduler(tick, delay=lambda: 0.01, clock=SystemTimeProvider())
    scheduler.start()
    assert scheduler.running

    await asyncio.sleep(0.05)
    await scheduler.stop()

    assert not scheduler.running
    assert len(calls) >= 1


@pytest.mark.asyncio
async def test_failing_delay_uses_fallback(clock):
    calls = []

    async def tick():
        calls.append(clock.current_timestamp())

    def broken_delay():
        raise OverflowError("delay out of range")

    scheduler = PeriodicScheduler(tick, delay=broken_delay, clock=clock, fallback_delay=45)
    ticks = await scheduler.run(max_ticks=3)

    assert ticks == 3
    assert clock.sleeps == [45, 45]
