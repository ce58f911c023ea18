"""
Periodic scheduling with explicit cancellation.

The scheduler sleeps through an injected TimeProvider, so tests can drive
it with a deterministic clock, and stops promptly when its
CancellationToken is cancelled.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

from .interfaces import SystemTimeProvider, TimeProvider
from .utils import get_logger

logger = get_logger(__name__)


class CancellationToken:
    """One-shot cancellation signal shared between a loop and its owner."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def sleep(self, clock: TimeProvider, seconds: float) -> bool:
        """
        Sleep on ``clock`` unless cancelled first.

        Returns:
            True if the full sleep elapsed, False if cancellation won
        """
        if self.cancelled:
            return False

        sleeper = asyncio.ensure_future(clock.sleep(seconds))
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, waiter):
                if not task.done():
                    task.cancel()
            await asyncio.gather(sleeper, waiter, return_exceptions=True)

        return not self.cancelled


class PeriodicScheduler:
    """
    Run an async callback, sleep, repeat.

    Args:
        callback: Coroutine function run on every tick
        delay: Returns the seconds to wait before the next tick; called
            after every tick so the owner can apply backoff
        fallback_delay: Seconds to wait when ``delay`` itself fails
        clock: Time provider used for sleeping
        name: Name used in log messages
    """

    def __init__(
        self,
        callback: Callable[[], Awaitable[Any]],
        delay: Callable[[], float],
        clock: Optional[TimeProvider] = None,
        name: str = "scheduler",
        fallback_delay: float = 60.0,
    ):
        self.callback = callback
        self.delay = delay
        self.fallback_delay = fallback_delay
        self.clock = clock or SystemTimeProvider()
        self.name = name
        self._token: Optional[CancellationToken] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run(
        self,
        token: Optional[CancellationToken] = None,
        max_ticks: Optional[int] = None,
    ) -> int:
        """
        Tick until cancelled or ``max_ticks`` ticks have run.

        Exceptions from the callback or the delay function are logged and do
        not stop the loop.

        Returns:
            Number of ticks run
        """
        token = token or CancellationToken()
        ticks = 0

        while not token.cancelled:
            try:
                await self.callback()
            except Exception as e:
                logger.error(f"{self.name}: tick {ticks + 1} failed: {e}", exc_info=True)
            ticks += 1

            if max_ticks is not None and ticks >= max_ticks:
                break

            try:
                delay = self.delay()
            except Exception as e:
                logger.error(
                    f"{self.name}: delay calculation failed: {e}; "
                    f"retrying in {self.fallback_delay:.1f}s",
                    exc_info=True,
                )
                delay = self.fallback_delay
            logger.debug(f"{self.name}: next tick in {delay:.1f}s")
            if not await token.sleep(self.clock, delay):
                break

        logger.info(f"{self.name}: stopped after {ticks} ticks")
        return ticks

    def start(self) -> asyncio.Task:
        """Run the loop in a background task (no-op if already running)."""
        if self.running:
            return self._task
        self._token = CancellationToken()
        self._task = asyncio.ensure_future(self.run(self._token))
        return self._task

    async def stop(self) -> None:
        """Cancel the loop and wait for the current tick to finish."""
        if self._token is not None:
            self._token.cancel()
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        self._token = None
