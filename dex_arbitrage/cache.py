"""
Time-boxed cache of per-venue price quotes.

Each (base token, quote token, chain) key moves through
``empty -> fresh -> stale -> fresh ...``. Live fetches are retried with
exponential backoff and then degrade to the fallback tiers (historical,
then synthetic). Concurrent reads of a key share a single in-flight fetch.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from functools import partial
from types import MappingProxyType
from typing import TYPE_CHECKING, Dict, Mapping, Optional, Sequence

from .exceptions import InvalidInputError, QuoteSourceUnavailableError
from .interfaces import (
    HistoricalQuoteStore,
    RecordingQuoteStore,
    SystemTimeProvider,
    TimeProvider,
)
from .sources import LiveQuoteTier, QuoteTier, describe_tiers
from .types import CacheKey, PriceQuote, TokenIdentity, pair_label
from .utils import get_logger

if TYPE_CHECKING:
    from .metrics import ScanMetrics

logger = get_logger(__name__)


class CacheState(str, Enum):
    EMPTY = "empty"
    FRESH = "fresh"
    STALE = "stale"


@dataclass(frozen=True)
class CacheEntry:
    """
    Quotes for one key from one successful live fetch.

    Entries are replaced whole, never updated field by field.
    """

    key: CacheKey
    data: Mapping[str, PriceQuote]
    fetched_at: float

    def age(self, now: float) -> float:
        return now - self.fetched_at

    def is_fresh(self, now: float, duration_sec: float) -> bool:
        return self.age(now) < duration_sec


def validate_pair(base: TokenIdentity, quote: TokenIdentity) -> None:
    """
    Raises:
        InvalidInputError: If a token is missing, both are the same token,
            or they live on different chains
    """
    if base is None or quote is None:
        raise InvalidInputError("Select both base and quote tokens")
    if base.chain_id != quote.chain_id:
        raise InvalidInputError(
            f"Tokens are on different chains: {base.symbol}@{base.chain_id} "
            f"vs {quote.symbol}@{quote.chain_id}"
        )
    if base.address.lower() == quote.address.lower():
        raise InvalidInputError(f"Base and quote are the same token ({base.symbol})")


class PriceQuoteCache:
    """
    Quote cache with request coalescing, retry and tiered fallback.

    Only live results are stored. Fallback and synthetic results are handed
    to the caller but not cached, so the next read tries the live source
    again.

    Args:
        live_tier: Live quote tier
        fallback_tiers: Tiers tried in order once live fetching is exhausted
        cache_duration_sec: How long an entry stays fresh
        max_retries: Live retries after the first failed attempt
        retry_delay_sec: Base backoff delay; attempt n waits delay * 2**n
        stale_while_revalidate: Serve stale data while one background
            refresh runs, instead of blocking the reader
        history_store: Successful live fetches are recorded here when the
            store supports ``record_quotes``
        clock: Time provider
        metrics: Optional metrics sink
    """

    def __init__(
        self,
        live_tier: LiveQuoteTier,
        fallback_tiers: Sequence[QuoteTier] = (),
        cache_duration_sec: float = 20.0,
        max_retries: int = 2,
        retry_delay_sec: float = 2.0,
        stale_while_revalidate: bool = True,
        history_store: Optional[HistoricalQuoteStore] = None,
        clock: Optional[TimeProvider] = None,
        metrics: Optional["ScanMetrics"] = None,
    ):
        self.live_tier = live_tier
        self.fallback_tiers = list(fallback_tiers)
        self.cache_duration_sec = cache_duration_sec
        self.max_retries = max_retries
        self.retry_delay_sec = retry_delay_sec
        self.stale_while_revalidate = stale_while_revalidate
        self.history_store = history_store
        self.clock = clock or SystemTimeProvider()
        self.metrics = metrics

        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._inflight: Dict[CacheKey, "asyncio.Task[Dict[str, PriceQuote]]"] = {}
        self._generations: Dict[CacheKey, int] = {}

        logger.debug(
            f"Quote cache ready: {describe_tiers([live_tier, *self.fallback_tiers])}, "
            f"ttl {cache_duration_sec}s, {max_retries} retries"
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def entry(self, base: TokenIdentity, quote: TokenIdentity) -> Optional[CacheEntry]:
        return self._entries.get(CacheKey.for_pair(base, quote))

    def state(self, base: TokenIdentity, quote: TokenIdentity) -> CacheState:
        entry = self.entry(base, quote)
        if entry is None:
            return CacheState.EMPTY
        if entry.is_fresh(self.clock.current_timestamp(), self.cache_duration_sec):
            return CacheState.FRESH
        return CacheState.STALE

    def is_fetching(self, base: TokenIdentity, quote: TokenIdentity) -> bool:
        return CacheKey.for_pair(base, quote) in self._inflight

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(
        self,
        base: TokenIdentity,
        quote: TokenIdentity,
        force_refresh: bool = False,
    ) -> Dict[str, PriceQuote]:
        """
        Quotes for a pair, venue -> quote.

        Fresh entries are returned immediately unless ``force_refresh`` is
        set. Stale entries are returned immediately while a background
        refresh runs (when stale_while_revalidate is on); otherwise the read
        waits for a fetch, joining one already in flight for the key.

        Raises:
            InvalidInputError: If the token pair is invalid
            QuoteSourceUnavailableError: If the live source failed and no
                fallback tier produced data
        """
        validate_pair(base, quote)
        key = CacheKey.for_pair(base, quote)
        entry = self._entries.get(key)

        if entry is not None and not force_refresh:
            now = self.clock.current_timestamp()
            if entry.is_fresh(now, self.cache_duration_sec):
                logger.debug(f"Cache hit for {pair_label(base, quote)}")
                self._record_read(CacheState.FRESH)
                return dict(entry.data)

            self._record_read(CacheState.STALE)
            if self.stale_while_revalidate:
                logger.debug(
                    f"Serving stale quotes for {pair_label(base, quote)} "
                    f"(age {entry.age(now):.1f}s) while refreshing"
                )
                self._ensure_fetch(key, base, quote)
                return dict(entry.data)
        elif entry is None:
            self._record_read(CacheState.EMPTY)

        task = self._ensure_fetch(key, base, quote)
        # Shield so one cancelled reader does not cancel the shared fetch
        quotes = await asyncio.shield(task)
        return dict(quotes)

    def invalidate(self, base: TokenIdentity, quote: TokenIdentity) -> None:
        """
        Drop the entry for a pair so the next read performs a live fetch.

        A fetch already in flight is detached: its waiters still get its
        result, but it will not repopulate the entry.
        """
        key = CacheKey.for_pair(base, quote)
        self._entries.pop(key, None)
        self._inflight.pop(key, None)
        self._generations[key] = self._generations.get(key, 0) + 1
        logger.info(f"Invalidated cached quotes for {pair_label(base, quote)}")

    def clear(self) -> None:
        for key in list(self._entries) + list(self._inflight):
            self._generations[key] = self._generations.get(key, 0) + 1
        self._entries.clear()
        self._inflight.clear()

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    def _ensure_fetch(
        self, key: CacheKey, base: TokenIdentity, quote: TokenIdentity
    ) -> "asyncio.Task[Dict[str, PriceQuote]]":
        task = self._inflight.get(key)
        if task is None:
            generation = self._generations.get(key, 0)
            task = asyncio.ensure_future(self._fetch(key, base, quote, generation))
            self._inflight[key] = task
            task.add_done_callback(partial(self._on_fetch_done, key))
        return task

    def _on_fetch_done(self, key: CacheKey, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            # Readers waiting on the task see the error; background refreshes only log it
            logger.debug(
                f"Quote fetch for {key} ended with {type(error).__name__}: {error}"
            )

    async def _fetch(
        self,
        key: CacheKey,
        base: TokenIdentity,
        quote: TokenIdentity,
        generation: int,
    ) -> Dict[str, PriceQuote]:
        label = pair_label(base, quote)
        logger.info(f"Fetching live quotes for {label}")

        live_error: Optional[QuoteSourceUnavailableError] = None
        try:
            quotes = await self._fetch_live_with_retry(base, quote)
        except QuoteSourceUnavailableError as e:
            live_error = e
            quotes = {}
            logger.warning(f"All live attempts failed for {label}, falling back: {e}")

        if quotes:
            if self._generations.get(key, 0) == generation:
                self._entries[key] = CacheEntry(
                    key=key,
                    data=MappingProxyType(dict(quotes)),
                    fetched_at=self.clock.current_timestamp(),
                )
            else:
                logger.info(f"Discarding live quotes for invalidated key {label}")
            await self._record_history(base, quote, quotes)
            return quotes

        if live_error is None:
            logger.warning(f"Live source returned no quotes for {label}, falling back")

        fallback = await self._resolve_fallback(base, quote)
        if fallback:
            return fallback

        if live_error is not None:
            raise QuoteSourceUnavailableError(
                f"No quotes available for {label}: live source failed and no fallback data",
                source=live_error.source,
                endpoint=live_error.endpoint,
                status_code=live_error.status_code,
                details={"token_pair": label, "cause": str(live_error)},
            ) from live_error
        return {}

    async def _fetch_live_with_retry(
        self, base: TokenIdentity, quote: TokenIdentity
    ) -> Dict[str, PriceQuote]:
        attempt = 0
        while True:
            try:
                quotes = await self.live_tier.resolve(base, quote)
            except QuoteSourceUnavailableError as e:
                self._record_fetch(self.live_tier.name, "error")
                if attempt >= self.max_retries:
                    raise
                delay = self.retry_delay_sec * (2 ** attempt)
                logger.warning(
                    f"Live quote fetch failed ({e}); retrying "
                    f"(attempt {attempt + 1}/{self.max_retries}) in {delay:.1f}s"
                )
                await self.clock.sleep(delay)
                attempt += 1
                continue

            self._record_fetch(self.live_tier.name, "ok" if quotes else "empty")
            return quotes

    async def _resolve_fallback(
        self, base: TokenIdentity, quote: TokenIdentity
    ) -> Dict[str, PriceQuote]:
        for tier in self.fallback_tiers:
            try:
                quotes = await tier.resolve(base, quote)
            except Exception as e:
                self._record_fetch(tier.name, "error")
                logger.error(
                    f"Fallback tier '{tier.name}' failed for {pair_label(base, quote)}: {e}",
                    exc_info=True,
                )
                continue

            if quotes:
                self._record_fetch(tier.name, "ok")
                logger.warning(
                    f"Using {tier.name} quotes for {pair_label(base, quote)} "
                    f"({len(quotes)} venues)"
                )
                return quotes
            self._record_fetch(tier.name, "empty")
        return {}

    async def _record_history(
        self, base: TokenIdentity, quote: TokenIdentity, quotes: Dict[str, PriceQuote]
    ) -> None:
        if not isinstance(self.history_store, RecordingQuoteStore):
            return
        try:
            await self.history_store.record_quotes(
                pair_label(base, quote), base.chain_id, quotes
            )
        except Exception as e:
            logger.warning(
                f"Failed to record quote history for {pair_label(base, quote)}: {e}"
            )

    def _record_read(self, state: CacheState) -> None:
        if self.metrics:
            self.metrics.record_cache_read(state.value)

    def _record_fetch(self, tier: str, outcome: str) -> None:
        if self.metrics:
            self.metrics.record_quote_fetch(tier, outcome)
