"""Cached read path for quarterly fundamentals."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date, datetime

from stock_history.cache.service import CacheService, fundamentals_key
from stock_history.core.exceptions import InvalidTimeframeError
from stock_history.core.models import FundamentalRecord, FundamentalSyncResult, parse_symbol
from stock_history.core.timeframes import Timeframe, date_window, parse_timeframe, utc_today
from stock_history.ingestion.store import StorageProtocol
from stock_history.ingestion.sync import FundamentalSyncEngine

logger = logging.getLogger(__name__)


class FundamentalQueryService:
    """Serves fundamentals from cache, then store, syncing when the window is empty.

    Unlike price history there is no coverage heuristic: any stored row in
    the window is served. Unknown timeframes read the five-year window.
    """

    def __init__(
        self,
        store: StorageProtocol,
        cache: CacheService,
        sync_engine: FundamentalSyncEngine,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._sync = sync_engine
        self._clock = clock

    def _window(self, timeframe: str) -> tuple[str, tuple[date, date]]:
        today = utc_today(self._clock() if self._clock is not None else None)
        try:
            tf = parse_timeframe(timeframe)
        except InvalidTimeframeError:
            return str(timeframe).strip().upper(), date_window(Timeframe.FIVE_YEARS, today)
        return tf.value, date_window(tf, today)

    async def get_fundamentals(
        self, symbol: str, timeframe: str = Timeframe.FIVE_YEARS
    ) -> list[FundamentalRecord]:
        """Ascending fundamentals rows whose period ends inside the window.

        Raises:
            InvalidSymbolError: Malformed symbol.
            StorageError: The store query failed.
        """
        sym = parse_symbol(symbol)
        tf, (start, end) = self._window(timeframe)

        cached = await self._cache.get_fundamentals(sym, tf)
        if cached:
            logger.debug("Cache hit for fundamentals %s:%s", sym, tf)
            return cached

        records = await self._store.get_fundamentals(sym, start, end)
        if not records:
            logger.info("No stored fundamentals for %s, fetching from upstream", sym)
            result = await self._sync.sync_fundamentals(sym)
            if result.errors:
                logger.warning("Fundamentals sync errors for %s: %s", sym, result.errors)
            records = await self._store.get_fundamentals(sym, start, end)

        if records:
            await self._cache.set_fundamentals(sym, tf, records)
        return records

    async def refresh_fundamentals(self, symbol: str) -> FundamentalSyncResult:
        """Drop the symbol's fundamentals cache entries, then sync."""
        sym = parse_symbol(symbol)
        for tf in Timeframe:
            await self._cache.delete(fundamentals_key(sym, tf.value))
        return await self._sync.sync_fundamentals(sym)
