"""Query engine: cache -> store -> sync read path for price history."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from datetime import date, datetime

from stock_history.cache.service import CacheService
from stock_history.core.config import QueryConfig
from stock_history.core.exceptions import NoDataError, StorageError
from stock_history.core.models import (
    DataStatus,
    DateRange,
    HistoryResult,
    PriceRecord,
    RatioPoint,
    SyncResult,
    normalize_symbol,
    parse_symbol,
)
from stock_history.core.timeframes import (
    Timeframe,
    date_window,
    expected_record_count,
    parse_timeframe,
    utc_today,
)
from stock_history.ingestion.store import StorageProtocol
from stock_history.ingestion.sync import PriceSyncEngine
from stock_history.query.merge import compute_price_ratio
from stock_history.query.singleflight import SingleFlight

logger = logging.getLogger(__name__)


class StockQueryEngine:
    """Answers history and ratio reads, refreshing the store when it is stale.

    Read algorithm for one (symbol, timeframe):

    1. A non-empty cache entry is returned as-is. Cache hits are trusted
       for their full TTL.
    2. Otherwise the store is queried for the timeframe's window.
    3. If the stored rows are missing, too few, or too old, the sync engine
       is run for the window. When it saves rows without error, the store
       is queried again. Sync failures never fail the read.
    4. A non-empty result is written back to the cache.

    `clock` returns the current time; "today" is its UTC calendar day.
    """

    def __init__(
        self,
        store: StorageProtocol,
        cache: CacheService,
        sync_engine: PriceSyncEngine,
        config: QueryConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._sync = sync_engine
        self._config = config or QueryConfig()
        self._clock = clock
        self._inflight: SingleFlight[SyncResult] = SingleFlight()

    def today(self) -> date:
        return utc_today(self._clock() if self._clock is not None else None)

    # --- Staleness Policy ---

    def needs_refresh(
        self,
        timeframe: Timeframe,
        records: Sequence[PriceRecord],
        today: date | None = None,
    ) -> bool:
        """True if stored rows are too few or too old to serve as-is.

        `records` must be ascending by date.
        """
        if not records:
            return True
        today = today or self.today()
        tolerance = self._config.coverage_tolerance

        expected = expected_record_count(timeframe, today)
        if timeframe == Timeframe.YEAR_TO_DATE:
            threshold = max(1.0, expected * tolerance)
        else:
            threshold = expected * tolerance
        if len(records) < threshold:
            logger.debug(
                "%s %s: %d rows below coverage threshold %.1f",
                records[0].symbol, timeframe, len(records), threshold,
            )
            return True

        age = (today - records[-1].date).days
        if age > self._config.max_staleness_days:
            logger.debug(
                "%s %s: latest row is %d days old", records[0].symbol, timeframe, age
            )
            return True
        return False

    # --- History ---

    async def fetch_history(self, symbol: str, timeframe: str) -> HistoryResult:
        """Historical prices plus how they were obtained.

        Raises:
            InvalidSymbolError: Malformed symbol.
            InvalidTimeframeError: Timeframe outside 5Y/1Y/YTD/1M/1W.
            StorageError: The store query failed.
        """
        sym = parse_symbol(symbol)
        tf = parse_timeframe(timeframe, symbol=sym)

        cached = await self._cache.get_stock_history(sym, tf)
        if cached:
            logger.debug("Cache hit for %s:%s", sym, tf)
            return HistoryResult(
                symbol=sym, timeframe=tf, records=cached, status=DataStatus.CACHED
            )
        logger.debug("Cache miss for %s:%s", sym, tf)

        today = self.today()
        start, end = date_window(tf, today)
        records = await self._store.get_prices(sym, start, end)
        status = DataStatus.FRESH
        sync_errors: list[str] = []

        if self.needs_refresh(tf, records, today):
            logger.info("Fetching fresh data for %s (%s) from upstream", sym, tf)
            result = await self._run_sync(sym, tf, start, end)
            sync_errors = list(result.errors)
            if result.ok and result.records_saved > 0:
                records = await self._store.get_prices(sym, start, end)
                status = DataStatus.REFRESHED
            else:
                if result.errors:
                    logger.warning("Upstream sync had errors for %s: %s", sym, result.errors)
                status = DataStatus.STALE_FALLBACK if records else DataStatus.FAILED

        if records:
            await self._cache.set_stock_history(sym, tf, records)

        return HistoryResult(
            symbol=sym,
            timeframe=tf,
            records=records,
            status=status,
            sync_errors=sync_errors,
        )

    async def get_historical_data(self, symbol: str, timeframe: str) -> list[PriceRecord]:
        """Ascending price records for the timeframe window (possibly empty)."""
        return (await self.fetch_history(symbol, timeframe)).records

    async def _run_sync(
        self, symbol: str, timeframe: Timeframe, start: date, end: date
    ) -> SyncResult:
        if not self._config.coalesce_concurrent_syncs:
            return await self._sync.sync_stock(symbol, start, end)
        return await self._inflight.do(
            (symbol, timeframe), lambda: self._sync.sync_stock(symbol, start, end)
        )

    # --- Ratio ---

    async def get_price_ratio(
        self, symbol1: str, symbol2: str, timeframe: str
    ) -> list[RatioPoint]:
        """Close(symbol1) / close(symbol2) on every shared date.

        Both legs are fetched concurrently; a failing leg does not cancel
        the other.

        Raises:
            InvalidSymbolError, InvalidTimeframeError: Bad input.
            NoDataError: Either leg has no history.
            StorageError: A store query failed.
        """
        sym1 = parse_symbol(symbol1)
        sym2 = parse_symbol(symbol2)
        tf = parse_timeframe(timeframe)

        cached = await self._cache.get_price_ratio(sym1, sym2, tf)
        if cached:
            logger.debug("Cache hit for ratio %s/%s:%s", sym1, sym2, tf)
            return cached

        logger.debug("Calculating ratio for %s/%s:%s", sym1, sym2, tf)
        legs = await asyncio.gather(
            self.get_historical_data(sym1, tf),
            self.get_historical_data(sym2, tf),
            return_exceptions=True,
        )
        for leg in legs:
            if isinstance(leg, BaseException):
                raise leg
        data1, data2 = legs

        for sym, data in ((sym1, data1), (sym2, data2)):
            if not data:
                raise NoDataError(
                    f"No data available for symbol: {sym}", context={"symbol": sym}
                )

        points = compute_price_ratio(data1, data2)
        if points:
            await self._cache.set_price_ratio(sym1, sym2, tf, points)
        return points

    # --- Supplementary Reads ---

    async def get_latest(self, symbol: str) -> PriceRecord | None:
        """Most recent record in the one-week window, or None."""
        records = await self.get_historical_data(symbol, Timeframe.ONE_WEEK)
        return records[-1] if records else None

    async def get_available_date_range(self, symbol: str) -> DateRange | None:
        """Earliest and latest stored dates. Storage failures read as None."""
        sym = normalize_symbol(symbol)
        try:
            bounds = await self._store.get_price_date_bounds(sym)
        except StorageError as e:
            logger.error("Error getting date range for %s: %s", sym, e)
            return None
        if bounds is None:
            return None
        return DateRange(earliest=bounds[0], latest=bounds[1])

    async def get_record_count(self, symbol: str) -> int:
        return await self._store.count_prices(normalize_symbol(symbol))

    async def get_multiple_historical_data(
        self, symbols: Sequence[str], timeframe: str
    ) -> dict[str, list[PriceRecord]]:
        """History for several symbols concurrently. Failing symbols map to []."""
        tf = parse_timeframe(timeframe)

        async def _one(symbol: str) -> tuple[str, list[PriceRecord]]:
            try:
                return normalize_symbol(symbol), await self.get_historical_data(symbol, tf)
            except Exception as e:
                logger.error("Error fetching %s: %s", symbol, e)
                return normalize_symbol(symbol), []

        pairs = await asyncio.gather(*(_one(s) for s in symbols))
        return dict(pairs)

    # --- Maintenance ---

    async def refresh_data(self, symbol: str) -> SyncResult:
        """Drop every cache entry for the symbol, then run a full sync."""
        sym = parse_symbol(symbol)
        logger.info("Force refreshing data for %s", sym)
        await self._cache.invalidate_symbol(sym)

        result = await self._sync.sync_stock(sym)
        if result.errors:
            logger.error("Refresh errors for %s: %s", sym, result.errors)
        else:
            logger.info(
                "Refreshed %s: %d fetched, %d saved",
                sym, result.records_fetched, result.records_saved,
            )
        return result

    async def warmup_cache(
        self,
        symbols: Sequence[str],
        timeframes: Sequence[str] | None = None,
    ) -> dict[str, list[str]]:
        """Populate the cache for each symbol and timeframe. Never raises.

        Symbols are processed concurrently, timeframes sequentially per
        symbol.

        Returns:
            ``{"warmed": [...], "failed": [...]}`` with ``SYMBOL:TF`` entries.
        """
        tfs = list(timeframes) if timeframes is not None else list(
            self._config.warmup_timeframes
        )
        logger.info("Warming up cache for %d symbols", len(symbols))
        warmed: list[str] = []
        failed: list[str] = []

        async def _warm(symbol: str) -> None:
            for tf in tfs:
                label = f"{normalize_symbol(symbol)}:{tf}"
                try:
                    records = await self.get_historical_data(symbol, tf)
                except Exception as e:
                    logger.warning("Failed to warm up %s: %s", label, e)
                    failed.append(label)
                    continue
                if records:
                    logger.debug("Cached %s", label)
                    warmed.append(label)
                else:
                    logger.warning("No data to warm up %s", label)
                    failed.append(label)

        await asyncio.gather(*(_warm(s) for s in symbols))
        logger.info(
            "Cache warmup complete: %d warmed, %d failed", len(warmed), len(failed)
        )
        return {"warmed": sorted(warmed), "failed": sorted(failed)}
