"""Sync engines: fetch from upstream, normalise, upsert into the store.

Sync operations never raise. Every failure (upstream, validation,
storage) is rendered into the ``errors`` list of the returned result so
that callers on the read path can decide how to degrade.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from datetime import date, timedelta

from stock_history.core.config import SyncConfig
from stock_history.core.exceptions import StorageError
from stock_history.core.models import (
    FundamentalSyncResult,
    SyncDateRange,
    SyncResult,
    normalize_symbol,
)
from stock_history.ingestion.client import FmpClient
from stock_history.ingestion.normalize import (
    compute_revenue_growth,
    merge_fundamentals,
    normalize_price_records,
    parse_date,
)
from stock_history.ingestion.store import StorageProtocol

logger = logging.getLogger(__name__)


def _fetched_date_range(rows: list) -> SyncDateRange:
    dates = [
        d
        for d in (parse_date(row.get("date")) for row in rows if isinstance(row, dict))
        if d is not None
    ]
    if not dates:
        return SyncDateRange()
    return SyncDateRange(start=min(dates), end=max(dates))


class PriceSyncEngine:
    """Fetches daily prices for a symbol and upserts them into the store."""

    def __init__(
        self,
        client: FmpClient,
        store: StorageProtocol,
        config: SyncConfig | None = None,
    ) -> None:
        self._client = client
        self._store = store
        self._config = config or SyncConfig()

    async def sync_stock(
        self,
        symbol: str,
        start: date | None = None,
        end: date | None = None,
    ) -> SyncResult:
        """Fetch, validate and store prices for one symbol.

        Rows committed before a failing batch stay committed; the result
        reports them in ``records_saved`` alongside the error.
        """
        normalized = normalize_symbol(symbol)
        if not normalized:
            return SyncResult(symbol=normalized, errors=["Symbol is required"])

        logger.info("Starting sync for %s", normalized)
        fetched = 0
        saved = 0
        date_range = SyncDateRange()
        errors: list[str] = []

        try:
            rows = await self._client.get_historical_prices(normalized, start, end)
            fetched = len(rows)
            if rows:
                date_range = _fetched_date_range(rows)
                records = normalize_price_records(normalized, rows)
                if not records:
                    logger.info("No valid records after validation for %s", normalized)
                else:
                    saved = await self._store.upsert_prices(
                        records, batch_size=self._config.price_batch_size
                    )
            logger.info(
                "Sync complete for %s: %d fetched, %d saved", normalized, fetched, saved
            )
        except StorageError as e:
            saved = e.context.get("records_saved", saved)
            errors.append(str(e))
            logger.error("Sync failed for %s: %s", normalized, e)
        except Exception as e:
            errors.append(str(e))
            logger.error("Sync failed for %s: %s", normalized, e)

        return SyncResult(
            symbol=normalized,
            records_fetched=fetched,
            records_saved=saved,
            date_range=date_range,
            errors=errors,
        )

    async def sync_latest(self, symbol: str) -> SyncResult:
        """Sync from the day after the last stored date (full sync if empty)."""
        normalized = normalize_symbol(symbol)
        try:
            last = await self.get_last_stored_date(normalized)
        except StorageError as e:
            logger.error("Sync failed for %s: %s", normalized, e)
            return SyncResult(symbol=normalized, errors=[str(e)])

        start = last + timedelta(days=1) if last is not None else None
        if start is not None:
            logger.info("Syncing latest data for %s from %s", normalized, start)
        else:
            logger.info("Syncing latest data for %s (full sync)", normalized)
        return await self.sync_stock(normalized, start)

    async def sync_multiple(
        self,
        symbols: Sequence[str],
        start: date | None = None,
        end: date | None = None,
    ) -> list[SyncResult]:
        """Sync several symbols concurrently. One result per symbol, in order."""
        return list(
            await asyncio.gather(*(self.sync_stock(s, start, end) for s in symbols))
        )

    async def get_last_stored_date(self, symbol: str) -> date | None:
        """Most recent stored date for a symbol, or None.

        Raises:
            StorageError: If the store query fails.
        """
        return await self._store.get_latest_price_date(normalize_symbol(symbol))

    async def get_stored_count(self, symbol: str) -> int:
        return await self._store.count_prices(normalize_symbol(symbol))


class FundamentalSyncEngine:
    """Fetches quarterly fundamentals and upserts them into the store."""

    def __init__(
        self,
        client: FmpClient,
        store: StorageProtocol,
        config: SyncConfig | None = None,
    ) -> None:
        self._client = client
        self._store = store
        self._config = config or SyncConfig()

    async def sync_fundamentals(self, symbol: str) -> FundamentalSyncResult:
        """Fetch key metrics and income statements concurrently, merge, store."""
        normalized = normalize_symbol(symbol)
        if not normalized:
            return FundamentalSyncResult(symbol=normalized, errors=["Symbol is required"])

        logger.info("Starting fundamentals sync for %s", normalized)
        fetched = 0
        saved = 0
        errors: list[str] = []
        limit = self._config.fundamentals_limit

        try:
            key_metrics, income = await asyncio.gather(
                self._client.get_key_metrics(normalized, limit),
                self._client.get_income_statements(normalized, limit),
            )
            records = compute_revenue_growth(
                merge_fundamentals(normalized, key_metrics, income)
            )
            fetched = len(records)
            if records:
                saved = await self._store.upsert_fundamentals(
                    records, batch_size=self._config.fundamentals_batch_size
                )
            logger.info(
                "Fundamentals sync complete for %s: %d fetched, %d saved",
                normalized, fetched, saved,
            )
        except StorageError as e:
            saved = e.context.get("records_saved", saved)
            errors.append(str(e))
            logger.error("Fundamentals sync failed for %s: %s", normalized, e)
        except Exception as e:
            errors.append(str(e))
            logger.error("Fundamentals sync failed for %s: %s", normalized, e)

        return FundamentalSyncResult(
            symbol=normalized,
            records_fetched=fetched,
            records_saved=saved,
            errors=errors,
        )

    async def get_last_stored_date(self, symbol: str) -> date | None:
        """Most recent stored period date, or None (also on storage failure)."""
        try:
            return await self._store.get_latest_fundamental_date(normalize_symbol(symbol))
        except StorageError as e:
            logger.warning("Could not read last fundamentals date for %s: %s", symbol, e)
            return None
