"""Persistent store: Protocol definition, SQLite implementation, factory."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from datetime import date
from typing import ClassVar, Protocol, runtime_checkable

import aiosqlite

from stock_history.core.config import StorageConfig
from stock_history.core.exceptions import StorageError
from stock_history.core.models import FundamentalRecord, PriceRecord

logger = logging.getLogger(__name__)

_PRICE_COLUMNS = (
    "symbol, date, open, high, low, close, volume, change, change_percent, vwap"
)
_FUNDAMENTAL_COLUMNS = (
    "symbol, date, pe_ratio, price_to_fcf, fcf, eps, revenue, "
    "revenue_growth_yoy, roe, debt_to_equity, period"
)

_UPSERT_PRICE_SQL = f"""INSERT INTO stock_prices ({_PRICE_COLUMNS})
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(symbol, date) DO UPDATE SET
        open = excluded.open,
        high = excluded.high,
        low = excluded.low,
        close = excluded.close,
        volume = excluded.volume,
        change = excluded.change,
        change_percent = excluded.change_percent,
        vwap = excluded.vwap,
        updated_at = datetime('now')"""

_UPSERT_FUNDAMENTAL_SQL = f"""INSERT INTO financial_ratios ({_FUNDAMENTAL_COLUMNS})
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(symbol, date) DO UPDATE SET
        pe_ratio = excluded.pe_ratio,
        price_to_fcf = excluded.price_to_fcf,
        fcf = excluded.fcf,
        eps = excluded.eps,
        revenue = excluded.revenue,
        revenue_growth_yoy = excluded.revenue_growth_yoy,
        roe = excluded.roe,
        debt_to_equity = excluded.debt_to_equity,
        period = excluded.period,
        updated_at = datetime('now')"""


@runtime_checkable
class StorageProtocol(Protocol):
    """Abstract storage interface for price and fundamentals rows."""

    async def upsert_prices(
        self, records: Sequence[PriceRecord], batch_size: int = 100
    ) -> int: ...
    async def get_prices(
        self,
        symbol: str,
        start: date | None = None,
        end: date | None = None,
    ) -> list[PriceRecord]: ...
    async def get_price_date_bounds(self, symbol: str) -> tuple[date, date] | None: ...
    async def get_latest_price_date(self, symbol: str) -> date | None: ...
    async def count_prices(self, symbol: str) -> int: ...
    async def upsert_fundamentals(
        self, records: Sequence[FundamentalRecord], batch_size: int = 40
    ) -> int: ...
    async def get_fundamentals(
        self,
        symbol: str,
        start: date | None = None,
        end: date | None = None,
    ) -> list[FundamentalRecord]: ...
    async def get_latest_fundamental_date(self, symbol: str) -> date | None: ...
    async def list_symbols(self) -> list[str]: ...
    async def get_statistics(self) -> dict[str, int]: ...
    async def initialize(self) -> None: ...
    async def close(self) -> None: ...
    async def health_check(self) -> bool: ...


class SqliteStore:
    """SQLite implementation of the storage protocol.

    Uses aiosqlite for async access, WAL mode for concurrent reads,
    and a version-tracked migration system. One connection is shared by
    all callers; writes are serialized by an asyncio lock so that batch
    transactions from concurrent syncs never interleave.
    """

    _MIGRATIONS: ClassVar[dict[int, tuple[str, list[str]]]] = {
        1: (
            "Initial schema",
            [
                """CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT DEFAULT (datetime('now'))
                )""",
                """CREATE TABLE IF NOT EXISTS stock_prices (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    symbol TEXT NOT NULL,
                    date TEXT NOT NULL,
                    open REAL NOT NULL,
                    high REAL NOT NULL,
                    low REAL NOT NULL,
                    close REAL NOT NULL,
                    volume INTEGER NOT NULL,
                    change REAL NOT NULL,
                    change_percent REAL NOT NULL,
                    vwap REAL NOT NULL,
                    created_at TEXT DEFAULT (datetime('now')),
                    updated_at TEXT DEFAULT (datetime('now')),
                    UNIQUE(symbol, date)
                )""",
                """CREATE TABLE IF NOT EXISTS financial_ratios (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    symbol TEXT NOT NULL,
                    date TEXT NOT NULL,
                    pe_ratio REAL,
                    price_to_fcf REAL,
                    fcf INTEGER,
                    eps REAL,
                    revenue INTEGER,
                    revenue_growth_yoy REAL,
                    roe REAL,
                    debt_to_equity REAL,
                    period TEXT,
                    created_at TEXT DEFAULT (datetime('now')),
                    updated_at TEXT DEFAULT (datetime('now')),
                    UNIQUE(symbol, date)
                )""",
                # Indexes
                "CREATE INDEX IF NOT EXISTS idx_stock_prices_symbol_date "
                "ON stock_prices(symbol, date DESC)",
                "CREATE INDEX IF NOT EXISTS idx_financial_ratios_symbol_date "
                "ON financial_ratios(symbol, date DESC)",
            ],
        ),
    }

    def __init__(self, config: StorageConfig) -> None:
        self._path = config.sqlite_path
        self._db: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Open connection, enable WAL, run migrations."""
        try:
            self._db = await aiosqlite.connect(self._path)
            self._db.row_factory = aiosqlite.Row
            await self._db.execute("PRAGMA journal_mode=WAL")
            current = await self._get_schema_version()
            await self._apply_migrations(current)
            await self._db.commit()
        except Exception as e:
            raise StorageError(
                f"Failed to initialize SQLite store: {e}",
                context={"operation": "initialize", "path": self._path},
            ) from e

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def health_check(self) -> bool:
        if self._db is None:
            return False
        try:
            async with self._db.execute("SELECT 1") as cursor:
                row = await cursor.fetchone()
            return row is not None
        except Exception:
            return False

    # --- Schema Migration ---

    async def _get_schema_version(self) -> int:
        try:
            async with self._db.execute(
                "SELECT MAX(version) FROM schema_version"
            ) as cursor:
                row = await cursor.fetchone()
            return row[0] if row[0] is not None else 0
        except aiosqlite.OperationalError:
            return 0

    async def _apply_migrations(self, current_version: int) -> None:
        for version in sorted(self._MIGRATIONS.keys()):
            if version <= current_version:
                continue
            desc, statements = self._MIGRATIONS[version]
            logger.info("Applying migration %d: %s", version, desc)
            for sql in statements:
                await self._db.execute(sql)
            await self._db.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )

    # --- Batched Upserts ---

    async def _upsert_batches(
        self,
        sql: str,
        rows: list[tuple],
        batch_size: int,
        table: str,
        symbol: str | None,
    ) -> int:
        """Write rows in fixed-size batches, one transaction per batch.

        A failing batch is rolled back and aborts the remaining batches.
        Batches committed before it stay committed.
        """
        saved = 0
        for start in range(0, len(rows), batch_size):
            batch = rows[start : start + batch_size]
            async with self._write_lock:
                try:
                    await self._db.executemany(sql, batch)
                    await self._db.commit()
                except Exception as e:
                    if self._db is not None:
                        await self._db.rollback()
                    logger.error(
                        "Error saving %s batch %d for %s: %s",
                        table, start // batch_size + 1, symbol, e,
                    )
                    raise StorageError(
                        f"Database error while saving data: {e}",
                        context={
                            "operation": "upsert",
                            "table": table,
                            "symbol": symbol,
                            "records_saved": saved,
                        },
                    ) from e
            saved += len(batch)
            logger.debug(
                "Saved %s batch %d: %d records",
                table, start // batch_size + 1, len(batch),
            )
        return saved

    # --- Price Operations ---

    async def upsert_prices(
        self, records: Sequence[PriceRecord], batch_size: int = 100
    ) -> int:
        """Insert or overwrite price rows keyed by (symbol, date)."""
        if not records:
            return 0
        rows = [
            (
                r.symbol,
                r.date.isoformat(),
                r.open,
                r.high,
                r.low,
                r.close,
                r.volume,
                r.change,
                r.change_percent,
                r.vwap,
            )
            for r in records
        ]
        return await self._upsert_batches(
            _UPSERT_PRICE_SQL, rows, batch_size, "stock_prices", records[0].symbol
        )

    async def get_prices(
        self,
        symbol: str,
        start: date | None = None,
        end: date | None = None,
    ) -> list[PriceRecord]:
        """Return price rows for a symbol, ascending by date."""
        try:
            query = f"SELECT {_PRICE_COLUMNS} FROM stock_prices WHERE symbol = ?"
            params: list = [symbol]
            if start is not None:
                query += " AND date >= ?"
                params.append(start.isoformat())
            if end is not None:
                query += " AND date <= ?"
                params.append(end.isoformat())
            query += " ORDER BY date ASC"
            async with self._db.execute(query, params) as cursor:
                rows = await cursor.fetchall()
            return [self._row_to_price(r) for r in rows]
        except Exception as e:
            raise StorageError(
                f"Database query failed: {e}",
                context={"operation": "query", "table": "stock_prices", "symbol": symbol},
            ) from e

    async def get_price_date_bounds(self, symbol: str) -> tuple[date, date] | None:
        """Return (earliest, latest) stored dates, or None if there are no rows."""
        try:
            async with self._db.execute(
                "SELECT MIN(date), MAX(date) FROM stock_prices WHERE symbol = ?",
                (symbol,),
            ) as cursor:
                row = await cursor.fetchone()
            if row is None or row[0] is None:
                return None
            return date.fromisoformat(row[0]), date.fromisoformat(row[1])
        except Exception as e:
            raise StorageError(
                f"Failed to get date range: {e}",
                context={"operation": "query", "table": "stock_prices", "symbol": symbol},
            ) from e

    async def get_latest_price_date(self, symbol: str) -> date | None:
        try:
            async with self._db.execute(
                """SELECT date FROM stock_prices WHERE symbol = ?
                   ORDER BY date DESC LIMIT 1""",
                (symbol,),
            ) as cursor:
                row = await cursor.fetchone()
            return date.fromisoformat(row["date"]) if row is not None else None
        except Exception as e:
            raise StorageError(
                f"Failed to get last stored date: {e}",
                context={"operation": "query", "table": "stock_prices", "symbol": symbol},
            ) from e

    async def count_prices(self, symbol: str) -> int:
        try:
            async with self._db.execute(
                "SELECT COUNT(*) FROM stock_prices WHERE symbol = ?", (symbol,)
            ) as cursor:
                row = await cursor.fetchone()
            return row[0]
        except Exception as e:
            raise StorageError(
                f"Failed to count records: {e}",
                context={"operation": "query", "table": "stock_prices", "symbol": symbol},
            ) from e

    # --- Fundamentals Operations ---

    async def upsert_fundamentals(
        self, records: Sequence[FundamentalRecord], batch_size: int = 40
    ) -> int:
        """Insert or overwrite fundamentals rows keyed by (symbol, date)."""
        if not records:
            return 0
        rows = [
            (
                r.symbol,
                r.date.isoformat(),
                r.pe_ratio,
                r.price_to_fcf,
                r.fcf,
                r.eps,
                r.revenue,
                r.revenue_growth_yoy,
                r.roe,
                r.debt_to_equity,
                r.period,
            )
            for r in records
        ]
        return await self._upsert_batches(
            _UPSERT_FUNDAMENTAL_SQL, rows, batch_size, "financial_ratios", records[0].symbol
        )

    async def get_fundamentals(
        self,
        symbol: str,
        start: date | None = None,
        end: date | None = None,
    ) -> list[FundamentalRecord]:
        """Return fundamentals rows for a symbol, ascending by date."""
        try:
            query = f"SELECT {_FUNDAMENTAL_COLUMNS} FROM financial_ratios WHERE symbol = ?"
            params: list = [symbol]
            if start is not None:
                query += " AND date >= ?"
                params.append(start.isoformat())
            if end is not None:
                query += " AND date <= ?"
                params.append(end.isoformat())
            query += " ORDER BY date ASC"
            async with self._db.execute(query, params) as cursor:
                rows = await cursor.fetchall()
            return [self._row_to_fundamental(r) for r in rows]
        except Exception as e:
            raise StorageError(
                f"Database query failed: {e}",
                context={"operation": "query", "table": "financial_ratios", "symbol": symbol},
            ) from e

    async def get_latest_fundamental_date(self, symbol: str) -> date | None:
        try:
            async with self._db.execute(
                """SELECT date FROM financial_ratios WHERE symbol = ?
                   ORDER BY date DESC LIMIT 1""",
                (symbol,),
            ) as cursor:
                row = await cursor.fetchone()
            return date.fromisoformat(row["date"]) if row is not None else None
        except Exception as e:
            raise StorageError(
                f"Failed to get last stored date: {e}",
                context={"operation": "query", "table": "financial_ratios", "symbol": symbol},
            ) from e

    # --- Statistics ---

    async def list_symbols(self) -> list[str]:
        """Return all distinct symbols with stored prices."""
        try:
            async with self._db.execute(
                "SELECT DISTINCT symbol FROM stock_prices ORDER BY symbol"
            ) as cursor:
                rows = await cursor.fetchall()
            return [row[0] for row in rows]
        except Exception as e:
            raise StorageError(
                f"Failed to list symbols: {e}",
                context={"operation": "query", "table": "stock_prices"},
            ) from e

    async def get_statistics(self) -> dict[str, int]:
        try:
            stats: dict[str, int] = {}
            for key, sql in (
                ("price_rows", "SELECT COUNT(*) FROM stock_prices"),
                ("fundamental_rows", "SELECT COUNT(*) FROM financial_ratios"),
                ("symbols", "SELECT COUNT(DISTINCT symbol) FROM stock_prices"),
            ):
                async with self._db.execute(sql) as cursor:
                    row = await cursor.fetchone()
                stats[key] = row[0]
            return stats
        except Exception as e:
            raise StorageError(
                f"Failed to gather statistics: {e}",
                context={"operation": "query"},
            ) from e

    # --- Row Mapping Helpers ---

    @staticmethod
    def _row_to_price(row: aiosqlite.Row) -> PriceRecord:
        return PriceRecord(
            symbol=row["symbol"],
            date=date.fromisoformat(row["date"]),
            open=row["open"],
            high=row["high"],
            low=row["low"],
            close=row["close"],
            volume=row["volume"],
            change=row["change"],
            change_percent=row["change_percent"],
            vwap=row["vwap"],
        )

    @staticmethod
    def _row_to_fundamental(row: aiosqlite.Row) -> FundamentalRecord:
        return FundamentalRecord(
            symbol=row["symbol"],
            date=date.fromisoformat(row["date"]),
            pe_ratio=row["pe_ratio"],
            price_to_fcf=row["price_to_fcf"],
            fcf=row["fcf"],
            eps=row["eps"],
            revenue=row["revenue"],
            revenue_growth_yoy=row["revenue_growth_yoy"],
            roe=row["roe"],
            debt_to_equity=row["debt_to_equity"],
            period=row["period"],
        )


async def create_store(config: StorageConfig) -> SqliteStore:
    """Create and initialize the storage backend."""
    path = config.sqlite_path
    if path != ":memory:":
        from pathlib import Path

        Path(path).parent.mkdir(parents=True, exist_ok=True)
    store = SqliteStore(config)
    await store.initialize()
    return store
