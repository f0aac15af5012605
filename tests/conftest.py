"""Shared pytest fixtures for stock-history."""

from __future__ import annotations

import fnmatch
from datetime import date, datetime, timedelta, timezone

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from stock_history.cache.service import CacheService
from stock_history.core.config import CacheConfig, StorageConfig
from stock_history.core.models import FundamentalRecord, PriceRecord
from stock_history.ingestion.store import SqliteStore

# Friday afternoon; the engine's "today" in most tests
FIXED_NOW = datetime(2024, 6, 14, 15, 30, tzinfo=timezone.utc)
TODAY = FIXED_NOW.date()


class FakeRedis:
    """In-memory stand-in for redis.asyncio.Redis (decode_responses=True).

    Set `fail = True` to make every call raise a redis ConnectionError.
    """

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.fail = False
        self.closed = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("fake redis unavailable")

    async def ping(self) -> bool:
        self._check()
        return True

    async def get(self, key: str) -> str | None:
        self._check()
        return self.data.get(key)

    async def set(self, key: str, value: str) -> bool:
        self._check()
        self.data[key] = value
        self.ttls.pop(key, None)
        return True

    async def setex(self, key: str, ttl: int, value: str) -> bool:
        self._check()
        self.data[key] = value
        self.ttls[key] = ttl
        return True

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def exists(self, key: str) -> int:
        self._check()
        return int(key in self.data)

    async def flushdb(self) -> bool:
        self._check()
        self.data.clear()
        self.ttls.clear()
        return True

    async def scan_iter(self, match: str | None = None):
        self._check()
        for key in list(self.data):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    async def aclose(self) -> None:
        self.closed = True


def trading_days(end: date, count: int) -> list[date]:
    """The last `count` weekdays up to and including `end`, ascending."""
    days: list[date] = []
    day = end
    while len(days) < count:
        if day.weekday() < 5:
            days.append(day)
        day -= timedelta(days=1)
    return sorted(days)


@pytest.fixture
def make_price():
    """Factory for PriceRecord with overridable defaults."""

    def _make(**overrides) -> PriceRecord:
        defaults = dict(
            symbol="AAPL",
            date=TODAY,
            open=190.0,
            high=192.5,
            low=189.0,
            close=191.2,
            volume=52_000_000,
            change=1.2,
            change_percent=0.63,
            vwap=190.9,
        )
        defaults.update(overrides)
        return PriceRecord(**defaults)

    return _make


@pytest.fixture
def make_prices(make_price):
    """Factory for a run of consecutive trading-day records ending at `end`."""

    def _make(symbol: str = "AAPL", count: int = 5, end: date = TODAY, base: float = 100.0):
        return [
            make_price(symbol=symbol, date=d, close=base + i, open=base + i - 0.5)
            for i, d in enumerate(trading_days(end, count))
        ]

    return _make


@pytest.fixture
def make_fundamental():
    """Factory for FundamentalRecord with overridable defaults."""

    def _make(**overrides) -> FundamentalRecord:
        defaults = dict(
            symbol="AAPL",
            date=date(2024, 3, 30),
            pe_ratio=29.4,
            price_to_fcf=27.1,
            fcf=20_694_000_000,
            eps=1.53,
            revenue=90_753_000_000,
            revenue_growth_yoy=None,
            roe=0.28,
            debt_to_equity=1.45,
            period="Q2",
        )
        defaults.update(overrides)
        return FundamentalRecord(**defaults)

    return _make


@pytest.fixture
async def store():
    """An initialized in-memory SqliteStore."""
    s = SqliteStore(StorageConfig(sqlite_path=":memory:"))
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
async def cache(fake_redis: FakeRedis):
    """A connected CacheService backed by FakeRedis."""
    service = CacheService(CacheConfig(), client=fake_redis)
    await service.connect()
    yield service
    await service.close()


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def today() -> date:
    return TODAY


@pytest.fixture
def weekdays():
    """The `trading_days` helper, for tests that need explicit dates."""
    return trading_days
