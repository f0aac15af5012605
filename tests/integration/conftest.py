"""Integration test fixtures: real SQLite file and HTTP client, upstream served by respx."""

from __future__ import annotations

from datetime import date
from pathlib import Path

import httpx
import pytest
import respx

from stock_history.api.deps import AppState
from stock_history.cache.service import CacheService
from stock_history.core.config import FmpConfig, StockHistoryConfig, StorageConfig
from stock_history.ingestion.client import FmpClient
from stock_history.ingestion.store import create_store
from stock_history.ingestion.sync import FundamentalSyncEngine, PriceSyncEngine
from stock_history.query.engine import StockQueryEngine
from stock_history.query.fundamentals import FundamentalQueryService

BASE_URL = "https://financialmodelingprep.com/stable"


class FakeUpstream:
    """Canned FMP responses keyed by symbol, with call counting.

    Price requests honour the from/to query params like the real endpoint.
    Set `price_status` to make the price endpoint fail with that status.
    """

    def __init__(self) -> None:
        self.prices: dict[str, list[dict]] = {}
        self.key_metrics: dict[str, list[dict]] = {}
        self.income: dict[str, list[dict]] = {}
        self.price_status = 200
        self.price_calls: list[str] = []

    def add_prices(self, symbol: str, days: list[date], base: float = 100.0) -> None:
        rows = [
            {
                "symbol": symbol,
                "date": d.isoformat(),
                "open": base + i - 0.5,
                "high": base + i + 1,
                "low": base + i - 1,
                "close": base + i,
                "volume": 1_000_000 + i,
                "change": 0.5,
                "changePercent": 0.5,
                "vwap": base + i,
            }
            for i, d in enumerate(days)
        ]
        # FMP sends newest first
        self.prices[symbol] = list(reversed(rows))

    def add_fundamentals(self, symbol: str, quarters: list[tuple[str, int]]) -> None:
        self.key_metrics[symbol] = [
            {
                "date": day,
                "peRatio": 25.0,
                "priceToFreeCashFlowRatio": 22.0,
                "freeCashFlow": 20_000_000_000,
                "returnOnEquity": 0.3,
                "debtToEquity": 1.5,
            }
            for day, _ in reversed(quarters)
        ]
        self.income[symbol] = [
            {"date": day, "revenue": revenue, "epsDiluted": 1.5, "period": "Q"}
            for day, revenue in reversed(quarters)
        ]

    def _prices(self, request: httpx.Request) -> httpx.Response:
        params = request.url.params
        symbol = params["symbol"]
        self.price_calls.append(symbol)
        if self.price_status != 200:
            return httpx.Response(self.price_status)
        start = params.get("from", "0000-00-00")
        end = params.get("to", "9999-99-99")
        rows = [r for r in self.prices.get(symbol, []) if start <= r["date"] <= end]
        return httpx.Response(200, json=rows)

    def _key_metrics(self, request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=self.key_metrics.get(request.url.params["symbol"], []))

    def _income(self, request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=self.income.get(request.url.params["symbol"], []))

    def install(self, router: respx.MockRouter) -> None:
        router.get(f"{BASE_URL}/historical-price-eod/full").mock(side_effect=self._prices)
        router.get(f"{BASE_URL}/key-metrics").mock(side_effect=self._key_metrics)
        router.get(f"{BASE_URL}/income-statement").mock(side_effect=self._income)


@pytest.fixture
def upstream() -> FakeUpstream:
    fake = FakeUpstream()
    with respx.mock(assert_all_called=False) as router:
        fake.install(router)
        yield fake


@pytest.fixture
def integration_config(tmp_path: Path) -> StockHistoryConfig:
    return StockHistoryConfig(
        fmp=FmpConfig(api_key="integration-key", rate_limit=50),
        storage=StorageConfig(sqlite_path=str(tmp_path / "data" / "stock_history.db")),
    )


@pytest.fixture
async def pipeline(integration_config, fake_redis, clock, upstream) -> AppState:
    """Real store, client and engines; Redis replaced by FakeRedis."""
    config = integration_config
    store = await create_store(config.storage)
    cache = CacheService(config.cache, client=fake_redis)
    await cache.connect()
    client = FmpClient(config.fmp)
    price_sync = PriceSyncEngine(client, store, config.sync)
    fundamental_sync = FundamentalSyncEngine(client, store, config.sync)
    state = AppState(
        config=config,
        store=store,
        cache=cache,
        client=client,
        price_sync=price_sync,
        fundamental_sync=fundamental_sync,
        query=StockQueryEngine(store, cache, price_sync, config.query, clock=clock),
        fundamentals=FundamentalQueryService(store, cache, fundamental_sync, clock=clock),
    )
    yield state
    await state.close()
