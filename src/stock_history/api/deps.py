"""Dependency injection for FastAPI routes."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

from stock_history.cache.service import CacheService
from stock_history.core.config import StockHistoryConfig
from stock_history.ingestion.client import FmpClient
from stock_history.ingestion.store import SqliteStore, create_store
from stock_history.ingestion.sync import FundamentalSyncEngine, PriceSyncEngine
from stock_history.query.engine import StockQueryEngine
from stock_history.query.fundamentals import FundamentalQueryService


@dataclass
class AppState:
    """Shared application state, attached to app.state during lifespan."""

    config: StockHistoryConfig
    store: SqliteStore
    cache: CacheService
    client: FmpClient
    price_sync: PriceSyncEngine
    fundamental_sync: FundamentalSyncEngine
    query: StockQueryEngine
    fundamentals: FundamentalQueryService

    async def close(self) -> None:
        await self.client.close()
        await self.cache.close()
        await self.store.close()


async def build_app_state(config: StockHistoryConfig) -> AppState:
    """Open the store and cache and wire the engines together."""
    store = await create_store(config.storage)
    cache = CacheService(config.cache)
    await cache.connect()
    client = FmpClient(config.fmp)
    price_sync = PriceSyncEngine(client, store, config.sync)
    fundamental_sync = FundamentalSyncEngine(client, store, config.sync)
    return AppState(
        config=config,
        store=store,
        cache=cache,
        client=client,
        price_sync=price_sync,
        fundamental_sync=fundamental_sync,
        query=StockQueryEngine(store, cache, price_sync, config.query),
        fundamentals=FundamentalQueryService(store, cache, fundamental_sync),
    )


def get_app_state(request: Request) -> AppState:
    """Dependency: retrieve AppState from the request."""
    return request.app.state.app_state


def get_config(request: Request) -> StockHistoryConfig:
    return request.app.state.app_state.config


def get_store(request: Request) -> SqliteStore:
    return request.app.state.app_state.store


def get_cache(request: Request) -> CacheService:
    return request.app.state.app_state.cache


def get_query_engine(request: Request) -> StockQueryEngine:
    return request.app.state.app_state.query


def get_fundamentals_service(request: Request) -> FundamentalQueryService:
    return request.app.state.app_state.fundamentals
