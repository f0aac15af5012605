"""FastAPI route definitions for the stock-history API."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import JSONResponse

import stock_history
from stock_history.api.deps import (
    get_cache,
    get_fundamentals_service,
    get_query_engine,
    get_store,
)
from stock_history.api.schemas import ApiResponse, ErrorResponse, HealthResponse
from stock_history.cache.service import CacheService
from stock_history.core.exceptions import InvalidSymbolError, NoDataError
from stock_history.core.models import (
    DateRange,
    FundamentalRecord,
    FundamentalSyncResult,
    PriceRecord,
    RatioPoint,
    SyncResult,
    parse_symbol,
)
from stock_history.core.timeframes import parse_timeframe
from stock_history.ingestion.store import SqliteStore
from stock_history.query.engine import StockQueryEngine
from stock_history.query.fundamentals import FundamentalQueryService

router = APIRouter()

DATA_STATUS_HEADER = "X-Data-Status"


def _symbol_param(value: str | None, label: str = "symbol") -> str:
    try:
        return parse_symbol(value or "")
    except InvalidSymbolError as e:
        message = "Invalid symbol" if label == "symbol" else f"Invalid or missing {label}"
        raise InvalidSymbolError(message, context=e.context) from None


def _sync_failure(errors: list[str]) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(error="; ".join(errors)).model_dump(),
    )


# -- Health --


@router.get("/health", response_model=HealthResponse)
async def health_check(
    store: SqliteStore = Depends(get_store),
    cache: CacheService = Depends(get_cache),
):
    """System health and basic statistics."""
    stats = await store.get_statistics()
    return HealthResponse(
        status="ok",
        version=stock_history.__version__,
        database=await store.health_check(),
        cache=cache.is_available,
        price_rows=stats["price_rows"],
        fundamental_rows=stats["fundamental_rows"],
        symbols=stats["symbols"],
    )


# -- Prices --


@router.get("/stocks/ratio", response_model=ApiResponse[list[RatioPoint]])
async def get_ratio(
    base: str | None = Query(None, description="Numerator symbol"),
    compare: str | None = Query(None, description="Denominator symbol"),
    timeframe: str = Query("1M"),
    engine: StockQueryEngine = Depends(get_query_engine),
):
    """Close-price ratio base/compare on every shared trading day."""
    sym1 = _symbol_param(base, "base symbol")
    sym2 = _symbol_param(compare, "compare symbol")
    tf = parse_timeframe(timeframe)
    return ApiResponse(data=await engine.get_price_ratio(sym1, sym2, tf))


@router.get("/stocks/{symbol}/history", response_model=ApiResponse[list[PriceRecord]])
async def get_history(
    symbol: str,
    response: Response,
    timeframe: str = Query("1M"),
    engine: StockQueryEngine = Depends(get_query_engine),
):
    """Daily prices for the timeframe window, ascending by date."""
    result = await engine.fetch_history(_symbol_param(symbol), parse_timeframe(timeframe))
    response.headers[DATA_STATUS_HEADER] = result.status.value
    return ApiResponse(data=result.records)


@router.get("/stocks/{symbol}/latest", response_model=ApiResponse[PriceRecord])
async def get_latest(
    symbol: str,
    engine: StockQueryEngine = Depends(get_query_engine),
):
    """Most recent trading day within the last week."""
    sym = _symbol_param(symbol)
    latest = await engine.get_latest(sym)
    if latest is None:
        raise NoDataError("No data found", context={"symbol": sym})
    return ApiResponse(data=latest)


@router.post("/stocks/{symbol}/sync", response_model=ApiResponse[SyncResult])
async def sync_stock(
    symbol: str,
    engine: StockQueryEngine = Depends(get_query_engine),
):
    """Invalidate cached entries and run a full price sync."""
    result = await engine.refresh_data(_symbol_param(symbol))
    if result.errors:
        return _sync_failure(result.errors)
    return ApiResponse(data=result)


@router.get("/stocks/{symbol}/date-range", response_model=ApiResponse[DateRange | None])
async def get_date_range(
    symbol: str,
    engine: StockQueryEngine = Depends(get_query_engine),
):
    """Earliest and latest stored dates, or null when nothing is stored."""
    return ApiResponse(data=await engine.get_available_date_range(_symbol_param(symbol)))


# -- Fundamentals --


@router.get(
    "/stocks/{symbol}/fundamentals",
    response_model=ApiResponse[list[FundamentalRecord]],
)
async def get_fundamentals(
    symbol: str,
    timeframe: str = Query("5Y"),
    service: FundamentalQueryService = Depends(get_fundamentals_service),
):
    """Quarterly fundamentals whose period ends inside the window."""
    return ApiResponse(data=await service.get_fundamentals(_symbol_param(symbol), timeframe))


@router.post(
    "/stocks/{symbol}/fundamentals/sync",
    response_model=ApiResponse[FundamentalSyncResult],
)
async def sync_fundamentals(
    symbol: str,
    service: FundamentalQueryService = Depends(get_fundamentals_service),
):
    """Invalidate cached fundamentals and re-sync from upstream."""
    result = await service.refresh_fundamentals(_symbol_param(symbol))
    if result.errors:
        return _sync_failure(result.errors)
    return ApiResponse(data=result)
