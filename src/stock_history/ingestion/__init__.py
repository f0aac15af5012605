"""stock_history.ingestion: Upstream client, normalisation, sync, storage."""

from stock_history.ingestion.client import FmpClient
from stock_history.ingestion.payloads import (
    HistoricalPayload,
    PayloadShape,
    classify_payload,
    parse_historical_payload,
)
from stock_history.ingestion.normalize import (
    compute_revenue_growth,
    merge_fundamentals,
    normalize_price_records,
)
from stock_history.ingestion.store import SqliteStore, StorageProtocol, create_store
from stock_history.ingestion.sync import FundamentalSyncEngine, PriceSyncEngine

__all__ = [
    "FmpClient",
    "HistoricalPayload",
    "PayloadShape",
    "classify_payload",
    "parse_historical_payload",
    "normalize_price_records",
    "merge_fundamentals",
    "compute_revenue_growth",
    "StorageProtocol",
    "SqliteStore",
    "create_store",
    "PriceSyncEngine",
    "FundamentalSyncEngine",
]
