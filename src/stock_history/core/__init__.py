"""stock_history.core: Foundation types, config, and exceptions."""

from stock_history.core.config import (
    APIConfig,
    CacheConfig,
    FmpConfig,
    QueryConfig,
    StockHistoryConfig,
    StorageConfig,
    SyncConfig,
    load_config,
)
from stock_history.core.exceptions import (
    AuthenticationError,
    CacheError,
    ConfigError,
    InvalidInputError,
    InvalidResponseError,
    InvalidSymbolError,
    InvalidTimeframeError,
    NetworkError,
    NoDataError,
    PlanRestrictedError,
    RateLimitError,
    StockHistoryError,
    StorageError,
    UpstreamError,
    UpstreamTimeoutError,
)
from stock_history.core.models import (
    DataStatus,
    DateRange,
    FundamentalRecord,
    FundamentalSyncResult,
    HistoryResult,
    PriceRecord,
    RatioPoint,
    Symbol,
    SyncDateRange,
    SyncResult,
    normalize_symbol,
    parse_symbol,
)
from stock_history.core.timeframes import (
    TIMEFRAME_TTL,
    Timeframe,
    date_window,
    parse_timeframe,
    ttl_seconds,
)

__all__ = [
    # Type aliases
    "Symbol",
    # Enums
    "Timeframe",
    "DataStatus",
    # Records
    "PriceRecord",
    "FundamentalRecord",
    "RatioPoint",
    "DateRange",
    # Results
    "SyncDateRange",
    "SyncResult",
    "FundamentalSyncResult",
    "HistoryResult",
    # Helpers
    "normalize_symbol",
    "parse_symbol",
    "parse_timeframe",
    "date_window",
    "ttl_seconds",
    "TIMEFRAME_TTL",
    # Config
    "StockHistoryConfig",
    "FmpConfig",
    "StorageConfig",
    "CacheConfig",
    "SyncConfig",
    "QueryConfig",
    "APIConfig",
    "load_config",
    # Exceptions
    "StockHistoryError",
    "ConfigError",
    "InvalidInputError",
    "InvalidTimeframeError",
    "InvalidSymbolError",
    "NoDataError",
    "UpstreamError",
    "RateLimitError",
    "AuthenticationError",
    "PlanRestrictedError",
    "NetworkError",
    "UpstreamTimeoutError",
    "InvalidResponseError",
    "StorageError",
    "CacheError",
]
