"""stock_history.cache: Best-effort Redis cache."""

from stock_history.cache.service import (
    CacheService,
    fundamentals_key,
    price_ratio_key,
    stock_history_key,
)

__all__ = [
    "CacheService",
    "stock_history_key",
    "price_ratio_key",
    "fundamentals_key",
]
