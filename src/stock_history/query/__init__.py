"""stock_history.query: Read path: staleness policy, ratios, fundamentals."""

from stock_history.query.engine import StockQueryEngine
from stock_history.query.fundamentals import FundamentalQueryService
from stock_history.query.merge import compute_price_ratio, merge_records
from stock_history.query.singleflight import SingleFlight

__all__ = [
    "StockQueryEngine",
    "FundamentalQueryService",
    "merge_records",
    "compute_price_ratio",
    "SingleFlight",
]
