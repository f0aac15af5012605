"""stock_history: cached historical price and fundamentals service."""

__version__ = "0.1.0"
