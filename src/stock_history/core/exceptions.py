"""Custom exception hierarchy for stock-history."""

from typing import Any


class StockHistoryError(Exception):
    """Base exception for all stock-history errors.

    All exceptions carry an optional `context` dict for structured error
    metadata that can be logged or serialized without parsing the message.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.context = context or {}


class ConfigError(StockHistoryError):
    """Invalid or missing configuration.

    Raised by load_config() during startup. Should be treated as fatal.

    Context keys:
        field: str - the config field that failed validation
        value: Any - the invalid value (redacted for secrets)
    """


class InvalidInputError(StockHistoryError):
    """Caller supplied a bad symbol or timeframe.

    Policy: report to the caller (HTTP 400). Never retried.
    """


class InvalidTimeframeError(InvalidInputError):
    """Timeframe is not one of 5Y, 1Y, YTD, 1M, 1W.

    Context keys:
        timeframe: str - the rejected value
        symbol: str | None - the symbol of the request, if any
    """


class InvalidSymbolError(InvalidInputError):
    """Symbol is empty, too long, or not alphanumeric.

    Context keys:
        symbol: str - the rejected value
    """


class NoDataError(StockHistoryError):
    """Valid request, but nothing could be found for the symbol.

    Policy: report to the caller (HTTP 404). Never retried.

    Context keys:
        symbol: str - the symbol without data
    """


class UpstreamError(StockHistoryError):
    """The external market data API failed.

    Policy: never raised past the sync engine. Rendered into the
    ``errors`` list of a sync result.

    Context keys:
        url: str - the endpoint that failed (API key redacted)
        status_code: int | None - HTTP status if a response was received
    """


class RateLimitError(UpstreamError):
    """Upstream returned HTTP 429."""


class AuthenticationError(UpstreamError):
    """Upstream returned HTTP 401/403, or no API key is configured."""


class PlanRestrictedError(UpstreamError):
    """Upstream returned HTTP 402 (endpoint needs a paid plan)."""


class NetworkError(UpstreamError):
    """Upstream could not be reached (connection refused, DNS failure)."""


class UpstreamTimeoutError(UpstreamError):
    """Upstream did not answer within the request timeout."""


class InvalidResponseError(UpstreamError):
    """Upstream answered with a payload of an unexpected shape.

    Context keys:
        symbol: str - the requested symbol
    """


class StorageError(StockHistoryError):
    """Database operation failed.

    Policy: raise immediately. Fatal for the triggering request.

    Context keys:
        operation: str - "upsert", "query", "migrate", etc.
        table: str - the table involved
        records_saved: int - rows committed before a failing batch
    """


class CacheError(StockHistoryError):
    """Cache backend failed.

    Policy: never surfaced. The cache layer downgrades it to a miss.
    """
