"""Tagged parsing of historical-price response bodies.

The price endpoint has answered in two shapes over its lifetime:

    BARE     [{"date": ..., "open": ...}, ...]
    WRAPPED  {"symbol": "AAPL", "historical": [{...}, ...]}

and reports unknown symbols with ``{"Error Message": "..."}``. The shape is
decided once, by ``classify_payload``, and the rows are pulled out
according to that tag.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from stock_history.core.exceptions import InvalidResponseError

_WRAPPED_KEY = "historical"
_ERROR_KEY = "Error Message"


class PayloadShape(StrEnum):
    BARE = "bare"
    WRAPPED = "wrapped"
    ERROR = "error"


@dataclass(frozen=True)
class HistoricalPayload:
    """Raw rows from one price response, tagged with the shape they came in."""

    shape: PayloadShape
    rows: list[Any]


def classify_payload(raw: Any) -> PayloadShape | None:
    """Return the shape tag of a decoded response body, or None if unknown."""
    if isinstance(raw, list):
        return PayloadShape.BARE
    if isinstance(raw, dict):
        if _ERROR_KEY in raw:
            return PayloadShape.ERROR
        if isinstance(raw.get(_WRAPPED_KEY), list):
            return PayloadShape.WRAPPED
    return None


def parse_historical_payload(raw: Any, symbol: str) -> HistoricalPayload:
    """Extract the raw price rows from a decoded response body.

    Raises:
        InvalidResponseError: Empty body, an error payload, or an unknown shape.
    """
    if raw is None or raw == "":
        raise InvalidResponseError(
            f"No data returned for symbol: {symbol}",
            context={"symbol": symbol},
        )

    shape = classify_payload(raw)
    if shape == PayloadShape.BARE:
        return HistoricalPayload(shape=shape, rows=list(raw))
    if shape == PayloadShape.WRAPPED:
        return HistoricalPayload(shape=shape, rows=list(raw[_WRAPPED_KEY]))
    if shape == PayloadShape.ERROR:
        raise InvalidResponseError(
            f"Invalid symbol or no historical data: {symbol}",
            context={"symbol": symbol, "upstream_message": raw.get(_ERROR_KEY)},
        )
    raise InvalidResponseError(
        f"Unexpected API response format for: {symbol}",
        context={"symbol": symbol, "payload_type": type(raw).__name__},
    )
