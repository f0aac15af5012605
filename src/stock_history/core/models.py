"""Pydantic data models: the system's type contracts.

Field names are snake_case in Python and camelCase on the wire (API
payloads and cached JSON). Integer quantities that can exceed 2**53
(volume, free cash flow, revenue) are serialized as decimal strings in
JSON mode and accepted back from strings on validation.
"""

from __future__ import annotations

import re
from datetime import date
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from pydantic.alias_generators import to_camel

from stock_history.core.exceptions import InvalidSymbolError

# --- Type Aliases ---

Symbol = str

MAX_SYMBOL_LENGTH = 10

_SYMBOL_PATTERN = re.compile(r"^[A-Z0-9]{1,10}$")

_WIRE_CONFIG = ConfigDict(
    frozen=True,
    populate_by_name=True,
    alias_generator=to_camel,
)


def normalize_symbol(value: str) -> str:
    """Trim and uppercase a ticker symbol."""
    return value.strip().upper()


def parse_symbol(value: str) -> str:
    """Normalize a user-supplied symbol and require 1-10 letters or digits.

    Raises:
        InvalidSymbolError: If the normalized value does not match.
    """
    symbol = normalize_symbol(value or "")
    if not _SYMBOL_PATTERN.match(symbol):
        raise InvalidSymbolError(
            f"Invalid symbol: {value!r}", context={"symbol": value}
        )
    return symbol


def _check_symbol(value: str) -> str:
    symbol = normalize_symbol(value)
    if not symbol or len(symbol) > MAX_SYMBOL_LENGTH:
        raise ValueError(
            f"symbol must be 1-{MAX_SYMBOL_LENGTH} characters, got {value!r}"
        )
    return symbol


# --- Enumerations ---


class DataStatus(StrEnum):
    """How a history read was satisfied."""

    CACHED = "cached"
    FRESH = "fresh"
    REFRESHED = "refreshed"
    STALE_FALLBACK = "stale_fallback"
    FAILED = "failed"


# --- Stored Records ---


class PriceRecord(BaseModel):
    """One trading day of OHLCV data for one symbol.

    At most one record exists per (symbol, date).
    """

    model_config = _WIRE_CONFIG

    symbol: Symbol
    date: date
    open: float
    high: float
    low: float
    close: float
    volume: int
    change: float = 0.0
    change_percent: float = 0.0
    vwap: float = 0.0

    @field_validator("symbol")
    @classmethod
    def symbol_format(cls, v: str) -> str:
        return _check_symbol(v)

    @field_validator("volume")
    @classmethod
    def volume_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"volume must be >= 0, got {v}")
        return v

    @field_serializer("volume", when_used="json")
    def volume_as_string(self, v: int) -> str:
        return str(v)


class FundamentalRecord(BaseModel):
    """One reporting period of fundamental ratios for one symbol.

    `revenue_growth_yoy` is derived after ingest; it is a percentage.
    `roe` is a decimal fraction (0.28 means 28%).
    """

    model_config = _WIRE_CONFIG

    symbol: Symbol
    date: date
    pe_ratio: float | None = None
    price_to_fcf: float | None = None
    fcf: int | None = None
    eps: float | None = None
    revenue: int | None = None
    revenue_growth_yoy: float | None = None
    roe: float | None = None
    debt_to_equity: float | None = None
    period: str | None = None

    @field_validator("symbol")
    @classmethod
    def symbol_format(cls, v: str) -> str:
        return _check_symbol(v)

    @field_serializer("fcf", "revenue", when_used="json")
    def big_int_as_string(self, v: int | None) -> str | None:
        return None if v is None else str(v)


# --- Derived Values ---


class RatioPoint(BaseModel):
    """Close price of symbol 1 divided by close price of symbol 2 on one date."""

    model_config = _WIRE_CONFIG

    date: date
    ratio: float
    symbol1_price: float
    symbol2_price: float


class DateRange(BaseModel):
    """Earliest and latest stored dates for a symbol."""

    model_config = _WIRE_CONFIG

    earliest: date
    latest: date


# --- Sync Results ---


class SyncDateRange(BaseModel):
    """Date span of the records a sync fetched (both None if nothing came back)."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    start: date | None = Field(default=None, alias="from")
    end: date | None = Field(default=None, alias="to")


class SyncResult(BaseModel):
    """Outcome of a price sync. Failures are captured, never raised."""

    model_config = _WIRE_CONFIG

    symbol: Symbol
    records_fetched: int = 0
    records_saved: int = 0
    date_range: SyncDateRange = SyncDateRange()
    errors: list[str] = []

    @property
    def ok(self) -> bool:
        return not self.errors


class FundamentalSyncResult(BaseModel):
    """Outcome of a fundamentals sync. Failures are captured, never raised."""

    model_config = _WIRE_CONFIG

    symbol: Symbol
    records_fetched: int = 0
    records_saved: int = 0
    errors: list[str] = []

    @property
    def ok(self) -> bool:
        return not self.errors


# --- Read Results ---


class HistoryResult(BaseModel):
    """Price history plus a signal describing how it was obtained."""

    model_config = _WIRE_CONFIG

    symbol: Symbol
    timeframe: str
    records: list[PriceRecord]
    status: DataStatus
    sync_errors: list[str] = []

    @property
    def degraded(self) -> bool:
        """True if a needed refresh did not happen."""
        return self.status in (DataStatus.STALE_FALLBACK, DataStatus.FAILED)
