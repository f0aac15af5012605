"""Chart timeframes: lookback windows, cache lifetimes, coverage heuristics."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from enum import StrEnum

from stock_history.core.exceptions import InvalidTimeframeError


class Timeframe(StrEnum):
    """The five fixed lookback windows offered to the charting frontend."""

    FIVE_YEARS = "5Y"
    ONE_YEAR = "1Y"
    YEAR_TO_DATE = "YTD"
    ONE_MONTH = "1M"
    ONE_WEEK = "1W"


# Cache lifetime per timeframe, in seconds
TIMEFRAME_TTL: dict[Timeframe, int] = {
    Timeframe.FIVE_YEARS: 24 * 60 * 60,
    Timeframe.ONE_YEAR: 12 * 60 * 60,
    Timeframe.YEAR_TO_DATE: 6 * 60 * 60,
    Timeframe.ONE_MONTH: 3 * 60 * 60,
    Timeframe.ONE_WEEK: 1 * 60 * 60,
}

# Rough minimum number of trading days expected in each window.
# YTD is computed from the calendar instead (see expected_record_count).
MIN_TRADING_DAYS: dict[Timeframe, int] = {
    Timeframe.FIVE_YEARS: 1000,
    Timeframe.ONE_YEAR: 200,
    Timeframe.YEAR_TO_DATE: 1,
    Timeframe.ONE_MONTH: 15,
    Timeframe.ONE_WEEK: 3,
}

# Share of calendar days that are trading days, used for YTD
_TRADING_DAY_SHARE = 0.7


def parse_timeframe(value: str | Timeframe, symbol: str | None = None) -> Timeframe:
    """Normalize a user-supplied timeframe string.

    Raises:
        InvalidTimeframeError: If the value is not one of the five timeframes.
    """
    if isinstance(value, Timeframe):
        return value
    normalized = str(value).strip().upper()
    try:
        return Timeframe(normalized)
    except ValueError:
        valid = ", ".join(tf.value for tf in Timeframe)
        raise InvalidTimeframeError(
            f"Invalid timeframe: {value}. Valid values: {valid}",
            context={"timeframe": value, "symbol": symbol},
        ) from None


def utc_today(now: datetime | None = None) -> date:
    """Calendar day of `now` (default: current time) in UTC."""
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return now.date()


def _years_before(day: date, years: int) -> date:
    try:
        return day.replace(year=day.year - years)
    except ValueError:
        # Feb 29 -> Feb 28
        return day.replace(year=day.year - years, day=28)


def date_window(timeframe: Timeframe, today: date) -> tuple[date, date]:
    """Return the inclusive ``(from, to)`` window anchored at `today`."""
    if timeframe == Timeframe.FIVE_YEARS:
        start = _years_before(today, 5)
    elif timeframe == Timeframe.ONE_YEAR:
        start = today - timedelta(days=365)
    elif timeframe == Timeframe.YEAR_TO_DATE:
        start = date(today.year, 1, 1)
    elif timeframe == Timeframe.ONE_MONTH:
        start = today - timedelta(days=30)
    else:
        start = today - timedelta(days=7)
    return start, today


def ttl_seconds(timeframe: Timeframe) -> int:
    return TIMEFRAME_TTL[timeframe]


def expected_record_count(timeframe: Timeframe, today: date) -> float:
    """Minimum number of stored rows a window should hold to count as covered."""
    if timeframe == Timeframe.YEAR_TO_DATE:
        days_elapsed = (today - date(today.year, 1, 1)).days
        return float(int(days_elapsed * _TRADING_DAY_SHARE))
    return float(MIN_TRADING_DAYS[timeframe])
