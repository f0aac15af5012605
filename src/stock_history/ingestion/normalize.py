"""Record validation and normalisation for upstream payloads.

Price rows: drop rows without a usable date, coerce missing or
non-numeric fields to 0, drop rows whose open/high/low/close are all zero.

Fundamentals: key metrics are the primary series, joined by date with
income statements; income statements stand alone only when no key
metrics came back. Revenue growth is filled in afterwards.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from datetime import date, datetime
from typing import Any

from pydantic import ValidationError

from stock_history.core.models import FundamentalRecord, PriceRecord

logger = logging.getLogger(__name__)

# Quarterly rows; four back is the same quarter a year earlier
YOY_PERIOD_OFFSET = 4
# Accepted gap between a period and its year-ago counterpart
YOY_MIN_DAYS = 300
YOY_MAX_DAYS = 430


def parse_date(value: Any) -> date | None:
    """Parse an ISO date or datetime string. Returns None when unusable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        return None


def _to_float(value: Any, default: float | None = 0.0) -> float | None:
    if value is None or isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number) or math.isinf(number):
        return default
    return number


def _to_int(value: Any, default: int | None = 0) -> int | None:
    """Round to an integer without going through float for large ints."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    number = _to_float(value, None)
    if number is None:
        return default
    return int(round(number))


# --- Prices ---


def _to_volume(value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return math.floor(_to_float(value))


def normalize_price_records(symbol: str, rows: Iterable[Any]) -> list[PriceRecord]:
    """Validate raw price rows into PriceRecords. Invalid rows are skipped."""
    records: list[PriceRecord] = []
    for row in rows:
        if not isinstance(row, dict):
            logger.warning("Skipping non-object price row for %s: %r", symbol, row)
            continue

        raw_date = row.get("date")
        if not raw_date:
            logger.warning("Skipping record with missing date for %s", symbol)
            continue
        day = parse_date(raw_date)
        if day is None:
            logger.warning("Skipping record with invalid date for %s: %s", symbol, raw_date)
            continue

        try:
            record = PriceRecord(
                symbol=symbol,
                date=day,
                open=_to_float(row.get("open")),
                high=_to_float(row.get("high")),
                low=_to_float(row.get("low")),
                close=_to_float(row.get("close")),
                volume=_to_volume(row.get("volume")),
                change=_to_float(row.get("change")),
                change_percent=_to_float(row.get("changePercent")),
                vwap=_to_float(row.get("vwap")),
            )
        except ValidationError as e:
            logger.warning("Error normalizing record for %s on %s: %s", symbol, raw_date, e)
            continue

        if record.open == 0 and record.high == 0 and record.low == 0 and record.close == 0:
            logger.warning(
                "Skipping record with all zero prices for %s on %s", symbol, raw_date
            )
            continue

        records.append(record)
    return records


# --- Fundamentals ---


def _index_by_date(rows: Iterable[Any]) -> dict[str, dict]:
    indexed: dict[str, dict] = {}
    for row in rows:
        if isinstance(row, dict) and row.get("date"):
            indexed[str(row["date"])] = row
    return indexed


def _eps(income: dict | None) -> float | None:
    if income is None:
        return None
    diluted = _to_float(income.get("epsDiluted"), None)
    if diluted is not None:
        return diluted
    return _to_float(income.get("eps"), None)


def merge_fundamentals(
    symbol: str,
    key_metrics: list[Any],
    income_statements: list[Any],
) -> list[FundamentalRecord]:
    """Join key metrics and income statements by period date, ascending."""
    income_by_date = _index_by_date(income_statements)
    records: list[FundamentalRecord] = []

    for km in key_metrics:
        if not isinstance(km, dict) or not km.get("date"):
            continue
        day = parse_date(km["date"])
        if day is None:
            continue
        income = income_by_date.get(str(km["date"]))
        records.append(
            FundamentalRecord(
                symbol=symbol,
                date=day,
                pe_ratio=_to_float(km.get("peRatio"), None),
                price_to_fcf=_to_float(km.get("priceToFreeCashFlowRatio"), None),
                fcf=_to_int(km.get("freeCashFlow"), None),
                eps=_eps(income),
                revenue=_to_int(income.get("revenue"), None) if income else None,
                roe=_to_float(km.get("returnOnEquity"), None),
                debt_to_equity=_to_float(km.get("debtToEquity"), None),
                period=income.get("period") if income else None,
            )
        )

    if not key_metrics and income_by_date:
        for raw_date, income in income_by_date.items():
            day = parse_date(raw_date)
            if day is None:
                continue
            records.append(
                FundamentalRecord(
                    symbol=symbol,
                    date=day,
                    eps=_eps(income),
                    revenue=_to_int(income.get("revenue"), None),
                    period=income.get("period"),
                )
            )

    records.sort(key=lambda r: r.date)
    return records


def compute_revenue_growth(records: list[FundamentalRecord]) -> list[FundamentalRecord]:
    """Fill revenue_growth_yoy as a percentage against the period four back.

    `records` must be sorted ascending by date. Growth stays None for the
    first four records, when either revenue is missing, when the prior
    revenue is zero, and when the prior period is not roughly one year
    earlier (a skipped or extra quarter).
    """
    result: list[FundamentalRecord] = []
    for index, record in enumerate(records):
        growth: float | None = None
        prior_index = index - YOY_PERIOD_OFFSET
        if prior_index >= 0:
            prior = records[prior_index]
            gap = (record.date - prior.date).days
            if (
                record.revenue is not None
                and prior.revenue is not None
                and prior.revenue != 0
                and YOY_MIN_DAYS <= gap <= YOY_MAX_DAYS
            ):
                growth = (record.revenue - prior.revenue) / abs(prior.revenue) * 100
        result.append(record.model_copy(update={"revenue_growth_yoy": growth}))
    return result
