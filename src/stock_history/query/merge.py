"""Pure reconciliation and alignment of per-date record series."""

from __future__ import annotations

from collections.abc import Iterable
from typing import TypeVar

from stock_history.core.models import FundamentalRecord, PriceRecord, RatioPoint

R = TypeVar("R", PriceRecord, FundamentalRecord)


def merge_records(old: Iterable[R], new: Iterable[R]) -> list[R]:
    """Combine two record sets for one symbol, deduplicated by date.

    On a date collision the record from `new` wins. Output is ascending
    by date, and merging the same `new` twice changes nothing.
    """
    by_date = {record.date: record for record in old}
    for record in new:
        by_date[record.date] = record
    return [by_date[d] for d in sorted(by_date)]


def compute_price_ratio(
    series_a: Iterable[PriceRecord],
    series_b: Iterable[PriceRecord],
) -> list[RatioPoint]:
    """Close(A) / close(B) for every date present in both series.

    Dates where B closed at zero are skipped. The result follows the date
    order of `series_a` and is sorted ascending as a final step.
    """
    b_by_date = {record.date: record for record in series_b}
    points: list[RatioPoint] = []
    for a in series_a:
        b = b_by_date.get(a.date)
        if b is None or b.close == 0:
            continue
        points.append(
            RatioPoint(
                date=a.date,
                ratio=a.close / b.close,
                symbol1_price=a.close,
                symbol2_price=b.close,
            )
        )
    points.sort(key=lambda p: p.date)
    return points
