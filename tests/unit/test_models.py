"""Tests for stock_history.core.models."""

import json
from datetime import date

import pytest
from pydantic import ValidationError

from stock_history.core.exceptions import InvalidSymbolError
from stock_history.core.models import (
    DataStatus,
    FundamentalRecord,
    HistoryResult,
    PriceRecord,
    SyncDateRange,
    SyncResult,
    parse_symbol,
)


class TestPriceRecord:
    def test_symbol_normalized(self, make_price):
        assert make_price(symbol=" aapl ").symbol == "AAPL"

    def test_symbol_too_long(self, make_price):
        with pytest.raises(ValidationError, match="1-10 characters"):
            make_price(symbol="ABCDEFGHIJK")

    def test_negative_volume_rejected(self, make_price):
        with pytest.raises(ValidationError, match="volume must be >= 0"):
            make_price(volume=-1)

    def test_frozen(self, make_price):
        record = make_price()
        with pytest.raises(ValidationError):
            record.close = 1.0

    def test_json_uses_camel_case_and_string_volume(self, make_price):
        big = 2**60
        payload = make_price(volume=big).model_dump(mode="json", by_alias=True)
        assert payload["volume"] == str(big)
        assert payload["changePercent"] == 0.63
        assert payload["date"] == "2024-06-14"

    def test_python_dump_keeps_int_volume(self, make_price):
        assert make_price().model_dump()["volume"] == 52_000_000

    def test_big_volume_survives_json_round_trip(self, make_price):
        big = 9_007_199_254_740_993  # 2**53 + 1
        text = make_price(volume=big).model_dump_json(by_alias=True)
        assert PriceRecord.model_validate_json(text).volume == big


class TestFundamentalRecord:
    def test_big_ints_serialized_as_strings(self, make_fundamental):
        payload = json.loads(make_fundamental().model_dump_json(by_alias=True))
        assert payload["fcf"] == "20694000000"
        assert payload["revenue"] == "90753000000"
        assert payload["priceToFcf"] == 27.1
        assert payload["revenueGrowthYoy"] is None

    def test_nulls_stay_null(self, make_fundamental):
        payload = make_fundamental(fcf=None, revenue=None).model_dump(mode="json")
        assert payload["fcf"] is None
        assert payload["revenue"] is None


class TestParseSymbol:
    @pytest.mark.parametrize("raw,expected", [("aapl", "AAPL"), (" msft ", "MSFT"), ("brk1", "BRK1")])
    def test_valid(self, raw, expected):
        assert parse_symbol(raw) == expected

    @pytest.mark.parametrize("raw", ["", "   ", "BRK.B", "ABCDEFGHIJK", "A-B"])
    def test_invalid(self, raw):
        with pytest.raises(InvalidSymbolError):
            parse_symbol(raw)


class TestResults:
    def test_sync_result_ok(self):
        assert SyncResult(symbol="AAPL").ok
        assert not SyncResult(symbol="AAPL", errors=["boom"]).ok

    def test_sync_date_range_wire_names(self):
        span = SyncDateRange(start=date(2024, 1, 2), end=date(2024, 1, 5))
        assert span.model_dump(mode="json", by_alias=True) == {
            "from": "2024-01-02",
            "to": "2024-01-05",
        }

    def test_sync_result_wire_names(self):
        payload = SyncResult(symbol="AAPL", records_fetched=3).model_dump(by_alias=True)
        assert payload["recordsFetched"] == 3
        assert payload["dateRange"] == {"from": None, "to": None}

    @pytest.mark.parametrize(
        "status,degraded",
        [
            (DataStatus.CACHED, False),
            (DataStatus.FRESH, False),
            (DataStatus.REFRESHED, False),
            (DataStatus.STALE_FALLBACK, True),
            (DataStatus.FAILED, True),
        ],
    )
    def test_history_result_degraded(self, status, degraded):
        result = HistoryResult(symbol="AAPL", timeframe="1M", records=[], status=status)
        assert result.degraded is degraded
