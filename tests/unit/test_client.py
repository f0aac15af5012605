"""Tests for stock_history.ingestion.client (FmpClient)."""

from __future__ import annotations

from datetime import date

import httpx
import pytest
import respx

from stock_history.core.config import FmpConfig
from stock_history.core.exceptions import (
    AuthenticationError,
    InvalidResponseError,
    NetworkError,
    PlanRestrictedError,
    RateLimitError,
    UpstreamError,
    UpstreamTimeoutError,
)
from stock_history.ingestion.client import FmpClient

BASE = "https://financialmodelingprep.com/stable"
PRICES_URL = f"{BASE}/historical-price-eod/full"
KEY_METRICS_URL = f"{BASE}/key-metrics"
INCOME_URL = f"{BASE}/income-statement"


# --- Fixtures ---


@pytest.fixture
def fmp_config() -> FmpConfig:
    return FmpConfig(api_key="test-key", rate_limit=50, request_timeout=5)


@pytest.fixture
async def client(fmp_config: FmpConfig) -> FmpClient:
    async with FmpClient(fmp_config) as c:
        yield c


@pytest.fixture
def price_rows() -> list[dict]:
    """Mock historical-price-eod/full rows, newest first as FMP sends them."""
    return [
        {"symbol": "AAPL", "date": "2024-06-14", "open": 213.85, "high": 215.17,
         "low": 211.3, "close": 212.49, "volume": 70122748, "change": -1.36,
         "changePercent": -0.64, "vwap": 213.0},
        {"symbol": "AAPL", "date": "2024-06-13", "open": 214.74, "high": 216.75,
         "low": 211.6, "close": 214.24, "volume": 97862729, "change": -0.5,
         "changePercent": -0.23, "vwap": 214.3},
    ]


# --- get_historical_prices ---


class TestGetHistoricalPrices:
    @respx.mock
    async def test_bare_list(self, client: FmpClient, price_rows: list[dict]):
        respx.get(PRICES_URL).mock(return_value=httpx.Response(200, json=price_rows))
        rows = await client.get_historical_prices("AAPL")
        assert rows == price_rows

    @respx.mock
    async def test_wrapped_payload(self, client: FmpClient, price_rows: list[dict]):
        respx.get(PRICES_URL).mock(
            return_value=httpx.Response(200, json={"symbol": "AAPL", "historical": price_rows})
        )
        rows = await client.get_historical_prices("AAPL")
        assert len(rows) == 2

    @respx.mock
    async def test_sends_query_params(self, client: FmpClient):
        route = respx.get(PRICES_URL).mock(return_value=httpx.Response(200, json=[]))
        await client.get_historical_prices("AAPL", date(2024, 1, 2), date(2024, 6, 14))
        params = route.calls.last.request.url.params
        assert params["symbol"] == "AAPL"
        assert params["from"] == "2024-01-02"
        assert params["to"] == "2024-06-14"
        assert params["apikey"] == "test-key"

    @respx.mock
    async def test_omits_open_bounds(self, client: FmpClient):
        route = respx.get(PRICES_URL).mock(return_value=httpx.Response(200, json=[]))
        await client.get_historical_prices("AAPL")
        params = route.calls.last.request.url.params
        assert "from" not in params
        assert "to" not in params

    @respx.mock
    async def test_error_payload(self, client: FmpClient):
        respx.get(PRICES_URL).mock(
            return_value=httpx.Response(200, json={"Error Message": "Invalid ticker"})
        )
        with pytest.raises(InvalidResponseError, match="Invalid symbol or no historical data"):
            await client.get_historical_prices("ZZZZ")

    @respx.mock
    async def test_non_json_body(self, client: FmpClient):
        respx.get(PRICES_URL).mock(return_value=httpx.Response(200, text="<html>"))
        with pytest.raises(InvalidResponseError):
            await client.get_historical_prices("AAPL")

    @respx.mock
    async def test_rate_limited(self, client: FmpClient):
        respx.get(PRICES_URL).mock(return_value=httpx.Response(429))
        with pytest.raises(RateLimitError, match="250 calls/day") as exc:
            await client.get_historical_prices("AAPL")
        assert exc.value.context["status_code"] == 429

    @pytest.mark.parametrize("status", [401, 403])
    @respx.mock
    async def test_unauthorized(self, client: FmpClient, status: int):
        respx.get(PRICES_URL).mock(return_value=httpx.Response(status))
        with pytest.raises(AuthenticationError, match="Invalid API key"):
            await client.get_historical_prices("AAPL")

    @respx.mock
    async def test_plan_restricted(self, client: FmpClient):
        respx.get(PRICES_URL).mock(return_value=httpx.Response(402))
        with pytest.raises(PlanRestrictedError):
            await client.get_historical_prices("AAPL")

    @respx.mock
    async def test_other_status(self, client: FmpClient):
        respx.get(PRICES_URL).mock(return_value=httpx.Response(500))
        with pytest.raises(UpstreamError, match="status code 500"):
            await client.get_historical_prices("AAPL")

    @respx.mock
    async def test_timeout(self, client: FmpClient):
        respx.get(PRICES_URL).mock(side_effect=httpx.ReadTimeout("slow"))
        with pytest.raises(UpstreamTimeoutError, match="timed out"):
            await client.get_historical_prices("AAPL")

    @respx.mock
    async def test_connection_refused(self, client: FmpClient):
        respx.get(PRICES_URL).mock(side_effect=httpx.ConnectError("refused"))
        with pytest.raises(NetworkError, match="Unable to connect to FMP API"):
            await client.get_historical_prices("AAPL")

    @respx.mock
    async def test_api_key_not_in_error_context(self, client: FmpClient):
        respx.get(PRICES_URL).mock(return_value=httpx.Response(500))
        with pytest.raises(UpstreamError) as exc:
            await client.get_historical_prices("AAPL")
        assert "test-key" not in str(exc.value.context)


class TestMissingApiKey:
    @respx.mock
    async def test_no_request_sent(self):
        route = respx.get(PRICES_URL).mock(return_value=httpx.Response(200, json=[]))
        async with FmpClient(FmpConfig()) as c:
            with pytest.raises(AuthenticationError, match="FMP API key not configured"):
                await c.get_historical_prices("AAPL")
        assert not route.called


# --- Fundamentals ---


class TestFundamentals:
    @respx.mock
    async def test_key_metrics(self, client: FmpClient):
        route = respx.get(KEY_METRICS_URL).mock(
            return_value=httpx.Response(200, json=[{"date": "2024-03-30", "peRatio": 29.4}])
        )
        rows = await client.get_key_metrics("AAPL", limit=8)
        assert rows == [{"date": "2024-03-30", "peRatio": 29.4}]
        params = route.calls.last.request.url.params
        assert params["period"] == "quarter"
        assert params["limit"] == "8"

    @respx.mock
    async def test_income_statements(self, client: FmpClient):
        respx.get(INCOME_URL).mock(
            return_value=httpx.Response(200, json=[{"date": "2024-03-30", "revenue": 1}])
        )
        assert len(await client.get_income_statements("AAPL")) == 1

    @pytest.mark.parametrize("status", [402, 403])
    @respx.mock
    async def test_paid_plan_returns_empty(self, client: FmpClient, status: int):
        respx.get(KEY_METRICS_URL).mock(return_value=httpx.Response(status))
        assert await client.get_key_metrics("AAPL") == []

    @respx.mock
    async def test_unauthorized_401_raises(self, client: FmpClient):
        respx.get(INCOME_URL).mock(return_value=httpx.Response(401))
        with pytest.raises(AuthenticationError):
            await client.get_income_statements("AAPL")

    @respx.mock
    async def test_rate_limit_propagates(self, client: FmpClient):
        respx.get(KEY_METRICS_URL).mock(return_value=httpx.Response(429))
        with pytest.raises(RateLimitError):
            await client.get_key_metrics("AAPL")

    @respx.mock
    async def test_other_failure_wrapped(self, client: FmpClient):
        respx.get(INCOME_URL).mock(return_value=httpx.Response(503))
        with pytest.raises(UpstreamError, match="Failed to fetch income statement"):
            await client.get_income_statements("AAPL")

    @respx.mock
    async def test_non_list_body(self, client: FmpClient):
        respx.get(KEY_METRICS_URL).mock(return_value=httpx.Response(200, json={"oops": 1}))
        assert await client.get_key_metrics("AAPL") == []
