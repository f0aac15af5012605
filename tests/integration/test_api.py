"""Integration tests for the FastAPI REST API.

Uses FastAPI TestClient with real SQLite storage and the real FMP client;
upstream responses come from respx. Redis is disabled.
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from stock_history.api.app import create_app
from stock_history.core.config import CacheConfig
from stock_history.core.timeframes import utc_today


pytestmark = pytest.mark.integration


@pytest.fixture
def api_config(integration_config):
    return integration_config.model_copy(update={"cache": CacheConfig(enabled=False)})


@pytest.fixture
def client(api_config, upstream):
    with TestClient(create_app(config=api_config)) as c:
        yield c


class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["database"] is True
        assert body["cache"] is False


class TestHistoryEndpoint:
    def test_first_read_syncs_then_serves_from_store(self, client, upstream, weekdays):
        days = weekdays(utc_today(), 5)
        upstream.add_prices("AAPL", days)

        first = client.get("/api/stocks/AAPL/history", params={"timeframe": "1W"})
        assert first.status_code == 200
        assert first.headers["x-data-status"] == "refreshed"
        data = first.json()["data"]
        assert len(data) == 5
        assert data[0]["volume"] == "1000000"
        assert data[-1]["date"] == days[-1].isoformat()

        second = client.get("/api/stocks/AAPL/history", params={"timeframe": "1W"})
        assert second.headers["x-data-status"] == "fresh"
        assert second.json()["data"] == data
        assert upstream.price_calls == ["AAPL"]

    def test_upstream_down_with_empty_store(self, client, upstream):
        upstream.price_status = 500
        response = client.get("/api/stocks/AAPL/history")
        assert response.status_code == 200
        assert response.json() == {"success": True, "data": []}
        assert response.headers["x-data-status"] == "failed"


class TestRatioEndpoint:
    def test_ratio(self, client, upstream, weekdays):
        upstream.add_prices("AAPL", weekdays(utc_today(), 5), base=300.0)
        upstream.add_prices("MSFT", weekdays(utc_today(), 5), base=100.0)
        response = client.get(
            "/api/stocks/ratio",
            params={"base": "AAPL", "compare": "MSFT", "timeframe": "1W"},
        )
        assert response.status_code == 200
        points = response.json()["data"]
        assert len(points) == 5
        assert points[0]["ratio"] == pytest.approx(3.0)

    def test_ratio_unknown_symbol(self, client, upstream, weekdays):
        upstream.add_prices("AAPL", weekdays(utc_today(), 5))
        response = client.get(
            "/api/stocks/ratio", params={"base": "AAPL", "compare": "ZZZZ", "timeframe": "1W"}
        )
        assert response.status_code == 404
        assert response.json()["success"] is False


class TestSyncEndpoints:
    def test_sync_then_date_range(self, client, upstream, weekdays):
        days = weekdays(utc_today(), 8)
        upstream.add_prices("MSFT", days)

        sync = client.post("/api/stocks/msft/sync")
        assert sync.status_code == 200
        result = sync.json()["data"]
        assert result["recordsSaved"] == 8
        assert result["dateRange"] == {"from": days[0].isoformat(), "to": days[-1].isoformat()}

        span = client.get("/api/stocks/MSFT/date-range").json()["data"]
        assert span == {"earliest": days[0].isoformat(), "latest": days[-1].isoformat()}

    def test_sync_failure_is_500(self, client, upstream):
        upstream.price_status = 401
        response = client.post("/api/stocks/AAPL/sync")
        assert response.status_code == 500
        assert response.json() == {
            "success": False,
            "error": "Invalid API key or unauthorized access",
        }

    def test_fundamentals_sync_and_read(self, client, upstream):
        older = (utc_today() - timedelta(days=200)).isoformat()
        newer = (utc_today() - timedelta(days=100)).isoformat()
        upstream.add_fundamentals("AAPL", [(older, 100), (newer, 110)])
        sync = client.post("/api/stocks/AAPL/fundamentals/sync")
        assert sync.status_code == 200
        assert sync.json()["data"]["recordsSaved"] == 2

        rows = client.get("/api/stocks/AAPL/fundamentals", params={"timeframe": "max"}).json()["data"]
        assert [r["date"] for r in rows] == [older, newer]
        assert rows[0]["fcf"] == "20000000000"
