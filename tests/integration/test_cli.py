"""Integration tests for the CLI against a real SQLite file."""

from __future__ import annotations

import json

import pytest
import yaml
from click.testing import CliRunner

from stock_history.cli import cli
from stock_history.core.timeframes import utc_today


pytestmark = pytest.mark.integration


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "stock-history.yml"
    path.write_text(
        yaml.safe_dump(
            {
                "fmp": {"api_key": "integration-key"},
                "storage": {"sqlite_path": str(tmp_path / "data" / "cli.db")},
                "cache": {"enabled": False},
            }
        )
    )
    return str(path)


@pytest.fixture
def runner():
    return CliRunner()


class TestCliRoundTrip:
    def test_sync_then_history(self, runner, config_file, upstream, weekdays):
        days = weekdays(utc_today(), 5)
        upstream.add_prices("AAPL", days)

        synced = runner.invoke(cli, ["-c", config_file, "sync", "AAPL"])
        assert synced.exit_code == 0, synced.output

        shown = runner.invoke(cli, ["-c", config_file, "history", "AAPL", "-t", "1W", "-f", "json"])
        assert shown.exit_code == 0, shown.output
        rows = json.loads(shown.output)
        assert [r["date"] for r in rows] == [d.isoformat() for d in days]
        assert upstream.price_calls == ["AAPL"]

    def test_status_after_sync(self, runner, config_file, upstream, weekdays):
        upstream.add_prices("MSFT", weekdays(utc_today(), 3))
        runner.invoke(cli, ["-c", config_file, "sync", "MSFT"])

        result = runner.invoke(cli, ["-c", config_file, "status"])
        assert result.exit_code == 0, result.output
        assert "MSFT" in result.output

    def test_sync_failure_exit_code(self, runner, config_file, upstream):
        upstream.price_status = 429
        result = runner.invoke(cli, ["-c", config_file, "sync", "AAPL"])
        assert result.exit_code == 1
