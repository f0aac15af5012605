"""Rate-limited async HTTP client for the Financial Modeling Prep API."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any

import httpx
from aiolimiter import AsyncLimiter

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
from stock_history.ingestion.payloads import parse_historical_payload

logger = logging.getLogger(__name__)

# Endpoint paths, relative to FmpConfig.base_url
_HISTORICAL_PRICE_PATH = "historical-price-eod/full"
_KEY_METRICS_PATH = "key-metrics"
_INCOME_STATEMENT_PATH = "income-statement"


class FmpClient:
    """Rate-limited async client for FMP market data endpoints.

    Failures are classified into distinct UpstreamError subclasses and
    raised to the caller. Nothing is retried: the sync engine turns each
    failure into an error string on its result.

    The API key travels as a query parameter and is never part of the URL
    strings placed into logs or exception context.

    Use via `async with FmpClient(config) as client:`.
    """

    def __init__(
        self,
        config: FmpConfig,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._limiter = AsyncLimiter(max_rate=config.rate_limit, time_period=1.0)
        self._client = http_client or httpx.AsyncClient(
            headers={"Accept": "application/json"},
            timeout=httpx.Timeout(config.request_timeout),
            follow_redirects=True,
        )
        if not config.api_key:
            logger.warning("FMP API key not configured; upstream requests will fail")

    async def __aenter__(self) -> FmpClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client. Called automatically by __aexit__."""
        await self._client.aclose()

    # --- Prices ---

    async def get_historical_prices(
        self,
        symbol: str,
        start: date | None = None,
        end: date | None = None,
    ) -> list[Any]:
        """Fetch raw daily OHLCV rows for a symbol.

        Args:
            symbol: Normalized ticker symbol.
            start: Earliest date (inclusive), or None for the full history.
            end: Latest date (inclusive), or None for today.

        Returns:
            Raw row dicts as sent by the API (not validated).

        Raises:
            UpstreamError: Any subclass, depending on how the request failed.
        """
        params: dict[str, str] = {"symbol": symbol}
        if start is not None:
            params["from"] = start.isoformat()
        if end is not None:
            params["to"] = end.isoformat()

        logger.info("Fetching historical data for %s", symbol)
        raw = await self._get_json(_HISTORICAL_PRICE_PATH, params, symbol)
        payload = parse_historical_payload(raw, symbol)

        if not payload.rows:
            logger.info("No historical data available for %s", symbol)
        else:
            logger.info(
                "Retrieved %d records for %s (%s payload)",
                len(payload.rows), symbol, payload.shape,
            )
        return payload.rows

    # --- Fundamentals ---

    async def get_key_metrics(self, symbol: str, limit: int = 40) -> list[dict]:
        """Fetch quarterly key metrics (P/E, P/FCF, FCF, ROE, D/E).

        Returns an empty list when the endpoint needs a paid plan
        (HTTP 402/403) or the body is not a list.

        Raises:
            RateLimitError: HTTP 429.
            UpstreamError: Any other failure.
        """
        return await self._get_fundamentals(
            _KEY_METRICS_PATH, "key metrics", symbol, limit
        )

    async def get_income_statements(self, symbol: str, limit: int = 40) -> list[dict]:
        """Fetch quarterly income statements (revenue, EPS, period).

        Same empty-list and error policy as get_key_metrics.
        """
        return await self._get_fundamentals(
            _INCOME_STATEMENT_PATH, "income statement", symbol, limit
        )

    async def _get_fundamentals(
        self, path: str, label: str, symbol: str, limit: int
    ) -> list[dict]:
        params = {"symbol": symbol, "period": "quarter", "limit": str(limit)}
        logger.info("Fetching %s for %s", label, symbol)
        try:
            raw = await self._get_json(path, params, symbol)
        except (PlanRestrictedError, AuthenticationError) as e:
            if e.context.get("status_code") in (402, 403):
                logger.warning(
                    "%s endpoint requires paid FMP plan (HTTP %s)",
                    label.capitalize(), e.context["status_code"],
                )
                return []
            raise
        except RateLimitError:
            raise
        except UpstreamError as e:
            raise UpstreamError(
                f"Failed to fetch {label}: {e}", context=e.context
            ) from e

        if not isinstance(raw, list):
            logger.warning("No %s data for %s", label, symbol)
            return []
        logger.info("Got %d %s records for %s", len(raw), label, symbol)
        return raw

    # --- Transport ---

    async def _get_json(self, path: str, params: dict[str, str], symbol: str) -> Any:
        """Execute one rate-limited GET and classify failures.

        Raises:
            AuthenticationError: No API key configured, or HTTP 401/403.
            PlanRestrictedError: HTTP 402.
            RateLimitError: HTTP 429.
            NetworkError: Connection refused, DNS failure.
            UpstreamTimeoutError: Request exceeded the configured timeout.
            InvalidResponseError: Body is not JSON.
            UpstreamError: Any other non-200 status or transport failure.
        """
        url = f"{self._config.base_url}/{path}"
        context: dict[str, Any] = {"url": url, "symbol": symbol}

        if not self._config.api_key:
            raise AuthenticationError("FMP API key not configured", context=context)

        query = {**params, "apikey": self._config.api_key}

        await self._limiter.acquire()
        try:
            response = await self._client.get(url, params=query)
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError(
                "Request timed out while fetching data from FMP API",
                context=context,
            ) from e
        except httpx.ConnectError as e:
            raise NetworkError(
                "Unable to connect to FMP API. Check your network connection.",
                context={**context, "error": str(e)},
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamError(
                f"API request failed: {e}", context=context
            ) from e

        status = response.status_code
        context["status_code"] = status

        if status == 200:
            try:
                return response.json()
            except ValueError as e:
                raise InvalidResponseError(
                    f"Unparseable API response for: {symbol}", context=context
                ) from e

        if status == 429:
            raise RateLimitError(
                "API rate limit exceeded. FMP free tier allows 250 calls/day.",
                context=context,
            )
        if status in (401, 403):
            raise AuthenticationError(
                "Invalid API key or unauthorized access", context=context
            )
        if status == 402:
            raise PlanRestrictedError(
                "Endpoint requires a paid FMP plan", context=context
            )
        raise UpstreamError(
            f"API request failed with status code {status}", context=context
        )
