"""Redis-backed volatile cache for price history, ratios and fundamentals.

The cache is best-effort. When Redis is disabled, unreachable, or
misbehaving, every read is a miss and every write is a no-op; failures
are logged and never reach the caller.

Values are JSON text. Record lists are written in their wire form
(camelCase keys, ISO dates, big integers as decimal strings) and
validated back into models on read.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import Any

import redis.asyncio as aioredis
from pydantic import TypeAdapter, ValidationError
from redis.exceptions import RedisError

from stock_history.core.config import CacheConfig
from stock_history.core.exceptions import CacheError, InvalidTimeframeError
from stock_history.core.models import FundamentalRecord, PriceRecord, RatioPoint
from stock_history.core.timeframes import Timeframe, parse_timeframe, ttl_seconds

logger = logging.getLogger(__name__)

_PRICE_LIST = TypeAdapter(list[PriceRecord])
_RATIO_LIST = TypeAdapter(list[RatioPoint])
_FUNDAMENTAL_LIST = TypeAdapter(list[FundamentalRecord])


# --- Key Builders ---


def stock_history_key(symbol: str, timeframe: str) -> str:
    return f"stock:history:{symbol.upper()}:{timeframe}"


def price_ratio_key(symbol1: str, symbol2: str, timeframe: str) -> str:
    """Ordered pair: (A, B) and (B, A) are distinct entries."""
    return f"stock:ratio:{symbol1.upper()}:{symbol2.upper()}:{timeframe}"


def fundamentals_key(symbol: str, timeframe: str) -> str:
    return f"fundamental:history:{symbol.upper()}:{timeframe}"


class CacheService:
    """Async cache facade over a redis.asyncio client.

    Lifecycle: `await connect()` / `await close()`, or
    `async with CacheService(config) as cache:`. A client may be injected
    (tests pass an in-memory fake); otherwise one is built from
    `config.url` on connect.
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        client: aioredis.Redis | None = None,
    ) -> None:
        self._config = config or CacheConfig()
        self._client = client
        self._connected = False

    async def __aenter__(self) -> CacheService:
        await self.connect()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # --- Connection Management ---

    async def connect(self) -> None:
        """Connect and ping. A failure leaves the service unavailable."""
        if not self._config.enabled:
            logger.info("Caching is disabled via configuration")
            return
        if self._connected:
            return
        try:
            if self._client is None:
                self._client = aioredis.from_url(self._config.url, decode_responses=True)
            await self._client.ping()
            self._connected = True
            logger.info("Connected to Redis at %s", self._config.url)
        except (RedisError, OSError) as e:
            logger.warning("Failed to connect to Redis: %s", e)
            self._connected = False

    async def close(self) -> None:
        if self._client is None:
            return
        try:
            await self._client.aclose()
        except (RedisError, OSError) as e:
            logger.warning("Error during Redis disconnect: %s", e)
        finally:
            self._connected = False

    @property
    def is_available(self) -> bool:
        return self._config.enabled and self._connected

    # --- Core Operations ---

    async def _execute(self, operation: str, key: str, call: Any) -> Any:
        """Await a client call, translating backend failures to CacheError."""
        try:
            return await call
        except (RedisError, OSError) as e:
            raise CacheError(
                f"Redis {operation} failed for {key!r}: {e}",
                context={"operation": operation, "key": key},
            ) from e

    async def get_raw(self, key: str) -> str | None:
        """Return the stored text for a key, or None on miss/unavailable."""
        if not self.is_available:
            return None
        try:
            data = await self._execute("get", key, self._client.get(key))
        except CacheError as e:
            logger.warning("%s", e)
            return None
        if data is None:
            logger.debug("Cache miss: %s", key)
            return None
        logger.debug("Cache hit: %s", key)
        return data

    async def set_raw(self, key: str, text: str, ttl: int | None = None) -> None:
        if not self.is_available:
            return
        ttl = self._config.default_ttl if ttl is None else ttl
        try:
            if ttl > 0:
                await self._execute("setex", key, self._client.setex(key, ttl, text))
            else:
                await self._execute("set", key, self._client.set(key, text))
            logger.debug("Cache set: %s (TTL: %ds)", key, ttl)
        except CacheError as e:
            logger.warning("%s", e)

    async def get(self, key: str) -> Any | None:
        """Return the decoded JSON value for a key, or None."""
        raw = await self.get_raw(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            logger.warning("Discarding undecodable cache entry %s: %s", key, e)
            return None

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Store a JSON-serializable value (dates and big ints become strings)."""
        await self.set_raw(key, json.dumps(value, default=str), ttl)

    async def delete(self, key: str) -> None:
        if not self.is_available:
            return
        try:
            await self._execute("delete", key, self._client.delete(key))
            logger.debug("Cache delete: %s", key)
        except CacheError as e:
            logger.warning("%s", e)

    async def exists(self, key: str) -> bool:
        if not self.is_available:
            return False
        try:
            return bool(await self._execute("exists", key, self._client.exists(key)))
        except CacheError as e:
            logger.warning("%s", e)
            return False

    async def flush(self) -> None:
        """Remove every key in the current Redis database."""
        if not self.is_available:
            return
        try:
            await self._execute("flushdb", "*", self._client.flushdb())
            logger.info("Cache flushed")
        except CacheError as e:
            logger.warning("%s", e)

    async def invalidate_symbol(self, symbol: str) -> int:
        """Delete every history, ratio and fundamentals entry involving a symbol.

        Returns:
            Number of keys deleted (0 when unavailable).
        """
        if not self.is_available:
            return 0
        upper = symbol.upper()
        patterns = (f"stock:*:{upper}:*", f"fundamental:*:{upper}:*")
        try:
            keys: set[str] = set()
            for pattern in patterns:
                async for key in self._client.scan_iter(match=pattern):
                    keys.add(key)
            if keys:
                await self._execute("delete", pattern, self._client.delete(*keys))
                logger.info("Invalidated %d cache entries for %s", len(keys), upper)
            return len(keys)
        except CacheError as e:
            logger.warning("%s", e)
            return 0
        except (RedisError, OSError) as e:
            logger.warning("Error invalidating cache for %s: %s", upper, e)
            return 0

    # --- TTL Management ---

    def ttl_for_timeframe(self, timeframe: str | Timeframe) -> int:
        """Per-timeframe TTL; unknown timeframes get the default TTL."""
        try:
            return ttl_seconds(parse_timeframe(timeframe))
        except InvalidTimeframeError:
            return self._config.default_ttl

    # --- Typed Accessors ---

    async def _get_list(self, key: str, adapter: TypeAdapter) -> list | None:
        raw = await self.get_raw(key)
        if raw is None:
            return None
        try:
            return adapter.validate_json(raw)
        except ValidationError as e:
            logger.warning("Discarding malformed cache entry %s: %s", key, e)
            return None

    async def _set_list(
        self, key: str, adapter: TypeAdapter, items: Sequence, ttl: int
    ) -> None:
        text = adapter.dump_json(list(items), by_alias=True).decode()
        await self.set_raw(key, text, ttl)

    async def get_stock_history(
        self, symbol: str, timeframe: str
    ) -> list[PriceRecord] | None:
        return await self._get_list(stock_history_key(symbol, timeframe), _PRICE_LIST)

    async def set_stock_history(
        self, symbol: str, timeframe: str, records: Sequence[PriceRecord]
    ) -> None:
        await self._set_list(
            stock_history_key(symbol, timeframe),
            _PRICE_LIST,
            records,
            self.ttl_for_timeframe(timeframe),
        )

    async def get_price_ratio(
        self, symbol1: str, symbol2: str, timeframe: str
    ) -> list[RatioPoint] | None:
        return await self._get_list(
            price_ratio_key(symbol1, symbol2, timeframe), _RATIO_LIST
        )

    async def set_price_ratio(
        self,
        symbol1: str,
        symbol2: str,
        timeframe: str,
        points: Sequence[RatioPoint],
    ) -> None:
        await self._set_list(
            price_ratio_key(symbol1, symbol2, timeframe),
            _RATIO_LIST,
            points,
            self.ttl_for_timeframe(timeframe),
        )

    async def get_fundamentals(
        self, symbol: str, timeframe: str
    ) -> list[FundamentalRecord] | None:
        return await self._get_list(fundamentals_key(symbol, timeframe), _FUNDAMENTAL_LIST)

    async def set_fundamentals(
        self, symbol: str, timeframe: str, records: Sequence[FundamentalRecord]
    ) -> None:
        await self._set_list(
            fundamentals_key(symbol, timeframe),
            _FUNDAMENTAL_LIST,
            records,
            self._config.fundamentals_ttl,
        )
