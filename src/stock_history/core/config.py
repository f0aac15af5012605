"""Configuration loading, validation, and access."""

from __future__ import annotations

import os
from pathlib import Path
from types import UnionType
from typing import Union, get_args, get_origin

import yaml
from pydantic import BaseModel, ConfigDict, field_validator

from stock_history.core.exceptions import ConfigError
from stock_history.core.timeframes import Timeframe


class FmpConfig(BaseModel):
    """Financial Modeling Prep API access configuration."""

    model_config = ConfigDict(frozen=True)

    api_key: str | None = None
    base_url: str = "https://financialmodelingprep.com/stable"
    request_timeout: int = 30
    rate_limit: int = 5

    @field_validator("api_key", mode="before")
    @classmethod
    def api_key_as_string(cls, v: object) -> object:
        # YAML parses an unquoted all-digit key as an int
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("request_timeout")
    @classmethod
    def timeout_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("request_timeout must be >= 1")
        return v

    @field_validator("rate_limit")
    @classmethod
    def rate_limit_in_range(cls, v: int) -> int:
        if v < 1 or v > 50:
            raise ValueError("rate_limit must be between 1 and 50")
        return v


class StorageConfig(BaseModel):
    """Persistent store configuration."""

    model_config = ConfigDict(frozen=True)

    sqlite_path: str = "./data/stock_history.db"


class CacheConfig(BaseModel):
    """Redis cache configuration."""

    model_config = ConfigDict(frozen=True)

    url: str = "redis://localhost:6379/0"
    enabled: bool = True
    default_ttl: int = 3600
    fundamentals_ttl: int = 24 * 60 * 60

    @field_validator("default_ttl", "fundamentals_ttl")
    @classmethod
    def ttl_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("cache TTLs must be >= 1 second")
        return v


class SyncConfig(BaseModel):
    """Sync engine batching configuration."""

    model_config = ConfigDict(frozen=True)

    price_batch_size: int = 100
    fundamentals_batch_size: int = 40
    fundamentals_limit: int = 40

    @field_validator("price_batch_size", "fundamentals_batch_size", "fundamentals_limit")
    @classmethod
    def positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("batch sizes and limits must be >= 1")
        return v


class QueryConfig(BaseModel):
    """Staleness policy and read-path behaviour."""

    model_config = ConfigDict(frozen=True)

    max_staleness_days: int = 3
    coverage_tolerance: float = 0.8
    coalesce_concurrent_syncs: bool = False
    warmup_timeframes: list[Timeframe] = [
        Timeframe.ONE_YEAR,
        Timeframe.ONE_MONTH,
        Timeframe.ONE_WEEK,
    ]

    @field_validator("max_staleness_days")
    @classmethod
    def staleness_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("max_staleness_days must be >= 0")
        return v

    @field_validator("coverage_tolerance")
    @classmethod
    def tolerance_in_range(cls, v: float) -> float:
        if not 0 < v <= 1:
            raise ValueError("coverage_tolerance must be in (0, 1]")
        return v


class APIConfig(BaseModel):
    """FastAPI server configuration."""

    model_config = ConfigDict(frozen=True)

    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = ["*"]


class StockHistoryConfig(BaseModel):
    """Root configuration for the entire stock-history system."""

    model_config = ConfigDict(frozen=True)

    fmp: FmpConfig = FmpConfig()
    storage: StorageConfig = StorageConfig()
    cache: CacheConfig = CacheConfig()
    sync: SyncConfig = SyncConfig()
    query: QueryConfig = QueryConfig()
    api: APIConfig = APIConfig()


def load_config(
    config_path: str | None = None,
    env_prefix: str = "STOCK_HISTORY_",
) -> StockHistoryConfig:
    """Load configuration from environment + YAML file + defaults.

    Resolution order (highest priority first):
    1. Environment variables (STOCK_HISTORY_FMP__API_KEY, etc.)
    2. YAML file at config_path
    3. Built-in defaults

    Nested keys use double-underscore in env vars:
        STOCK_HISTORY_CACHE__ENABLED=false  ->  cache.enabled = False
    """
    try:
        yaml_path = _resolve_config_path(config_path)
        base: dict = {}
        if yaml_path is not None:
            base = _load_yaml(yaml_path)

        merged = _merge_env_vars(base, env_prefix)
        return StockHistoryConfig.model_validate(merged)
    except Exception as e:
        if isinstance(e, ConfigError):
            raise
        raise ConfigError(str(e), context={"source": "load_config"}) from e


def _resolve_config_path(explicit: str | None) -> Path | None:
    """Determine config file path."""
    if explicit is not None:
        p = Path(explicit)
        if not p.exists():
            raise ConfigError(
                f"Config file not found: {explicit}",
                context={"field": "config_path", "value": explicit},
            )
        return p

    env_path = os.environ.get("STOCK_HISTORY_CONFIG")
    if env_path:
        p = Path(env_path)
        if not p.exists():
            raise ConfigError(
                f"Config file from STOCK_HISTORY_CONFIG not found: {env_path}",
                context={"field": "STOCK_HISTORY_CONFIG", "value": env_path},
            )
        return p

    default = Path("stock-history.yml")
    if default.exists():
        return default

    return None


def _load_yaml(path: Path) -> dict:
    """Load and parse YAML file."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(
                f"YAML config must be a mapping, got {type(data).__name__}",
                context={"field": "config_file", "value": str(path)},
            )
        return data
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Failed to parse YAML config: {e}",
            context={"field": "config_file", "value": str(path)},
        ) from e


def _merge_env_vars(base: dict, prefix: str) -> dict:
    """Overlay environment variables onto base config dict.

    Double-underscore separates nesting levels.
    Values are auto-cast: "true"/"false" -> bool, numeric strings -> int,
    except for string-typed fields, which keep the raw value.
    """
    result = dict(base)

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        remainder = key[len(prefix) :]
        parts = [p.lower() for p in remainder.split("__")]

        # Skip the CONFIG env var itself
        if parts == ["config"]:
            continue

        cast_value = value if _is_string_field(parts) else _auto_cast(value)

        target = result
        for part in parts[:-1]:
            if not isinstance(target.get(part), dict):
                target[part] = {}
            target = target[part]
        target[parts[-1]] = cast_value

    return result


def _is_string_field(parts: list[str]) -> bool:
    """True if the dotted config path names a `str` or `str | None` field."""
    model: type[BaseModel] = StockHistoryConfig
    for part in parts[:-1]:
        field = model.model_fields.get(part)
        if field is None or not (
            isinstance(field.annotation, type) and issubclass(field.annotation, BaseModel)
        ):
            return False
        model = field.annotation

    field = model.model_fields.get(parts[-1])
    if field is None:
        return False
    annotation = field.annotation
    if annotation is str:
        return True
    return get_origin(annotation) in (Union, UnionType) and str in get_args(annotation)


def _auto_cast(value: str) -> str | int | float | bool:
    """Auto-cast string values from environment variables."""
    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    return value
