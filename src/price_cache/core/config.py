"""Configuration loading, validation, and access."""

from __future__ import annotations

import logging
import os
from datetime import date
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from price_cache.core.exceptions import ConfigError
from price_cache.core.models import PriceInterval


class ProviderConfig(BaseModel):
    """Market data provider (Yahoo Finance chart API) access."""

    model_config = ConfigDict(frozen=True)

    base_url: str = "https://query1.finance.yahoo.com"
    user_agent: str = "Mozilla/5.0 (compatible; price-cache/0.1)"
    timeout_seconds: float = 15.0
    rate_limit: float = 2.0
    max_concurrent: int = 4

    @field_validator("timeout_seconds")
    @classmethod
    def timeout_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeout_seconds must be > 0")
        return v

    @field_validator("rate_limit")
    @classmethod
    def rate_limit_at_least_one(cls, v: float) -> float:
        if v < 1:
            raise ValueError("rate_limit must be >= 1 request per second")
        return v

    @field_validator("max_concurrent")
    @classmethod
    def max_concurrent_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_concurrent must be >= 1")
        return v


class CacheConfig(BaseModel):
    """Snapshot location, freshness policy, and catalog source."""

    model_config = ConfigDict(frozen=True)

    snapshot_path: str = "./data/prices.json"
    ttl_hours: float = 24.0
    default_start: date = date(2015, 1, 1)
    catalog_path: str | None = None

    @field_validator("ttl_hours")
    @classmethod
    def ttl_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("ttl_hours must be > 0")
        return v


class RefreshConfig(BaseModel):
    """Batch refresh behaviour (incremental and full)."""

    model_config = ConfigDict(frozen=True)

    incremental_window_days: int = 365
    incremental_interval: PriceInterval = PriceInterval.WEEKLY
    full_interval: PriceInterval = PriceInterval.DAILY
    max_retries: int = 2
    retry_backoff_seconds: float = 1.0
    max_concurrent_symbols: int = 4

    @field_validator("incremental_window_days", "max_concurrent_symbols")
    @classmethod
    def at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("max_retries")
    @classmethod
    def retries_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("max_retries must be >= 0")
        return v


class SchedulerConfig(BaseModel):
    """Periodic incremental refresh. Off unless explicitly enabled."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    run_on_startup: bool = True
    hour: int = 0
    minute: int = 5

    @field_validator("hour")
    @classmethod
    def hour_in_range(cls, v: int) -> int:
        if not 0 <= v <= 23:
            raise ValueError("hour must be between 0 and 23")
        return v

    @field_validator("minute")
    @classmethod
    def minute_in_range(cls, v: int) -> int:
        if not 0 <= v <= 59:
            raise ValueError("minute must be between 0 and 59")
        return v


class APIConfig(BaseModel):
    """FastAPI server configuration."""

    model_config = ConfigDict(frozen=True)

    host: str = "0.0.0.0"
    port: int = 5000
    admin_secret: str | None = None
    cors_origins: list[str] = ["*"]

    @field_validator("admin_secret", mode="before")
    @classmethod
    def secret_as_str(cls, v: object) -> object:
        # env auto-cast may turn an all-digit secret into an int
        if v is None or v == "":
            return None
        return str(v)


class LoggingConfig(BaseModel):
    """Stdlib logging setup applied by the CLI."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"

    @field_validator("level")
    @classmethod
    def level_known(cls, v: str) -> str:
        v = v.upper()
        if v not in logging.getLevelNamesMapping():
            raise ValueError(f"unknown log level: {v}")
        return v


class PriceCacheConfig(BaseModel):
    """Root configuration for the entire price-cache system."""

    model_config = ConfigDict(frozen=True)

    provider: ProviderConfig = ProviderConfig()
    cache: CacheConfig = CacheConfig()
    refresh: RefreshConfig = RefreshConfig()
    scheduler: SchedulerConfig = SchedulerConfig()
    api: APIConfig = APIConfig()
    logging: LoggingConfig = LoggingConfig()

    @model_validator(mode="after")
    def incremental_window_covers_interval(self) -> PriceCacheConfig:
        if (
            self.refresh.incremental_interval == PriceInterval.MONTHLY
            and self.refresh.incremental_window_days < 31
        ):
            raise ValueError(
                "refresh.incremental_window_days must be >= 31 "
                "for a monthly incremental interval"
            )
        return self


# Unprefixed variables understood for compatibility with older deployments.
# Prefixed PRICE_CACHE_* variables take precedence over these.
_LEGACY_ENV: dict[str, tuple[str, ...]] = {
    "ENABLE_CRON": ("scheduler", "enabled"),
    "PORT": ("api", "port"),
    "ADMIN_SECRET": ("api", "admin_secret"),
}


def load_config(
    config_path: str | None = None,
    env_prefix: str = "PRICE_CACHE_",
) -> PriceCacheConfig:
    """Load configuration from environment + YAML file + defaults.

    Resolution order (highest priority first):
    1. Environment variables (PRICE_CACHE_SCHEDULER__ENABLED, etc.)
    2. Legacy unprefixed variables (ENABLE_CRON, PORT, ADMIN_SECRET)
    3. YAML file at config_path
    4. Built-in defaults

    Nested keys use double-underscore in env vars:
        PRICE_CACHE_CACHE__TTL_HOURS=12  ->  cache.ttl_hours = 12
    """
    try:
        yaml_path = _resolve_config_path(config_path)
        base: dict = {}
        if yaml_path is not None:
            base = _load_yaml(yaml_path)

        merged = _merge_legacy_env(base)
        merged = _merge_env_vars(merged, env_prefix)
        return PriceCacheConfig.model_validate(merged)
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

    env_path = os.environ.get("PRICE_CACHE_CONFIG")
    if env_path:
        p = Path(env_path)
        if not p.exists():
            raise ConfigError(
                f"Config file from PRICE_CACHE_CONFIG not found: {env_path}",
                context={"field": "PRICE_CACHE_CONFIG", "value": env_path},
            )
        return p

    default = Path("price-cache.yml")
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


def _merge_legacy_env(base: dict) -> dict:
    """Overlay the unprefixed legacy variables onto base config dict."""
    result = _copy_nested(base)
    for key, (section, field) in _LEGACY_ENV.items():
        value = os.environ.get(key)
        if value is None or value == "":
            continue
        result.setdefault(section, {})[field] = _auto_cast(value)
    return result


def _merge_env_vars(base: dict, prefix: str) -> dict:
    """Overlay environment variables onto base config dict.

    Double-underscore separates nesting levels.
    Values are auto-cast: "true"/"false" -> bool, numeric strings -> int.
    """
    result = _copy_nested(base)

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        # Strip prefix, split by double-underscore for nesting
        remainder = key[len(prefix) :]
        parts = [p.lower() for p in remainder.split("__")]

        # Skip the CONFIG env var itself
        if parts == ["config"]:
            continue

        cast_value = _auto_cast(value)

        target = result
        for part in parts[:-1]:
            if not isinstance(target.get(part), dict):
                target[part] = {}
            target = target[part]
        target[parts[-1]] = cast_value

    return result


def _copy_nested(data: dict) -> dict:
    return {k: _copy_nested(v) if isinstance(v, dict) else v for k, v in data.items()}


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
