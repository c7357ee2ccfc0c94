"""price_cache.core: Foundation types, config, and exceptions."""

from price_cache.core.config import (
    APIConfig,
    CacheConfig,
    LoggingConfig,
    PriceCacheConfig,
    ProviderConfig,
    RefreshConfig,
    SchedulerConfig,
    load_config,
)
from price_cache.core.exceptions import (
    CatalogError,
    ConfigError,
    FetchError,
    JobAlreadyRunning,
    NoDataAvailable,
    PriceCacheError,
    StorageError,
)
from price_cache.core.models import (
    Asset,
    ChartResult,
    ChartSource,
    PriceInterval,
    PricePoint,
    RefreshMode,
    RefreshPlan,
    RefreshReport,
    RefreshWindow,
    SeriesEntry,
    Symbol,
    WriteStrategy,
)

__all__ = [
    # Type aliases
    "Symbol",
    # Enums
    "PriceInterval",
    "ChartSource",
    "RefreshMode",
    "RefreshWindow",
    "WriteStrategy",
    # Models
    "Asset",
    "PricePoint",
    "SeriesEntry",
    "ChartResult",
    "RefreshPlan",
    "RefreshReport",
    # Config
    "PriceCacheConfig",
    "ProviderConfig",
    "CacheConfig",
    "RefreshConfig",
    "SchedulerConfig",
    "APIConfig",
    "LoggingConfig",
    "load_config",
    # Exceptions
    "PriceCacheError",
    "ConfigError",
    "CatalogError",
    "FetchError",
    "NoDataAvailable",
    "StorageError",
    "JobAlreadyRunning",
]
