"""Cache orchestration: freshness, merge/replace, and batch scheduling."""

from price_cache.cache.coordinator import CacheCoordinator, utc_now
from price_cache.cache.scheduler import RefreshScheduler

__all__ = [
    "CacheCoordinator",
    "RefreshScheduler",
    "utc_now",
]
