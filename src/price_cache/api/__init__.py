"""REST API over the price cache (FastAPI)."""

from price_cache.api.app import create_app

__all__ = ["create_app"]
