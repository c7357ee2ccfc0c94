"""FastAPI application factory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from price_cache.api.deps import AppState, admin_secret_middleware
from price_cache.api.routes import router
from price_cache.cache.coordinator import CacheCoordinator
from price_cache.cache.scheduler import RefreshScheduler
from price_cache.catalog import load_catalog
from price_cache.core.config import PriceCacheConfig, load_config
from price_cache.core.exceptions import (
    ConfigError,
    FetchError,
    JobAlreadyRunning,
    NoDataAvailable,
    PriceCacheError,
    StorageError,
)
from price_cache.prices.provider import SeriesProvider
from price_cache.prices.store import PriceStore
from price_cache.prices.yahoo import YahooFinanceClient

logger = logging.getLogger(__name__)

_STATUS_MAP: dict[type[PriceCacheError], int] = {
    ConfigError: 400,
    FetchError: 502,
    NoDataAvailable: 503,
    JobAlreadyRunning: 409,
    StorageError: 500,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup/shutdown lifecycle.

    A catalog that cannot be loaded aborts startup. A missing or corrupt
    snapshot does not.
    """
    config = app.state._pending_config or load_config()
    catalog = load_catalog(config.cache.catalog_path)

    store = PriceStore(config.cache.snapshot_path)
    store.load()

    provider: SeriesProvider | None = app.state._pending_provider
    owned_client: YahooFinanceClient | None = None
    if provider is None:
        provider = owned_client = YahooFinanceClient(config.provider)

    coordinator = CacheCoordinator(
        store=store,
        provider=provider,
        catalog=catalog,
        cache_config=config.cache,
        refresh_config=config.refresh,
    )
    scheduler = RefreshScheduler(coordinator, config.scheduler)

    app.state.app_state = AppState(
        config=config,
        catalog=catalog,
        store=store,
        coordinator=coordinator,
        scheduler=scheduler,
        jobs={},
    )
    await scheduler.start()

    yield

    await scheduler.stop()
    if owned_client is not None:
        await owned_client.close()


def create_app(
    config: PriceCacheConfig | None = None,
    provider: SeriesProvider | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    import price_cache

    app = FastAPI(
        title="Price Cache API",
        description="Cached historical price series for a fixed asset catalog",
        version=price_cache.__version__,
        lifespan=lifespan,
    )

    # Stash config and provider so lifespan can retrieve them
    app.state._pending_config = config
    app.state._pending_provider = provider

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.api.cors_origins) if config else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.middleware("http")(admin_secret_middleware)

    app.include_router(router, prefix="/api")

    @app.exception_handler(PriceCacheError)
    async def price_cache_exception_handler(request: Request, exc: PriceCacheError):
        status = next(
            (code for cls, code in _STATUS_MAP.items() if isinstance(exc, cls)),
            500,
        )
        if status >= 500:
            logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc)
        return JSONResponse(
            status_code=status,
            content={"error": type(exc).__name__, "detail": str(exc)},
        )

    return app
