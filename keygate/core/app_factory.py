"""Application factory for the FastAPI app.

Centralizes app construction (metadata, lifespan, middleware, handlers,
routers) to improve testability compared to a monolithic main.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from keygate.api.deps import get_credential_store, get_notification_dispatcher, get_rate_window_cache
from keygate.api.routes import health_router, keys_router, verify_router
from keygate.core.config import settings
from keygate.core.exception_handlers import setup_exception_handlers
from keygate.core.logging import configure_logging
from keygate.core.middleware import cors_middleware, request_id_middleware
from keygate.core.openapi import apply_openapi_customizations
from keygate.services.rate_window_cache import run_periodic_sweep

logger = logging.getLogger(__name__)


def _resolve(app: FastAPI, dependency):
    """Call a dependency provider, honoring ``app.dependency_overrides``."""
    return app.dependency_overrides.get(dependency, dependency)()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    store = _resolve(app, get_credential_store)
    dispatcher = _resolve(app, get_notification_dispatcher)
    cache = _resolve(app, get_rate_window_cache)

    await store.initialize()
    dispatcher.start()
    sweeper = asyncio.create_task(
        run_periodic_sweep(cache, settings.keys.cache_sweep_interval_seconds),
        name="rate-cache-sweeper",
    )
    logger.info(
        "app.started",
        extra={
            "store": type(store).__name__,
            "notifications_enabled": dispatcher.enabled,
            "app_env": settings.app_env,
        },
    )
    try:
        yield
    finally:
        sweeper.cancel()
        await asyncio.gather(sweeper, return_exceptions=True)
        await dispatcher.stop()
        await store.close()
        logger.info("app.stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Keygate",
        description=(
            "API key issuance and admission control. POST /keys issues a key "
            "with a per-minute rate limit; POST /verify authenticates the "
            "X-API-Key header and consumes one request of its budget."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    # Middleware (last registered runs first)
    app.middleware("http")(cors_middleware)
    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(keys_router)
    app.include_router(verify_router)
    app.include_router(health_router)

    apply_openapi_customizations(app)

    return app
