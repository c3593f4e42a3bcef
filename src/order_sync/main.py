"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, Sentry,
lifespan wiring of the CRM/storefront clients and the reconciliation
engine, and the v1 API router.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.requests import Request
from fastapi.responses import Response

from src.order_sync.config import get_settings
from src.order_sync.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.order_sync.core.redis import close_redis, get_redis_pool
from src.order_sync.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.order_sync.api.v1.router import router as v1_router
from src.order_sync.deals.crm.bitrix import BitrixAdapter
from src.order_sync.deals.reconciliation import ReconciliationEngine
from src.order_sync.events.store import WebhookEventStore
from src.order_sync.services.shopify import ShopifyAdminClient


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: wire clients and the engine on startup, close Redis on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    # Each collaborator is optional at startup; a missing one degrades
    # readiness instead of preventing the app from booting.

    # Storefront (needed only for refund reconciliation)
    try:
        app.state.storefront = ShopifyAdminClient(
            shop_domain=settings.SHOPIFY_SHOP_DOMAIN,
            access_token=settings.SHOPIFY_ADMIN_TOKEN,
            api_version=settings.SHOPIFY_API_VERSION,
            timeout=settings.SHOPIFY_TIMEOUT,
        )
        log.info("startup.storefront_initialized", shop=settings.SHOPIFY_SHOP_DOMAIN)
    except ValueError:
        log.warning("startup.storefront_not_configured")
        app.state.storefront = None

    # CRM + reconciliation engine
    try:
        crm = BitrixAdapter(settings.BITRIX_WEBHOOK_BASE, timeout=settings.BITRIX_TIMEOUT)
        app.state.reconciliation_engine = ReconciliationEngine(
            crm=crm,
            storefront=app.state.storefront,
            preorder_tags=settings.get_preorder_tags(),
            log=structlog.get_logger("src.order_sync.reconcile"),
        )
        log.info("startup.reconciliation_engine_initialized")
    except ValueError:
        log.error("startup.crm_not_configured")
        app.state.reconciliation_engine = None

    # Webhook monitoring stream
    redis = get_redis_pool()
    app.state.redis = redis
    if redis is not None:
        app.state.event_store = WebhookEventStore(
            redis,
            stream_key=settings.EVENT_STREAM_KEY,
            maxlen=settings.EVENT_STREAM_MAXLEN,
        )
        log.info("startup.event_store_initialized", stream=settings.EVENT_STREAM_KEY)
    else:
        app.state.event_store = None
        log.info("startup.event_store_disabled")

    yield

    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Order Sync API",
        version="0.1.0",
        description="Reconciles Shopify orders and refunds into Bitrix24 deals",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router, prefix="/api/v1")

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
