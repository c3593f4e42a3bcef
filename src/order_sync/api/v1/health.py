"""Health check endpoints.

Provides liveness (/health) and readiness (/health/ready) checks. The
readiness probe verifies that the CRM and storefront are configured and
that Redis answers when the event store is enabled.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from src.order_sync.config import get_settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check.

    No external dependencies are checked -- just that the server is running.
    """
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


async def _check_dependencies(request: Request) -> dict:
    """Check CRM/storefront configuration and Redis connectivity. Returns check results dict."""
    checks: dict = {"crm": "ok", "storefront": "ok", "redis": "ok"}

    if getattr(request.app.state, "reconciliation_engine", None) is None:
        checks["crm"] = "error"
        checks["crm_error"] = "BITRIX_WEBHOOK_BASE not configured"

    if getattr(request.app.state, "storefront", None) is None:
        checks["storefront"] = "not_configured"

    redis = getattr(request.app.state, "redis", None)
    if redis is None:
        checks["redis"] = "disabled"
    else:
        try:
            pong = await redis.ping()
            if not pong:
                checks["redis"] = "error"
                checks["redis_error"] = "PING did not return PONG"
        except Exception as e:
            checks["redis"] = "error"
            checks["redis_error"] = str(e)

    return checks


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness check: 200 when the CRM is wired and Redis (if enabled) answers, else 503."""
    checks = await _check_dependencies(request)
    all_healthy = checks.get("crm") == "ok" and checks.get("redis") in ("ok", "disabled")

    return JSONResponse(
        status_code=status.HTTP_200_OK if all_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if all_healthy else "degraded",
            "checks": checks,
        },
    )
