"""
Health check endpoints for production deployment.

Provides:
- /health - Basic liveness check (is the app running?)
- /ready - Readiness check (can the app handle requests?)
- /metrics - Room and connection counts for monitoring
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

# Service references (set during app initialization)
_room_store = None
_template_store = None
_room_manager = None


def set_health_dependencies(
    room_store=None,
    template_store=None,
    room_manager=None,
):
    """Set dependencies for health checks."""
    global _room_store, _template_store, _room_manager
    _room_store = room_store
    _template_store = template_store
    _room_manager = room_manager


@router.get("/health")
async def health_check():
    """
    Basic liveness check - is the app running?

    This endpoint should always return 200 if the process is alive.
    """
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/ready")
async def readiness_check():
    """
    Readiness check - can the app handle requests?

    Checks the room store and the template directory.
    Returns 503 if either is unavailable.
    """
    checks = {}
    overall_healthy = True

    if _room_store is not None:
        try:
            ok = await _room_store.ping()
            checks["room_store"] = {"status": "ok" if ok else "error"}
            overall_healthy = overall_healthy and bool(ok)
        except Exception as e:
            logger.warning(f"Room store health check failed: {e}")
            checks["room_store"] = {"status": "error", "message": str(e)}
            overall_healthy = False
    else:
        checks["room_store"] = {"status": "not_configured"}

    if _template_store is not None:
        ok = _template_store.is_ready()
        checks["templates"] = {"status": "ok" if ok else "missing"}
    else:
        checks["templates"] = {"status": "not_configured"}

    return JSONResponse(
        status_code=200 if overall_healthy else 503,
        content={
            "status": "ok" if overall_healthy else "degraded",
            "checks": checks,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


@router.get("/metrics")
async def metrics():
    """Operational counts useful for dashboards and alerting."""
    metrics_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if _room_manager is not None:
        metrics_data.update(_room_manager.summary())
    return metrics_data
