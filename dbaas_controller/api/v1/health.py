"""
Health check endpoints of the debug server.
Provides liveness and readiness probes.
"""
from datetime import datetime, timezone

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from dbaas_controller.config.settings import settings

router = APIRouter()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/")
async def health_check():
    """
    Basic health check endpoint.
    Returns current status and version.
    """
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "timestamp": _now(),
    }


@router.get("/live")
async def liveness():
    """Kubernetes liveness probe."""
    return {"status": "alive", "timestamp": _now()}


@router.get("/ready")
async def readiness(request: Request):
    """
    Kubernetes readiness probe.
    Ready once the session manager is up and until it shuts down.
    """
    sessions = getattr(request.app.state, "sessions", None)

    if sessions is None or not sessions.is_running:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "not_ready",
                "session_manager": "stopped",
                "timestamp": _now(),
            },
        )

    return {
        "status": "ready",
        "session_manager": "running",
        "open_sessions": len(sessions.registry),
        "timestamp": _now(),
    }
