"""
Debug server of the DBaaS controller.

Serves health probes and Prometheus metrics, and owns the session manager
every platform call goes through.
"""
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from dbaas_controller.api.v1 import health
from dbaas_controller.config.logging import configure_logging, get_logger
from dbaas_controller.config.settings import settings
from dbaas_controller.exceptions import DBaaSException
from dbaas_controller.services.session_manager import SessionManager

# Configure logging
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    Creates the session manager on startup and closes every session it
    still holds on shutdown.
    """
    logger.info(
        "application_starting",
        version=settings.app_version,
        environment=settings.environment,
    )

    sessions = SessionManager(config=settings)
    app.state.sessions = sessions
    logger.info(
        "session_manager_started",
        port_min=settings.proxy_port_min,
        port_max=settings.proxy_port_max,
    )

    yield

    logger.info("application_shutting_down")
    await sessions.aclose()
    logger.info("application_shutdown_complete")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Lifecycle controller for Percona XtraDB and Percona Server for MongoDB clusters",
    docs_url="/docs" if not settings.is_production else None,
    redoc_url=None,
    openapi_url="/openapi.json" if not settings.is_production else None,
    lifespan=lifespan,
)


# Exception handlers
@app.exception_handler(DBaaSException)
async def dbaas_exception_handler(request: Request, exc: DBaaSException) -> JSONResponse:
    """Handle controller exceptions."""
    logger.error(
        "dbaas_exception",
        path=request.url.path,
        method=request.method,
        error=exc.message,
        status_code=exc.status_code,
        details=exc.details,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "message": exc.message,
                "details": exc.details,
                "status_code": exc.status_code,
            }
        },
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle all other exceptions."""
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        exc_info=True,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "message": "Internal server error",
                "details": {} if settings.is_production else {"error": str(exc)},
                "status_code": 500,
            }
        },
    )


# Initialize Prometheus metrics
if settings.prometheus_enabled:
    Instrumentator().instrument(app).expose(app, endpoint="/metrics")


app.include_router(health.router, prefix="/health", tags=["Health"])


@app.get("/", include_in_schema=False)
async def root():
    """Root endpoint."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "status": "running",
    }


if __name__ == "__main__":
    import uvicorn

    try:
        uvicorn.run(
            "dbaas_controller.main:app",
            host=settings.host,
            port=settings.port,
            log_level=settings.log_level.lower(),
        )
    except (KeyboardInterrupt, SystemExit):
        logger.info("application_stopped")
