"""
FastAPI Application Module

Application factory wiring the automation engine, the scheduler worker and
the API routes.
"""

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import Settings, get_settings
from ..database import DatabaseManager
from ..engine import AutomationEngine, SchedulerWorker
from ..errors import (
    AutomationError,
    AutomationNotFoundError,
    GraphFormatError,
    GraphValidationError,
    RunNotFoundError,
    RunStateError,
)
from ..runtime import engine_context
from .base import error_response
from .routes import router

logger = logging.getLogger(__name__)


# =============================================================================
# Exception Handlers
# =============================================================================


async def not_found_handler(request: Request, exc: AutomationError):
    return JSONResponse(status_code=404, content=error_response(exc.code, exc.message))


async def graph_validation_handler(request: Request, exc: GraphValidationError):
    return JSONResponse(
        status_code=422,
        content=error_response(
            exc.code,
            exc.message,
            details={"issues": [issue.to_dict() for issue in exc.issues]},
        ),
    )


async def graph_format_handler(request: Request, exc: GraphFormatError):
    return JSONResponse(status_code=422, content=error_response(exc.code, exc.message))


async def conflict_handler(request: Request, exc: AutomationError):
    return JSONResponse(status_code=409, content=error_response(exc.code, exc.message))


async def automation_error_handler(request: Request, exc: AutomationError):
    return JSONResponse(status_code=400, content=error_response(exc.code, exc.message))


async def generic_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content=error_response("INTERNAL_ERROR", "An unexpected error occurred"),
    )


# =============================================================================
# Application Factory
# =============================================================================


def create_app(
    engine: Optional[AutomationEngine] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        engine: Prebuilt engine. When omitted, the lifespan builds one on
            the configured database and platform API.
        settings: Service settings

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting {settings.service_name} ({settings.environment})")

        async with AsyncExitStack() as stack:
            if engine is None:
                runtime = await stack.enter_async_context(engine_context(settings))
                app.state.engine = runtime.engine
                app.state.db = runtime.db

            worker: Optional[SchedulerWorker] = None
            if settings.scheduler.enabled:
                worker = SchedulerWorker(app.state.engine.scheduler, settings.scheduler.tick_interval_s)
                await worker.start()

            yield

            logger.info(f"Shutting down {settings.service_name}")
            if worker is not None:
                await worker.stop()

    app = FastAPI(
        title="Autoflow Automation API",
        description="Visual automation flows for conversations and bookings",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.db = None
    if engine is not None:
        app.state.engine = engine

    app.add_exception_handler(AutomationNotFoundError, not_found_handler)
    app.add_exception_handler(RunNotFoundError, not_found_handler)
    app.add_exception_handler(GraphValidationError, graph_validation_handler)
    app.add_exception_handler(GraphFormatError, graph_format_handler)
    app.add_exception_handler(RunStateError, conflict_handler)
    app.add_exception_handler(AutomationError, automation_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Health check endpoint."""
        checks = {"api": "ok", "database": "n/a"}
        db: Optional[DatabaseManager] = app.state.db
        if db is not None:
            checks["database"] = "ok" if await db.health_check() else "error"

        pending = await app.state.engine.run_store.count_pending()
        return {
            "status": "degraded" if checks["database"] == "error" else "healthy",
            "version": __version__,
            "timestamp": datetime.utcnow().isoformat(),
            "checks": checks,
            "pendingRuns": pending,
        }

    app.include_router(router)

    return app
