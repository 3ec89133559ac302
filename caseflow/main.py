"""Caseflow API -- Main Application Entry Point

Creates the FastAPI application, configures CORS middleware, registers
all API route modules under the /api/v1 prefix, and runs the outbox
dispatcher and maintenance sweeps for the lifetime of the process.

Run with::

    uvicorn caseflow.main:app --host 0.0.0.0 --port 8000 --reload
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from caseflow.api.deps import OperationFailed
from caseflow.api.routes import cases, counterProposals, marketplace, quotes, schedule
from caseflow.core.config import settings
from caseflow.jobs.maintenanceSweeps import start_maintenance_sweeps, stop_maintenance_sweeps
from caseflow.jobs.outboxWorker import start_outbox_worker, stop_outbox_worker

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan: startup / shutdown hooks
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Startup:
      - Start the outbox dispatcher and the maintenance sweeps.

    Shutdown:
      - Cancel both background tasks.
    """
    if settings.run_background_workers:
        await start_outbox_worker()
        await start_maintenance_sweeps()

    yield

    if settings.run_background_workers:
        await stop_maintenance_sweeps()
        await stop_outbox_worker()


# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------

async def operation_failed_handler(request: Request, exc: OperationFailed) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.body())


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        debug=settings.debug,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(OperationFailed, operation_failed_handler)

    @app.get("/health", tags=["Health"])
    async def health():
        """Lightweight health check for load balancers and readiness probes."""
        return {"status": "ok", "version": settings.app_version}

    # Each router defines its own prefix (e.g. /cases, /quotes); mounting
    # under /api/v1 gives /api/v1/cases, /api/v1/quotes, etc.
    _prefix = settings.api_v1_prefix
    app.include_router(cases.router, prefix=_prefix)
    app.include_router(marketplace.router, prefix=_prefix)
    app.include_router(quotes.router, prefix=_prefix)
    app.include_router(counterProposals.router, prefix=_prefix)
    app.include_router(schedule.router, prefix=_prefix)

    return app


app = create_app()
