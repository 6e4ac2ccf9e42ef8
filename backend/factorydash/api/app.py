"""FastAPI application setup with lifespan and exception handlers."""

from contextlib import asynccontextmanager
import logging
import time
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine

from factorydash import __version__
from factorydash.api import internal, routes, ws
from factorydash.config import Settings, settings as default_settings
from factorydash.db import build_engine, build_session_factory, check_connection, init_database, shutdown
from factorydash.db import engine as default_engine
from factorydash.errors import LedgerError
from factorydash.services.callbacks import CallbackIngress
from factorydash.services.fanout import Broadcaster
from factorydash.services.ledger import SessionLedger
from factorydash.services.resume_gate import ResumeGate
from factorydash.services.sessions import SessionService
from factorydash.services.workflow_client import WorkflowEngineClient

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager.

    Startup:
        - Initialize database schema (skipped with a warning if the store is down)

    Shutdown:
        - Close the workflow engine HTTP client
        - Close database connections
    """
    logger.info("Starting Content Factory dashboard API...")
    if await check_connection(app.state.engine):
        await init_database(app.state.engine)
    else:
        logger.warning("Database unreachable at startup, serving in degraded mode")
    logger.info("API startup complete")

    yield

    logger.info("Shutting down Content Factory dashboard API...")
    await app.state.workflow_client.close()
    await shutdown(app.state.engine)
    logger.info("API shutdown complete")


async def ledger_error_handler(request: Request, exc: LedgerError):
    if exc.http_status >= 500:
        logger.warning(f"{request.method} {request.url.path} -> {exc.http_status}: {exc.message}")
    return JSONResponse(status_code=exc.http_status, content={"ok": False, "error": exc.message})


async def validation_error_handler(request: Request, exc: RequestValidationError):
    problems = "; ".join(
        f"{'.'.join(str(part) for part in err['loc'] if part != 'body')}: {err['msg']}"
        for err in exc.errors()
    )
    return JSONResponse(status_code=400, content={"ok": False, "error": problems or "Invalid request"})


async def generic_exception_handler(request: Request, exc: Exception):
    """Catch-all exception handler to prevent stack traces in API responses."""
    logger.error(f"Unhandled exception in {request.method} {request.url.path}: {type(exc).__name__}: {str(exc)}")
    return JSONResponse(status_code=500, content={"ok": False, "error": "Internal server error"})


def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[AsyncEngine] = None,
    workflow_client: Optional[WorkflowEngineClient] = None,
    broadcaster: Optional[Broadcaster] = None,
) -> FastAPI:
    """Build the API with its components wired explicitly onto ``app.state``.

    Tests pass their own engine, workflow client (with a mock transport) and
    broadcaster; production uses the configured defaults.
    """
    if engine is None:
        engine = default_engine if settings is None else build_engine(settings.database.url, echo=settings.database.echo)
    settings = settings or default_settings
    workflow_client = workflow_client or WorkflowEngineClient(settings.workflow_engine)
    broadcaster = broadcaster or Broadcaster(queue_size=settings.fanout.queue_size)
    ledger = SessionLedger(build_session_factory(engine))

    app = FastAPI(
        title="Content Factory Dashboard API",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine = engine
    app.state.started_at = time.monotonic()
    app.state.workflow_client = workflow_client
    app.state.broadcaster = broadcaster
    app.state.ledger = ledger
    app.state.ingress = CallbackIngress(ledger, broadcaster)
    app.state.resume_gate = ResumeGate(ledger, workflow_client, broadcaster)
    app.state.session_service = SessionService(ledger, workflow_client, broadcaster)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(routes.router)
    app.include_router(internal.router)
    app.include_router(ws.router)

    app.add_exception_handler(LedgerError, ledger_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
    return app


app = create_app()
