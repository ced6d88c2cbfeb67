from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from trafficledger import __version__
from trafficledger.config import settings
from trafficledger.routers import accounts, admin, campaigns, health
from trafficledger.core.database import init_db, close_db
from trafficledger.core.structured_logging import setup_logging
from trafficledger.core.errors import TrafficLedgerError
from trafficledger.core.errors.registry import error_registry
from trafficledger.core.errors.middleware import trafficledger_error_handler
from trafficledger.core.log_middleware import RequestContextMiddleware
from trafficledger.services.scheduler import SchedulerController

setup_logging(
    log_dir=settings.log_directory,
    log_level=logging.DEBUG if settings.debug else logging.INFO,
)
logger = logging.getLogger(__name__)

API_TITLE = "trafficledger API"
API_DESCRIPTION = """
Usage reconciliation and credit ledger for vendor-delivered website traffic.

Polls each campaign's cumulative vendor usage, debits the owning account for
new usage, auto-pauses campaigns the balance can no longer cover, and runs
the archive retention sweep.
"""

TAGS_METADATA = [
    {"name": "health", "description": "Liveness"},
    {"name": "campaigns", "description": "Campaign lifecycle and manual reconciliation"},
    {"name": "accounts", "description": "Account balances and top-ups"},
    {"name": "admin", "description": "Operator triggers and scheduler control"},
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    # Startup
    logger.info("Starting trafficledger API v%s...", __version__)

    error_registry.load()

    init_db()
    logger.info("Database initialized")

    scheduler = SchedulerController()
    app.state.scheduler = scheduler
    if settings.scheduler_enabled:
        scheduler.start()
    else:
        logger.info("Scheduler auto-start disabled (TRAFFICLEDGER_SCHEDULER_ENABLED=false)")

    yield

    # Shutdown
    logger.info("Shutting down trafficledger API...")
    await scheduler.stop()
    close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=__version__,
        openapi_tags=TAGS_METADATA,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request, campaign/account and manual job ids in every log line
    app.add_middleware(RequestContextMiddleware)

    # Structured error handler for TrafficLedgerError
    app.add_exception_handler(TrafficLedgerError, trafficledger_error_handler)

    # Catch-all handler so unhandled exceptions return JSON (not bare text)
    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception on %s %s: %s", request.method, request.url.path, exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal Server Error"},
        )

    app.include_router(health.router, prefix="/api", tags=["health"])
    app.include_router(campaigns.router, prefix="/api/campaigns", tags=["campaigns"])
    app.include_router(accounts.router, prefix="/api/accounts", tags=["accounts"])
    app.include_router(admin.router, prefix="/api/admin", tags=["admin"])

    # Root endpoint
    @app.get("/", tags=["health"], summary="API Root")
    async def root():
        return {
            "name": API_TITLE,
            "version": __version__,
            "status": "running",
            "docs": {
                "swagger": "/docs",
                "redoc": "/redoc",
                "openapi": "/openapi.json",
            },
        }

    return app


# Create the app instance
app = create_app()
