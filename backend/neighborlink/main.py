"""
NeighborLink Backend — FastAPI Application Factory
===================================================

What:  Builds the NeighborLink HTTP + WebSocket application.
How:   create_app() wires middleware, exception handlers and routers;
       lifespan() validates configuration, waits for the database and
       prepares blob storage on startup, and releases realtime
       subscriptions and pooled connections on shutdown.
Who:   uvicorn (`uvicorn neighborlink.main:app`) and the route tests.

Application Architecture:
    ┌──────────────────────────────────────────────────────────┐
    │                       FastAPI App                        │
    │  Middleware:  Request ID → Access Log → GZip → CORS      │
    │                                                          │
    │  HTTP:  /api/offers  /api/conversations  /api/reviews    │
    │         /api/profiles  /api/notifications  /storage      │
    │         /health                                          │
    │  WS:    /ws/conversations/{id}   /ws/notifications       │
    │                                                          │
    │  Errors: Validation→400  NotAuthenticated→401            │
    │          Authorization→403  NotFound→404  Conflict→409   │
    │          Database/Match→503  FileStorage→500             │
    └──────────────────────────────────────────────────────────┘
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from neighborlink import __version__
from neighborlink.config import settings
from neighborlink.database import dispose_engine, wait_for_database
from neighborlink.exceptions import (
    AuthorizationError,
    ConflictError,
    DatabaseError,
    FileStorageError,
    MatchUpdateError,
    NeighborLinkError,
    NotAuthenticatedError,
    NotFoundError,
    ValidationError,
)
from neighborlink.middleware.logging import RequestLoggingMiddleware
from neighborlink.middleware.request_id import RequestIDMiddleware, request_id_var
from neighborlink.realtime.feed import change_feed
from neighborlink.routes import (
    conversations,
    health,
    notifications,
    offers,
    profiles,
    reviews,
    storage,
)
from neighborlink.store.blob import blob_storage

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure the root logger once, before anything else logs.

    Format: <timestamp> [<level>] <logger>: <message>, to stdout.
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Startup:
        1. Configure logging
        2. Validate configuration (logged, not fatal: /health still answers)
        3. Wait for the database (tenacity backoff; logged if it never comes up)
        4. Create the blob storage buckets

    Shutdown:
        1. Release every change-feed subscription
        2. Dispose the database engine
    """
    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging()
    logger.info("=" * 60)
    logger.info("NeighborLink Backend %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        logger.error("Configuration error: %s", str(e))

    try:
        await wait_for_database()
    except Exception as e:
        logger.error(
            "Database unreachable after %d attempts: %s",
            settings.db_connect_attempts,
            str(e),
        )

    blob_storage.ensure_buckets()

    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("NeighborLink Backend shutting down...")
    change_feed.clear()
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error(status_code: int, error: str, message: str, details=None) -> JSONResponse:
    content = {"error": error, "message": message, "request_id": request_id_var.get("")}
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map the NeighborLinkError hierarchy to HTTP responses.

    Handler lookup follows the exception MRO, so DuplicateReviewError uses
    the ConflictError handler and MatchUpdateError the DatabaseError one.
    Context dicts are returned only for client-fixable errors; everything
    else is logged server-side.
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("[%s] Validation error: %s", request_id_var.get(""), exc.message)
        return _error(400, "validation_error", exc.message, exc.context)

    @app.exception_handler(NotAuthenticatedError)
    async def handle_not_authenticated(request: Request, exc: NotAuthenticatedError):
        return _error(401, "not_authenticated", exc.message)

    @app.exception_handler(AuthorizationError)
    async def handle_authorization_error(request: Request, exc: AuthorizationError):
        logger.warning(
            "[%s] Authorization denied: %s | %s", request_id_var.get(""), exc.message, exc.context
        )
        return _error(403, "forbidden", exc.message)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return _error(404, "not_found", exc.message)

    @app.exception_handler(ConflictError)
    async def handle_conflict(request: Request, exc: ConflictError):
        logger.info("[%s] Conflict: %s", request_id_var.get(""), exc.message)
        return _error(409, "conflict", exc.message, {"constraint": exc.constraint})

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        logger.error(
            "[%s] Database error: %s | Context: %s", request_id_var.get(""), exc.message, exc.context
        )
        if isinstance(exc, MatchUpdateError):
            return _error(503, "match_update_failed", exc.message)
        return _error(503, "database_unavailable", "A database error occurred. Please try again later.")

    @app.exception_handler(FileStorageError)
    async def handle_file_storage_error(request: Request, exc: FileStorageError):
        logger.error(
            "[%s] File storage error: %s | Context: %s",
            request_id_var.get(""),
            exc.message,
            exc.context,
        )
        return _error(500, "server_error", exc.message)

    @app.exception_handler(NeighborLinkError)
    async def handle_application_error(request: Request, exc: NeighborLinkError):
        logger.error("[%s] Application error: %s", request_id_var.get(""), exc.message)
        return _error(500, "server_error", exc.message)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error(
            "[%s] Unexpected error: %s", request_id_var.get(""), str(exc), exc_info=True
        )
        return _error(
            500,
            "internal_server_error",
            "An unexpected error occurred. Please try again or contact support.",
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    app = FastAPI(
        title="NeighborLink API",
        description=(
            "Local skills-bartering marketplace: post offers and requests, chat, "
            "match to agree on a swap, mark it completed and leave a review."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Register Middleware ───────────────────────────────────────────────
    # Executed in reverse order of addition: RequestID → Logging → GZip → CORS.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(offers.router)
    app.include_router(conversations.router)
    app.include_router(conversations.ws_router)
    app.include_router(reviews.router)
    app.include_router(profiles.router)
    app.include_router(notifications.router)
    app.include_router(notifications.ws_router)
    app.include_router(storage.router)
    app.include_router(health.router)

    return app


# ── Application Instance ─────────────────────────────────────────────────
app = create_app()
