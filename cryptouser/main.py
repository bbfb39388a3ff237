"""cryptouser FastAPI application factory + lifespan lifecycle.

This module implements:
  - create_app(): testable application factory
  - lifespan    : @asynccontextmanager startup/shutdown sequence
  - app         : module-level instance for uvicorn

Startup sequence:
  1. load_config()           → app.state.config
  2. RecordStore(...)        → app.state.store (directory created, records counted)
  3. LimiterSet.from_config  → app.state.limiters
  4. Replenisher.start()     → app.state.replenisher (one tick per tick_seconds)
  5. app.state.ready = True

Shutdown sequence (reverse):
  app.state.ready = False → stop replenisher

Error responses all share one shape: {"error": "<code> <reason>"}.
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from http import HTTPStatus
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.routing import APIRouter
from starlette.exceptions import HTTPException as StarletteHTTPException

from cryptouser.api.middleware import BodySizeLimitMiddleware, RequestIdMiddleware
from cryptouser.api.router import router as api_router
from cryptouser.auth.limiter import LimiterSet, Replenisher
from cryptouser.config import Config, load_config
from cryptouser.constants import API_PREFIX, API_VERSION
from cryptouser.health import router as health_router
from cryptouser.store import RecordStore
from cryptouser.utils.logger import configure_logging, get_logger

# ─── Logging Setup ────────────────────────────────────────────────────────────
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if not DEBUG else "DEBUG")
JSON_LOGS = os.getenv("JSON_LOGS", "true").lower() == "true"

configure_logging(log_level=LOG_LEVEL, json_output=JSON_LOGS)
logger = get_logger(__name__)


root_router = APIRouter(tags=["root"])


@root_router.get("/")
async def root() -> dict[str, str]:
    """Service discovery."""
    return {
        "service": "cryptouser",
        "version": API_VERSION,
        "api": API_PREFIX,
        "health": "/health",
    }


def _status_body(status_code: int) -> dict[str, str]:
    return {"error": f"{status_code} {HTTPStatus(status_code).phrase}"}


# ─── Lifespan ─────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown sequence."""
    logger.info("cryptouser starting up...")

    # load_config() raises SystemExit on an invalid config file, so the
    # process exits non-zero before ready=True is ever set.
    config: Config = load_config()
    app.state.config = config

    store = RecordStore(config.store.path)
    existing = await store.list()
    app.state.store = store
    logger.info("Record store opened", path=str(store.path), records=len(existing))

    limiters = LimiterSet.from_config(config.limits)
    app.state.limiters = limiters

    replenisher = Replenisher(limiters, interval_s=config.limits.tick_seconds)
    replenisher.start()
    app.state.replenisher = replenisher

    app.state.ready = True
    logger.info("cryptouser ready", api=API_PREFIX)

    yield

    logger.info("cryptouser shutting down...")
    app.state.ready = False
    await replenisher.stop()
    logger.info("cryptouser shutdown complete")


# ─── Application Factory ──────────────────────────────────────────────────────


def create_app() -> FastAPI:
    """Create and configure the cryptouser FastAPI application.

    Call this directly in tests to get an isolated app instance; the lifespan
    only runs under a server (or an explicit lifespan context), so tests may
    populate app.state.store / app.state.limiters themselves.
    """
    # Swagger UI / ReDoc only in local development
    _debug = os.getenv("DEBUG", "false").lower() == "true"

    application = FastAPI(
        title="cryptouser",
        description="Identity registry with public and access-key protected data",
        version=API_VERSION,
        lifespan=lifespan,
        docs_url="/docs" if _debug else None,
        redoc_url="/redoc" if _debug else None,
        openapi_url="/openapi.json" if _debug else None,
    )

    application.state.ready = False

    # In Starlette the LAST-added middleware is OUTERMOST. RequestIdMiddleware
    # wraps everything so 413 responses carry a request id too.
    application.add_middleware(BodySizeLimitMiddleware)
    application.add_middleware(RequestIdMiddleware)

    application.include_router(root_router)
    application.include_router(health_router)
    application.include_router(api_router, prefix=API_PREFIX)

    # ── Global exception handlers ─────────────────────────────────────────
    # Registered for Starlette's HTTPException so router-level 404/405 are
    # rendered in the same shape as the handlers' own errors.
    @application.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        logger.warning(
            "HTTP exception",
            status_code=exc.status_code,
            detail=exc.detail,
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=_status_body(exc.status_code),
            headers=getattr(exc, "headers", None),
        )

    @application.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        logger.warning(
            "Request validation failed",
            errors=[
                {"loc": list(err.get("loc", ())), "type": err.get("type")}
                for err in exc.errors()
            ],
            path=str(request.url.path),
        )
        return JSONResponse(status_code=400, content=_status_body(400))

    @application.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
        )
        return JSONResponse(status_code=500, content=_status_body(500))

    return application


# ─── Module-Level App (for uvicorn) ───────────────────────────────────────────

app = create_app()
