"""
DesignHub API

FastAPI application for versioned design collaboration: branches, commits,
review-gated merges, and realtime project events.
"""
from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Awaitable, Callable

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import IntegrityError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from designhub.api.routes import auth, designhub, events, health
from designhub.config import settings
from designhub.db import close_db, init_db
from designhub.errors import DesignHubError, ErrorKind, HTTP_STATUS_BY_KIND
from designhub.services.identity import close_identity_verifier
from designhub.services.notifier import close_notifier
from designhub.services.object_store import close_object_store


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        response = await call_next(request)
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = (
            "accelerometer=(), camera=(), geolocation=(), "
            "gyroscope=(), magnetometer=(), microphone=(), "
            "payment=(), usb=()"
        )
        return response


# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def error_body(kind: ErrorKind, message: str) -> dict[str, dict[str, str]]:
    return {"error": {"code": kind.value, "message": message}}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler."""
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Object store backend: {settings.object_store_backend}")
    logger.info(f"Email provider: {settings.email_provider}")

    try:
        await init_db()
    except Exception as e:
        logger.error(f"❌ Failed to initialize database: {e}")
        raise

    if not settings.access_token_secret or not settings.refresh_token_secret:
        logger.warning(
            "⚠️ DESIGNHUB_ACCESS_TOKEN_SECRET / DESIGNHUB_REFRESH_TOKEN_SECRET unset; logins will fail"
        )

    yield

    logger.info("Shutting down...")
    await close_object_store()
    await close_notifier()
    await close_identity_verifier()
    await close_db()


app = FastAPI(
    title="DesignHub API",
    version=settings.app_version,
    description=(
        "**DesignHub** gives design teams a Git-style workflow: branch a design, "
        "commit snapshots, open merge requests, review, and merge.\n\n"
        "All endpoints except `/health` and `/auth/login|refresh` require a "
        "**Bearer JWT** in the `Authorization` header."
    ),
    lifespan=lifespan,
    openapi_url="/api/v1/openapi.json",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)


@app.exception_handler(DesignHubError)
async def _handle_designhub_error(request: Request, exc: DesignHubError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"❌ {request.method} {request.url.path}: {exc.kind.value} {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.kind, exc.message))


@app.exception_handler(RequestValidationError)
async def _handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{location}: {first.get('msg', 'invalid request')}" if location else "Invalid request"
    return JSONResponse(
        status_code=HTTP_STATUS_BY_KIND[ErrorKind.VALIDATION_ERROR],
        content=error_body(ErrorKind.VALIDATION_ERROR, message),
    )


@app.exception_handler(IntegrityError)
async def _handle_integrity_error(request: Request, exc: IntegrityError) -> JSONResponse:
    logger.warning(f"⚠️ Uniqueness violation on {request.method} {request.url.path}: {exc.orig}")
    return JSONResponse(
        status_code=HTTP_STATUS_BY_KIND[ErrorKind.CONFLICT],
        content=error_body(ErrorKind.CONFLICT, "A conflicting record already exists"),
    )


@app.exception_handler(Exception)
async def _handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"❌ Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=HTTP_STATUS_BY_KIND[ErrorKind.INTERNAL],
        content=error_body(ErrorKind.INTERNAL, "Internal server error"),
    )


# Adapter: FastAPI expects (Request, Exception) but slowapi's handler
# takes (Request, RateLimitExceeded).
def _handle_rate_limit(request: Request, exc: Exception) -> Response:
    if isinstance(exc, RateLimitExceeded):
        return _rate_limit_exceeded_handler(request, exc)
    raise exc


app.state.limiter = auth.limiter
app.add_exception_handler(RateLimitExceeded, _handle_rate_limit)

# Security headers middleware (added first, runs last)
app.add_middleware(SecurityHeadersMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, prefix="/api/v1", tags=["health"])
app.include_router(auth.router, prefix="/api/v1", tags=["auth"])
app.include_router(events.router, prefix="/api/v1", tags=["events"])
app.include_router(designhub.router, prefix="/api/v1")


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with service info."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
    }
