"""FastAPI application entry point.

Application wiring: lifespan, middleware stack, router mounting, exception handlers.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from crmchat.config import get_settings
from crmchat.database import DatabasePool
from crmchat.exceptions import ForbiddenError, NotFoundError
from crmchat.routers import chat, health
from crmchat.services import chat_service
from crmchat.services.airtable_client import AirtableClient
from crmchat.services.schema_cache import SchemaCache
from crmchat.services.tabular_service import TabularService

logger = logging.getLogger(__name__)

# Upper bound on how long shutdown waits for streaming turns to persist.
SHUTDOWN_GRACE_SECONDS = 10.0


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(application: FastAPI):
    """Open the database pool and the Airtable client; close both on shutdown."""
    settings = get_settings()

    # -- Database Pool --
    db_path = settings.database_url.replace("sqlite:///", "")
    db_pool = DatabasePool(db_path, pool_size=5)
    await db_pool.initialize()

    application.state.db_pool = db_pool
    # Health check and tests use the write connection directly
    application.state.db = db_pool.get_write_connection()

    # -- Airtable --
    airtable = AirtableClient(
        settings.airtable_api_key,
        settings.airtable_base_id,
        api_url=settings.airtable_api_url,
        timeout=settings.airtable_timeout_seconds,
    )
    application.state.airtable = airtable
    application.state.schema_cache = SchemaCache(airtable, ttl=settings.schema_cache_ttl_seconds)
    application.state.tabular = TabularService(airtable)

    yield

    # -- Shutdown --
    await chat_service.wait_for_running_turns(SHUTDOWN_GRACE_SECONDS)
    await airtable.aclose()
    await db_pool.close()


# ---------------------------------------------------------------------------
# Custom Middleware
# ---------------------------------------------------------------------------


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log method, path, status_code, duration_ms for every request.

    For the streaming chat endpoint the duration covers the response
    headers only, not the whole turn.
    """

    async def dispatch(self, request: Request, call_next):
        start_time = time.monotonic()
        response = await call_next(request)
        duration_ms = (time.monotonic() - start_time) * 1000

        logger.info(
            "%s %s %d %.1fms",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
        )
        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Catch unhandled exceptions and return a standard JSON 500 response."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as exc:
            logger.error(
                "Unhandled exception on %s %s: %s",
                request.method,
                request.url.path,
                exc,
                exc_info=True,
            )
            return JSONResponse(
                status_code=500,
                content={"error": "Internal server error", "details": str(exc)},
            )


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

app = FastAPI(title="CRM Chat", lifespan=lifespan)

# -- Middleware stack (applied in reverse order of add_middleware calls) --
# Order: CORS -> RequestLogging -> ErrorHandling

settings = get_settings()

# 1. CORS (outermost)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins.split(","),
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Cookie"],
    allow_credentials=True,
)

# 2. Request logging
app.add_middleware(RequestLoggingMiddleware)

# 3. Error handling (innermost)
app.add_middleware(ErrorHandlingMiddleware)


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"error": exc.message})


@app.exception_handler(ForbiddenError)
async def forbidden_handler(request: Request, exc: ForbiddenError):
    return JSONResponse(status_code=403, content={"error": exc.message})


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Normalize HTTPException responses to use the standard error format."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are client errors: 400, not FastAPI's 422."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content={"error": f"{location}: {message}" if location else message},
    )


# -- Routers --
app.include_router(chat.router, prefix="/api", tags=["chat"])
app.include_router(health.router, prefix="/health", tags=["health"])
