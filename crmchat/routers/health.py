"""Health check endpoint -- no auth required."""

from __future__ import annotations

import time

from fastapi import APIRouter, Request

router = APIRouter()

_start_time = time.monotonic()


@router.get("")
async def health_check(request: Request):
    """Return system health status. No auth required.

    The schema cache being cold is not an error: it fills on the next turn.
    """
    uptime = time.monotonic() - _start_time

    # Check database
    db_status = "ok"
    try:
        db = request.app.state.db
        await db.execute("SELECT 1")
    except Exception:
        db_status = "error"

    schema_cache = getattr(request.app.state, "schema_cache", None)
    if schema_cache is None:
        schema_status = "unavailable"
    elif schema_cache.is_fresh:
        schema_status = "fresh"
    else:
        schema_status = "cold"

    return {
        "status": "ok" if db_status == "ok" and schema_cache is not None else "degraded",
        "uptime_seconds": round(uptime, 1),
        "database": db_status,
        "schema_cache": schema_status,
        "version": "1.0.0",
    }
