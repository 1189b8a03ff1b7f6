"""Health check endpoints."""

from typing import Any

from fastapi import APIRouter, Request
from sqlalchemy import text

from pulse_checkin.db.database import async_session_maker

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict[str, str]:
    """Basic health check - returns ok if the service is running."""
    return {"status": "ok"}


@router.get("/health/ready")
async def ready(request: Request) -> dict[str, Any]:
    """
    Readiness check - verifies the database answers and reports the scheduler.

    Checks:
    - database: a trivial query succeeds
    - scheduler: running, stopped, or absent (admin-only process)
    """
    services: dict[str, str] = {}
    all_ok = True

    try:
        async with async_session_maker() as session:
            await session.execute(text("SELECT 1"))
        services["database"] = "ok"
    except Exception as e:
        services["database"] = f"error: {type(e).__name__}"
        all_ok = False

    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        services["scheduler"] = "not configured"
    elif scheduler.running:
        services["scheduler"] = "ok"
    else:
        services["scheduler"] = "stopped"
        all_ok = False

    return {"status": "ok" if all_ok else "degraded", "services": services}
