"""Health check endpoints.

Provides:
- Liveness + database probe (/api/health)
- Detailed status with run counts per state (/api/health/status)
"""

import logging
import platform
import sys
import time
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, HTTPException, status
from sqlalchemy import func, select, text

from app.config import get_settings
from db.models.automation_run import AutomationRun

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])

_start_time = time.monotonic()
_start_datetime = datetime.now(timezone.utc).isoformat()


async def _check_database() -> str:
    from db.database import engine

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return "ok"
    except Exception as e:
        logger.error("Database health check failed: %s", e)
        return "unavailable"


@router.get("", response_model=dict[str, Any])
async def health_check() -> dict[str, Any]:
    """
    Liveness probe with a database ping.
    Returns 503 if the database is unreachable.
    """
    settings = get_settings()
    database = await _check_database()
    if database != "ok":
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"status": "unhealthy", "database": database},
        )
    return {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "database": database,
    }


@router.get("/status", response_model=dict[str, Any])
async def system_status() -> dict[str, Any]:
    """
    Uptime, versions and the number of runs in each state.
    Intended for admin dashboards and monitoring.
    """
    from db.database import AsyncSessionLocal

    settings = get_settings()
    uptime_seconds = time.monotonic() - _start_time
    hours, remainder = divmod(int(uptime_seconds), 3600)
    minutes, seconds = divmod(remainder, 60)

    async with AsyncSessionLocal() as session:
        result = await session.execute(
            select(AutomationRun.status, func.count()).group_by(AutomationRun.status)
        )
        runs = {run_status: count for run_status, count in result.all()}

    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "started_at": _start_datetime,
        "uptime": f"{hours}h {minutes}m {seconds}s",
        "uptime_seconds": round(uptime_seconds, 1),
        "python": {
            "version": sys.version,
            "platform": platform.platform(),
        },
        "runs": runs,
        "scheduler": "in-process" if settings.SCHEDULER_IN_PROCESS else "celery",
    }
