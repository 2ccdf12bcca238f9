"""Cron-driven background job endpoints."""

import asyncio
from datetime import datetime
import secrets
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from app.api.deps import get_services
from app.schemas.job import CRON_ACTIONS, CronRequest
from app.services.container import ServiceContainer

router = APIRouter(prefix="/jobs", tags=["jobs"])

DEFAULT_LIMIT = 5


def _check_cron_secret(authorization: Optional[str], secret: str) -> None:
    expected = f"Bearer {secret}"
    if not authorization or not secrets.compare_digest(authorization, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.post("")
async def run_jobs(
    payload: Optional[CronRequest] = None,
    authorization: Optional[str] = Header(None),
    services: ServiceContainer = Depends(get_services),
) -> dict[str, Any]:
    """Process, schedule, clean up or report on background work."""
    _check_cron_secret(authorization, services.settings.cron_secret)
    payload = payload or CronRequest()
    if payload.action not in CRON_ACTIONS:
        raise HTTPException(status_code=400, detail=f"Unknown action: {payload.action}")
    limit = payload.limit or DEFAULT_LIMIT

    try:
        if payload.action == "process":
            result: dict[str, Any] = (await services.scheduler.process_pending(limit)).model_dump()
        elif payload.action == "schedule-stale-refresh":
            scheduled, total = await asyncio.to_thread(services.scheduler.schedule_stale_refreshes, limit)
            result = {"scheduled": scheduled, "total": total}
        elif payload.action == "cleanup":
            expired_caches = await asyncio.to_thread(services.cache.cleanup_expired)
            old_jobs = await asyncio.to_thread(services.scheduler.cleanup_old_jobs)
            result = {"expired_caches": expired_caches, "old_jobs": old_jobs}
        else:
            jobs = await asyncio.to_thread(services.scheduler.get_stats)
            cache = await asyncio.to_thread(services.cache.get_stats)
            quota = await asyncio.to_thread(services.quota.get_stats)
            result = {"jobs": jobs.model_dump(), "cache": cache.model_dump(), "quota": quota}
    except Exception as exc:  # noqa: BLE001
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    return {
        "success": True,
        "action": payload.action,
        "result": result,
        "timestamp": datetime.now().isoformat(),
    }


@router.get("/health")
async def jobs_health(services: ServiceContainer = Depends(get_services)) -> dict[str, Any]:
    """Job counts by status; no authentication."""
    try:
        stats = await asyncio.to_thread(services.scheduler.get_stats)
    except Exception as exc:  # noqa: BLE001
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {"healthy": True, "stats": stats.model_dump(), "timestamp": datetime.now().isoformat()}
