"""Root API router."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from app.api.deps import get_services
from app.api.endpoints import crawler, discovery, jobs, recommendations
from app.services.container import ServiceContainer

router = APIRouter()


@router.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Simple health check endpoint."""
    return {"status": "ok"}


@router.get("/proxies/health", tags=["health"])
async def proxy_health(services: ServiceContainer = Depends(get_services)) -> dict[str, Any]:
    """Proxy pool size and tier distribution."""
    try:
        return await services.proxies.health_check()
    except Exception as exc:  # noqa: BLE001
        raise HTTPException(status_code=500, detail=str(exc)) from exc


router.include_router(recommendations.router)
router.include_router(discovery.router)
router.include_router(crawler.router)
router.include_router(jobs.router)
