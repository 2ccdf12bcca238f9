"""Discovery endpoints."""

from fastapi import APIRouter, Depends, HTTPException

from app.api.deps import get_services
from app.schemas.discovery import DiscoverRequest, DiscoveryResult
from app.services.container import ServiceContainer

router = APIRouter(prefix="/discover", tags=["discovery"])


@router.post("", response_model=DiscoveryResult)
async def discover(payload: DiscoverRequest, services: ServiceContainer = Depends(get_services)) -> DiscoveryResult:
    """Top restaurants around a point from the crawler and the places API."""
    try:
        return await services.discovery.discover(
            payload.food_query,
            payload.location_text,
            payload.latitude,
            payload.longitude,
            payload.radius_km,
            payload.top_n,
        )
    except Exception as exc:  # noqa: BLE001
        raise HTTPException(status_code=500, detail=str(exc)) from exc
