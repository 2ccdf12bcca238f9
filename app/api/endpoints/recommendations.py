"""Recommendation endpoints."""

from fastapi import APIRouter, Depends, HTTPException

from app.api.deps import get_services
from app.schemas.recommendation import RecommendationRequest, RecommendationResponse
from app.services.container import ServiceContainer

router = APIRouter(prefix="/recommendations", tags=["recommendations"])


@router.post("", response_model=RecommendationResponse)
async def recommend(
    payload: RecommendationRequest, services: ServiceContainer = Depends(get_services)
) -> RecommendationResponse:
    """Recommend restaurants for a food near a point, served from the cache when possible."""
    try:
        return await services.recommendations.recommend(
            payload.food_query,
            payload.latitude,
            payload.longitude,
            payload.radius_km,
            payload.location_text,
        )
    except Exception as exc:  # noqa: BLE001
        raise HTTPException(status_code=500, detail=str(exc)) from exc
