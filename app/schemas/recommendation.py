"""Schemas for recommendation responses."""

from typing import Literal, Optional

from pydantic import BaseModel, Field

from app.schemas.cache import CachedAnalysisResult


class RecommendationRequest(BaseModel):
    food_query: str = Field(..., min_length=1, max_length=100, description="e.g. 'lahmacun'")
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    radius_km: float = Field(3, gt=0, le=20)
    location_text: str = Field("", max_length=200)


class RecommendationMeta(BaseModel):
    cache_status: Literal["hit", "stale", "expired", "miss"]
    refresh_scheduled: bool = False
    scrape_count: int = 0
    api_count: int = 0
    api_call_used: bool = False


class RecommendationResponse(BaseModel):
    recommendations: list[CachedAnalysisResult] = Field(default_factory=list)
    message: str
    cache_id: Optional[str] = None
    meta: RecommendationMeta
