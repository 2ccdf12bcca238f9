"""Schemas for the search result cache."""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.core.text import normalize_query

CacheStatus = Literal["fresh", "stale", "refreshing", "failed"]
LookupStatus = Literal["hit", "stale", "expired", "miss"]


def generate_cache_key(food_query: str, latitude: float, longitude: float, radius_km: float) -> str:
    """Deterministic key: normalized query, 4-decimal coordinates, radius."""
    lat = round(latitude, 4) + 0.0
    lng = round(longitude, 4) + 0.0
    return f"{normalize_query(food_query)}:{lat:.4f}:{lng:.4f}:{float(radius_km):g}"


class CacheKey(BaseModel):
    food_query: str
    latitude: float
    longitude: float
    radius_km: float

    @property
    def key(self) -> str:
        return generate_cache_key(self.food_query, self.latitude, self.longitude, self.radius_km)


class CachedAnalysisResult(BaseModel):
    restaurant_id: Optional[int] = None
    place_id: Optional[str] = None
    name: str
    address: Optional[str] = None
    food_score: float = 0
    positive_points: list[str] = Field(default_factory=list)
    negative_points: list[str] = Field(default_factory=list)
    is_recommended: bool = False
    summary: str = ""
    review_count: int = 0
    average_rating: Optional[float] = None
    keyword_rating: Optional[float] = None
    distance_km: Optional[float] = None
    maps_url: Optional[str] = None
    search_query: Optional[str] = None


class CacheEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    cache_key: str
    food_query: str
    latitude: float
    longitude: float
    radius_km: float
    status: CacheStatus
    analysis_results: list[CachedAnalysisResult] = Field(default_factory=list)
    ai_message: Optional[str] = None
    expires_at: datetime
    hit_count: int = 0
    created_at: datetime
    last_accessed_at: datetime
    source_restaurant_ids: list[int] = Field(default_factory=list)

    @classmethod
    def from_row(cls, row) -> "CacheEntry":
        return cls(
            id=row.id,
            cache_key=row.cache_key,
            food_query=row.food_query,
            latitude=row.latitude,
            longitude=row.longitude,
            radius_km=row.radius_km,
            status=row.status,
            analysis_results=row.analysis_results or [],
            ai_message=row.ai_message,
            expires_at=row.expires_at,
            hit_count=row.hit_count or 0,
            created_at=row.created_at,
            last_accessed_at=row.last_accessed_at,
            source_restaurant_ids=[restaurant.id for restaurant in row.restaurants],
        )


class CacheLookupResult(BaseModel):
    status: LookupStatus
    entry: Optional[CacheEntry] = None

    @property
    def found(self) -> bool:
        return self.entry is not None


class CacheStats(BaseModel):
    total: int
    by_status: dict[str, int]
    total_hits: int
    expired: int
