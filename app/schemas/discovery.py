"""Schemas for restaurant discovery."""

from typing import Literal, Optional

from pydantic import BaseModel, Field

Provenance = Literal["scrape", "api", "both"]


class DiscoveredRestaurant(BaseModel):
    name: str
    place_id: Optional[str] = None
    rating: Optional[float] = None
    review_count: Optional[int] = None
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    price_level: Optional[int] = None
    maps_url: Optional[str] = None
    source: Provenance
    prominence_score: float = 0


class DiscoveryResult(BaseModel):
    restaurants: list[DiscoveredRestaurant] = Field(default_factory=list)
    scrape_count: int = 0
    api_count: int = 0
    api_call_used: bool = False


class DiscoverRequest(BaseModel):
    food_query: str = Field(..., min_length=1, max_length=100)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    radius_km: float = Field(3, gt=0, le=20)
    location_text: str = Field("", max_length=200, description="Free-text area name, e.g. 'Kadıköy'")
    top_n: Optional[int] = Field(None, ge=1, le=20)
