"""Client for the official Google Places web service."""

from __future__ import annotations

import logging
from typing import Any, Optional

import aiohttp
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

PLACES_BASE_URL = "https://maps.googleapis.com/maps/api/place"
DETAILS_FIELDS = (
    "place_id,name,formatted_address,formatted_phone_number,website,rating,"
    "user_ratings_total,price_level,reviews,geometry,url"
)


class PlacesApiError(RuntimeError):
    pass


class PlaceResult(BaseModel):
    place_id: str
    name: str
    vicinity: Optional[str] = None
    rating: Optional[float] = None
    user_ratings_total: Optional[int] = None
    price_level: Optional[int] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class PlaceReview(BaseModel):
    author_name: str = "Anonim"
    rating: float = 0
    text: str = ""
    relative_time_description: Optional[str] = None


class PlaceDetails(BaseModel):
    place_id: str
    name: str
    formatted_address: Optional[str] = None
    formatted_phone_number: Optional[str] = None
    website: Optional[str] = None
    rating: Optional[float] = None
    user_ratings_total: Optional[int] = None
    price_level: Optional[int] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    url: Optional[str] = None
    reviews: list[PlaceReview] = Field(default_factory=list)


def _location(item: dict[str, Any]) -> tuple[Optional[float], Optional[float]]:
    location = (item.get("geometry") or {}).get("location") or {}
    return location.get("lat"), location.get("lng")


class PlacesClient:
    """Thin async wrapper; quota accounting is the caller's job."""

    def __init__(self, api_key: Optional[str], language: str = "tr", timeout_seconds: float = 10) -> None:
        self.api_key = api_key
        self.language = language
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def _get(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        if not self.api_key:
            raise PlacesApiError("GOOGLE_PLACES_API_KEY is not configured.")
        query = {**params, "key": self.api_key, "language": self.language}
        async with aiohttp.ClientSession(timeout=self._timeout) as session:
            async with session.get(f"{PLACES_BASE_URL}/{path}/json", params=query) as response:
                response.raise_for_status()
                return await response.json()

    async def search_nearby(self, lat: float, lon: float, keyword: str, radius_m: int) -> list[PlaceResult]:
        data = await self._get(
            "nearbysearch",
            {"location": f"{lat},{lon}", "radius": radius_m, "keyword": keyword, "type": "restaurant"},
        )
        status = data.get("status")
        if status not in ("OK", "ZERO_RESULTS"):
            raise PlacesApiError(f"Google Places API error: {status} {data.get('error_message', '')}".strip())
        results = []
        for item in data.get("results", []):
            lat_, lon_ = _location(item)
            results.append(
                PlaceResult(
                    place_id=item["place_id"],
                    name=item.get("name", ""),
                    vicinity=item.get("vicinity"),
                    rating=item.get("rating"),
                    user_ratings_total=item.get("user_ratings_total"),
                    price_level=item.get("price_level"),
                    latitude=lat_,
                    longitude=lon_,
                )
            )
        return results

    async def get_details(self, place_id: str) -> Optional[PlaceDetails]:
        data = await self._get("details", {"place_id": place_id, "fields": DETAILS_FIELDS})
        if data.get("status") != "OK":
            logger.warning("Places details error %s for %s", data.get("status"), place_id)
            return None
        item = data.get("result") or {}
        lat, lon = _location(item)
        return PlaceDetails(
            place_id=item.get("place_id", place_id),
            name=item.get("name", ""),
            formatted_address=item.get("formatted_address"),
            formatted_phone_number=item.get("formatted_phone_number"),
            website=item.get("website"),
            rating=item.get("rating"),
            user_ratings_total=item.get("user_ratings_total"),
            price_level=item.get("price_level"),
            latitude=lat,
            longitude=lon,
            url=item.get("url"),
            reviews=[PlaceReview(**review) for review in item.get("reviews", []) if review.get("text")],
        )
