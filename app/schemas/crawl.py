"""Schemas for crawl results and crawl orchestration."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ScrapedReviewData(BaseModel):
    author_name: str = "Anonim"
    rating: float = 0
    text: str
    relative_time: Optional[str] = None
    price_per_person: Optional[str] = None
    matched_keywords: list[str] = Field(default_factory=list)


class RestaurantFacts(BaseModel):
    place_id: str
    name: str
    formatted_address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    rating: Optional[float] = None
    total_reviews: Optional[int] = None
    price_level: Optional[int] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    maps_url: Optional[str] = None


class CrawlResult(BaseModel):
    """Outcome of one review crawl. Failures are values, not exceptions."""

    success: bool
    restaurant: Optional[RestaurantFacts] = None
    reviews: list[ScrapedReviewData] = Field(default_factory=list)
    error: Optional[str] = None
    scraped_at: datetime = Field(default_factory=datetime.now)
    proxy_used: Optional[str] = None
    saved_restaurant_id: Optional[int] = None

    @property
    def keyword_rating(self) -> Optional[float]:
        """Mean of the positive review ratings, one decimal."""
        ratings = [review.rating for review in self.reviews if review.rating > 0]
        if not ratings:
            return None
        return round(sum(ratings) / len(ratings), 1)


class SearchListing(BaseModel):
    """One card of a maps search result page."""

    name: str
    place_id: Optional[str] = None
    rating: Optional[float] = None
    review_count: Optional[int] = None
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    price_level: Optional[int] = None
    maps_url: Optional[str] = None
    is_sponsored: bool = False


class ListingSearchResult(BaseModel):
    success: bool
    listings: list[SearchListing] = Field(default_factory=list)
    error: Optional[str] = None
    proxy_used: Optional[str] = None


class ReviewCrawlRequest(BaseModel):
    place_id: str = Field(..., description="Maps place id")
    maps_url: Optional[str] = Field(None, description="Canonical maps URL (built from place id when empty)")
    food_keyword: str = Field(..., min_length=1, description="Food keyword to search inside reviews")
    priority: int = Field(0, ge=0, le=10)


class ReviewCrawlScheduled(BaseModel):
    job_id: str
    status: str
