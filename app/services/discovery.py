"""Restaurant discovery: crawler search raced against the quota-limited places API."""

from __future__ import annotations

import asyncio
import logging
from math import log10
from typing import Optional, Sequence

from app.core.geo import haversine_km
from app.core.text import normalize_name
from app.schemas.crawl import SearchListing
from app.schemas.discovery import DiscoveredRestaurant, DiscoveryResult
from app.services.places_client import PlaceResult, PlacesClient
from app.services.quota import QuotaGovernor

logger = logging.getLogger(__name__)


def prominence_score(rating: Optional[float], review_count: Optional[int]) -> float:
    """rating x log10(review_count + 1)."""
    return (rating or 0) * log10((review_count or 0) + 1)


def names_similar(a: str, b: str) -> bool:
    norm_a, norm_b = normalize_name(a), normalize_name(b)
    if not norm_a or not norm_b:
        return False
    return norm_a == norm_b or norm_a in norm_b or norm_b in norm_a


def are_close(
    lat1: Optional[float],
    lon1: Optional[float],
    lat2: Optional[float],
    lon2: Optional[float],
    threshold_km: float = 0.1,
) -> bool:
    if None in (lat1, lon1, lat2, lon2):
        return False
    return haversine_km(lat1, lon1, lat2, lon2) <= threshold_km


def from_place(place: PlaceResult) -> DiscoveredRestaurant:
    return DiscoveredRestaurant(
        name=place.name,
        place_id=place.place_id,
        rating=place.rating,
        review_count=place.user_ratings_total,
        address=place.vicinity,
        latitude=place.latitude,
        longitude=place.longitude,
        price_level=place.price_level,
        source="api",
        prominence_score=prominence_score(place.rating, place.user_ratings_total),
    )


def from_listing(listing: SearchListing) -> DiscoveredRestaurant:
    return DiscoveredRestaurant(
        name=listing.name,
        place_id=listing.place_id,
        rating=listing.rating,
        review_count=listing.review_count,
        address=listing.address,
        latitude=listing.latitude,
        longitude=listing.longitude,
        price_level=listing.price_level,
        maps_url=listing.maps_url,
        source="scrape",
        prominence_score=prominence_score(listing.rating, listing.review_count),
    )


def enrich_from_scrape(existing: DiscoveredRestaurant, scraped: DiscoveredRestaurant) -> DiscoveredRestaurant:
    """Fill gaps in `existing` from a crawler duplicate and tag it as seen by both sources."""
    update: dict[str, object] = {}
    if existing.source in ("api", "both"):
        update["source"] = "both"
    for field_name in ("maps_url", "address", "price_level", "place_id", "rating"):
        if not getattr(existing, field_name) and getattr(scraped, field_name):
            update[field_name] = getattr(scraped, field_name)
    if existing.latitude is None and scraped.latitude is not None:
        update["latitude"] = scraped.latitude
        update["longitude"] = scraped.longitude
    if scraped.review_count and (not existing.review_count or scraped.review_count > existing.review_count):
        update["review_count"] = scraped.review_count
    merged = existing.model_copy(update=update)
    merged.prominence_score = prominence_score(merged.rating, merged.review_count)
    return merged


def merge_and_dedup(
    api_results: Sequence[DiscoveredRestaurant],
    scrape_results: Sequence[DiscoveredRestaurant],
    distance_km: float = 0.1,
) -> list[DiscoveredRestaurant]:
    """API entries seed the set; crawler entries either enrich a match or are appended."""
    merged = list(api_results)
    for scraped in scrape_results:
        scraped_name = normalize_name(scraped.name)
        for i, existing in enumerate(merged):
            exact = scraped_name and normalize_name(existing.name) == scraped_name
            fuzzy = names_similar(existing.name, scraped.name) and are_close(
                existing.latitude, existing.longitude, scraped.latitude, scraped.longitude, distance_km
            )
            if exact or fuzzy:
                merged[i] = enrich_from_scrape(existing, scraped)
                break
        else:
            merged.append(scraped)
    return merged


class DiscoveryEngine:
    def __init__(
        self,
        crawler,
        quota: QuotaGovernor,
        places: Optional[PlacesClient] = None,
        top_n: int = 5,
        dedup_distance_km: float = 0.1,
    ) -> None:
        self.crawler = crawler
        self.quota = quota
        self.places = places
        self.top_n = top_n
        self.dedup_distance_km = dedup_distance_km

    async def _search_api(
        self, query: str, lat: float, lon: float, radius_km: float
    ) -> Optional[list[DiscoveredRestaurant]]:
        if not await asyncio.to_thread(self.quota.consume):
            logger.info("Places quota exhausted before the call, skipping API search")
            return None
        places = await self.places.search_nearby(lat, lon, query, int(radius_km * 1000))
        return [from_place(place) for place in places]

    async def discover(
        self,
        query: str,
        location_text: str,
        lat: float,
        lon: float,
        radius_km: float,
        top_n: Optional[int] = None,
    ) -> DiscoveryResult:
        """Top candidates by prominence; either branch may fail without failing the call."""
        top_n = top_n or self.top_n
        use_api = self.places is not None and self.places.configured
        if use_api:
            use_api = await asyncio.to_thread(self.quota.can_consume)
            if not use_api:
                logger.info("Places quota exhausted, discovering with the crawler only")

        tasks = [self.crawler.fetch_listings(location_text, query, lat, lon, radius_km)]
        if use_api:
            tasks.append(self._search_api(query, lat, lon, radius_km))
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        scraped: list[DiscoveredRestaurant] = []
        scrape_outcome = outcomes[0]
        if isinstance(scrape_outcome, BaseException):
            logger.error("Crawler search raised: %s", scrape_outcome)
        elif not scrape_outcome.success:
            logger.warning("Crawler search failed: %s", scrape_outcome.error)
        else:
            scraped = [from_listing(listing) for listing in scrape_outcome.listings if not listing.is_sponsored]

        api_results: list[DiscoveredRestaurant] = []
        api_call_used = False
        if use_api:
            api_outcome = outcomes[1]
            if isinstance(api_outcome, BaseException):
                logger.error("Places API search failed: %s", api_outcome)
            elif api_outcome is not None:
                api_results = api_outcome
                api_call_used = True

        merged = merge_and_dedup(api_results, scraped, self.dedup_distance_km)
        merged.sort(key=lambda r: r.prominence_score, reverse=True)
        top = merged[:top_n]
        for restaurant in top:
            logger.info(
                "Discovered %s (rating=%s, reviews=%s, score=%.2f, source=%s)",
                restaurant.name,
                restaurant.rating,
                restaurant.review_count,
                restaurant.prominence_score,
                restaurant.source,
            )
        return DiscoveryResult(
            restaurants=top,
            scrape_count=len(scraped),
            api_count=len(api_results),
            api_call_used=api_call_used,
        )
