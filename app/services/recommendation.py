"""Core recommendation logic."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import timedelta
import logging
from typing import Optional, Sequence

from app.core.geo import haversine_km
from app.core.text import normalize_query
from app.schemas.cache import CachedAnalysisResult, CacheKey
from app.schemas.crawl import RestaurantFacts
from app.schemas.discovery import DiscoveredRestaurant
from app.schemas.recommendation import RecommendationMeta, RecommendationResponse
from app.schemas.review import ReviewAnalysis
from app.services.llm import DEFAULT_MESSAGE, heuristic_analysis

logger = logging.getLogger(__name__)


def no_results_message(food_query: str, radius_km: float) -> str:
    return f'{radius_km:g} km yarıçapında "{food_query}" için restoran bulunamadı.'


def default_message(food_query: str, results: Sequence[CachedAnalysisResult]) -> str:
    if not results:
        return f'"{food_query}" için öneri bulunamadı.'
    top = results[0]
    return f'"{food_query}" için en iyi önerimiz {top.name}. {top.summary}'.strip()


def mean_rating(ratings: Sequence[float]) -> Optional[float]:
    positive = [rating for rating in ratings if rating and rating > 0]
    if not positive:
        return None
    return round(sum(positive) / len(positive), 1)


def ranking_value(result: CachedAnalysisResult) -> float:
    """Keyword rating (0-5) when known, otherwise the analysis score mapped onto 0-5."""
    if result.keyword_rating is not None:
        return result.keyword_rating
    return result.food_score / 2


@dataclass
class _Prepared:
    restaurant: DiscoveredRestaurant
    texts: list[str] = field(default_factory=list)
    ratings: list[float] = field(default_factory=list)
    restaurant_id: Optional[int] = None
    facts: Optional[RestaurantFacts] = None


class RecommendationService:
    """Cache first, then discovery, per-restaurant review gathering and analysis."""

    def __init__(
        self,
        cache,
        discovery,
        scheduler,
        crawler,
        restaurants,
        reviews,
        quota,
        places=None,
        analyzer=None,
        min_cached_reviews: int = 5,
        review_max_age: Optional[timedelta] = None,
    ) -> None:
        self.cache = cache
        self.discovery = discovery
        self.scheduler = scheduler
        self.crawler = crawler
        self.restaurants = restaurants
        self.reviews = reviews
        self.quota = quota
        self.places = places
        self.analyzer = analyzer
        self.min_cached_reviews = min_cached_reviews
        self.review_max_age = review_max_age
        self._background: set[asyncio.Task] = set()

    # ---------------------------------------------------------- background
    def _enqueue_refresh(self, cache_id: str) -> None:
        task = asyncio.create_task(asyncio.to_thread(self.scheduler.schedule_refresh, cache_id, 1))
        self._background.add(task)
        task.add_done_callback(self._refresh_enqueued)

    def _refresh_enqueued(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Scheduling cache refresh failed: %s", exc)

    async def drain(self) -> None:
        """Wait for pending refresh enqueues (shutdown and tests)."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ------------------------------------------------------ review sources
    async def _stored_reviews(self, prepared: _Prepared, keyword: str) -> None:
        place_id = prepared.restaurant.place_id
        if not place_id:
            return
        restaurant_id = await asyncio.to_thread(self.restaurants.get_id, place_id)
        if restaurant_id is None:
            return
        stored = await asyncio.to_thread(
            self.reviews.find_by_restaurant_and_keyword, restaurant_id, keyword, self.review_max_age
        )
        if len(stored) >= self.min_cached_reviews:
            logger.info("Using %d stored reviews for %s", len(stored), prepared.restaurant.name)
            prepared.texts = [review.text for review in stored]
            prepared.ratings = [review.rating for review in stored]
            prepared.restaurant_id = restaurant_id

    async def _crawled_reviews(self, prepared: _Prepared, keyword: str) -> None:
        restaurant = prepared.restaurant
        target_id = restaurant.place_id or restaurant.maps_url
        if not target_id:
            return
        hint = RestaurantFacts(
            place_id=target_id,
            name=restaurant.name,
            formatted_address=restaurant.address,
            latitude=restaurant.latitude,
            longitude=restaurant.longitude,
            rating=restaurant.rating,
            total_reviews=restaurant.review_count,
            price_level=restaurant.price_level,
            maps_url=restaurant.maps_url,
        )
        result = await self.crawler.fetch_reviews_and_save(restaurant.maps_url, target_id, keyword, hint=hint)
        if not result.success:
            logger.warning("Crawl failed for %s: %s", restaurant.name, result.error)
            return
        prepared.facts = result.restaurant
        prepared.restaurant_id = result.saved_restaurant_id
        if result.reviews:
            prepared.texts = [review.text for review in result.reviews]
            prepared.ratings = [review.rating for review in result.reviews]

    async def _details_reviews(self, prepared: _Prepared) -> None:
        place_id = prepared.restaurant.place_id
        if not place_id or self.places is None or not self.places.configured:
            return
        if not await asyncio.to_thread(self.quota.consume):
            logger.info("Places quota exhausted, no detail reviews for %s", prepared.restaurant.name)
            return
        details = await self.places.get_details(place_id)
        if details is None:
            return
        prepared.texts = [review.text for review in details.reviews]
        logger.info("Using %d places API reviews for %s", len(prepared.texts), prepared.restaurant.name)
        if prepared.facts is None:
            prepared.facts = RestaurantFacts(
                place_id=place_id,
                name=details.name or prepared.restaurant.name,
                formatted_address=details.formatted_address,
                latitude=details.latitude,
                longitude=details.longitude,
                rating=details.rating,
                total_reviews=details.user_ratings_total,
                price_level=details.price_level,
                phone=details.formatted_phone_number,
                website=details.website,
                maps_url=details.url,
            )

    async def _prepare(self, restaurant: DiscoveredRestaurant, keyword: str) -> _Prepared:
        prepared = _Prepared(restaurant=restaurant)
        await self._stored_reviews(prepared, keyword)
        if not prepared.texts:
            await self._crawled_reviews(prepared, keyword)
        if not prepared.texts:
            try:
                await self._details_reviews(prepared)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Places details failed for %s: %s", restaurant.name, exc)
        return prepared

    # ------------------------------------------------------------ analysis
    async def _analyze(self, prepared: _Prepared, food_query: str) -> ReviewAnalysis:
        name = prepared.restaurant.name
        rating = prepared.restaurant.rating
        if prepared.facts is not None and prepared.facts.rating is not None:
            rating = prepared.facts.rating
        if prepared.texts and self.analyzer is not None:
            return await asyncio.to_thread(self.analyzer.analyze_reviews, name, food_query, prepared.texts)
        return heuristic_analysis(name, rating)

    def _build_result(
        self,
        prepared: _Prepared,
        analysis: ReviewAnalysis,
        food_query: str,
        latitude: float,
        longitude: float,
    ) -> CachedAnalysisResult:
        restaurant = prepared.restaurant
        facts = prepared.facts
        lat = restaurant.latitude if restaurant.latitude is not None else (facts.latitude if facts else None)
        lon = restaurant.longitude if restaurant.longitude is not None else (facts.longitude if facts else None)
        distance = None
        if lat is not None and lon is not None:
            distance = round(haversine_km(latitude, longitude, lat, lon), 1)
        return CachedAnalysisResult(
            restaurant_id=prepared.restaurant_id,
            place_id=restaurant.place_id,
            name=restaurant.name or (facts.name if facts else ""),
            address=restaurant.address or (facts.formatted_address if facts else None),
            review_count=restaurant.review_count or (facts.total_reviews if facts and facts.total_reviews else 0),
            average_rating=restaurant.rating if restaurant.rating is not None else (facts.rating if facts else None),
            keyword_rating=mean_rating(prepared.ratings),
            distance_km=distance,
            maps_url=restaurant.maps_url or (facts.maps_url if facts else None),
            search_query=food_query,
            **analysis.model_dump(),
        )

    async def _message(self, food_query: str, results: Sequence[CachedAnalysisResult]) -> str:
        if not results:
            return f'"{food_query}" için yakınınızda öneri bulunamadı.'
        if self.analyzer is None:
            return default_message(food_query, results)
        top = [{"name": r.name, "score": r.food_score, "summary": r.summary} for r in results]
        try:
            return await asyncio.to_thread(self.analyzer.generate_recommendation_message, food_query, top)
        except Exception as exc:  # noqa: BLE001
            logger.error("Recommendation message failed: %s", exc)
            return DEFAULT_MESSAGE

    # ------------------------------------------------------------ entry point
    async def recommend(
        self,
        food_query: str,
        latitude: float,
        longitude: float,
        radius_km: float = 3,
        location_text: str = "",
    ) -> RecommendationResponse:
        query = normalize_query(food_query)
        params = CacheKey(food_query=query, latitude=latitude, longitude=longitude, radius_km=radius_km)

        lookup = await asyncio.to_thread(self.cache.lookup, params)
        if lookup.found:
            entry = lookup.entry
            refresh_scheduled = lookup.status in ("stale", "expired")
            if refresh_scheduled:
                self._enqueue_refresh(entry.id)
            logger.info("Cache %s for %s", lookup.status, entry.cache_key)
            return RecommendationResponse(
                recommendations=entry.analysis_results,
                message=entry.ai_message or default_message(query, entry.analysis_results),
                cache_id=entry.id,
                meta=RecommendationMeta(cache_status=lookup.status, refresh_scheduled=refresh_scheduled),
            )

        discovery = await self.discovery.discover(query, location_text, latitude, longitude, radius_km)
        meta = RecommendationMeta(
            cache_status=lookup.status,
            scrape_count=discovery.scrape_count,
            api_count=discovery.api_count,
            api_call_used=discovery.api_call_used,
        )
        if not discovery.restaurants:
            return RecommendationResponse(message=no_results_message(query, radius_km), meta=meta)

        outcomes = await asyncio.gather(
            *(self._prepare(restaurant, query) for restaurant in discovery.restaurants),
            return_exceptions=True,
        )
        results: list[CachedAnalysisResult] = []
        source_ids: list[int] = []
        for restaurant, outcome in zip(discovery.restaurants, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("Preparing %s failed: %s", restaurant.name, outcome)
                continue
            analysis = await self._analyze(outcome, query)
            results.append(self._build_result(outcome, analysis, query, latitude, longitude))
            if outcome.restaurant_id is not None:
                source_ids.append(outcome.restaurant_id)

        results.sort(key=ranking_value, reverse=True)
        message = await self._message(query, results)

        cache_id = None
        if results:
            try:
                stored = await asyncio.to_thread(self.cache.store, params, results, message, source_ids)
                cache_id = stored.id if stored else None
            except Exception as exc:  # noqa: BLE001
                logger.warning("Failed to cache results for %s: %s", params.key, exc)

        return RecommendationResponse(recommendations=results, message=message, cache_id=cache_id, meta=meta)
