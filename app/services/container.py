"""Explicit construction of the service graph."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
import logging
from typing import Optional

from sqlalchemy.orm import Session, sessionmaker

from app.core.config import Settings
from app.services.cache_store import CacheStore
from app.services.crawler import CrawlEngine, PlaywrightBrowserFactory
from app.services.discovery import DiscoveryEngine
from app.services.job_scheduler import JobScheduler
from app.services.llm import LLMService
from app.services.places_client import PlacesClient
from app.services.proxy_rotation import ProxyRotationService
from app.services.quota import QuotaGovernor
from app.services.recommendation import RecommendationService
from app.services.repositories import RestaurantRepository, ReviewRepository

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    proxies: ProxyRotationService
    quota: QuotaGovernor
    restaurants: RestaurantRepository
    reviews: ReviewRepository
    crawler: CrawlEngine
    places: PlacesClient
    discovery: DiscoveryEngine
    cache: CacheStore
    scheduler: JobScheduler
    recommendations: RecommendationService
    analyzer: Optional[LLMService] = None


def build_services(settings: Settings, session_factory: sessionmaker[Session]) -> ServiceContainer:
    proxies = ProxyRotationService(
        list_url=settings.proxy_list_url,
        api_key=settings.proxy_api_key,
        refresh_interval_seconds=settings.proxy_refresh_interval_seconds,
        default_tier=settings.proxy_default_tier,
        session_factory=session_factory,
    )
    quota = QuotaGovernor(session_factory, monthly_limit=settings.google_api_monthly_limit)
    restaurants = RestaurantRepository(session_factory)
    reviews = ReviewRepository(session_factory)
    crawler = CrawlEngine(
        proxies,
        PlaywrightBrowserFactory(headless=settings.headless, executable_path=settings.chromium_executable_path),
        restaurants,
        reviews,
        max_attempts=settings.scrape_max_proxy_attempts,
        navigation_timeout_ms=settings.scrape_navigation_timeout_ms,
        max_reviews=settings.max_reviews_per_restaurant,
        max_scrolls=settings.scrape_max_scrolls,
        max_search_scrolls=settings.search_max_scrolls,
        max_listings=settings.search_scrape_max_results,
    )
    places = PlacesClient(settings.google_places_api_key)
    discovery = DiscoveryEngine(
        crawler,
        quota,
        places,
        top_n=settings.discovery_top_n,
        dedup_distance_km=settings.dedup_distance_km,
    )
    cache = CacheStore(session_factory, ttl=settings.cache_ttl, stale_grace=settings.cache_stale_grace)

    analyzer: Optional[LLMService] = None
    if settings.openai_api_key:
        analyzer = LLMService(settings.openai_api_key, settings.openai_response_model)
    else:
        logger.warning("OPENAI_API_KEY is not set, falling back to rating-based analysis")

    scheduler = JobScheduler(
        session_factory,
        cache,
        crawler=crawler,
        restaurants=restaurants,
        analyzer=analyzer,
        max_attempts=settings.job_max_attempts,
        retention=timedelta(days=settings.job_retention_days),
        retry_backoff=timedelta(seconds=settings.job_retry_backoff_seconds),
    )
    recommendations = RecommendationService(
        cache,
        discovery,
        scheduler,
        crawler,
        restaurants,
        reviews,
        quota,
        places=places,
        analyzer=analyzer,
        min_cached_reviews=settings.min_cached_reviews,
        review_max_age=settings.cache_ttl,
    )
    return ServiceContainer(
        settings=settings,
        proxies=proxies,
        quota=quota,
        restaurants=restaurants,
        reviews=reviews,
        crawler=crawler,
        places=places,
        discovery=discovery,
        cache=cache,
        scheduler=scheduler,
        recommendations=recommendations,
        analyzer=analyzer,
    )
