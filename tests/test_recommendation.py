from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.schemas.cache import CachedAnalysisResult, CacheEntry, CacheLookupResult
from app.schemas.crawl import CrawlResult, RestaurantFacts, ScrapedReviewData
from app.schemas.discovery import DiscoveredRestaurant, DiscoveryResult
from app.schemas.review import ReviewAnalysis
from app.services.places_client import PlaceDetails, PlaceReview
from app.services.recommendation import (
    RecommendationService,
    default_message,
    mean_rating,
    no_results_message,
    ranking_value,
)

NOW = datetime(2025, 3, 10, 12, 0, 0)


def reviews(*ratings):
    return [
        ScrapedReviewData(author_name=f"user{i}", rating=rating, text=f"Lahmacun yorumu {i}, ince ve lezzetli.")
        for i, rating in enumerate(ratings)
    ]


def cache_entry(status="fresh"):
    return CacheEntry(
        id="cache-1",
        cache_key="lahmacun:40.9900:29.0300:3",
        food_query="lahmacun",
        latitude=40.99,
        longitude=29.03,
        radius_km=3,
        status=status,
        analysis_results=[CachedAnalysisResult(name="Halil Lahmacun", food_score=9)],
        ai_message="Halil'i dene!",
        expires_at=NOW + timedelta(days=30),
        created_at=NOW,
        last_accessed_at=NOW,
    )


def make_service(lookup=None, restaurants=(), analyzer=None, places=None):
    cache = MagicMock()
    cache.lookup.return_value = lookup or CacheLookupResult(status="miss")
    cache.store.return_value = cache_entry()
    discovery = MagicMock()
    discovery.discover = AsyncMock(
        return_value=DiscoveryResult(restaurants=list(restaurants), scrape_count=len(restaurants))
    )
    crawler = MagicMock()
    crawler.fetch_reviews_and_save = AsyncMock(return_value=CrawlResult(success=False, error="Proxy pool exhausted"))
    repo = MagicMock()
    repo.get_id.return_value = None
    review_repo = MagicMock()
    review_repo.find_by_restaurant_and_keyword.return_value = []
    quota = MagicMock()
    quota.consume.return_value = True
    service = RecommendationService(
        cache,
        discovery,
        MagicMock(),
        crawler,
        repo,
        review_repo,
        quota,
        places=places,
        analyzer=analyzer,
    )
    return service


def test_message_helpers():
    assert no_results_message("lahmacun", 3) == '3 km yarıçapında "lahmacun" için restoran bulunamadı.'
    assert no_results_message("pide", 1.5).startswith("1.5 km")
    assert mean_rating([5, 4, 0, 4]) == 4.3
    assert mean_rating([0]) is None
    top = CachedAnalysisResult(name="Halil", summary="Harika.")
    assert default_message("lahmacun", [top]) == '"lahmacun" için en iyi önerimiz Halil. Harika.'


def test_ranking_prefers_keyword_rating():
    assert ranking_value(CachedAnalysisResult(name="a", food_score=8, keyword_rating=3.5)) == 3.5
    assert ranking_value(CachedAnalysisResult(name="b", food_score=8)) == 4.0


@pytest.mark.asyncio
async def test_fresh_cache_hit_skips_discovery():
    service = make_service(lookup=CacheLookupResult(status="hit", entry=cache_entry()))

    response = await service.recommend("Lahmacun", 40.99, 29.03, 3)

    assert response.cache_id == "cache-1"
    assert response.message == "Halil'i dene!"
    assert response.meta.cache_status == "hit"
    assert response.meta.refresh_scheduled is False
    service.discovery.discover.assert_not_awaited()
    params = service.cache.lookup.call_args.args[0]
    assert params.food_query == "lahmacun"


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["stale", "expired"])
async def test_stale_entries_are_served_and_refreshed_in_background(status):
    service = make_service(lookup=CacheLookupResult(status=status, entry=cache_entry(status="stale")))

    response = await service.recommend("lahmacun", 40.99, 29.03, 3)
    await service.drain()

    assert response.recommendations[0].name == "Halil Lahmacun"
    assert response.meta.refresh_scheduled is True
    service.scheduler.schedule_refresh.assert_called_once_with("cache-1", 1)
    service.discovery.discover.assert_not_awaited()


@pytest.mark.asyncio
async def test_refresh_scheduling_errors_do_not_reach_the_caller():
    service = make_service(lookup=CacheLookupResult(status="stale", entry=cache_entry(status="stale")))
    service.scheduler.schedule_refresh.side_effect = RuntimeError("db down")

    response = await service.recommend("lahmacun", 40.99, 29.03, 3)
    await service.drain()

    assert response.cache_id == "cache-1"


@pytest.mark.asyncio
async def test_no_discovered_restaurants():
    service = make_service()

    response = await service.recommend("lahmacun", 40.99, 29.03, 3)

    assert response.recommendations == []
    assert response.message == '3 km yarıçapında "lahmacun" için restoran bulunamadı.'
    assert response.cache_id is None
    service.cache.store.assert_not_called()


@pytest.mark.asyncio
async def test_stored_reviews_are_used_before_crawling():
    halil = DiscoveredRestaurant(name="Halil Lahmacun", place_id="ChIJhalil", rating=4.6, source="api")
    service = make_service(restaurants=[halil])
    service.restaurants.get_id.return_value = 7
    service.reviews.find_by_restaurant_and_keyword.return_value = reviews(5, 5, 4, 4, 5)

    response = await service.recommend("lahmacun", 40.99, 29.03, 3)

    service.crawler.fetch_reviews_and_save.assert_not_awaited()
    result = response.recommendations[0]
    assert result.restaurant_id == 7
    assert result.keyword_rating == 4.6
    assert service.cache.store.call_args.args[3] == [7]
    assert response.cache_id == "cache-1"


@pytest.mark.asyncio
async def test_crawled_reviews_and_ranking():
    halil = DiscoveredRestaurant(
        name="Halil Lahmacun", place_id="ChIJhalil", rating=4.6, latitude=40.99, longitude=29.04, source="scrape"
    )
    borsam = DiscoveredRestaurant(name="Borsam", place_id="ChIJborsam", rating=4.2, source="scrape")
    analyzer = MagicMock()
    analyzer.analyze_reviews.return_value = ReviewAnalysis(food_score=8, is_recommended=True, summary="İyi.")
    analyzer.generate_recommendation_message.return_value = "Halil Lahmacun'u deneyin."
    service = make_service(restaurants=[borsam, halil], analyzer=analyzer)

    async def crawl(maps_url, target_id, keyword, hint=None):
        if target_id == "ChIJhalil":
            return CrawlResult(
                success=True,
                restaurant=RestaurantFacts(place_id=target_id, name="Halil Lahmacun"),
                reviews=reviews(5, 5, 4),
                saved_restaurant_id=3,
            )
        return CrawlResult(success=True, restaurant=RestaurantFacts(place_id=target_id, name="Borsam"))

    service.crawler.fetch_reviews_and_save.side_effect = crawl

    response = await service.recommend("lahmacun", 40.99, 29.03, 3)

    assert [r.name for r in response.recommendations] == ["Halil Lahmacun", "Borsam"]
    halil_result = response.recommendations[0]
    assert halil_result.keyword_rating == 4.7
    assert halil_result.distance_km == 0.8
    assert halil_result.food_score == 8
    borsam_result = response.recommendations[1]
    assert borsam_result.food_score == 8
    assert borsam_result.keyword_rating is None
    assert response.message == "Halil Lahmacun'u deneyin."
    analyzer.analyze_reviews.assert_called_once()
    calls = {call.args[1]: call for call in service.crawler.fetch_reviews_and_save.await_args_list}
    hint = calls["ChIJhalil"].kwargs["hint"]
    assert hint.latitude == 40.99


@pytest.mark.asyncio
async def test_places_details_are_the_last_review_source():
    develi = DiscoveredRestaurant(name="Develi", place_id="ChIJdeveli", rating=4.4, source="api")
    places = MagicMock()
    places.configured = True
    places.get_details = AsyncMock(
        return_value=PlaceDetails(
            place_id="ChIJdeveli",
            name="Develi",
            formatted_address="Samatya",
            reviews=[PlaceReview(author_name="A", rating=5, text="Kebabı çok iyi.")],
        )
    )
    analyzer = MagicMock()
    analyzer.analyze_reviews.return_value = ReviewAnalysis(food_score=7, summary="Fena değil.")
    analyzer.generate_recommendation_message.return_value = "Develi."
    service = make_service(restaurants=[develi], places=places, analyzer=analyzer)

    response = await service.recommend("kebap", 40.99, 29.03, 3)

    service.quota.consume.assert_called_once()
    analyzer.analyze_reviews.assert_called_once_with("Develi", "kebap", ["Kebabı çok iyi."])
    assert response.recommendations[0].address == "Samatya"


@pytest.mark.asyncio
async def test_exhausted_quota_falls_back_to_rating_heuristic():
    develi = DiscoveredRestaurant(name="Develi", place_id="ChIJdeveli", rating=4.4, source="api")
    places = MagicMock()
    places.configured = True
    places.get_details = AsyncMock()
    service = make_service(restaurants=[develi], places=places)
    service.quota.consume.return_value = False

    response = await service.recommend("kebap", 40.99, 29.03, 3)

    places.get_details.assert_not_awaited()
    result = response.recommendations[0]
    assert result.food_score == 9
    assert result.is_recommended is True
    assert result.summary == "Develi - Google puanı: 4.4"
    assert response.message.startswith('"kebap" için en iyi önerimiz Develi.')


@pytest.mark.asyncio
async def test_one_failing_restaurant_does_not_fail_the_request():
    halil = DiscoveredRestaurant(name="Halil", place_id="ChIJhalil", rating=4.6, source="api")
    broken = DiscoveredRestaurant(name="Broken", place_id="ChIJbroken", rating=4.0, source="api")
    service = make_service(restaurants=[halil, broken])

    def get_id(place_id):
        if place_id == "ChIJbroken":
            raise RuntimeError("db")
        return None

    service.restaurants.get_id.side_effect = get_id

    response = await service.recommend("lahmacun", 40.99, 29.03, 3)

    assert [r.name for r in response.recommendations] == ["Halil"]


@pytest.mark.asyncio
async def test_cache_store_failure_still_returns_results():
    halil = DiscoveredRestaurant(name="Halil", place_id="ChIJhalil", rating=4.6, source="api")
    service = make_service(restaurants=[halil])
    service.cache.store.side_effect = RuntimeError("db down")

    response = await service.recommend("lahmacun", 40.99, 29.03, 3)

    assert response.cache_id is None
    assert len(response.recommendations) == 1
