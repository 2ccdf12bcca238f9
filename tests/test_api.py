from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from app.core.config import Settings
from app.main import create_app
from app.schemas.cache import CachedAnalysisResult, CacheStats
from app.schemas.discovery import DiscoveredRestaurant, DiscoveryResult
from app.schemas.job import BackgroundJobData, JobRunSummary, JobStats
from app.schemas.recommendation import RecommendationMeta, RecommendationResponse

SECRET = "test-cron-secret"
AUTH = {"Authorization": f"Bearer {SECRET}"}


@pytest.fixture
def services():
    services = MagicMock()
    services.settings = Settings(cron_secret=SECRET)
    services.recommendations.recommend = AsyncMock(
        return_value=RecommendationResponse(
            recommendations=[CachedAnalysisResult(name="Halil Lahmacun", food_score=9)],
            message="Halil Lahmacun'u deneyin.",
            cache_id="cache-1",
            meta=RecommendationMeta(cache_status="hit"),
        )
    )
    services.recommendations.drain = AsyncMock()
    services.discovery.discover = AsyncMock(
        return_value=DiscoveryResult(restaurants=[DiscoveredRestaurant(name="Halil", source="scrape")], scrape_count=1)
    )
    services.scheduler.process_pending = AsyncMock(return_value=JobRunSummary(processed=2, succeeded=1, failed=1))
    services.scheduler.schedule_stale_refreshes.return_value = (3, 4)
    services.scheduler.cleanup_old_jobs.return_value = 2
    services.scheduler.get_stats.return_value = JobStats(pending=1, completed=5)
    services.cache.cleanup_expired.return_value = 1
    services.cache.get_stats.return_value = CacheStats(
        total=1, by_status={"fresh": 1, "stale": 0, "refreshing": 0, "failed": 0}, total_hits=3, expired=0
    )
    services.quota.get_stats.return_value = {"month": "2025-03", "used": 10, "limit": 5000, "remaining": 4990}
    services.proxies.health_check = AsyncMock(return_value={"pool_size": 0, "by_tier": {}})
    return services


@pytest.fixture
def client(services):
    return TestClient(create_app(services=services))


def test_root_and_health(client):
    assert client.get("/").json() == {"message": "Nerede Yesem API is running"}
    assert client.get("/health").json() == {"status": "healthy"}
    assert client.get("/api/v1/health").json() == {"status": "ok"}


def test_missing_services_return_503():
    client = TestClient(create_app())
    response = client.post("/api/v1/recommendations", json={"food_query": "lahmacun", "latitude": 41, "longitude": 29})
    assert response.status_code == 503


def test_recommendations_endpoint(client, services):
    response = client.post(
        "/api/v1/recommendations",
        json={"food_query": "lahmacun", "latitude": 40.99, "longitude": 29.03, "location_text": "Kadıköy"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["cache_id"] == "cache-1"
    assert body["recommendations"][0]["name"] == "Halil Lahmacun"
    services.recommendations.recommend.assert_awaited_once_with("lahmacun", 40.99, 29.03, 3, "Kadıköy")


def test_recommendations_validation_and_errors(client, services):
    assert client.post("/api/v1/recommendations", json={"food_query": "", "latitude": 0, "longitude": 0}).status_code == 422
    assert (
        client.post("/api/v1/recommendations", json={"food_query": "pide", "latitude": 91, "longitude": 0}).status_code
        == 422
    )

    services.recommendations.recommend.side_effect = RuntimeError("boom")
    response = client.post("/api/v1/recommendations", json={"food_query": "pide", "latitude": 41, "longitude": 29})
    assert response.status_code == 500
    assert response.json()["detail"] == "boom"


def test_discover_endpoint(client, services):
    response = client.post(
        "/api/v1/discover", json={"food_query": "lahmacun", "latitude": 40.99, "longitude": 29.03, "top_n": 3}
    )

    assert response.status_code == 200
    assert response.json()["restaurants"][0]["name"] == "Halil"
    services.discovery.discover.assert_awaited_once_with("lahmacun", "", 40.99, 29.03, 3, 3)


def test_crawl_reviews_schedules_a_job(client, services):
    services.scheduler.schedule_scrape.return_value = BackgroundJobData(
        id="job-1",
        type="scrape_restaurant",
        target_key="ChIJ1:pide",
        status="pending",
        scheduled_at="2025-03-10T12:00:00",
        created_at="2025-03-10T12:00:00",
    )

    response = client.post("/api/v1/crawl/reviews", json={"place_id": "ChIJ1", "food_keyword": "pide"})

    assert response.status_code == 202
    assert response.json() == {"job_id": "job-1", "status": "pending"}
    services.scheduler.schedule_scrape.assert_called_once_with("ChIJ1", None, "pide", 0)


def test_crawl_reviews_reports_scheduling_failure(client, services):
    services.scheduler.schedule_scrape.return_value = None
    response = client.post("/api/v1/crawl/reviews", json={"place_id": "ChIJ1", "food_keyword": "pide"})
    assert response.status_code == 500


def test_jobs_require_the_cron_secret(client):
    assert client.post("/api/v1/jobs", json={"action": "process"}).status_code == 401
    assert (
        client.post("/api/v1/jobs", json={"action": "process"}, headers={"Authorization": "Bearer wrong"}).status_code
        == 401
    )


def test_jobs_reject_unknown_actions(client):
    response = client.post("/api/v1/jobs", json={"action": "reindex"}, headers=AUTH)
    assert response.status_code == 400


def test_jobs_process_is_the_default_action(client, services):
    response = client.post("/api/v1/jobs", headers=AUTH)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["action"] == "process"
    assert body["result"] == {"processed": 2, "succeeded": 1, "failed": 1}
    services.scheduler.process_pending.assert_awaited_once_with(5)


def test_jobs_actions(client, services):
    stale = client.post("/api/v1/jobs", json={"action": "schedule-stale-refresh", "limit": 20}, headers=AUTH).json()
    assert stale["result"] == {"scheduled": 3, "total": 4}
    services.scheduler.schedule_stale_refreshes.assert_called_once_with(20)

    cleanup = client.post("/api/v1/jobs", json={"action": "cleanup"}, headers=AUTH).json()
    assert cleanup["result"] == {"expired_caches": 1, "old_jobs": 2}

    stats = client.post("/api/v1/jobs", json={"action": "stats"}, headers=AUTH).json()
    assert stats["result"]["jobs"]["pending"] == 1
    assert stats["result"]["cache"]["total_hits"] == 3
    assert stats["result"]["quota"]["remaining"] == 4990


def test_jobs_health_needs_no_secret(client):
    response = client.get("/api/v1/jobs/health")

    assert response.status_code == 200
    assert response.json()["stats"] == {"pending": 1, "running": 0, "completed": 5, "failed": 0}


def test_proxy_health(client):
    assert client.get("/api/v1/proxies/health").json() == {"pool_size": 0, "by_tier": {}}
