from unittest.mock import AsyncMock, MagicMock

import pytest

from app.schemas.crawl import ListingSearchResult, SearchListing
from app.schemas.discovery import DiscoveredRestaurant
from app.services.discovery import (
    DiscoveryEngine,
    are_close,
    merge_and_dedup,
    names_similar,
    prominence_score,
)
from app.services.places_client import PlaceResult


def listing(name, rating=None, reviews=None, lat=None, lon=None, **kwargs):
    return SearchListing(name=name, rating=rating, review_count=reviews, latitude=lat, longitude=lon, **kwargs)


def place(name, rating=None, reviews=None, lat=None, lon=None, place_id=None):
    return PlaceResult(
        place_id=place_id or f"ChIJ{name.replace(' ', '')}",
        name=name,
        rating=rating,
        user_ratings_total=reviews,
        latitude=lat,
        longitude=lon,
    )


def make_engine(listings=None, places=None, crawl_success=True, quota_ok=True, places_configured=True):
    crawler = MagicMock()
    crawler.fetch_listings = AsyncMock(
        return_value=ListingSearchResult(
            success=crawl_success,
            listings=listings or [],
            error=None if crawl_success else "Results container not found",
        )
    )
    quota = MagicMock()
    quota.can_consume.return_value = quota_ok
    quota.consume.return_value = quota_ok
    client = MagicMock()
    client.configured = places_configured
    client.search_nearby = AsyncMock(return_value=places or [])
    return DiscoveryEngine(crawler, quota, client), crawler, quota, client


def test_prominence_score():
    assert prominence_score(4.0, 99) == pytest.approx(8.0)
    assert prominence_score(None, 100) == 0
    assert prominence_score(4.5, None) == 0


def test_name_similarity_and_proximity():
    assert names_similar("Halil Lahmacun", "Halil Lahmacun Kadıköy")
    assert names_similar("Çiya Sofrası", "ciya sofrasi")
    assert not names_similar("Halil Lahmacun", "Borsam")
    assert not names_similar("", "Borsam")
    assert are_close(41.0, 29.0, 41.0005, 29.0)
    assert not are_close(41.0, 29.0, 41.01, 29.0)
    assert not are_close(None, 29.0, 41.0, 29.0)


def test_merge_enriches_api_entry_with_scrape_duplicate():
    api = [
        DiscoveredRestaurant(name="Halil Lahmacun", place_id="ChIJhalil", rating=4.6, review_count=1000, source="api"),
    ]
    scraped = [
        DiscoveredRestaurant(
            name="halil lahmacun",
            rating=4.5,
            review_count=1234,
            maps_url="https://www.google.com/maps/place/Halil",
            address="Moda Cad. No:12",
            source="scrape",
        ),
        DiscoveredRestaurant(name="Borsam Taşfırın", rating=4.5, review_count=890, source="scrape"),
    ]

    merged = merge_and_dedup(api, scraped)

    assert [r.name for r in merged] == ["Halil Lahmacun", "Borsam Taşfırın"]
    halil = merged[0]
    assert halil.source == "both"
    assert halil.place_id == "ChIJhalil"
    assert halil.rating == 4.6
    assert halil.review_count == 1234
    assert halil.maps_url == "https://www.google.com/maps/place/Halil"
    assert halil.prominence_score == pytest.approx(prominence_score(4.6, 1234))


def test_merge_matches_similar_names_only_when_close():
    api = [DiscoveredRestaurant(name="Halil", latitude=41.0, longitude=29.0, source="api")]
    near = DiscoveredRestaurant(name="Halil Lahmacun", latitude=41.0003, longitude=29.0, source="scrape")
    far = DiscoveredRestaurant(name="Halil Lahmacun", latitude=41.05, longitude=29.0, source="scrape")
    one_km = DiscoveredRestaurant(name="Halil Lahmacun", latitude=41.009, longitude=29.0, source="scrape")

    assert len(merge_and_dedup(api, [near])) == 1
    assert len(merge_and_dedup(api, [far])) == 2
    assert len(merge_and_dedup(api, [one_km])) == 2


def test_merge_uppercase_turkish_name_within_threshold():
    api = [DiscoveredRestaurant(name="Çiya Sofrası", place_id="ChIJciya", latitude=40.9906, longitude=29.0262, source="api")]
    scraped = [DiscoveredRestaurant(name="ÇİYA SOFRASI", latitude=40.9909, longitude=29.0262, source="scrape")]

    merged = merge_and_dedup(api, scraped)

    assert len(merged) == 1
    assert merged[0].source == "both"


@pytest.mark.asyncio
async def test_discover_ranks_by_prominence_and_limits_top_n():
    listings = [
        listing("Az Bilinen", rating=5.0, reviews=3),
        listing("Halil Lahmacun", rating=4.6, reviews=1234),
        listing("Borsam Taşfırın", rating=4.5, reviews=890),
    ]
    engine, _, _, _ = make_engine(listings=listings, places_configured=False)

    result = await engine.discover("lahmacun", "Kadıköy", 40.99, 29.03, 3, top_n=2)

    assert [r.name for r in result.restaurants] == ["Halil Lahmacun", "Borsam Taşfırın"]
    assert result.scrape_count == 3
    assert result.api_call_used is False


@pytest.mark.asyncio
async def test_discover_merges_both_sources_and_consumes_quota_once():
    engine, crawler, quota, client = make_engine(
        listings=[listing("Halil Lahmacun", rating=4.6, reviews=1234)],
        places=[place("Halil Lahmacun", rating=4.6, reviews=1100), place("Develi", rating=4.4, reviews=5000)],
    )

    result = await engine.discover("lahmacun", "Kadıköy", 40.99, 29.03, 3)

    assert result.api_call_used is True
    assert result.api_count == 2
    assert {r.name: r.source for r in result.restaurants} == {"Halil Lahmacun": "both", "Develi": "api"}
    quota.consume.assert_called_once()
    client.search_nearby.assert_awaited_once_with(40.99, 29.03, "lahmacun", 3000)
    crawler.fetch_listings.assert_awaited_once_with("Kadıköy", "lahmacun", 40.99, 29.03, 3)


@pytest.mark.asyncio
async def test_exhausted_quota_skips_the_api():
    engine, _, quota, client = make_engine(listings=[listing("Halil")], quota_ok=False)

    result = await engine.discover("lahmacun", "", 40.99, 29.03, 3)

    assert result.api_call_used is False
    assert [r.source for r in result.restaurants] == ["scrape"]
    client.search_nearby.assert_not_awaited()
    quota.consume.assert_not_called()


@pytest.mark.asyncio
async def test_failing_branches_do_not_fail_discovery():
    engine, _, _, client = make_engine(crawl_success=False, places=[place("Develi", rating=4.4, reviews=5000)])

    result = await engine.discover("kebap", "", 40.99, 29.03, 3)
    assert [r.name for r in result.restaurants] == ["Develi"]
    assert result.scrape_count == 0

    client.search_nearby.side_effect = RuntimeError("OVER_QUERY_LIMIT")
    result = await engine.discover("kebap", "", 40.99, 29.03, 3)
    assert result.restaurants == []
    assert result.api_call_used is False


@pytest.mark.asyncio
async def test_sponsored_listings_are_dropped():
    engine, _, _, _ = make_engine(
        listings=[listing("Reklam Burger", rating=4.9, reviews=900, is_sponsored=True), listing("Halil")],
        places_configured=False,
    )

    result = await engine.discover("burger", "", 40.99, 29.03, 3)

    assert [r.name for r in result.restaurants] == ["Halil"]
