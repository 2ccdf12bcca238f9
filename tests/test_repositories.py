from datetime import timedelta

import pytest

from app.schemas.crawl import RestaurantFacts, ScrapedReviewData
from app.services.repositories import RestaurantRepository, ReviewRepository


@pytest.fixture
def restaurants(session_factory, clock):
    return RestaurantRepository(session_factory, now=clock)


@pytest.fixture
def reviews(session_factory, clock):
    return ReviewRepository(session_factory, now=clock)


def review(text, rating=5):
    return ScrapedReviewData(author_name="Ayşe", rating=rating, text=text)


def test_upsert_keeps_stored_fields_when_incoming_ones_are_empty(restaurants):
    first = restaurants.upsert(
        RestaurantFacts(place_id="ChIJhalil", name="Halil Lahmacun", formatted_address="Moda", rating=4.6)
    )
    second = restaurants.upsert(RestaurantFacts(place_id="ChIJhalil", name="", rating=4.7))

    assert first == second
    assert restaurants.get_id("ChIJhalil") == first
    assert restaurants.get_id("ChIJmissing") is None
    [(restaurant_id, facts)] = restaurants.find_by_ids([first])
    assert restaurant_id == first
    assert facts.name == "Halil Lahmacun"
    assert facts.formatted_address == "Moda"
    assert facts.rating == 4.7


def test_find_by_ids_with_no_ids(restaurants):
    assert restaurants.find_by_ids([]) == []


def test_replace_for_keyword_only_touches_that_keyword(restaurants, reviews):
    restaurant_id = restaurants.upsert(RestaurantFacts(place_id="ChIJhalil", name="Halil Lahmacun"))
    reviews.replace_for_keyword(restaurant_id, "lahmacun", [review("eski 1"), review("eski 2")])
    reviews.replace_for_keyword(restaurant_id, "ayran", [review("ayranı köpüklü")])

    stored = reviews.replace_for_keyword(restaurant_id, "lahmacun", [review("yeni", rating=4)])

    assert stored == 1
    assert [r.text for r in reviews.find_by_restaurant_and_keyword(restaurant_id, "lahmacun")] == ["yeni"]
    assert [r.text for r in reviews.find_by_restaurant_and_keyword(restaurant_id, "ayran")] == ["ayranı köpüklü"]


def test_find_by_restaurant_and_keyword_respects_max_age(restaurants, reviews, clock):
    restaurant_id = restaurants.upsert(RestaurantFacts(place_id="ChIJhalil", name="Halil Lahmacun"))
    reviews.replace_for_keyword(restaurant_id, "lahmacun", [review("ince ve çıtır", rating=4)])
    clock.advance(days=8)

    assert reviews.find_by_restaurant_and_keyword(restaurant_id, "lahmacun", max_age=timedelta(days=7)) == []
    [found] = reviews.find_by_restaurant_and_keyword(restaurant_id, "lahmacun")
    assert found.rating == 4
    assert found.author_name == "Ayşe"
