"""Persistence for crawled restaurants and reviews."""

from __future__ import annotations

from datetime import datetime, timedelta
import logging
from typing import Callable, Iterable, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from app.models import ScrapedRestaurant, ScrapedReview
from app.schemas.crawl import RestaurantFacts, ScrapedReviewData

logger = logging.getLogger(__name__)


class RestaurantRepository:
    def __init__(self, session_factory: sessionmaker[Session], now: Callable[[], datetime] = datetime.now) -> None:
        self._session_factory = session_factory
        self._now = now

    def upsert(self, facts: RestaurantFacts) -> int:
        """Insert or update by place id; empty incoming fields never erase stored ones."""
        now = self._now()
        with self._session_factory() as db:
            row = db.execute(
                select(ScrapedRestaurant).where(ScrapedRestaurant.place_id == facts.place_id)
            ).scalar_one_or_none()
            values = facts.model_dump(exclude={"place_id"})
            if row is None:
                row = ScrapedRestaurant(place_id=facts.place_id, scraped_at=now)
                row.name = values.pop("name") or facts.place_id
                db.add(row)
            else:
                row.last_refresh_at = now
            for field_name, value in values.items():
                if value not in (None, ""):
                    setattr(row, field_name, value)
            db.commit()
            return row.id

    def get_id(self, place_id: str) -> Optional[int]:
        with self._session_factory() as db:
            return db.execute(
                select(ScrapedRestaurant.id).where(ScrapedRestaurant.place_id == place_id)
            ).scalar_one_or_none()

    def find_by_ids(self, ids: Iterable[int]) -> list[tuple[int, RestaurantFacts]]:
        ids = list(ids)
        if not ids:
            return []
        with self._session_factory() as db:
            rows = db.execute(select(ScrapedRestaurant).where(ScrapedRestaurant.id.in_(ids))).scalars().all()
            return [(row.id, _to_facts(row)) for row in rows]


class ReviewRepository:
    def __init__(self, session_factory: sessionmaker[Session], now: Callable[[], datetime] = datetime.now) -> None:
        self._session_factory = session_factory
        self._now = now

    def replace_for_keyword(self, restaurant_id: int, keyword: str, reviews: Iterable[ScrapedReviewData]) -> int:
        """Swap the stored reviews for (restaurant, keyword) in one transaction."""
        now = self._now()
        with self._session_factory() as db:
            db.execute(
                delete(ScrapedReview).where(
                    ScrapedReview.restaurant_id == restaurant_id,
                    ScrapedReview.food_keyword == keyword,
                )
            )
            rows = [
                ScrapedReview(restaurant_id=restaurant_id, food_keyword=keyword, scraped_at=now, **review.model_dump())
                for review in reviews
            ]
            db.add_all(rows)
            db.commit()
        return len(rows)

    def find_by_restaurant_and_keyword(
        self,
        restaurant_id: int,
        keyword: str,
        max_age: Optional[timedelta] = None,
    ) -> list[ScrapedReviewData]:
        query = select(ScrapedReview).where(
            ScrapedReview.restaurant_id == restaurant_id,
            ScrapedReview.food_keyword == keyword,
        )
        if max_age is not None:
            query = query.where(ScrapedReview.scraped_at >= self._now() - max_age)
        with self._session_factory() as db:
            rows = db.execute(query.order_by(ScrapedReview.id)).scalars().all()
            return [
                ScrapedReviewData(
                    author_name=row.author_name or "Anonim",
                    rating=row.rating or 0,
                    text=row.text,
                    relative_time=row.relative_time,
                    price_per_person=row.price_per_person,
                    matched_keywords=row.matched_keywords or [],
                )
                for row in rows
            ]


def _to_facts(row: ScrapedRestaurant) -> RestaurantFacts:
    return RestaurantFacts(
        place_id=row.place_id,
        name=row.name,
        formatted_address=row.formatted_address,
        latitude=row.latitude,
        longitude=row.longitude,
        rating=row.rating,
        total_reviews=row.total_reviews,
        price_level=row.price_level,
        phone=row.phone,
        website=row.website,
        maps_url=row.maps_url,
    )
