"""Search result cache with stale-while-revalidate lookups."""

from __future__ import annotations

from datetime import datetime, timedelta
import logging
from typing import Callable, Iterable, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.core.text import normalize_query
from app.models import ScrapedRestaurant, SearchCache
from app.schemas.cache import (
    CachedAnalysisResult,
    CacheEntry,
    CacheKey,
    CacheLookupResult,
    CacheStats,
    CacheStatus,
)

logger = logging.getLogger(__name__)

CACHE_STATUSES: tuple[CacheStatus, ...] = ("fresh", "stale", "refreshing", "failed")


class CacheStore:
    """Per-query result sets keyed by normalized query and rounded location.

    Lifecycle: fresh until `expires_at - stale_grace`, stale inside the grace
    window, expired after `expires_at`. Entries whose refresh failed are
    reported as misses.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        ttl: timedelta = timedelta(days=30),
        stale_grace: timedelta = timedelta(hours=24),
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._session_factory = session_factory
        self.ttl = ttl
        self.stale_grace = stale_grace
        self._now = now

    @staticmethod
    def _key(key: str | CacheKey) -> str:
        return key.key if isinstance(key, CacheKey) else key

    def lookup(self, key: str | CacheKey) -> CacheLookupResult:
        cache_key = self._key(key)
        try:
            with self._session_factory() as db:
                row = db.execute(select(SearchCache).where(SearchCache.cache_key == cache_key)).scalar_one_or_none()
                if row is None or row.status == "failed":
                    return CacheLookupResult(status="miss")

                now = self._now()
                if now > row.expires_at:
                    if row.status != "refreshing":
                        row.status = "stale"
                        db.commit()
                    return CacheLookupResult(status="expired", entry=CacheEntry.from_row(row))

                if now > row.expires_at - self.stale_grace:
                    return CacheLookupResult(status="stale", entry=CacheEntry.from_row(row))

                db.execute(
                    update(SearchCache)
                    .where(SearchCache.id == row.id)
                    .values(hit_count=SearchCache.hit_count + 1, last_accessed_at=now)
                    .execution_options(synchronize_session=False)
                )
                db.commit()
                db.refresh(row)
                return CacheLookupResult(status="hit", entry=CacheEntry.from_row(row))
        except SQLAlchemyError as exc:
            logger.error("Cache lookup failed for %s: %s", cache_key, exc)
            return CacheLookupResult(status="miss")

    def store(
        self,
        params: CacheKey,
        results: Sequence[CachedAnalysisResult],
        message: Optional[str],
        source_ids: Iterable[int] = (),
    ) -> Optional[CacheEntry]:
        """Upsert the entry: fresh status, new expiry, results replaced wholesale."""
        cache_key = params.key
        source_ids = list(dict.fromkeys(source_ids))
        for _ in range(2):
            try:
                with self._session_factory() as db:
                    now = self._now()
                    row = db.execute(
                        select(SearchCache).where(SearchCache.cache_key == cache_key)
                    ).scalar_one_or_none()
                    if row is None:
                        row = SearchCache(
                            cache_key=cache_key,
                            food_query=normalize_query(params.food_query),
                            latitude=params.latitude,
                            longitude=params.longitude,
                            radius_km=params.radius_km,
                            hit_count=0,
                            created_at=now,
                            last_accessed_at=now,
                        )
                        db.add(row)
                    restaurants = []
                    if source_ids:
                        restaurants = db.execute(
                            select(ScrapedRestaurant).where(ScrapedRestaurant.id.in_(source_ids))
                        ).scalars().all()
                    row.status = "fresh"
                    row.analysis_results = [result.model_dump(mode="json") for result in results]
                    row.ai_message = message
                    row.expires_at = now + self.ttl
                    row.restaurants = list(restaurants)
                    db.commit()
                    return CacheEntry.from_row(row)
            except IntegrityError:
                # Concurrent insert of the same key; the second pass updates it.
                continue
            except SQLAlchemyError as exc:
                logger.error("Cache store failed for %s: %s", cache_key, exc)
                return None
        return None

    def get(self, cache_id: str) -> Optional[CacheEntry]:
        with self._session_factory() as db:
            row = db.get(SearchCache, cache_id)
            return CacheEntry.from_row(row) if row else None

    def update_status(self, cache_id: str, status: CacheStatus) -> bool:
        try:
            with self._session_factory() as db:
                result = db.execute(
                    update(SearchCache)
                    .where(SearchCache.id == cache_id)
                    .values(status=status)
                    .execution_options(synchronize_session=False)
                )
                db.commit()
                return bool(result.rowcount)
        except SQLAlchemyError as exc:
            logger.error("Cache status update to %s failed for %s: %s", status, cache_id, exc)
            return False

    def stale_entries(self, limit: int = 10) -> list[CacheEntry]:
        """Entries needing a refresh, most recently used first."""
        now = self._now()
        with self._session_factory() as db:
            rows = db.execute(
                select(SearchCache)
                .where(
                    SearchCache.status.in_(("fresh", "stale")),
                    SearchCache.expires_at <= now + self.stale_grace,
                )
                .order_by(SearchCache.last_accessed_at.desc())
                .limit(limit)
            ).scalars().all()
            return [CacheEntry.from_row(row) for row in rows]

    def expired_entries(self, limit: int = 100) -> list[CacheEntry]:
        with self._session_factory() as db:
            rows = db.execute(
                select(SearchCache)
                .where(SearchCache.expires_at < self._now())
                .order_by(SearchCache.expires_at)
                .limit(limit)
            ).scalars().all()
            return [CacheEntry.from_row(row) for row in rows]

    def delete(self, cache_id: str) -> bool:
        with self._session_factory() as db:
            row = db.get(SearchCache, cache_id)
            if row is None:
                return False
            db.delete(row)
            db.commit()
            return True

    def cleanup_expired(self) -> int:
        """Delete entries that are expired and have not been read within the grace window."""
        now = self._now()
        with self._session_factory() as db:
            rows = db.execute(
                select(SearchCache).where(
                    SearchCache.expires_at < now,
                    SearchCache.last_accessed_at < now - self.stale_grace,
                )
            ).scalars().all()
            for row in rows:
                db.delete(row)
            db.commit()
        if rows:
            logger.info("Removed %d expired cache entries", len(rows))
        return len(rows)

    def invalidate_by_query(self, food_query: str) -> int:
        """Force every entry for a query to expire so the next read refreshes it."""
        now = self._now()
        with self._session_factory() as db:
            result = db.execute(
                update(SearchCache)
                .where(SearchCache.food_query == normalize_query(food_query))
                .values(status="stale", expires_at=now - timedelta(seconds=1))
                .execution_options(synchronize_session=False)
            )
            db.commit()
            return result.rowcount or 0

    def get_stats(self) -> CacheStats:
        now = self._now()
        with self._session_factory() as db:
            counts = dict(
                db.execute(select(SearchCache.status, func.count(SearchCache.id)).group_by(SearchCache.status)).all()
            )
            total_hits = db.execute(select(func.coalesce(func.sum(SearchCache.hit_count), 0))).scalar_one()
            expired = db.execute(
                select(func.count(SearchCache.id)).where(SearchCache.expires_at < now)
            ).scalar_one()
        return CacheStats(
            total=sum(counts.values()),
            by_status={status: counts.get(status, 0) for status in CACHE_STATUSES},
            total_hits=int(total_hits),
            expired=int(expired),
        )
