"""Durable background jobs: cache refresh, single-restaurant scrape, cleanup."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
import logging
import threading
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.core.text import normalize_query
from app.models import BackgroundJob
from app.schemas.cache import CachedAnalysisResult, CacheKey
from app.schemas.crawl import CrawlResult
from app.schemas.job import BackgroundJobData, JobRunSummary, JobStats, JobType
from app.services.cache_store import CacheStore

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ("pending", "running")
TERMINAL_STATUSES = ("completed", "failed")


def target_key(job_type: JobType, payload: dict[str, Any]) -> str:
    """Identity of the work a job does; at most one active job per (type, target)."""
    if job_type == "refresh_cache":
        return str(payload["cache_id"])
    if job_type == "scrape_restaurant":
        return f"{payload['place_id']}:{normalize_query(payload.get('food_keyword', ''))}"
    if job_type == "cleanup_expired":
        return "global"
    raise ValueError(f"Unknown job type: {job_type}")


class JobScheduler:
    """pending -> running -> completed | pending (retry) | failed."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        cache: CacheStore,
        crawler=None,
        restaurants=None,
        analyzer=None,
        max_attempts: int = 3,
        retention: timedelta = timedelta(days=7),
        retry_backoff: timedelta = timedelta(0),
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._session_factory = session_factory
        self.cache = cache
        self.crawler = crawler
        self.restaurants = restaurants
        self.analyzer = analyzer
        self.max_attempts = max_attempts
        self.retention = retention
        self.retry_backoff = retry_backoff
        self._now = now
        self._schedule_lock = threading.Lock()
        self._handlers: dict[str, Callable[[dict[str, Any]], Awaitable[None]]] = {
            "refresh_cache": self._refresh_cache,
            "scrape_restaurant": self._scrape_restaurant,
            "cleanup_expired": self._cleanup_expired,
        }

    # ------------------------------------------------------------ scheduling
    def schedule(
        self,
        job_type: JobType,
        payload: dict[str, Any],
        priority: int = 0,
        scheduled_at: Optional[datetime] = None,
    ) -> Optional[BackgroundJobData]:
        """Create a job unless an active one already covers the same target."""
        key = target_key(job_type, payload)
        with self._schedule_lock:
            try:
                with self._session_factory() as db:
                    existing = db.execute(
                        select(BackgroundJob)
                        .where(
                            BackgroundJob.type == job_type,
                            BackgroundJob.target_key == key,
                            BackgroundJob.status.in_(ACTIVE_STATUSES),
                        )
                        .limit(1)
                    ).scalar_one_or_none()
                    if existing is not None:
                        return BackgroundJobData.model_validate(existing)

                    now = self._now()
                    job = BackgroundJob(
                        type=job_type,
                        target_key=key,
                        payload=payload,
                        status="pending",
                        priority=priority,
                        attempts=0,
                        max_attempts=self.max_attempts,
                        scheduled_at=scheduled_at or now,
                        created_at=now,
                    )
                    db.add(job)
                    db.commit()
                    logger.info("Scheduled %s job for %s", job_type, key)
                    return BackgroundJobData.model_validate(job)
            except SQLAlchemyError as exc:
                logger.error("Scheduling %s for %s failed: %s", job_type, key, exc)
                return None

    def schedule_refresh(self, cache_id: str, priority: int = 0) -> Optional[BackgroundJobData]:
        return self.schedule("refresh_cache", {"cache_id": cache_id}, priority)

    def schedule_scrape(
        self, place_id: str, maps_url: Optional[str], food_keyword: str, priority: int = 0
    ) -> Optional[BackgroundJobData]:
        return self.schedule(
            "scrape_restaurant",
            {"place_id": place_id, "maps_url": maps_url, "food_keyword": food_keyword},
            priority,
        )

    def schedule_cleanup(self) -> Optional[BackgroundJobData]:
        return self.schedule("cleanup_expired", {})

    def schedule_stale_refreshes(self, limit: int = 10) -> tuple[int, int]:
        """Queue refreshes for entries inside the grace window or expired; returns (scheduled, seen)."""
        entries = self.cache.stale_entries(limit)
        scheduled = 0
        for entry in entries:
            if self.schedule_refresh(entry.id, priority=1) is not None:
                scheduled += 1
        return scheduled, len(entries)

    # -------------------------------------------------------------- claiming
    def claim_batch(self, limit: int = 5) -> list[BackgroundJobData]:
        """Due pending jobs, highest priority then oldest first, moved to running."""
        now = self._now()
        with self._session_factory() as db:
            jobs = db.execute(
                select(BackgroundJob)
                .where(BackgroundJob.status == "pending", BackgroundJob.scheduled_at <= now)
                .order_by(BackgroundJob.priority.desc(), BackgroundJob.scheduled_at.asc())
                .limit(limit)
                .with_for_update(skip_locked=True)
            ).scalars().all()
            for job in jobs:
                job.status = "running"
                job.started_at = now
            claimed = [BackgroundJobData.model_validate(job) for job in jobs]
            db.commit()
        return claimed

    def get(self, job_id: str) -> Optional[BackgroundJobData]:
        with self._session_factory() as db:
            job = db.get(BackgroundJob, job_id)
            return BackgroundJobData.model_validate(job) if job else None

    # ------------------------------------------------------------- execution
    def _mark_completed(self, job_id: str) -> None:
        with self._session_factory() as db:
            job = db.get(BackgroundJob, job_id)
            if job is None:
                return
            job.status = "completed"
            job.completed_at = self._now()
            db.commit()

    def _record_failure(self, job_id: str, error: str) -> None:
        with self._session_factory() as db:
            job = db.get(BackgroundJob, job_id)
            if job is None:
                return
            now = self._now()
            job.attempts = (job.attempts or 0) + 1
            job.last_error = error[:2000]
            if job.attempts >= job.max_attempts:
                job.status = "failed"
                job.completed_at = now
                logger.error("Job %s (%s) failed permanently after %d attempts", job.id, job.type, job.attempts)
            else:
                job.status = "pending"
                if self.retry_backoff:
                    job.scheduled_at = now + self.retry_backoff * (2 ** (job.attempts - 1))
            db.commit()

    async def execute(self, job: BackgroundJobData) -> bool:
        """Run one claimed job; handler errors drive the retry state and are not raised."""
        handler = self._handlers.get(job.type)
        try:
            if handler is None:
                raise ValueError(f"Unknown job type: {job.type}")
            await handler(job.payload)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Job %s (%s) attempt failed: %s", job.id, job.type, exc)
            try:
                await asyncio.to_thread(self._record_failure, job.id, str(exc) or type(exc).__name__)
            except SQLAlchemyError as db_exc:
                logger.error("Could not record failure of job %s: %s", job.id, db_exc)
            return False

        try:
            await asyncio.to_thread(self._mark_completed, job.id)
        except SQLAlchemyError as exc:
            logger.error("Could not mark job %s completed: %s", job.id, exc)
        return True

    async def process_pending(self, limit: int = 5) -> JobRunSummary:
        jobs = await asyncio.to_thread(self.claim_batch, limit)
        summary = JobRunSummary()
        for job in jobs:
            summary.processed += 1
            if await self.execute(job):
                summary.succeeded += 1
            else:
                summary.failed += 1
        if jobs:
            logger.info("Processed %d jobs (%d ok, %d failed)", summary.processed, summary.succeeded, summary.failed)
        return summary

    # -------------------------------------------------------------- handlers
    async def _reanalyze(
        self, item: CachedAnalysisResult, crawl: Optional[CrawlResult], food_query: str
    ) -> CachedAnalysisResult:
        if crawl is None or not crawl.success or not crawl.reviews:
            return item
        update: dict[str, Any] = {"keyword_rating": crawl.keyword_rating}
        if crawl.restaurant is not None and crawl.restaurant.total_reviews:
            update["review_count"] = crawl.restaurant.total_reviews
        if self.analyzer is not None:
            analysis = await asyncio.to_thread(
                self.analyzer.analyze_reviews, item.name, food_query, [review.text for review in crawl.reviews]
            )
            update.update(analysis.model_dump())
        return item.model_copy(update=update)

    async def _refresh_cache(self, payload: dict[str, Any]) -> None:
        cache_id = payload["cache_id"]
        entry = await asyncio.to_thread(self.cache.get, cache_id)
        if entry is None:
            raise LookupError(f"Cache entry not found: {cache_id}")

        await asyncio.to_thread(self.cache.update_status, cache_id, "refreshing")
        try:
            sources = []
            if self.restaurants is not None:
                sources = await asyncio.to_thread(self.restaurants.find_by_ids, entry.source_restaurant_ids)
            crawls = await asyncio.gather(
                *(
                    self.crawler.fetch_reviews_and_save(facts.maps_url, facts.place_id, entry.food_query, hint=facts)
                    for _, facts in sources
                )
            )
            if sources and not any(crawl.success for crawl in crawls):
                raise RuntimeError(f"All {len(sources)} restaurant crawls failed")

            by_id = {restaurant_id: crawl for (restaurant_id, _), crawl in zip(sources, crawls)}
            by_place = {facts.place_id: crawl for (_, facts), crawl in zip(sources, crawls) if facts.place_id}
            results = [
                await self._reanalyze(
                    item,
                    by_id.get(item.restaurant_id) or by_place.get(item.place_id),
                    entry.food_query,
                )
                for item in entry.analysis_results
            ]
            params = CacheKey(
                food_query=entry.food_query,
                latitude=entry.latitude,
                longitude=entry.longitude,
                radius_km=entry.radius_km,
            )
            stored = await asyncio.to_thread(
                self.cache.store, params, results, entry.ai_message, entry.source_restaurant_ids
            )
            if stored is None:
                raise RuntimeError(f"Storing refreshed cache entry {cache_id} failed")
            logger.info("Refreshed cache entry %s (%d restaurants)", cache_id, len(sources))
        except Exception:
            await asyncio.to_thread(self.cache.update_status, cache_id, "failed")
            raise

    async def _scrape_restaurant(self, payload: dict[str, Any]) -> None:
        result = await self.crawler.fetch_reviews_and_save(
            payload.get("maps_url"), payload["place_id"], payload.get("food_keyword", "")
        )
        if not result.success:
            raise RuntimeError(result.error or "Scrape failed")

    async def _cleanup_expired(self, payload: dict[str, Any]) -> None:
        removed = await asyncio.to_thread(self.cache.cleanup_expired)
        old_jobs = await asyncio.to_thread(self.cleanup_old_jobs)
        logger.info("Cleanup removed %d cache entries and %d old jobs", removed, old_jobs)

    # ---------------------------------------------------------- maintenance
    def cleanup_old_jobs(self, older_than: Optional[timedelta] = None) -> int:
        threshold = self._now() - (older_than if older_than is not None else self.retention)
        with self._session_factory() as db:
            result = db.execute(
                delete(BackgroundJob).where(
                    BackgroundJob.status.in_(TERMINAL_STATUSES),
                    BackgroundJob.completed_at < threshold,
                )
            )
            db.commit()
            return result.rowcount or 0

    def get_stats(self) -> JobStats:
        with self._session_factory() as db:
            counts = dict(
                db.execute(select(BackgroundJob.status, func.count(BackgroundJob.id)).group_by(BackgroundJob.status)).all()
            )
        return JobStats(**{status: counts.get(status, 0) for status in JobStats.model_fields})
