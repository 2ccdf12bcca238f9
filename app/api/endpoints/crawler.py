"""Endpoints for scheduled crawling."""

import asyncio

from fastapi import APIRouter, Depends, HTTPException

from app.api.deps import get_services
from app.schemas.crawl import ReviewCrawlRequest, ReviewCrawlScheduled
from app.services.container import ServiceContainer

router = APIRouter(prefix="/crawl", tags=["crawl"])


@router.post("/reviews", response_model=ReviewCrawlScheduled, status_code=202)
async def crawl_reviews(
    payload: ReviewCrawlRequest, services: ServiceContainer = Depends(get_services)
) -> ReviewCrawlScheduled:
    """Queue a review crawl for one restaurant; duplicates return the active job."""
    try:
        job = await asyncio.to_thread(
            services.scheduler.schedule_scrape,
            payload.place_id,
            payload.maps_url,
            payload.food_keyword,
            payload.priority,
        )
    except Exception as exc:  # noqa: BLE001
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    if job is None:
        raise HTTPException(status_code=500, detail="Could not schedule the crawl job.")
    return ReviewCrawlScheduled(job_id=job.id, status=job.status)
