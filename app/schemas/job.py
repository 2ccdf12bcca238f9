"""Schemas for background jobs."""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

JobType = Literal["refresh_cache", "scrape_restaurant", "cleanup_expired"]
JobStatus = Literal["pending", "running", "completed", "failed"]


class BackgroundJobData(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    type: JobType
    target_key: str
    payload: dict[str, Any] = Field(default_factory=dict)
    status: JobStatus
    priority: int = 0
    attempts: int = 0
    max_attempts: int = 3
    last_error: Optional[str] = None
    scheduled_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime


class JobRunSummary(BaseModel):
    processed: int = 0
    succeeded: int = 0
    failed: int = 0


class JobStats(BaseModel):
    pending: int = 0
    running: int = 0
    completed: int = 0
    failed: int = 0


CRON_ACTIONS = ("process", "schedule-stale-refresh", "cleanup", "stats")


class CronRequest(BaseModel):
    action: str = "process"
    limit: Optional[int] = Field(None, ge=1, le=100)
