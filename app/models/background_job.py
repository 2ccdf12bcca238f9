"""Background job model."""

from datetime import datetime
import uuid

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Text

from app.db.base import Base


class BackgroundJob(Base):
    """Durable unit of deferred work (cache refresh, restaurant scrape, cleanup)."""

    __tablename__ = "background_jobs"
    __table_args__ = (
        Index("ix_background_jobs_claim", "status", "priority", "scheduled_at"),
        Index("ix_background_jobs_target", "type", "target_key", "status"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    type = Column(String(50), nullable=False)  # refresh_cache|scrape_restaurant|cleanup_expired
    target_key = Column(String(255), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    status = Column(String(20), nullable=False, default="pending")  # pending|running|completed|failed
    priority = Column(Integer, nullable=False, default=0)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    last_error = Column(Text)
    scheduled_at = Column(DateTime, nullable=False, default=datetime.now)
    started_at = Column(DateTime)
    completed_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
