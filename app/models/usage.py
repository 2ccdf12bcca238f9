"""Proxy and external API usage models."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, UniqueConstraint

from app.db.base import Base


class ProxyUsage(Base):
    """Append-only proxy telemetry row."""

    __tablename__ = "proxy_usage"

    id = Column(Integer, primary_key=True, index=True)
    proxy_address = Column(String(255), nullable=False, index=True)
    tier = Column(String(20), nullable=False)
    target_id = Column(String(255))
    success = Column(Boolean, nullable=False)
    response_time_ms = Column(Integer)
    error_message = Column(Text)
    used_at = Column(DateTime, nullable=False, default=datetime.now, index=True)


class QuotaUsage(Base):
    """Monthly call counter for a rate-limited external API."""

    __tablename__ = "quota_usage"
    __table_args__ = (UniqueConstraint("api_name", "month", name="uq_quota_usage_api_month"),)

    id = Column(Integer, primary_key=True, index=True)
    api_name = Column(String(100), nullable=False)
    month = Column(String(7), nullable=False)  # YYYY-MM
    call_count = Column(Integer, nullable=False, default=0)
    monthly_limit = Column(Integer, nullable=False)
    last_used = Column(DateTime)
