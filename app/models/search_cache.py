"""Search result cache model."""

from datetime import datetime
import uuid

from sqlalchemy import JSON, Column, DateTime, Float, ForeignKey, Integer, String, Table, Text
from sqlalchemy.orm import relationship

from app.db.base import Base

search_cache_restaurants = Table(
    "search_cache_restaurants",
    Base.metadata,
    Column("cache_id", String(36), ForeignKey("search_cache.id", ondelete="CASCADE"), primary_key=True),
    Column(
        "restaurant_id",
        Integer,
        ForeignKey("scraped_restaurants.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


class SearchCache(Base):
    """Enriched recommendation result for one normalized query."""

    __tablename__ = "search_cache"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    cache_key = Column(String(255), nullable=False, unique=True, index=True)
    food_query = Column(String(255), nullable=False, index=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    radius_km = Column(Float, nullable=False)
    status = Column(String(20), nullable=False, default="fresh", index=True)  # fresh|stale|refreshing|failed
    analysis_results = Column(JSON, nullable=False, default=list)
    ai_message = Column(Text)
    expires_at = Column(DateTime, nullable=False, index=True)
    hit_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    last_accessed_at = Column(DateTime, nullable=False, default=datetime.now)

    restaurants = relationship("ScrapedRestaurant", secondary=search_cache_restaurants, lazy="selectin")
