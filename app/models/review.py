"""Scraped review model."""

from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from app.db.base import Base


class ScrapedReview(Base):
    """A single review collected for a restaurant and food keyword."""

    __tablename__ = "scraped_reviews"

    id = Column(Integer, primary_key=True, index=True)
    restaurant_id = Column(
        Integer, ForeignKey("scraped_restaurants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    author_name = Column(String(255))
    rating = Column(Float, default=0)
    text = Column(Text, nullable=False)
    price_per_person = Column(String(50))
    relative_time = Column(String(100))
    food_keyword = Column(String(100), index=True)
    matched_keywords = Column(JSON, default=list)
    scraped_at = Column(DateTime, nullable=False, default=datetime.now)

    restaurant = relationship("ScrapedRestaurant", back_populates="reviews")
