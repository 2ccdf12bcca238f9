"""Scraped restaurant model."""

from datetime import datetime

from sqlalchemy import Column, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import relationship

from app.db.base import Base


class ScrapedRestaurant(Base):
    """Restaurant facts collected from the maps crawler or the places API."""

    __tablename__ = "scraped_restaurants"

    id = Column(Integer, primary_key=True, index=True)
    place_id = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False)
    formatted_address = Column(Text)
    latitude = Column(Float)
    longitude = Column(Float)
    rating = Column(Float)
    total_reviews = Column(Integer, default=0)
    price_level = Column(Integer)
    phone = Column(String(50))
    website = Column(Text)
    maps_url = Column(Text)
    scraped_at = Column(DateTime, nullable=False, default=datetime.now)
    last_refresh_at = Column(DateTime)

    reviews = relationship("ScrapedReview", back_populates="restaurant", cascade="all, delete-orphan")
