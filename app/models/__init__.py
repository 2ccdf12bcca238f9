"""ORM models (imported so metadata knows every table)."""

from app.models.background_job import BackgroundJob
from app.models.restaurant import ScrapedRestaurant
from app.models.review import ScrapedReview
from app.models.search_cache import SearchCache, search_cache_restaurants
from app.models.usage import ProxyUsage, QuotaUsage

__all__ = [
    "BackgroundJob",
    "ProxyUsage",
    "QuotaUsage",
    "ScrapedRestaurant",
    "ScrapedReview",
    "SearchCache",
    "search_cache_restaurants",
]
