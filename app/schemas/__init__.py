"""Expose schemas for easier import."""

from app.schemas.cache import (  # noqa: F401
    CachedAnalysisResult,
    CacheEntry,
    CacheLookupResult,
    generate_cache_key,
)
from app.schemas.crawl import (  # noqa: F401
    CrawlResult,
    ListingSearchResult,
    RestaurantFacts,
    ReviewCrawlRequest,
    ScrapedReviewData,
    SearchListing,
)
from app.schemas.discovery import DiscoveredRestaurant, DiscoveryResult  # noqa: F401
from app.schemas.job import BackgroundJobData  # noqa: F401
from app.schemas.proxy import Proxy, ProxyUsageRecord  # noqa: F401
from app.schemas.recommendation import (  # noqa: F401
    RecommendationRequest,
    RecommendationResponse,
)
from app.schemas.review import ReviewAnalysis  # noqa: F401
