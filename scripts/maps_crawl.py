"""
Maps crawler CLI
----------------
listings: search result cards around a point.
reviews:  keyword-filtered reviews of one place (optionally saved to the database).
"""

import argparse
import asyncio
import hashlib
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List

from dotenv import load_dotenv

BACKEND_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(BACKEND_ROOT / ".env")

sys.path.insert(0, str(BACKEND_ROOT))

from app.core.config import settings  # noqa: E402
from app.services.crawler import CrawlEngine, PlaywrightBrowserFactory  # noqa: E402
from app.services.proxy_rotation import ProxyRotationService  # noqa: E402
from utils.storage_manager import JsonlStorageManager  # noqa: E402

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


def build_engine(headless: bool, save: bool = False) -> CrawlEngine:
    restaurants = reviews = None
    proxies_kwargs = {}
    if save:
        from app.db.init_db import init_db
        from app.db.session import SessionLocal
        from app.services.repositories import RestaurantRepository, ReviewRepository

        init_db()
        restaurants = RestaurantRepository(SessionLocal)
        reviews = ReviewRepository(SessionLocal)
        proxies_kwargs["session_factory"] = SessionLocal

    proxies = ProxyRotationService(
        list_url=settings.proxy_list_url,
        api_key=settings.proxy_api_key,
        refresh_interval_seconds=settings.proxy_refresh_interval_seconds,
        default_tier=settings.proxy_default_tier,
        **proxies_kwargs,
    )
    return CrawlEngine(
        proxies,
        PlaywrightBrowserFactory(headless=headless, executable_path=settings.chromium_executable_path),
        restaurants,
        reviews,
        max_attempts=settings.scrape_max_proxy_attempts,
        navigation_timeout_ms=settings.scrape_navigation_timeout_ms,
        max_reviews=settings.max_reviews_per_restaurant,
        max_scrolls=settings.scrape_max_scrolls,
        max_search_scrolls=settings.search_max_scrolls,
        max_listings=settings.search_scrape_max_results,
    )


def review_id(place_id: str, author: str, text: str) -> str:
    digest = hashlib.sha1(f"{author}\n{text}".encode("utf-8")).hexdigest()[:16]
    return f"{place_id}:{digest}"


async def crawl_listings(args: argparse.Namespace) -> List[Dict]:
    engine = build_engine(not args.headed)
    result = await engine.fetch_listings(args.location, args.query, args.lat, args.lon, args.radius)
    if not result.success:
        logger.error("Listing search failed: %s", result.error)
        return []
    return [listing.model_dump() for listing in result.listings]


async def crawl_reviews(args: argparse.Namespace) -> List[Dict]:
    engine = build_engine(not args.headed, save=args.save)
    crawl = engine.fetch_reviews_and_save if args.save else engine.fetch_reviews
    result = await crawl(args.maps_url, args.place_id, args.keyword)
    if not result.success:
        logger.error("Review crawl failed: %s", result.error)
        return []
    restaurant = result.restaurant.model_dump() if result.restaurant else {}
    return [
        {
            "review_id": review_id(args.place_id, review.author_name, review.text),
            "place_id": args.place_id,
            "restaurant": restaurant.get("name"),
            "food_keyword": args.keyword,
            **review.model_dump(),
        }
        for review in result.reviews
    ]


def print_results_summary(records: List[Dict], label: str) -> None:
    print(f"\nCollected {len(records)} {label}")
    for i, record in enumerate(records[:10], start=1):
        name = record.get("name") or record.get("author_name")
        rating = record.get("rating")
        print(f"  {i}. {name} ({rating})")


def run_cli() -> None:
    parser = argparse.ArgumentParser(description="Maps listings and review crawler")
    parser.add_argument("--headed", action="store_true", help="Show the browser window")
    parser.add_argument("--json-output", action="store_true", help="Print JSON to stdout")
    parser.add_argument("--jsonl-path", type=Path, default=None, help="JSONL snapshot to append to")
    parser.add_argument("--skip-jsonl", action="store_true", help="Do not write a JSONL snapshot")
    sub = parser.add_subparsers(dest="command", required=True)

    listings = sub.add_parser("listings", help="Search result cards around a point")
    listings.add_argument("--query", required=True, help="Food query, e.g. lahmacun")
    listings.add_argument("--location", default="", help="Area name, e.g. Kadıköy")
    listings.add_argument("--lat", type=float, required=True)
    listings.add_argument("--lon", type=float, required=True)
    listings.add_argument("--radius", type=float, default=3.0, help="Radius in km")

    reviews = sub.add_parser("reviews", help="Keyword-filtered reviews of one place")
    reviews.add_argument("--place-id", required=True, help="Maps place id")
    reviews.add_argument("--maps-url", default=None, help="Place URL (built from the place id when empty)")
    reviews.add_argument("--keyword", required=True, help="Food keyword to search in reviews")
    reviews.add_argument("--save", action="store_true", help="Store restaurant and reviews in the database")

    args = parser.parse_args()

    if args.command == "listings":
        records = asyncio.run(crawl_listings(args))
        default_path, id_field, label = "listings.jsonl", "place_id", "listings"
    else:
        records = asyncio.run(crawl_reviews(args))
        default_path, id_field, label = "reviews.jsonl", "review_id", "reviews"

    written = len(records)
    if not args.skip_jsonl:
        manager = JsonlStorageManager(str(args.jsonl_path or default_path), id_field=id_field)
        written = manager.append(records)

    if args.json_output:
        print(json.dumps(records, ensure_ascii=False, default=str))
    else:
        print_results_summary(records, label)
        print(f"\nNewly stored: {written} (duplicates skipped)")


if __name__ == "__main__":
    run_cli()
