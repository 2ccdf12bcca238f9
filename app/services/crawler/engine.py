"""Maps crawler: proxy-rotated connections, review and listing collection."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import time
from typing import Any, Callable, Optional, Protocol
import uuid

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from app.schemas.crawl import (
    CrawlResult,
    ListingSearchResult,
    RestaurantFacts,
    ScrapedReviewData,
    SearchListing,
)
from app.schemas.proxy import Proxy, ProxyUsageRecord
from app.services.crawler.browser import BrowserSession, PlaywrightBrowserFactory
from app.services.crawler.extraction import (
    CLICK_BY_IDX_JS,
    CONSENT_ACCEPT_JS,
    CONSENT_FORM_SUBMIT_JS,
    CONTROL_SNAPSHOT_JS,
    EXPAND_MORE_JS,
    FEED_SELECTORS,
    LISTING_CARDS_JS,
    PANEL_SIGNALS_JS,
    RESTAURANT_INFO_JS,
    REVIEW_CARDS_JS,
    REVIEW_SCROLL_SELECTORS,
    SCROLL_JS,
    build_reviews_url,
    build_search_url,
    parse_listing_card,
    parse_restaurant_info,
    parse_review_card,
)
from app.services.crawler.strategies import (
    ControlSnapshot,
    choose_newest_option,
    choose_review_search_input,
    choose_sort_control,
    is_consent_page,
    place_panel_ready,
    results_feed_ready,
    reviews_control_candidates,
)
from app.services.proxy_rotation import ProxyRotationService

logger = logging.getLogger(__name__)

REVIEWS_VIEW_NOT_FOUND = "Reviews view not found"
RESULTS_NOT_FOUND = "Results container not found"


class CrawlConnectionError(RuntimeError):
    """Every connection attempt failed or the proxy pool ran dry."""


class BrowserFactory(Protocol):
    async def open(self, proxy: Optional[Proxy]) -> BrowserSession: ...


@dataclass
class _Connection:
    session: BrowserSession
    proxy: Optional[Proxy]
    started: float

    @property
    def page(self) -> Page:
        return self.session.page

    @property
    def proxy_address(self) -> Optional[str]:
        return self.proxy.address if self.proxy else None


class CrawlEngine:
    """Fetches listings and reviews from the maps web UI.

    Every public operation returns a result value; connection, navigation
    and extraction failures are reported in it instead of raised.
    """

    def __init__(
        self,
        proxies: ProxyRotationService,
        browser_factory: Optional[BrowserFactory] = None,
        restaurants: Any = None,
        reviews: Any = None,
        *,
        max_attempts: int = 10,
        navigation_timeout_ms: int = 10000,
        max_reviews: int = 20,
        max_scrolls: int = 10,
        max_search_scrolls: int = 15,
        max_listings: int = 50,
        preferred_tier: str = "high",
        delay_scale: float = 1.0,
    ) -> None:
        self.proxies = proxies
        self.browser_factory = browser_factory or PlaywrightBrowserFactory()
        self.restaurants = restaurants
        self.reviews = reviews
        self.max_attempts = max_attempts
        self.navigation_timeout_ms = navigation_timeout_ms
        self.max_reviews = max_reviews
        self.max_scrolls = max_scrolls
        self.max_search_scrolls = max_search_scrolls
        self.max_listings = max_listings
        self.preferred_tier = preferred_tier
        self.delay_scale = delay_scale

    async def _pause(self, seconds: float) -> None:
        if self.delay_scale > 0:
            await asyncio.sleep(seconds * self.delay_scale)

    # ----------------------------------------------------------- connection
    async def _next_proxy(self, target_id: str, preferred_tier: Optional[str], cleared: bool) -> tuple[Optional[Proxy], bool]:
        proxy = await self.proxies.acquire(target_id, preferred_tier)
        if proxy is None and self.proxies.pool_size and not cleared:
            logger.info("Proxy pool exhausted for %s, clearing exclusions once", target_id)
            self.proxies.clear_used_proxies(target_id)
            return await self.proxies.acquire(target_id, preferred_tier), True
        return proxy, cleared

    async def _connect(self, url: str, target_id: str, preferred_tier: Optional[str]) -> _Connection:
        started = time.monotonic()
        cleared = False
        last_error: Optional[BaseException] = None

        for attempt in range(1, self.max_attempts + 1):
            proxy, cleared = await self._next_proxy(target_id, preferred_tier, cleared)
            if proxy is None and self.proxies.pool_size:
                raise CrawlConnectionError(f"Proxy pool exhausted for {target_id}")

            session: Optional[BrowserSession] = None
            try:
                session = await self.browser_factory.open(proxy)
                await session.page.goto(url, wait_until="domcontentloaded", timeout=self.navigation_timeout_ms)
                logger.info(
                    "Connected via %s (attempt %d/%d)",
                    proxy.address if proxy else "direct",
                    attempt,
                    self.max_attempts,
                )
                return _Connection(session=session, proxy=proxy, started=started)
            except Exception as exc:  # noqa: BLE001
                last_error = exc
                logger.warning(
                    "Attempt %d/%d via %s failed: %s",
                    attempt,
                    self.max_attempts,
                    proxy.address if proxy else "direct",
                    str(exc)[:120],
                )
                if proxy is not None:
                    await self._record(proxy, target_id, started, success=False, error=str(exc))
                if session is not None:
                    await session.close()

        raise CrawlConnectionError(f"All {self.max_attempts} connection attempts failed. Last: {last_error}")

    async def _record(
        self,
        proxy: Optional[Proxy],
        target_id: str,
        started: float,
        success: bool,
        error: Optional[str] = None,
    ) -> None:
        if proxy is None:
            return
        await self.proxies.record_usage(
            ProxyUsageRecord(
                proxy_address=proxy.address,
                tier=proxy.tier,
                target_id=target_id,
                success=success,
                response_time_ms=int((time.monotonic() - started) * 1000),
                error_message=error,
            )
        )

    # --------------------------------------------------------- page helpers
    async def _dismiss_consent(self, page: Page) -> None:
        try:
            if not is_consent_page(await page.title(), page.url):
                return
            logger.info("Consent page detected, accepting")
            clicked = await page.evaluate(CONSENT_ACCEPT_JS)
            if not clicked:
                clicked = await page.evaluate(CONSENT_FORM_SUBMIT_JS)
            if clicked:
                try:
                    await page.wait_for_load_state("domcontentloaded", timeout=self.navigation_timeout_ms)
                except PlaywrightTimeoutError:
                    logger.debug("No navigation after consent")
                await self._pause(2)
        except PlaywrightError as exc:
            logger.warning("Consent handling failed: %s", exc)

    async def _wait_for_panel(
        self,
        page: Page,
        ready: Callable[[dict[str, bool]], bool],
        polls: int = 10,
        interval: float = 0.5,
    ) -> bool:
        for _ in range(polls):
            try:
                signals = await page.evaluate(PANEL_SIGNALS_JS)
            except PlaywrightError:
                signals = {}
            if ready(signals or {}):
                return True
            await self._pause(interval)
        return False

    async def _snapshot(self, page: Page) -> list[ControlSnapshot]:
        raw = await page.evaluate(CONTROL_SNAPSHOT_JS)
        return [ControlSnapshot.from_raw(item) for item in raw or []]

    async def _click(self, page: Page, control: ControlSnapshot) -> None:
        try:
            await page.locator(f'[data-crawl-idx="{control.idx}"]').first.click(timeout=3000)
        except PlaywrightError:
            if not await page.evaluate(CLICK_BY_IDX_JS, control.idx):
                raise

    async def _extract_restaurant(self, page: Page, place_id: str, hint: Optional[RestaurantFacts]) -> RestaurantFacts:
        try:
            facts = parse_restaurant_info(await page.evaluate(RESTAURANT_INFO_JS), place_id)
        except PlaywrightError as exc:
            logger.warning("Restaurant facts extraction failed for %s: %s", place_id, exc)
            facts = RestaurantFacts(place_id=place_id, name="")
        if hint is None:
            return facts
        merged = facts.model_dump()
        for field_name, value in hint.model_dump(exclude={"place_id"}).items():
            if value is None:
                continue
            if field_name in {"latitude", "longitude"} or merged.get(field_name) in (None, ""):
                merged[field_name] = value
        return RestaurantFacts(**merged)

    async def _open_reviews(self, page: Page) -> bool:
        try:
            controls = await self._snapshot(page)
        except PlaywrightError as exc:
            logger.warning("Control snapshot failed: %s", exc)
            return False

        for strategy, control in reviews_control_candidates(controls):
            try:
                await self._click(page, control)
            except PlaywrightError as exc:
                logger.debug("Reviews strategy %s click failed: %s", strategy, exc)
                continue
            await self._pause(2)
            if await self._wait_for_panel(page, lambda s: bool(s.get("has_reviews")), polls=5):
                logger.info("Reviews view opened via %s", strategy)
                return True
            logger.debug("Reviews strategy %s did not open the reviews view", strategy)
        return False

    async def _search_reviews(self, page: Page, keyword: str) -> bool:
        try:
            control = choose_review_search_input(await self._snapshot(page))
            if control is None:
                logger.info("Review search input not found, collecting without keyword filter")
                return False
            await self._click(page, control)
            await self._pause(0.3)
            await page.keyboard.type(keyword, delay=50)
            await page.keyboard.press("Enter")
            await self._pause(3)
            return True
        except PlaywrightError as exc:
            logger.warning("Review search failed: %s", exc)
            return False

    async def _sort_newest(self, page: Page) -> bool:
        try:
            sort_control = choose_sort_control(await self._snapshot(page))
            if sort_control is None:
                logger.info("Sort control not found, keeping default order")
                return False
            await self._click(page, sort_control)
            await self._pause(1)
            option = choose_newest_option(await self._snapshot(page))
            if option is not None:
                await self._click(page, option)
            else:
                await page.keyboard.press("ArrowDown")
                await page.keyboard.press("Enter")
            await self._pause(2)
            return True
        except PlaywrightError as exc:
            logger.warning("Sorting reviews failed: %s", exc)
            return False

    async def _scroll_collect(
        self,
        page: Page,
        *,
        cards_js: str,
        parse: Callable[[dict[str, Any]], Any],
        key: Callable[[Any], Any],
        limit: int,
        max_scrolls: int,
        scroll_selectors: tuple[str, ...],
        delay: float,
        expand: bool = False,
    ) -> list[Any]:
        """Extract, dedupe, scroll; stop at the limit, max scrolls or three empty rounds."""
        items: list[Any] = []
        seen: set[Any] = set()
        empty_rounds = 0

        for scroll in range(max_scrolls):
            if expand:
                try:
                    await page.evaluate(EXPAND_MORE_JS)
                except PlaywrightError:
                    logger.debug("Expanding collapsed cards failed")
            try:
                raw_cards = await page.evaluate(cards_js) or []
            except PlaywrightError as exc:
                logger.warning("Card extraction failed: %s", exc)
                raw_cards = []

            added = 0
            for raw in raw_cards:
                item = parse(raw)
                if item is None or key(item) in seen:
                    continue
                seen.add(key(item))
                items.append(item)
                added += 1
                if len(items) >= limit:
                    break

            if len(items) >= limit:
                break
            empty_rounds = 0 if added else empty_rounds + 1
            if empty_rounds >= 3:
                logger.info("Nothing new after %d scrolls, stopping", scroll + 1)
                break

            try:
                await page.evaluate(SCROLL_JS, list(scroll_selectors))
            except PlaywrightError:
                logger.debug("Scrolling failed")
            await self._pause(delay)

        return items[:limit]

    # ----------------------------------------------------------- operations
    async def fetch_reviews(
        self,
        target_url: Optional[str],
        target_id: str,
        keyword: str,
        hint: Optional[RestaurantFacts] = None,
    ) -> CrawlResult:
        """Collect up to `max_reviews` reviews mentioning `keyword` for one place."""
        conn: Optional[_Connection] = None
        recorded = False
        try:
            url = build_reviews_url(target_url, target_id)
            conn = await self._connect(url, target_id, self.preferred_tier)
            page = conn.page
            await self._pause(3)
            await self._dismiss_consent(page)
            if not await self._wait_for_panel(page, place_panel_ready):
                logger.info("Place panel not ready for %s, continuing", target_id)

            restaurant = await self._extract_restaurant(page, target_id, hint)
            if not await self._open_reviews(page):
                logger.info("%s for %s", REVIEWS_VIEW_NOT_FOUND, target_id)
                recorded = True
                await self._record(conn.proxy, target_id, conn.started, success=True)
                return CrawlResult(
                    success=True,
                    restaurant=restaurant,
                    error=REVIEWS_VIEW_NOT_FOUND,
                    proxy_used=conn.proxy_address,
                )

            if keyword:
                await self._search_reviews(page, keyword)
            await self._sort_newest(page)

            reviews: list[ScrapedReviewData] = await self._scroll_collect(
                page,
                cards_js=REVIEW_CARDS_JS,
                parse=lambda raw: parse_review_card(raw, keyword),
                key=lambda review: (review.author_name, review.text),
                limit=self.max_reviews,
                max_scrolls=self.max_scrolls,
                scroll_selectors=REVIEW_SCROLL_SELECTORS,
                delay=1.5,
                expand=True,
            )
            logger.info("Collected %d reviews for %s", len(reviews), restaurant.name or target_id)
            recorded = True
            await self._record(conn.proxy, target_id, conn.started, success=True)
            return CrawlResult(
                success=True,
                restaurant=restaurant,
                reviews=reviews,
                proxy_used=conn.proxy_address,
            )
        except Exception as exc:  # noqa: BLE001
            logger.error("Review crawl failed for %s: %s", target_id, exc)
            if conn is not None and not recorded:
                await self._record(conn.proxy, target_id, conn.started, success=False, error=str(exc))
            return CrawlResult(
                success=False,
                error=str(exc),
                proxy_used=conn.proxy_address if conn else None,
            )
        finally:
            if conn is not None:
                await conn.session.close()
            if recorded:
                # Exclusions only matter while a target keeps failing.
                self.proxies.clear_used_proxies(target_id)

    def _persist(self, result: CrawlResult, keyword: str) -> int:
        restaurant_id = self.restaurants.upsert(result.restaurant)
        self.reviews.replace_for_keyword(restaurant_id, keyword, result.reviews)
        return restaurant_id

    async def fetch_reviews_and_save(
        self,
        target_url: Optional[str],
        target_id: str,
        keyword: str,
        hint: Optional[RestaurantFacts] = None,
    ) -> CrawlResult:
        """`fetch_reviews`, then store the restaurant and replace its reviews for this keyword."""
        result = await self.fetch_reviews(target_url, target_id, keyword, hint)
        if not result.success or result.restaurant is None or self.restaurants is None:
            return result
        try:
            result.saved_restaurant_id = await asyncio.to_thread(self._persist, result, keyword)
            logger.info("Saved %d reviews for %s", len(result.reviews), result.restaurant.name)
        except Exception as exc:  # noqa: BLE001
            logger.error("Saving crawl result for %s failed: %s", target_id, exc)
        return result

    async def fetch_listings(
        self,
        location_text: str,
        query: str,
        lat: float,
        lon: float,
        radius_km: float,
    ) -> ListingSearchResult:
        """Non-sponsored search result cards around a point."""
        target_id = f"search:{uuid.uuid4().hex}"
        conn: Optional[_Connection] = None
        recorded = False
        try:
            url = build_search_url(location_text, query, lat, lon, radius_km)
            conn = await self._connect(url, target_id, None)
            page = conn.page
            await self._pause(3)
            await self._dismiss_consent(page)

            if not await self._wait_for_panel(page, results_feed_ready, polls=20):
                recorded = True
                await self._record(conn.proxy, target_id, conn.started, success=False, error=RESULTS_NOT_FOUND)
                return ListingSearchResult(success=False, error=RESULTS_NOT_FOUND, proxy_used=conn.proxy_address)

            def parse(raw: dict[str, Any]) -> Optional[SearchListing]:
                listing = parse_listing_card(raw)
                if listing is None or listing.is_sponsored:
                    return None
                return listing

            listings: list[SearchListing] = await self._scroll_collect(
                page,
                cards_js=LISTING_CARDS_JS,
                parse=parse,
                key=lambda listing: listing.name.lower().strip(),
                limit=self.max_listings,
                max_scrolls=self.max_search_scrolls,
                scroll_selectors=FEED_SELECTORS,
                delay=2,
            )
            logger.info("Found %d listings for %r", len(listings), query)
            recorded = True
            await self._record(conn.proxy, target_id, conn.started, success=True)
            return ListingSearchResult(success=True, listings=listings, proxy_used=conn.proxy_address)
        except Exception as exc:  # noqa: BLE001
            logger.error("Listing search failed for %r: %s", query, exc)
            if conn is not None and not recorded:
                await self._record(conn.proxy, target_id, conn.started, success=False, error=str(exc))
            return ListingSearchResult(
                success=False,
                error=str(exc),
                proxy_used=conn.proxy_address if conn else None,
            )
        finally:
            if conn is not None:
                await conn.session.close()
            self.proxies.clear_used_proxies(target_id)
