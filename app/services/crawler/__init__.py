"""Maps crawler package."""

from app.services.crawler.browser import BrowserSession, PlaywrightBrowserFactory
from app.services.crawler.engine import CrawlConnectionError, CrawlEngine

__all__ = ["BrowserSession", "CrawlConnectionError", "CrawlEngine", "PlaywrightBrowserFactory"]
