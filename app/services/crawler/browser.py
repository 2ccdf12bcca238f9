"""Isolated Playwright browser sessions, one per connection attempt."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Optional

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from app.schemas.proxy import Proxy

logger = logging.getLogger(__name__)

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-dev-shm-usage",
    "--disable-blink-features=AutomationControlled",
    "--no-first-run",
    "--no-default-browser-check",
    "--disable-gpu",
    "--disable-extensions",
    "--disable-default-apps",
    "--disable-sync",
    "--disable-translate",
    "--hide-scrollbars",
    "--mute-audio",
    "--ignore-certificate-errors",
    "--disable-setuid-sandbox",
    "--window-size=1366,900",
]

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36"
)


def proxy_settings(proxy: Proxy) -> dict[str, str]:
    """Playwright proxy option for a pool entry."""
    settings = {"server": proxy.server}
    if proxy.username:
        settings["username"] = proxy.username
    if proxy.password:
        settings["password"] = proxy.password
    return settings


@dataclass
class BrowserSession:
    playwright: Playwright
    browser: Browser
    context: BrowserContext
    page: Page

    async def close(self) -> None:
        """Tear everything down; errors while closing are only logged."""
        for closer in (self.context.close, self.browser.close, self.playwright.stop):
            try:
                await closer()
            except Exception as exc:  # noqa: BLE001
                logger.debug("Ignoring error while closing browser session: %s", exc)


class PlaywrightBrowserFactory:
    """Launches a fresh Chromium for every attempt so proxies never share state."""

    def __init__(self, headless: bool = True, executable_path: Optional[str] = None) -> None:
        self.headless = headless
        self.executable_path = executable_path

    def _get_launch_options(self, proxy: Optional[Proxy]) -> dict[str, Any]:
        options: dict[str, Any] = {"headless": self.headless, "args": LAUNCH_ARGS}
        if self.executable_path:
            options["executable_path"] = self.executable_path
        if proxy is not None:
            options["proxy"] = proxy_settings(proxy)
        return options

    def _get_context_options(self) -> dict[str, Any]:
        return {
            "viewport": {"width": 1366, "height": 900},
            "user_agent": USER_AGENT,
            "locale": "tr-TR",
            "timezone_id": "Europe/Istanbul",
            "color_scheme": "light",
            "is_mobile": False,
            "has_touch": False,
            "extra_http_headers": {
                "Accept-Language": "tr-TR,tr;q=0.9,en-US;q=0.8,en;q=0.7",
            },
        }

    async def open(self, proxy: Optional[Proxy]) -> BrowserSession:
        playwright = await async_playwright().start()
        try:
            browser = await playwright.chromium.launch(**self._get_launch_options(proxy))
        except Exception:
            await playwright.stop()
            raise
        try:
            context = await browser.new_context(**self._get_context_options())
            page = await context.new_page()
            await page.route(
                "**/*.{png,jpg,jpeg,gif,svg,webp}", lambda route: route.abort()
            )
        except Exception:
            await browser.close()
            await playwright.stop()
            raise
        return BrowserSession(playwright=playwright, browser=browser, context=context, page=page)
