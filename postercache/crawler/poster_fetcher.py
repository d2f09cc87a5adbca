"""
Poster fetcher driving a Chrome session over CDP with Playwright.

The browser itself is launched and supervised outside this process; the
fetcher only connects to it. One navigation is performed per fetch in a
fresh page of the shared browser context. Concurrency against the session is
bounded by the AdmissionGate, never here.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Protocol, runtime_checkable
from urllib.parse import quote_plus

from postercache.utils.config import BrowserConfig
from postercache.utils.logging import get_logger

if TYPE_CHECKING:
    from playwright.async_api import Browser, BrowserContext, Page, Playwright

logger = get_logger(__name__)


class PosterNotFoundError(Exception):
    """The search page had no usable poster image."""


class BrowserUnavailableError(Exception):
    """Chrome could not be reached over CDP."""


@runtime_checkable
class PosterFetcher(Protocol):
    """The opaque Fetch(key) capability consumed by the orchestrator."""

    async def fetch(self, key: str) -> str:
        """Return the poster URL for key, or raise."""
        ...

    async def close(self) -> None:
        """Release backend connections."""
        ...


class PlaywrightPosterFetcher:
    """Fetch poster image URLs from the movie poster search page.

    Example:
        fetcher = PlaywrightPosterFetcher(settings.browser)
        url = await fetcher.fetch("Avengers")
        await fetcher.close()
    """

    def __init__(self, config: BrowserConfig) -> None:
        self._config = config
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._connect_lock = asyncio.Lock()

    @property
    def cdp_url(self) -> str:
        return f"http://{self._config.chrome_host}:{self._config.chrome_port}"

    def build_url(self, key: str) -> str:
        """Search page URL for a lookup key."""
        return self._config.search_url_template.format(query=quote_plus(key))

    async def _ensure_browser(self) -> BrowserContext:
        """Connect to Chrome over CDP once and reuse its context.

        Raises:
            BrowserUnavailableError: If the CDP connection fails.
        """
        async with self._connect_lock:
            if self._context is not None:
                return self._context

            from playwright.async_api import async_playwright

            self._playwright = await async_playwright().start()
            try:
                self._browser = await self._playwright.chromium.connect_over_cdp(self.cdp_url)
            except Exception as e:
                await self._playwright.stop()
                self._playwright = None
                raise BrowserUnavailableError(f"CDP connection failed: {e}") from e

            # Reuse the profile's context so cookies survive between fetches
            if self._browser.contexts:
                self._context = self._browser.contexts[0]
            else:
                self._context = await self._browser.new_context()

            logger.info("Connected to Chrome via CDP", url=self.cdp_url)
            return self._context

    async def fetch(self, key: str) -> str:
        """Navigate to the search page and read the poster image src.

        Raises:
            BrowserUnavailableError: If Chrome is unreachable.
            PosterNotFoundError: If the page has no poster image.
        """
        context = await self._ensure_browser()
        url = self.build_url(key)

        page: Page = await context.new_page()
        try:
            await page.goto(
                url,
                wait_until="domcontentloaded",
                timeout=self._config.page_load_timeout_ms,
            )
            images = await page.query_selector_all("img")
            if len(images) <= self._config.image_index:
                raise PosterNotFoundError(
                    f"Expected an image at index {self._config.image_index}, "
                    f"page has {len(images)}"
                )

            src = await images[self._config.image_index].get_attribute("src")
            if not src or not src.strip():
                raise PosterNotFoundError("Poster image has no src")

            logger.debug("Poster image found", key=key, src=src)
            return src.strip()
        finally:
            try:
                await page.close()
            except Exception as e:
                logger.debug("Error closing page", error=str(e))

    async def close(self) -> None:
        """Disconnect from Chrome. The browser process keeps running."""
        async with self._connect_lock:
            if self._browser is not None:
                try:
                    await self._browser.close()
                except Exception as e:
                    logger.debug("Error closing CDP connection", error=str(e))
                self._browser = None
            self._context = None

            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None
