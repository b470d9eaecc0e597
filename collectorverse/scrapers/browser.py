"""
Headless browser page source.

Some listings render their cards and pagination client-side, so plain HTTP
sees an empty shell. BrowserPageSource drives a Playwright page instead and
can click pagination controls.
"""

import asyncio
import logging
import re
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, async_playwright
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from collectorverse.config import DELAYS, settings
from collectorverse.models.failure import FetchFailure, NotFoundFailure

logger = logging.getLogger(__name__)

PAGINATION_SELECTOR = ".pagination .page-item .page-link"
CARD_LINK_SELECTOR = 'a[href^="/cards/"]'
NAVIGATION_TIMEOUT_MS = 30_000
CARDS_TIMEOUT_MS = 10_000


class BrowserPageSource:
    """PageSource backed by a Playwright page."""

    def __init__(
        self,
        page: Page,
        *,
        pagination_selector: str = PAGINATION_SELECTOR,
        card_selector: str = CARD_LINK_SELECTOR,
        settle_delay: float = DELAYS.page_load,
    ):
        self.page = page
        self.pagination_selector = pagination_selector
        self.card_selector = card_selector
        self.settle_delay = settle_delay

    async def open(self, url: str) -> None:
        try:
            response = await self.page.goto(
                url, wait_until="networkidle", timeout=NAVIGATION_TIMEOUT_MS
            )
        except PlaywrightError as e:
            raise FetchFailure(f"Navigation failed for {url}", detail=str(e), key=url) from e

        if response is not None:
            if response.status == 404:
                raise NotFoundFailure(f"Not found: {url}", key=url, status_code=404)
            if response.status >= 400:
                raise FetchFailure(
                    f"HTTP {response.status} for {url}", key=url, status_code=response.status
                )

        await asyncio.sleep(self.settle_delay)

    async def html(self) -> str:
        return await self.page.content()

    async def click_next(self, page_number: int) -> bool:
        """
        Click the pagination control labelled `page_number`.

        Returns False when no such control is rendered.
        """
        label = re.compile(rf"^\s*{page_number}\s*$")
        control = self.page.locator(self.pagination_selector).filter(has_text=label)
        if await control.count() == 0:
            return False

        try:
            await control.first.click()
            await self.page.wait_for_load_state("networkidle", timeout=NAVIGATION_TIMEOUT_MS)
        except PlaywrightError as e:
            raise FetchFailure(f"Could not open page {page_number}", detail=str(e)) from e

        try:
            await self.page.wait_for_selector(self.card_selector, timeout=CARDS_TIMEOUT_MS)
        except PlaywrightTimeoutError:
            logger.warning("No card links rendered after clicking page %d", page_number)

        await asyncio.sleep(self.settle_delay)
        return True


@asynccontextmanager
async def open_browser(
    headless: bool | None = None,
    user_agent: str | None = None,
) -> AsyncIterator[Page]:
    """
    Launch Chromium and yield a fresh page. The browser is closed on exit.

    Usage:
        async with open_browser() as page:
            source = BrowserPageSource(page)
    """
    async with async_playwright() as p:
        browser = await p.chromium.launch(
            headless=settings.headless if headless is None else headless
        )
        try:
            context = await browser.new_context(
                user_agent=user_agent or settings.user_agent,
                viewport={"width": 1280, "height": 800},
            )
            yield await context.new_page()
        finally:
            await browser.close()
