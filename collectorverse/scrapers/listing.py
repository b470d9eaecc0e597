"""
Series listing scraper.

Walks a source site's paginated card listing and collects candidate card
links. Two pagination strategies exist because sites differ:

- UrlPagination: the page number is a query parameter (opecards)
- ClickPagination: the next page is only reachable by clicking the
  rendered pagination control (lorcards, swucards)

The strategy comes from the source configuration; it is never guessed.
"""

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Protocol
from urllib.parse import urljoin, urlsplit, urlunsplit

import httpx
from bs4 import BeautifulSoup

from collectorverse.config import DELAYS, MAX_PAGES, PaginationMode
from collectorverse.models.card import CandidateItem
from collectorverse.models.failure import FetchFailure, NotFoundFailure
from collectorverse.scrapers.http import fetch_text

logger = logging.getLogger(__name__)

# Links on card listings that match the pattern but are not cards
EXCLUDED_LINK_FRAGMENTS = ("/search", "cartes-les-plus-cheres")


class PageSource(Protocol):
    """Something that can load listing pages and hand back their HTML."""

    async def open(self, url: str) -> None: ...

    async def html(self) -> str: ...

    async def click_next(self, page_number: int) -> bool: ...


class HttpPageSource:
    """PageSource over plain HTTP. Cannot click."""

    def __init__(self, client: httpx.AsyncClient):
        self.client = client
        self._html = ""
        self.current_url: str | None = None

    async def open(self, url: str) -> None:
        self._html = await fetch_text(self.client, url)
        self.current_url = url

    async def html(self) -> str:
        return self._html

    async def click_next(self, page_number: int) -> bool:
        return False


# =============================================================================
# PAGINATION STRATEGIES
# =============================================================================


class PaginationStrategy(Protocol):
    async def load(self, source: PageSource, listing_url: str, page_number: int) -> bool:
        """Bring page `page_number` (1-based) into the source. False when there is none."""
        ...


class UrlPagination:
    """Page number carried in the URL: `{listing_url}&page=N`."""

    param: str = "page"

    def page_url(self, listing_url: str, page_number: int) -> str:
        separator = "&" if "?" in listing_url else "?"
        return f"{listing_url}{separator}{self.param}={page_number}"

    async def load(self, source: PageSource, listing_url: str, page_number: int) -> bool:
        await source.open(self.page_url(listing_url, page_number))
        return True


class ClickPagination:
    """First page by URL, later pages by clicking the control labelled N."""

    async def load(self, source: PageSource, listing_url: str, page_number: int) -> bool:
        if page_number == 1:
            await source.open(listing_url)
            return True
        return await source.click_next(page_number)


def strategy_for(mode: PaginationMode) -> PaginationStrategy:
    if mode == PaginationMode.CLICK:
        return ClickPagination()
    return UrlPagination()


# =============================================================================
# LINK EXTRACTION
# =============================================================================


def _strip_query(url: str) -> str:
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def extract_candidate_links(
    html: str,
    base_url: str,
    link_pattern: str = r"^/cards/[^/?#]+$",
) -> list[CandidateItem]:
    """
    Collect card links from one listing page, in page order.

    Args:
        html: Listing page HTML
        base_url: Site root, used to absolutize relative links
        link_pattern: Regex the link's path must match

    Returns:
        Candidates, de-duplicated within the page.
    """
    soup = BeautifulSoup(html, "html.parser")
    pattern = re.compile(link_pattern)
    seen: set[str] = set()
    items: list[CandidateItem] = []

    for anchor in soup.find_all("a", href=True):
        href = str(anchor["href"])
        if any(fragment in href for fragment in EXCLUDED_LINK_FRAGMENTS):
            continue

        absolute = _strip_query(urljoin(base_url, href))
        if not pattern.match(urlsplit(absolute).path):
            continue
        if absolute in seen:
            continue
        seen.add(absolute)

        image_url = None
        name = None
        img = anchor.find("img")
        if img is not None:
            src = img.get("data-src") or img.get("src")
            if src:
                image_url = urljoin(base_url, str(src))
            alt = img.get("alt")
            if alt:
                name = str(alt).strip() or None
        if name is None:
            name = anchor.get_text(" ", strip=True) or None

        items.append(CandidateItem(url=absolute, image_url=image_url, name=name))

    return items


# =============================================================================
# PAGINATION
# =============================================================================


@dataclass
class ListingShortfall:
    """Pagination stopped before the expected number of cards was found."""

    expected: int
    found: int
    page: int

    def __str__(self) -> str:
        return f"found {self.found}/{self.expected} cards, stopped at page {self.page}"


@dataclass
class ListingResult:
    items: list[CandidateItem] = field(default_factory=list)
    pages: int = 0
    shortfall: ListingShortfall | None = None


async def paginate_listing(
    source: PageSource,
    listing_url: str,
    strategy: PaginationStrategy,
    *,
    base_url: str,
    link_pattern: str = r"^/cards/[^/?#]+$",
    expected_total: int | None = None,
    max_pages: int = MAX_PAGES,
    delay: float = DELAYS.between_pages,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> ListingResult:
    """
    Walk a listing page by page and collect unique card candidates.

    Stops when a page adds nothing new, when the strategy reports no next
    page, or at `max_pages`. Reaching `expected_total` never stops the walk,
    since listings also show variants beyond the counted set. If the walk ends
    with fewer than `expected_total` cards, the result carries a
    ListingShortfall instead of retrying.

    Raises:
        FetchFailure: If the first page cannot be loaded
    """
    result = ListingResult()
    seen: set[str] = set()

    for page_number in range(1, max_pages + 1):
        if page_number > 1:
            await sleep(delay)

        try:
            loaded = await strategy.load(source, listing_url, page_number)
        except NotFoundFailure:
            if page_number == 1:
                raise
            logger.info("Page %d of %s not found, end of listing", page_number, listing_url)
            break
        except FetchFailure as e:
            if page_number == 1:
                raise
            logger.warning("Page %d of %s failed: %s", page_number, listing_url, e)
            break

        if not loaded:
            logger.debug("No page %d for %s", page_number, listing_url)
            break

        result.pages = page_number
        page_items = extract_candidate_links(await source.html(), base_url, link_pattern)
        new_items = [item for item in page_items if item.url not in seen]

        if not new_items:
            logger.info("Page %d yielded no new cards", page_number)
            break

        for item in new_items:
            seen.add(item.url)
            result.items.append(item)

        logger.info(
            "Page %d: %d new cards (%d total)", page_number, len(new_items), len(result.items)
        )

    if expected_total is not None and len(result.items) < expected_total:
        result.shortfall = ListingShortfall(
            expected=expected_total, found=len(result.items), page=result.pages
        )
        logger.warning("Listing %s incomplete: %s", listing_url, result.shortfall)

    return result
