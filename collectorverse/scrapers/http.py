"""
HTTP fetching with rate-limit backoff.

Source sites and APIs occasionally answer 429. Those responses are retried
with exponential backoff; every other error status is a FetchFailure.
"""

import asyncio
import logging

import httpx

from collectorverse.config import RETRY_POLICY, RetryPolicy, settings
from collectorverse.models.failure import FetchFailure, NotFoundFailure

logger = logging.getLogger(__name__)

RATE_LIMITED = 429


def create_client(
    timeout: float | None = None,
    user_agent: str | None = None,
) -> httpx.AsyncClient:
    """Async client with the pipeline's default headers."""
    return httpx.AsyncClient(
        timeout=timeout or settings.request_timeout,
        headers={"User-Agent": user_agent or settings.user_agent},
        follow_redirects=True,
    )


async def fetch_with_backoff(
    client: httpx.AsyncClient,
    url: str,
    *,
    retry_policy: RetryPolicy = RETRY_POLICY,
    headers: dict[str, str] | None = None,
) -> httpx.Response:
    """
    GET a URL, retrying only on HTTP 429.

    Args:
        client: Shared async client
        url: URL to fetch
        retry_policy: Attempt count and backoff bounds
        headers: Extra request headers (e.g. Referer)

    Returns:
        The successful response.

    Raises:
        NotFoundFailure: On 404
        FetchFailure: On other error statuses, transport errors, or when
            429 persists past the last attempt
    """
    for attempt in range(retry_policy.max_attempts):
        try:
            response = await client.get(url, headers=headers)
        except httpx.HTTPError as e:
            raise FetchFailure(f"Request failed for {url}", detail=str(e), key=url) from e

        if response.status_code == RATE_LIMITED:
            if attempt + 1 >= retry_policy.max_attempts:
                break
            wait = retry_policy.delay_for(attempt)
            logger.warning(
                "Rate limited on %s, retrying in %.1fs (attempt %d/%d)",
                url,
                wait,
                attempt + 1,
                retry_policy.max_attempts,
            )
            await asyncio.sleep(wait)
            continue

        if response.status_code == 404:
            raise NotFoundFailure(f"Not found: {url}", key=url, status_code=404)

        if response.is_error:
            raise FetchFailure(
                f"HTTP {response.status_code} for {url}",
                key=url,
                status_code=response.status_code,
            )

        return response

    raise FetchFailure(
        f"Still rate limited after {retry_policy.max_attempts} attempts",
        key=url,
        status_code=RATE_LIMITED,
    )


async def fetch_text(
    client: httpx.AsyncClient,
    url: str,
    *,
    retry_policy: RetryPolicy = RETRY_POLICY,
) -> str:
    """Fetch a page and return its HTML."""
    response = await fetch_with_backoff(client, url, retry_policy=retry_policy)
    return response.text


async def fetch_bytes(
    client: httpx.AsyncClient,
    url: str,
    *,
    referer: str | None = None,
    retry_policy: RetryPolicy = RETRY_POLICY,
) -> bytes:
    """
    Download a binary resource such as a card image.

    Sends a Referer header when given; some sites block hotlinked images.
    """
    headers = {"Referer": referer} if referer else None
    response = await fetch_with_backoff(client, url, retry_policy=retry_policy, headers=headers)
    return response.content
