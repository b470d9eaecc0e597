"""
Scryfall bulk data download.

Scryfall publishes daily JSON dumps of its catalog; the bulk-data endpoint
lists them by type with a download URI.
"""

import logging
from pathlib import Path

import httpx

from collectorverse.models.failure import FetchFailure
from collectorverse.scrapers.http import fetch_with_backoff

logger = logging.getLogger(__name__)

SCRYFALL_BULK_API = "https://api.scryfall.com/bulk-data"
DEFAULT_BULK_TYPE = "all_cards"
CHUNK_SIZE = 1024 * 1024


async def get_bulk_data_url(
    client: httpx.AsyncClient,
    bulk_type: str = DEFAULT_BULK_TYPE,
) -> str:
    """
    Fetch the download URL of one bulk data file.

    Raises:
        FetchFailure: If the request fails or the type is not listed
    """
    response = await fetch_with_backoff(
        client, SCRYFALL_BULK_API, headers={"Accept": "application/json"}
    )

    for entry in response.json().get("data", []):
        if entry.get("type") == bulk_type:
            return str(entry["download_uri"])

    raise FetchFailure(f"No '{bulk_type}' entry in Scryfall bulk data", key=SCRYFALL_BULK_API)


async def download_bulk_data(
    client: httpx.AsyncClient,
    output_path: Path,
    bulk_type: str = DEFAULT_BULK_TYPE,
) -> Path:
    """
    Stream a bulk data file to disk.

    Writes to a `.part` file first so an interrupted download never replaces
    a good file.

    Raises:
        FetchFailure: If the listing or the download fails
    """
    url = await get_bulk_data_url(client, bulk_type)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    partial = output_path.with_name(output_path.name + ".part")

    logger.info("Downloading Scryfall %s to %s", bulk_type, output_path)
    try:
        async with client.stream("GET", url) as response:
            response.raise_for_status()
            with open(partial, "wb") as f:
                async for chunk in response.aiter_bytes(CHUNK_SIZE):
                    f.write(chunk)
    except httpx.HTTPError as e:
        partial.unlink(missing_ok=True)
        raise FetchFailure(f"Bulk download failed for {url}", detail=str(e), key=url) from e

    partial.replace(output_path)
    logger.info("Downloaded %s (%d bytes)", output_path, output_path.stat().st_size)
    return output_path
