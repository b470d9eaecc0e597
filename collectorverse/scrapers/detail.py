"""
Card detail page extraction.

The structured JSON-LD block is preferred over og:image: on pages shared by
several languages it lists one image per language, and the language path
segment (`/fr/`, `/en/`) picks the right one.
"""

import json
import logging
import re
from typing import Any

from bs4 import BeautifulSoup

from collectorverse.models.card import CardDetails
from collectorverse.models.failure import FetchFailure
from collectorverse.scrapers.listing import PageSource

logger = logging.getLogger(__name__)

# "OP12-001 - Monkey D. Luffy" -> "Monkey D. Luffy"
LEADING_CODE_PATTERN = re.compile(r"^[A-Z]{2,4}\d{2}-\d{3}\s*[-:]\s*")

# "SEC•FR - 001/264 - S"
SKU_PATTERN = re.compile(r"([A-Z]+)•([A-Z]{2})\s*-\s*(\d+)/(\d+)\s*-\s*([A-Z]+)")

# og:image values that are placeholders, not card art
REJECTED_IMAGE_FRAGMENTS = ("back", "loader")

# Label (lowercase) -> attribute key, for <dt>/<dd> info blocks
ATTRIBUTE_LABELS = {
    "coût": "cost",
    "cost": "cost",
    "puissance": "power",
    "power": "power",
    "points de vie": "hp",
    "hp": "hp",
    "illustrateur": "illustrator",
    "illustrator": "illustrator",
    "type": "card_type",
    "rareté": "rarity",
    "rarity": "rarity",
}
NUMERIC_ATTRIBUTES = frozenset({"cost", "power", "hp"})


def _json_ld_blocks(soup: BeautifulSoup) -> list[dict[str, Any]]:
    blocks: list[dict[str, Any]] = []
    for script in soup.find_all("script", type="application/ld+json"):
        try:
            data = json.loads(script.string or "")
        except json.JSONDecodeError:
            logger.debug("Skipping malformed JSON-LD block")
            continue
        items = data if isinstance(data, list) else [data]
        for item in items:
            if not isinstance(item, dict):
                continue
            blocks.append(item)
            graph = item.get("@graph")
            if isinstance(graph, list):
                blocks.extend(node for node in graph if isinstance(node, dict))
    return blocks


def _image_candidates(image: Any) -> list[str]:
    """Flatten a JSON-LD `image` value (string, object or list) to URLs."""
    if isinstance(image, str):
        return [image]
    if isinstance(image, dict):
        url = image.get("contentUrl") or image.get("url")
        return [url] if isinstance(url, str) else []
    if isinstance(image, list):
        urls: list[str] = []
        for entry in image:
            urls.extend(_image_candidates(entry))
        return urls
    return []


def select_language_image(images: list[str], language: str | None) -> str | None:
    """Pick the image whose path has a `/{language}/` segment, else the first one."""
    if not images:
        return None
    if language:
        segment = f"/{language.lower()}/"
        for url in images:
            if segment in url:
                return url
    return images[0]


def _og_image(soup: BeautifulSoup) -> str | None:
    meta = soup.find("meta", property="og:image")
    if meta is None:
        return None
    content = str(meta.get("content") or "")
    if not content or any(fragment in content for fragment in REJECTED_IMAGE_FRAGMENTS):
        return None
    return content


def clean_card_name(name: str) -> str:
    return LEADING_CODE_PATTERN.sub("", name.strip()).strip()


def parse_sku(sku: str) -> dict[str, Any]:
    """Split a swucards-style SKU into its parts. Empty when it does not match."""
    match = SKU_PATTERN.search(sku)
    if not match:
        return {}
    series, language, number, total, rarity = match.groups()
    return {
        "series_code": series,
        "language": language.lower(),
        "number": number,
        "total_in_set": int(total),
        "rarity": rarity.lower(),
    }


def _info_attributes(soup: BeautifulSoup) -> dict[str, Any]:
    attributes: dict[str, Any] = {}
    for term in soup.find_all("dt"):
        key = ATTRIBUTE_LABELS.get(term.get_text(" ", strip=True).rstrip(" :").lower())
        value_tag = term.find_next_sibling("dd")
        if key is None or value_tag is None or key in attributes:
            continue
        value = value_tag.get_text(" ", strip=True)
        if key in NUMERIC_ATTRIBUTES:
            digits = re.search(r"\d+", value)
            if not digits:
                continue
            attributes[key] = int(digits.group())
        else:
            attributes[key] = value
    return attributes


def extract_card_details(html: str, language: str | None = None) -> CardDetails:
    """
    Extract name, image URL and visible attributes from a card detail page.

    Args:
        html: Detail page HTML
        language: Language whose artwork should be chosen

    Returns:
        CardDetails; fields the page does not expose are None or absent.
    """
    soup = BeautifulSoup(html, "html.parser")
    details = CardDetails()

    for block in _json_ld_blocks(soup):
        if details.name is None and isinstance(block.get("name"), str):
            details.name = clean_card_name(block["name"])
        if details.image_url is None and "image" in block:
            details.image_url = select_language_image(_image_candidates(block["image"]), language)
        sku = block.get("sku")
        if isinstance(sku, str) and "sku" not in details.attributes:
            details.attributes["sku"] = sku
            details.attributes.update(parse_sku(sku))

    if details.image_url is None:
        details.image_url = _og_image(soup)

    if details.name is None:
        heading = soup.find("h1")
        if heading is not None:
            details.name = clean_card_name(heading.get_text(" ", strip=True)) or None

    for key, value in _info_attributes(soup).items():
        details.attributes.setdefault(key, value)

    return details


async def fetch_card_details(
    source: PageSource,
    url: str,
    language: str | None = None,
) -> CardDetails:
    """
    Load a detail page and extract its card details.

    Raises:
        FetchFailure: If the page cannot be loaded
    """
    await source.open(url)
    html = await source.html()
    if not html.strip():
        raise FetchFailure(f"Empty detail page: {url}", key=url)
    return extract_card_details(html, language)
