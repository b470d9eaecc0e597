"""
Scryfall card parsing.

Turns entries of Scryfall's bulk card data into catalog records. Each
entry is one printing in one language; multi-face cards whose faces carry
their own images become two records, the back face numbered `<n>-back`.

Bulk data: https://scryfall.com/docs/api/bulk-data
"""

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any

import ijson

from collectorverse.models.card import CardRecord

logger = logging.getLogger(__name__)

MULTI_FACE_LAYOUTS = frozenset({"transform", "modal_dfc", "reversible_card", "art_series"})
EXCLUDED_LAYOUTS = frozenset({"token", "double_faced_token", "emblem", "art_series"})
EXCLUDED_SET_TYPES = frozenset({"token", "memorabilia"})
REQUIRED_FIELDS = ("id", "name", "collector_number", "set", "lang", "rarity")

BACK_SUFFIX = "-back"


@dataclass
class ScryfallPrinting:
    """One card face ready for ingestion, with the set it belongs to."""

    set_code: str
    set_name: str
    set_type: str | None
    released_at: str | None
    uri: str
    image_url: str | None
    record: CardRecord


def is_valid_card(card: dict[str, Any]) -> bool:
    return all(isinstance(card.get(key), str) for key in REQUIRED_FIELDS)


def is_excluded(card: dict[str, Any]) -> bool:
    """Tokens, emblems, art cards and memorabilia are not collected."""
    return card.get("layout") in EXCLUDED_LAYOUTS or card.get("set_type") in EXCLUDED_SET_TYPES


def should_split_card(card: dict[str, Any]) -> bool:
    """True when every face of a multi-face card has its own image."""
    faces = card.get("card_faces") or []
    if card.get("layout") not in MULTI_FACE_LAYOUTS or len(faces) < 2:
        return False
    return all(face.get("image_uris") for face in faces)


def card_name(card: dict[str, Any], face: dict[str, Any] | None = None) -> str:
    """Printed (translated) name first, then the English name."""
    if face is not None:
        return face.get("printed_name") or face["name"]
    return card.get("printed_name") or card["name"]


def card_image_url(card: dict[str, Any], face: dict[str, Any] | None = None) -> str | None:
    uris = (face or {}).get("image_uris") or card.get("image_uris") or {}
    return uris.get("large") or uris.get("normal")


def card_number(card: dict[str, Any], face_index: int = 0) -> str:
    if face_index > 0 and card.get("layout") in MULTI_FACE_LAYOUTS:
        return f"{card['collector_number']}{BACK_SUFFIX}"
    return card["collector_number"]


def _plain(value: Any) -> Any:
    # ijson yields Decimal for every JSON number
    if isinstance(value, Decimal):
        return float(value)
    return value


def card_attributes(card: dict[str, Any], face: dict[str, Any] | None = None) -> dict[str, Any]:
    """
    Extra fields kept with the catalog row.

    Face-level gameplay fields win over the card's; None values are dropped.
    """
    finishes = card.get("finishes") or []
    source = face or card
    attributes = {
        "scryfall_id": card.get("id"),
        "layout": card.get("layout"),
        "set_type": card.get("set_type"),
        "foil": card.get("foil", "foil" in finishes),
        "nonfoil": card.get("nonfoil", "nonfoil" in finishes),
        "promo": card.get("promo"),
        "reprint": card.get("reprint"),
        "digital": card.get("digital"),
        "mana_cost": source.get("mana_cost"),
        "type_line": source.get("printed_type_line") or source.get("type_line"),
        "oracle_text": source.get("printed_text") or source.get("oracle_text"),
        "power": source.get("power"),
        "toughness": source.get("toughness"),
        "loyalty": source.get("loyalty"),
        "artist": source.get("artist"),
        "cmc": _plain(card.get("cmc")),
        "color_identity": card.get("color_identity"),
        "keywords": card.get("keywords"),
        "legalities": card.get("legalities"),
    }
    return {key: value for key, value in attributes.items() if value is not None}


def parse_scryfall_card(
    card: dict[str, Any],
    face: dict[str, Any] | None = None,
    face_index: int = 0,
) -> CardRecord:
    return CardRecord(
        series_code=card["set"].upper(),
        number=card_number(card, face_index),
        name=card_name(card, face),
        language=card["lang"],
        rarity=card["rarity"],
        attributes=card_attributes(card, face),
    )


def iter_printings(card: dict[str, Any]) -> Iterator[ScryfallPrinting]:
    """
    Yield the collectable faces of one bulk entry.

    Invalid and excluded entries yield nothing.
    """
    if not is_valid_card(card) or is_excluded(card):
        return

    uri = card.get("scryfall_uri") or f"https://scryfall.com/card/{card['set']}/{card['id']}"
    faces: list[tuple[int, dict[str, Any] | None]] = [(0, None)]
    if should_split_card(card):
        faces = list(enumerate(card["card_faces"]))

    for index, face in faces:
        image_url = card_image_url(card, face)
        if index > 0 and image_url is None:
            continue
        yield ScryfallPrinting(
            set_code=card["set"].upper(),
            set_name=card.get("set_name") or card["set"].upper(),
            set_type=card.get("set_type"),
            released_at=card.get("released_at"),
            uri=uri if index == 0 else f"{uri}#face-{index}",
            image_url=image_url,
            record=parse_scryfall_card(card, face, index),
        )


def stream_bulk_cards(path: Path) -> Iterator[dict[str, Any]]:
    """
    Stream card objects out of a bulk data file.

    The all-cards file is several gigabytes, so it is never loaded whole.
    """
    with open(path, "rb") as f:
        yield from ijson.items(f, "item")
