from collectorverse.parsers.card_numbers import (
    build_card_number,
    build_storage_number,
    number_sort_key,
    pad_number,
    parse_card_number,
)
from collectorverse.parsers.identifiers import SLUG_PATTERNS, SlugPattern, parse_identifier

__all__ = [
    "SLUG_PATTERNS",
    "SlugPattern",
    "build_card_number",
    "build_storage_number",
    "number_sort_key",
    "pad_number",
    "parse_card_number",
    "parse_identifier",
]
