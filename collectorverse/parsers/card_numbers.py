"""
Card number helpers.

Catalog numbers are stored exactly as the source prints them. Zero-padding
happens only when a number is turned into a storage path.
"""

import re

VERSION_SUFFIX_PATTERN = re.compile(r"-V\d+$", re.IGNORECASE)
LEADING_DIGITS_PATTERN = re.compile(r"^(\d+)(.*)$")


def format_card_number(number: str) -> str:
    """Return the display form of a card number (unchanged)."""
    return number


def is_promo_number(number: str) -> bool:
    """
    Check for a slash-form promo number such as "1/P3".

    "12/204" is a normal numbered card, not a promo.
    """
    if "/" not in number:
        return False
    set_part = number.split("/", 1)[1]
    return bool(set_part) and not set_part.isdigit()


def parse_card_number(number: str) -> tuple[str, str | None]:
    """
    Split a card number into (number, set part).

    Examples:
        "143" -> ("143", None)
        "1/P3" -> ("1", "P3")
    """
    if "/" in number:
        head, tail = number.split("/", 1)
        return head, tail
    return number, None


def has_version_suffix(number: str) -> bool:
    """True for numbers like "006-V2"."""
    return bool(VERSION_SUFFIX_PATTERN.search(number))


def pad_number(number: str) -> str:
    """
    Zero-pad the leading digits of a number to three places.

    Only used for storage paths. Promo and non-numeric numbers are left alone.
    """
    if is_promo_number(number):
        return number
    match = LEADING_DIGITS_PATTERN.match(number)
    if not match:
        return number
    digits, rest = match.groups()
    return digits.zfill(3) + rest


def build_card_number(number: str, variant_tag: str | None = None) -> str:
    """Catalog number for a card: collector number plus optional variant suffix."""
    if variant_tag:
        return f"{number}-{variant_tag}"
    return number


def build_storage_number(number: str, variant_tag: str | None = None) -> str:
    """
    File stem used in storage paths.

    Examples:
        ("4", "ALT") -> "004-ALT"
        ("1/P3", None) -> "1-P3"
    """
    return pad_number(build_card_number(number, variant_tag)).replace("/", "-")


def slug_to_title(slug: str) -> str:
    """Turn a name slug into a display name: "edward-newgate" -> "Edward Newgate"."""
    words = [w for w in slug.split("-") if w]
    return " ".join(w[:1].upper() + w[1:] for w in words)


def number_sort_key(number: str) -> tuple[int, int, str]:
    """
    Order card numbers numerically, then by suffix.

    "2" < "10" < "10-back" < "10a"; numbers without leading digits go last.
    """
    match = LEADING_DIGITS_PATTERN.match(number)
    if not match:
        return (1, 0, number)
    digits, rest = match.groups()
    return (0, int(digits), rest)
