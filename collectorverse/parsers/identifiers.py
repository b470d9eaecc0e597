"""
Card identifier parser for source-site slugs and image filenames.

Source sites encode a card's series, collector number, rarity and print
variant in their URL slugs, each with its own conventions:

    en-op02-004-sr-prb01-alternative-art-edward-newgate   (opecards, box reprint)
    op13-001-l-monkey-d-luffy                             (opecards, FR)
    p-fr-029-kobby                                        (opecards promo)
    sorfr-001-252-c-director-krennic                      (swucards)
    143-204-fr-9-belle-bookworm                           (lorcards)

Patterns are tried in the order of `SLUG_PATTERNS`; the first one that
matches wins. Input that matches nothing yields `Unrecognized` rather
than an exception, so callers decide whether to skip or report it.
"""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, replace
from urllib.parse import unquote, urlsplit

from collectorverse.models.card import CardIdentifier, ParseResult, Unrecognized

logger = logging.getLogger(__name__)

LANG = r"(?P<lang>fr|en|jp|ja|zh|de|it|es|pt|ko)"
SERIES = r"(?P<series>[a-z]{1,4}\d{1,3})"
NUM = r"(?P<number>\d{3})"
RARITY = r"(?P<rarity>[a-z]{1,4})"
BOX = r"(?P<box>prb\d{2})"

# Image filename decoration: "opecards-", "tcg-onepiece-", extension
FILENAME_PREFIX_PATTERN = re.compile(r"^(?:opecards-|tcg-[a-z0-9]+-)")
EXTENSION_PATTERN = re.compile(r"\.(?:webp|png|jpe?g|avif|gif)$")

# Ordered: longer keywords must come before their substrings
VARIANT_KEYWORDS: tuple[tuple[str, str], ...] = (
    ("alternative-art", "ALT"),
    ("full-art", "FA"),
    ("jolly-roger", "JR"),
    ("manga", "MANGA"),
    ("foil-textured", "FT"),
    ("gold", "GOLD"),
    ("foil", "FOIL"),
    ("version-2", "PARALLEL"),
    ("parallele", "PARALLEL"),
    ("parallel", "PARALLEL"),
    ("box-topper", "BT"),
    ("treasure", "TR"),
    ("tournament-pack", "TOURNAMENT"),
    ("pack-de-tournoi", "TOURNAMENT"),
    ("winner-pack", "WINNER"),
    ("pack-winner", "WINNER"),
    ("alternative", "ALT"),
)

_VARIANT_MATCHERS = tuple(
    (re.compile(rf"(?:^|-){re.escape(keyword)}(?:-|$)"), tag) for keyword, tag in VARIANT_KEYWORDS
)

# Tokens that suggest a print variant the keyword table does not know yet
SUSPECT_VARIANT_TOKENS = frozenset(
    {"art", "version", "edition", "variant", "special", "reprint", "pack", "alt"}
)


def clean_slug(text: str) -> str:
    """
    Reduce a URL, path or filename to its bare lowercase slug.

    "https://site/cards/EN-OP02-004.webp?x=1" -> "en-op02-004"
    """
    text = unquote(text.strip())
    if "://" in text:
        text = urlsplit(text).path
    text = text.split("?", 1)[0].split("#", 1)[0]
    text = text.rstrip("/").rsplit("/", 1)[-1].lower()
    text = EXTENSION_PATTERN.sub("", text)
    return FILENAME_PREFIX_PATTERN.sub("", text)


def split_variant(fragment: str) -> tuple[str | None, str]:
    """
    Find the first known variant keyword in a name fragment.

    Returns:
        (variant_tag, name_slug) where name_slug has the keyword removed.
        variant_tag is None when no keyword matched.
    """
    for matcher, tag in _VARIANT_MATCHERS:
        match = matcher.search(fragment)
        if match:
            name = f"{fragment[: match.start()]}-{fragment[match.end() :]}"
            return tag, re.sub(r"-{2,}", "-", name).strip("-")

    if SUSPECT_VARIANT_TOKENS.intersection(fragment.split("-")):
        logger.debug("No variant keyword matched in %r; treating as no variant", fragment)
    return None, fragment


def detect_variant(fragment: str) -> str | None:
    """Variant tag for a name fragment, or None."""
    return split_variant(fragment)[0]


# =============================================================================
# PATTERN EXTRACTORS
# =============================================================================

# An extractor turns a regex match into an identifier, or returns None to let
# the next pattern try.
Extractor = Callable[[re.Match[str], str | None, str | None], CardIdentifier | None]


@dataclass(frozen=True)
class SlugPattern:
    """One entry of the parsing cascade."""

    name: str
    regex: re.Pattern[str]
    extractor: Extractor


def _lang(match: re.Match[str], language: str | None) -> str | None:
    found = match.groupdict().get("lang")
    if found:
        return found
    return language.lower() if language else None


def _standard(
    match: re.Match[str], language: str | None, series_code: str | None
) -> CardIdentifier | None:
    variant, name = split_variant(match["rest"])
    box = match.groupdict().get("box")
    return CardIdentifier(
        series_code=match["series"].upper(),
        number=match["number"],
        rarity_code=match["rarity"].upper(),
        variant_tag=variant,
        language=_lang(match, language),
        name_slug=name,
        box_code=box.upper() if box else None,
    )


def _box_promo(
    match: re.Match[str], language: str | None, series_code: str | None
) -> CardIdentifier | None:
    variant, name = split_variant(match["rest"])
    return CardIdentifier(
        series_code="P",
        number=match["number"],
        rarity_code="P",
        variant_tag=variant,
        language=_lang(match, language),
        name_slug=name,
        box_code=match["box"].upper(),
    )


def _don(
    match: re.Match[str], language: str | None, series_code: str | None
) -> CardIdentifier | None:
    variant, name = split_variant(match["rest"])
    if not name:
        return None
    box = match["box"].upper()
    return CardIdentifier(
        series_code=box,
        number=f"DON-{name.replace('-', '').upper()}",
        rarity_code="DON",
        variant_tag=variant,
        language=_lang(match, language),
        name_slug=name,
        box_code=box,
    )


def _tournament(
    match: re.Match[str], language: str | None, series_code: str | None
) -> CardIdentifier | None:
    kind = match["kind"]
    return CardIdentifier(
        series_code=match["series"].upper(),
        number=match["number"],
        rarity_code=match["rarity"].upper(),
        variant_tag="WINNER" if "winner" in kind else "TOURNAMENT",
        language=_lang(match, language),
        name_slug=match["rest"],
    )


def _promo(
    match: re.Match[str], language: str | None, series_code: str | None
) -> CardIdentifier | None:
    rest = match["rest"]
    rarity = match.groupdict().get("rarity")
    if rarity is None and rest.startswith("p-"):
        rest = rest[2:]
    variant, name = split_variant(rest)
    return CardIdentifier(
        series_code="P",
        number=match["number"],
        rarity_code=(rarity or "p").upper(),
        variant_tag=variant,
        language=_lang(match, language),
        name_slug=name,
    )


def _version(
    match: re.Match[str], language: str | None, series_code: str | None
) -> CardIdentifier | None:
    version = match["version"]
    return CardIdentifier(
        series_code=match["series"].upper(),
        number=match["number"],
        rarity_code=match["rarity"].upper(),
        variant_tag="PARALLEL" if version == "2" else f"V{version}",
        language=_lang(match, language),
        name_slug=match["rest"],
    )


def _lorcana(
    match: re.Match[str], language: str | None, series_code: str | None
) -> CardIdentifier | None:
    chapter = match.groupdict().get("chapter")
    series = series_code or chapter
    if not series:
        return None
    variant, name = split_variant(match["rest"])
    return CardIdentifier(
        series_code=series.upper(),
        number=match["number"],
        variant_tag=variant,
        language=_lang(match, language),
        name_slug=name,
    )


SLUG_PATTERNS: tuple[SlugPattern, ...] = (
    SlugPattern(
        "box_reprint",
        re.compile(rf"^{LANG}-{SERIES}-{NUM}-{RARITY}-{BOX}-(?P<rest>.+)$"),
        _standard,
    ),
    SlugPattern(
        "box_promo",
        re.compile(rf"^{LANG}-p-{NUM}-p-{BOX}-(?P<rest>.+)$"),
        _box_promo,
    ),
    SlugPattern(
        "don",
        re.compile(rf"^(?:{LANG}-)?{BOX}-don-(?P<rest>.+)$"),
        _don,
    ),
    SlugPattern(
        "tournament",
        re.compile(
            rf"^(?:{LANG}-)?(?P<series>[a-z]{{1,4}}\d{{1,3}}|p)-{NUM}-{RARITY}-"
            r"(?P<kind>tournament-pack|winner-pack|pack-de-tournoi|pack-winner)-(?P<rest>.+)$"
        ),
        _tournament,
    ),
    SlugPattern(
        "promo_lang_second",
        re.compile(rf"^p-{LANG}-{NUM}-(?P<rest>.+)$"),
        _promo,
    ),
    SlugPattern(
        "promo",
        re.compile(rf"^(?:{LANG}-)?p-{NUM}-{RARITY}-(?P<rest>.+)$"),
        _promo,
    ),
    SlugPattern(
        "version",
        re.compile(rf"^{SERIES}-{NUM}-{RARITY}-version-(?P<version>\d+)-(?P<rest>.+)$"),
        _version,
    ),
    SlugPattern(
        "lang_prefixed",
        re.compile(rf"^{LANG}-{SERIES}-{NUM}-{RARITY}-(?P<rest>.+)$"),
        _standard,
    ),
    SlugPattern(
        "plain",
        re.compile(rf"^{SERIES}-{NUM}-{RARITY}-(?P<rest>.+)$"),
        _standard,
    ),
    SlugPattern(
        "starwars_joined",
        re.compile(
            r"^(?P<series>[a-z]{2,4})(?P<lang>fr|en)-(?P<number>\d+)-(?P<total>\d+)-"
            rf"{RARITY}-(?P<rest>.+)$"
        ),
        _standard,
    ),
    SlugPattern(
        "starwars_split",
        re.compile(
            rf"^(?P<series>[a-z]{{2,4}})-{LANG}-(?P<number>\d+)-(?P<total>\d+)-"
            rf"{RARITY}-(?P<rest>.+)$"
        ),
        _standard,
    ),
    SlugPattern(
        "lorcana_numbered",
        re.compile(rf"^(?P<number>\d+)-(?P<total>\d+)-{LANG}-(?P<chapter>\d+)-(?P<rest>.+)$"),
        _lorcana,
    ),
    SlugPattern(
        "lorcana_short",
        re.compile(rf"^(?P<number>\d+)-{LANG}-(?P<chapter>\d+)-(?P<rest>.+)$"),
        _lorcana,
    ),
    SlugPattern(
        "lorcana_named",
        re.compile(r"^(?P<series_name>[a-z-]+?)-(?P<number>\d+)-(?P<total>\d+)-(?P<rest>.+)$"),
        _lorcana,
    ),
)


def parse_identifier(
    text: str,
    language: str | None = None,
    *,
    series_code: str | None = None,
    patterns: tuple[SlugPattern, ...] = SLUG_PATTERNS,
) -> ParseResult:
    """
    Parse a slug, URL or image filename into a card identifier.

    Args:
        text: Source slug, detail-page URL or image filename
        language: Language context, used when the slug carries none
        series_code: Series context, used by sources whose slugs omit it
        patterns: Cascade to try, in order

    Returns:
        The first matching CardIdentifier, or Unrecognized.
    """
    slug = clean_slug(text)
    if not slug:
        return Unrecognized(text=text, reason="empty slug")

    for pattern in patterns:
        match = pattern.regex.match(slug)
        if not match:
            continue
        identifier = pattern.extractor(match, language, series_code)
        if identifier is None:
            continue
        return replace(identifier, pattern=pattern.name)

    return Unrecognized(text=text)
