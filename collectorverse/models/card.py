from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class CardIdentifier:
    """
    Structured identifier extracted from a source slug or filename.

    Attributes:
        series_code: Series the card belongs to (e.g., "OP02", "P")
        number: Collector number exactly as printed in the slug (e.g., "004", "143")
        rarity_code: Source rarity code, uppercased (e.g., "SR"), if the slug carries one
        variant_tag: Closed-set variant tag (ALT, FA, FT, PARALLEL, ...) or None
        language: Language code from the slug, or from the caller's context
        name_slug: Remaining name fragment, variant keyword removed
        box_code: Premium box the card was reprinted in (e.g., "PRB01"), if any
        pattern: Name of the slug pattern that matched
    """

    series_code: str
    number: str
    rarity_code: str | None = None
    variant_tag: str | None = None
    language: str | None = None
    name_slug: str = ""
    box_code: str | None = None
    pattern: str = ""

    @property
    def card_number(self) -> str:
        """Catalog number: collector number plus variant suffix."""
        if self.variant_tag:
            return f"{self.number}-{self.variant_tag}"
        return self.number


@dataclass(frozen=True, slots=True)
class Unrecognized:
    """Parse failure: no known slug pattern matched."""

    text: str
    reason: str = "no pattern matched"


ParseResult = CardIdentifier | Unrecognized


@dataclass
class CardRecord:
    """
    A fully normalized card, ready to be written to the catalog.

    `(series_code, number, language)` is the upsert key.
    """

    series_code: str
    number: str
    name: str
    language: str
    rarity: str | None = None
    image_url: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.series_code, self.number, self.language)


@dataclass
class CandidateItem:
    """
    A card reference discovered on a listing page.

    Either `url` (detail page) or `image_url` (listing thumbnail) is set,
    often both. API sources hand over a ready `record`; scraped items leave
    it None and are parsed from their URL.
    """

    url: str
    image_url: str | None = None
    name: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict)
    record: CardRecord | None = None

    @property
    def key(self) -> str:
        """Identity of this item within one listing."""
        return self.url or self.image_url or ""


@dataclass
class CardDetails:
    """What a card detail page yields."""

    name: str | None = None
    image_url: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict)


@dataclass
class SeriesRecord:
    """Series-level metadata available at ingestion time."""

    code: str
    name: str
    tcg_slug: str
    release_date: str | None = None
    max_set_base: int | None = None
    master_set: int | None = None
    image_url: str | None = None
