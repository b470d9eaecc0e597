import json
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DATA_DIR = Path(__file__).parent / "data"
SOURCES_DIR = DATA_DIR / "sources"


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_name: str = "CollectorVerse"
    debug: bool = False
    log_level: str = "INFO"

    database_url: str = "postgresql+asyncpg://localhost:5432/collectorverse"

    supabase_url: str = ""
    supabase_service_key: str = ""

    # Checkpoint files are written here, one per job
    log_dir: Path = Path("scripts/logs")

    user_agent: str = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
    request_timeout: float = 30.0
    headless: bool = True


settings = Settings()


# =============================================================================
# RATE LIMITING
# =============================================================================


@dataclass(frozen=True)
class Delays:
    """Fixed politeness delays between requests, in seconds."""

    between_pages: float = 2.0
    between_items: float = 0.3
    between_uploads: float = 0.5
    page_load: float = 1.0


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff applied to HTTP 429 responses only."""

    max_attempts: int = 5
    initial_delay: float = 2.0
    max_delay: float = 30.0

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number `attempt` (0-based)."""
        return min(self.initial_delay * (2**attempt), self.max_delay)


DELAYS = Delays()
RETRY_POLICY = RetryPolicy()


# =============================================================================
# IMAGE DIMENSIONS
# =============================================================================

CARD_WIDTH = 480
CARD_HEIGHT = 672
CARD_QUALITY = 85

BANNER_MAX_WIDTH = 800
BANNER_QUALITY = 90


# =============================================================================
# SCRIPT LIMITS
# =============================================================================

# Safety cutoff for listing pagination
MAX_PAGES = 20

# Checkpoint is persisted every N processed items
CHECKPOINT_FLUSH_EVERY = 5

# Page size for large reconciliation queries
QUERY_BATCH_SIZE = 1000


# =============================================================================
# SOURCE CONFIGURATION RECORDS
# =============================================================================


class PaginationMode(str, Enum):
    """How a listing advances to its next page."""

    URL = "url"
    CLICK = "click"


class FitPolicy(str, Enum):
    """How source artwork is fitted onto the fixed card canvas."""

    COVER = "cover"
    CONTAIN = "contain"


class SeriesSource(BaseModel):
    """One series as known to a source site."""

    code: str
    name: str
    release_date: str | None = None
    card_count: int | None = None
    master_set: int | None = None
    # Site-specific listing identifier per language (e.g. opecards "serie" id)
    site_ids: dict[str, int | str] = Field(default_factory=dict)
    banner_url: str | None = None
    skip: bool = False


class SourceConfig(BaseModel):
    """
    Volatile facts about one third-party card site.

    These are data, not logic: update the JSON record when the site changes.
    """

    tcg_slug: str
    tcg_name: str
    base_url: str
    bucket: str
    listing_url: str
    pagination: PaginationMode = PaginationMode.URL
    link_pattern: str = r"^/cards/[^/?#]+$"
    image_referer: str | None = None
    fit: FitPolicy = FitPolicy.COVER
    languages: list[str] = Field(default_factory=lambda: ["fr", "en"])
    fetch_details: bool = True
    share_artwork: bool = True
    series: list[SeriesSource] = Field(default_factory=list)

    def series_by_code(self, code: str) -> SeriesSource | None:
        """Look up a series by its code (case-insensitive)."""
        wanted = code.upper()
        for entry in self.series:
            if entry.code.upper() == wanted:
                return entry
        return None

    def listing_for(self, series: SeriesSource, language: str) -> str | None:
        """
        Build the first listing page URL for a series/language.

        Returns None when the site has no listing for that language.
        """
        site_id = series.site_ids.get(language)
        if site_id is None:
            return None
        return self.listing_url.format(
            base=self.base_url,
            site_id=site_id,
            lang=language,
            lang_upper=language.upper(),
            code=series.code.lower(),
        )


@lru_cache(maxsize=None)
def load_source_config(tcg_slug: str) -> SourceConfig:
    """
    Load the source configuration record for a TCG.

    Raises:
        FileNotFoundError: If no record exists for this TCG
    """
    path = SOURCES_DIR / f"{tcg_slug}.json"
    if not path.exists():
        raise FileNotFoundError(f"No source configuration for '{tcg_slug}' at {path}")

    with open(path, encoding="utf-8") as f:
        return SourceConfig.model_validate(json.load(f))


def available_sources() -> list[str]:
    """Slugs of all TCGs with a source configuration record."""
    return sorted(p.stem for p in SOURCES_DIR.glob("*.json"))
