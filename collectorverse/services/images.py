"""
Card image pipeline.

Materializes a card's artwork at its deterministic storage path, either by
copying a sibling language's stored image or by downloading, transcoding
and uploading the source image.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from io import BytesIO
from pathlib import Path
from urllib.parse import unquote, urlsplit

import httpx
from PIL import Image, ImageOps, UnidentifiedImageError

from collectorverse.config import (
    BANNER_MAX_WIDTH,
    BANNER_QUALITY,
    CARD_HEIGHT,
    CARD_QUALITY,
    CARD_WIDTH,
    FitPolicy,
)
from collectorverse.models.failure import FetchFailure, TranscodeFailure
from collectorverse.scrapers.http import fetch_bytes
from collectorverse.services.storage import (
    WEBP,
    ObjectStorage,
    banner_object_path,
    card_object_path,
)

logger = logging.getLogger(__name__)

# Sibling languages tried for copies, most trusted first
REFERENCE_LANGUAGES = ("en", "fr")

TRANSPARENT = (0, 0, 0, 0)


# =============================================================================
# TRANSCODING
# =============================================================================


def _normalize_mode(img: Image.Image) -> Image.Image:
    if img.mode in ("RGB", "RGBA"):
        return img
    if img.mode in ("P", "LA", "PA") or "transparency" in img.info:
        return img.convert("RGBA")
    return img.convert("RGB")


def _encode_webp(img: Image.Image, quality: int) -> bytes:
    out = BytesIO()
    img.save(out, "WEBP", quality=quality)
    return out.getvalue()


def transcode_card_image(
    data: bytes,
    *,
    fit: FitPolicy = FitPolicy.COVER,
    width: int = CARD_WIDTH,
    height: int = CARD_HEIGHT,
    quality: int = CARD_QUALITY,
) -> bytes:
    """
    Resize card artwork onto the fixed card canvas and encode it as WEBP.

    COVER scales and center-crops to fill the canvas. CONTAIN scales to fit
    inside it and pads with transparency.

    Raises:
        TranscodeFailure: If the bytes are not a decodable image
    """
    try:
        with Image.open(BytesIO(data)) as source:
            source.load()
            img = _normalize_mode(source)
            if fit == FitPolicy.CONTAIN:
                scaled = ImageOps.contain(
                    img.convert("RGBA"), (width, height), Image.Resampling.LANCZOS
                )
                canvas = Image.new("RGBA", (width, height), TRANSPARENT)
                offset = ((width - scaled.width) // 2, (height - scaled.height) // 2)
                canvas.paste(scaled, offset, scaled)
                result = canvas
            else:
                result = ImageOps.fit(img, (width, height), Image.Resampling.LANCZOS)
            return _encode_webp(result, quality)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise TranscodeFailure("Could not transcode card image", detail=str(e)) from e


def transcode_banner(
    data: bytes,
    *,
    max_width: int = BANNER_MAX_WIDTH,
    quality: int = BANNER_QUALITY,
) -> bytes:
    """
    Shrink a series banner to at most `max_width` wide, keeping its ratio.

    Banners narrower than `max_width` are not enlarged.
    """
    try:
        with Image.open(BytesIO(data)) as source:
            source.load()
            img = _normalize_mode(source)
            if img.width > max_width:
                img.thumbnail((max_width, img.height), Image.Resampling.LANCZOS)
            return _encode_webp(img, quality)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise TranscodeFailure("Could not transcode banner", detail=str(e)) from e


# =============================================================================
# PLANNING
# =============================================================================


class ImagePlan(str, Enum):
    COPY = "copy"
    DOWNLOAD = "download"
    SKIP = "skip"


@dataclass
class CardImageTask:
    """
    One card image to materialize.

    Attributes:
        series_code: Series the card belongs to
        language: Target language
        number: Catalog number, variant suffix included
        bucket: Storage bucket for the TCG
        source_url: Source image, if the scraper found one
        current_image_url: Image the target row already has
        sibling_images: Image URLs of the same card in other languages
        referer: Referer header for source downloads
        fit: Canvas fit policy
    """

    series_code: str
    language: str
    number: str
    bucket: str
    source_url: str | None = None
    current_image_url: str | None = None
    sibling_images: dict[str, str | None] = field(default_factory=dict)
    referer: str | None = None
    fit: FitPolicy = FitPolicy.COVER

    @property
    def target_path(self) -> str:
        return card_object_path(self.series_code, self.language, self.number)

    @property
    def key(self) -> str:
        return f"{self.series_code}/{self.language}/{self.number}"


@dataclass
class ImageDecision:
    plan: ImagePlan
    source_language: str | None = None
    reason: str = ""


@dataclass
class MaterializedImage:
    plan: ImagePlan
    url: str | None


class ImagePipeline:
    """
    Decides how each card image is obtained, and does it.

    Args:
        storage: Object storage backend
        client: HTTP client for source downloads
        share_artwork: Whether languages of a TCG share artwork, allowing copies
        reference_languages: Sibling languages to copy from, in preference order
        overwrite: Re-materialize images for rows that already have one
    """

    def __init__(
        self,
        storage: ObjectStorage,
        client: httpx.AsyncClient,
        *,
        share_artwork: bool = True,
        reference_languages: tuple[str, ...] = REFERENCE_LANGUAGES,
        overwrite: bool = False,
    ):
        self.storage = storage
        self.client = client
        self.share_artwork = share_artwork
        self.reference_languages = reference_languages
        self.overwrite = overwrite

    def is_stored(self, bucket: str, url: str | None) -> bool:
        """True if `url` points into our own bucket."""
        if not url:
            return False
        return url.startswith(self.storage.public_url(bucket, ""))

    def stored_path(self, bucket: str, url: str) -> str:
        """Object path of a URL that points into our own bucket."""
        relative = url[len(self.storage.public_url(bucket, "")) :]
        return unquote(urlsplit(relative).path)

    def _copy_source(self, task: CardImageTask) -> str | None:
        candidates = [lang for lang in self.reference_languages if lang in task.sibling_images]
        candidates += sorted(lang for lang in task.sibling_images if lang not in candidates)
        for language in candidates:
            if language == task.language:
                continue
            if self.is_stored(task.bucket, task.sibling_images[language]):
                return language
        return None

    def plan(self, task: CardImageTask) -> ImageDecision:
        """
        Choose COPY, DOWNLOAD or SKIP for a task.

        A copy is preferred when a sibling language already has a stored
        image and the target has none.
        """
        if task.current_image_url and not self.overwrite:
            return ImageDecision(ImagePlan.SKIP, reason="target already has an image")

        if self.share_artwork and not task.current_image_url:
            sibling = self._copy_source(task)
            if sibling is not None:
                return ImageDecision(ImagePlan.COPY, source_language=sibling)

        if task.source_url:
            return ImageDecision(ImagePlan.DOWNLOAD)

        return ImageDecision(ImagePlan.SKIP, reason="no source image")

    async def materialize(
        self, task: CardImageTask, decision: ImageDecision | None = None
    ) -> MaterializedImage:
        """
        Execute the plan for a task.

        Returns:
            The plan taken and the target's public URL (None when skipped).

        Raises:
            FetchFailure: Source download failed
            TranscodeFailure: Source bytes were not a usable image
            StorageFailure: Upload or copy failed
        """
        decision = decision or self.plan(task)

        if decision.plan == ImagePlan.COPY and decision.source_language:
            sibling_url = task.sibling_images.get(decision.source_language)
            if sibling_url and self.is_stored(task.bucket, sibling_url):
                source_path = self.stored_path(task.bucket, sibling_url)
            else:
                source_path = card_object_path(
                    task.series_code, decision.source_language, task.number
                )
            await self.storage.copy(task.bucket, source_path, task.target_path)
            logger.debug("Copied %s -> %s", source_path, task.target_path)
        elif decision.plan == ImagePlan.DOWNLOAD and task.source_url:
            data = await fetch_bytes(self.client, task.source_url, referer=task.referer)
            webp = transcode_card_image(data, fit=task.fit)
            await self.storage.upload(task.bucket, task.target_path, webp, WEBP, upsert=True)
            logger.debug("Uploaded %s (%d bytes)", task.target_path, len(webp))
        else:
            return MaterializedImage(ImagePlan.SKIP, None)

        url = self.storage.public_url(task.bucket, task.target_path)
        return MaterializedImage(decision.plan, url)

    async def upload_series_banner(self, series_code: str, source: str, bucket: str) -> str:
        """
        Upload a series banner from a URL or a local file path.

        Returns:
            Public URL of the banner.
        """
        if source.startswith(("http://", "https://")):
            data = await fetch_bytes(self.client, source)
        else:
            try:
                data = Path(source).read_bytes()
            except OSError as e:
                raise FetchFailure(f"Cannot read banner {source}", detail=str(e)) from e

        path = banner_object_path(series_code)
        await self.storage.upload(bucket, path, transcode_banner(data), WEBP, upsert=True)
        return self.storage.public_url(bucket, path)
