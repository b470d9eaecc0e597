"""Tests for image transcoding and the card image pipeline."""

from io import BytesIO

import httpx
import pytest
import respx
from PIL import Image

from collectorverse.config import FitPolicy
from collectorverse.models.failure import FetchFailure, StorageFailure, TranscodeFailure
from collectorverse.services.images import (
    CardImageTask,
    ImageDecision,
    ImagePipeline,
    ImagePlan,
    transcode_banner,
    transcode_card_image,
)
from collectorverse.services.storage import LocalStorage

BUCKET = "onepiece-cards"
SOURCE_URL = "https://cdn.cards.test/cards/fr/op09-001.png"


def open_webp(data: bytes) -> Image.Image:
    img = Image.open(BytesIO(data))
    img.load()
    return img


def stored_url(storage: LocalStorage, language: str, number: str = "001") -> str:
    return storage.public_url(BUCKET, f"OP09/{language}/{number}.webp")


def make_task(**overrides) -> CardImageTask:
    values = {
        "series_code": "OP09",
        "language": "fr",
        "number": "001",
        "bucket": BUCKET,
        "source_url": SOURCE_URL,
    }
    values.update(overrides)
    return CardImageTask(**values)


class TestTranscodeCardImage:
    def test_cover_fills_canvas(self, image_bytes) -> None:
        result = open_webp(transcode_card_image(image_bytes(size=(800, 400))))

        assert result.format == "WEBP"
        assert result.size == (480, 672)

    def test_contain_pads_with_transparency(self, image_bytes) -> None:
        data = transcode_card_image(image_bytes(size=(800, 400)), fit=FitPolicy.CONTAIN)
        result = open_webp(data).convert("RGBA")

        assert result.size == (480, 672)
        assert result.getpixel((0, 0))[3] == 0
        assert result.getpixel((240, 336))[3] == 255

    def test_palette_and_alpha_sources(self, image_bytes) -> None:
        for mode, color in [("P", 3), ("LA", (120, 200)), ("L", 90)]:
            data = transcode_card_image(image_bytes(mode=mode, color=color))
            assert open_webp(data).size == (480, 672)

    def test_custom_dimensions(self, image_bytes) -> None:
        data = transcode_card_image(image_bytes(), width=100, height=140, quality=50)
        assert open_webp(data).size == (100, 140)

    def test_garbage_is_transcode_failure(self) -> None:
        with pytest.raises(TranscodeFailure):
            transcode_card_image(b"<html>not an image</html>")


class TestTranscodeBanner:
    def test_wide_banner_is_shrunk(self, image_bytes) -> None:
        result = open_webp(transcode_banner(image_bytes(size=(1600, 400))))
        assert result.size == (800, 200)

    def test_small_banner_is_not_enlarged(self, image_bytes) -> None:
        result = open_webp(transcode_banner(image_bytes(size=(400, 100))))
        assert result.size == (400, 100)

    def test_garbage_is_transcode_failure(self) -> None:
        with pytest.raises(TranscodeFailure):
            transcode_banner(b"")


class TestPlan:
    def test_download_when_no_sibling(self, storage: LocalStorage, client) -> None:
        pipeline = ImagePipeline(storage, client)

        assert pipeline.plan(make_task()).plan == ImagePlan.DOWNLOAD

    def test_copy_from_stored_sibling(self, storage: LocalStorage, client) -> None:
        """A sibling language image in our bucket is copied, not re-downloaded."""
        pipeline = ImagePipeline(storage, client)
        task = make_task(sibling_images={"en": stored_url(storage, "en")})

        decision = pipeline.plan(task)

        assert decision.plan == ImagePlan.COPY
        assert decision.source_language == "en"

    def test_external_sibling_is_not_copied(self, storage: LocalStorage, client) -> None:
        pipeline = ImagePipeline(storage, client)
        task = make_task(sibling_images={"en": "https://elsewhere.test/op09-001.png"})

        assert pipeline.plan(task).plan == ImagePlan.DOWNLOAD

    def test_reference_language_order(self, storage: LocalStorage, client) -> None:
        pipeline = ImagePipeline(storage, client)
        task = make_task(
            language="de",
            sibling_images={"fr": stored_url(storage, "fr"), "en": stored_url(storage, "en")},
        )

        assert pipeline.plan(task).source_language == "en"

    def test_copy_disabled_when_artwork_differs(self, storage: LocalStorage, client) -> None:
        pipeline = ImagePipeline(storage, client, share_artwork=False)
        task = make_task(sibling_images={"en": stored_url(storage, "en")})

        assert pipeline.plan(task).plan == ImagePlan.DOWNLOAD

    def test_skip_when_target_has_image(self, storage: LocalStorage, client) -> None:
        pipeline = ImagePipeline(storage, client)
        task = make_task(current_image_url=stored_url(storage, "fr"))

        assert pipeline.plan(task).plan == ImagePlan.SKIP

    def test_overwrite_redownloads(self, storage: LocalStorage, client) -> None:
        pipeline = ImagePipeline(storage, client, overwrite=True)
        task = make_task(current_image_url=stored_url(storage, "fr"))

        assert pipeline.plan(task).plan == ImagePlan.DOWNLOAD

    def test_skip_without_any_source(self, storage: LocalStorage, client) -> None:
        pipeline = ImagePipeline(storage, client)

        assert pipeline.plan(make_task(source_url=None)).plan == ImagePlan.SKIP


class TestMaterialize:
    @respx.mock
    async def test_download_uploads_to_target_path(
        self, storage: LocalStorage, client, image_bytes
    ) -> None:
        route = respx.get(SOURCE_URL).mock(
            return_value=httpx.Response(200, content=image_bytes())
        )
        pipeline = ImagePipeline(storage, client)
        task = make_task(referer="https://cards.test/")

        result = await pipeline.materialize(task)

        assert result.plan == ImagePlan.DOWNLOAD
        assert result.url == stored_url(storage, "fr")
        assert await storage.exists(BUCKET, "OP09/fr/001.webp")
        assert route.calls.last.request.headers["Referer"] == "https://cards.test/"

    async def test_copy_writes_target_language_path(
        self, storage: LocalStorage, client, image_bytes
    ) -> None:
        """The copy lands at the target language's path, never the source's."""
        await storage.upload(BUCKET, "OP09/en/001.webp", b"en-artwork")
        pipeline = ImagePipeline(storage, client)
        task = make_task(sibling_images={"en": stored_url(storage, "en")})

        result = await pipeline.materialize(task)

        assert result.plan == ImagePlan.COPY
        assert result.url == stored_url(storage, "fr")
        assert (storage.root / BUCKET / "OP09/fr/001.webp").read_bytes() == b"en-artwork"
        assert (storage.root / BUCKET / "OP09/en/001.webp").read_bytes() == b"en-artwork"

    async def test_copy_reads_sibling_stored_path(self, storage: LocalStorage, client) -> None:
        """A sibling stored under an older, non-standard path is still copied."""
        legacy_path = "legacy/PRB01-OP09-001_en.webp"
        await storage.upload(BUCKET, legacy_path, b"legacy-artwork")
        pipeline = ImagePipeline(storage, client)
        task = make_task(sibling_images={"en": storage.public_url(BUCKET, legacy_path)})

        result = await pipeline.materialize(task)

        assert result.plan == ImagePlan.COPY
        assert (storage.root / BUCKET / "OP09/fr/001.webp").read_bytes() == b"legacy-artwork"

    def test_stored_path_strips_prefix_and_query(self, storage: LocalStorage, client) -> None:
        pipeline = ImagePipeline(storage, client)
        url = storage.public_url(BUCKET, "OP09/en/001%20b.webp") + "?v=3"

        assert pipeline.stored_path(BUCKET, url) == "OP09/en/001 b.webp"

    async def test_copy_of_missing_object_is_storage_failure(
        self, storage: LocalStorage, client
    ) -> None:
        pipeline = ImagePipeline(storage, client)
        task = make_task(sibling_images={"en": stored_url(storage, "en")})

        with pytest.raises(StorageFailure):
            await pipeline.materialize(task)

    @respx.mock
    async def test_download_failure(self, storage: LocalStorage, client) -> None:
        respx.get(SOURCE_URL).mock(return_value=httpx.Response(500))
        pipeline = ImagePipeline(storage, client)

        with pytest.raises(FetchFailure):
            await pipeline.materialize(make_task())
        assert not await storage.exists(BUCKET, "OP09/fr/001.webp")

    async def test_skip_returns_no_url(self, storage: LocalStorage, client) -> None:
        pipeline = ImagePipeline(storage, client)

        result = await pipeline.materialize(make_task(), ImageDecision(ImagePlan.SKIP))

        assert result.plan == ImagePlan.SKIP
        assert result.url is None

    async def test_variant_number_is_padded_in_path(
        self, storage: LocalStorage, client
    ) -> None:
        await storage.upload(BUCKET, "OP09/en/004-ALT.webp", b"alt")
        pipeline = ImagePipeline(storage, client)
        task = make_task(
            number="4-ALT",
            sibling_images={"en": stored_url(storage, "en", "004-ALT")},
        )

        result = await pipeline.materialize(task)

        assert result.url == stored_url(storage, "fr", "004-ALT")


class TestSeriesBanner:
    async def test_banner_from_local_file(
        self, storage: LocalStorage, client, image_bytes, tmp_path
    ) -> None:
        banner = tmp_path / "banner.png"
        banner.write_bytes(image_bytes(size=(1200, 300)))
        pipeline = ImagePipeline(storage, client)

        url = await pipeline.upload_series_banner("OP09", str(banner), BUCKET)

        assert url == storage.public_url(BUCKET, "series/OP09.webp")
        stored = open_webp((storage.root / BUCKET / "series/OP09.webp").read_bytes())
        assert stored.size == (800, 200)

    @respx.mock
    async def test_banner_from_url(self, storage: LocalStorage, client, image_bytes) -> None:
        respx.get("https://cdn.cards.test/banner.png").mock(
            return_value=httpx.Response(200, content=image_bytes(size=(600, 200)))
        )
        pipeline = ImagePipeline(storage, client)

        await pipeline.upload_series_banner("OP09", "https://cdn.cards.test/banner.png", BUCKET)

        assert await storage.exists(BUCKET, "series/OP09.webp")

    async def test_missing_local_banner(self, storage: LocalStorage, client, tmp_path) -> None:
        pipeline = ImagePipeline(storage, client)

        with pytest.raises(FetchFailure):
            await pipeline.upload_series_banner("OP09", str(tmp_path / "nope.png"), BUCKET)
