"""Tests for the command-line jobs."""

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from collectorverse.config import SourceConfig, settings
from collectorverse.db.operations import (
    SeriesResolver,
    get_card,
    get_series_by_slug,
    upsert_card,
)
from collectorverse.jobs import copy_images, ingest_series, upload_banners
from collectorverse.jobs.audit_images import run_audit, summarize_missing
from collectorverse.jobs.copy_images import (
    CopyTask,
    add_copy_arguments,
    plan_copy_tasks,
    run_copy,
)
from collectorverse.jobs.ingest_series import discover_targets, run_ingest
from collectorverse.jobs.options import JobArgs, parse_args
from collectorverse.jobs.upload_banners import run_upload_banners
from collectorverse.models.card import CardRecord, SeriesRecord
from collectorverse.models.db import CardDB
from collectorverse.models.failure import DatabaseFailure, NotFoundFailure
from collectorverse.scrapers.listing import UrlPagination
from collectorverse.services.checkpoint import Outcome, ProgressCheckpoint
from collectorverse.services.pipeline import RunAborted, RunSummary
from collectorverse.services.storage import LocalStorage

FIXTURES_DIR = Path(__file__).parent / "fixtures"
BUCKET = "onepiece-cards"
OP09_FR_LISTING = "https://cards.test/cards/search?serie=477&language=FR"


class FakeUrlSource:
    """Serves fixed HTML per URL; unknown URLs are 404s."""

    def __init__(self, pages: dict[str, str]):
        self.pages = pages
        self._html = ""

    async def open(self, url: str) -> None:
        if url not in self.pages:
            raise NotFoundFailure(f"Not found: {url}", key=url, status_code=404)
        self._html = self.pages[url]

    async def html(self) -> str:
        return self._html

    async def click_next(self, page_number: int) -> bool:
        return False


def op09_fr_listing() -> FakeUrlSource:
    pagination = UrlPagination()
    return FakeUrlSource(
        {
            pagination.page_url(OP09_FR_LISTING, n): (FIXTURES_DIR / name).read_text()
            for n, name in enumerate(["listing_page1.html", "listing_page2.html"], 1)
        }
    )


def job_args(tmp_path: Path, **overrides) -> JobArgs:
    values = {"tcg": "onepiece", "checkpoint": tmp_path / "progress.json"}
    values.update(overrides)
    return JobArgs(**values)


async def seed_cards(session: AsyncSession, *cards: CardRecord) -> int:
    resolver = SeriesResolver("onepiece", "One Piece Card Game")
    series_id = await resolver.resolve(
        session, SeriesRecord(code="OP09", name="The Four Emperors", tcg_slug="onepiece")
    )
    for record in cards:
        await upsert_card(session, series_id, record)
    await session.commit()
    return series_id


def stored_en_card(storage: LocalStorage, number: str = "001") -> CardRecord:
    return CardRecord(
        series_code="OP09",
        number=number,
        name="Shanks",
        language="en",
        image_url=storage.public_url(BUCKET, f"OP09/en/{number}.webp"),
    )


def bare_card(number: str = "001", language: str = "fr") -> CardRecord:
    return CardRecord(series_code="OP09", number=number, name="Shanks", language=language)


@pytest.fixture
def use_source(source_config: SourceConfig):
    """Point every job at the test source configuration."""
    with (
        patch.object(ingest_series, "load_source_config", return_value=source_config),
        patch.object(copy_images, "load_source_config", return_value=source_config),
        patch.object(upload_banners, "load_source_config", return_value=source_config),
    ):
        yield source_config


class TestParseArgs:
    def test_shared_flags(self, tmp_path: Path) -> None:
        args = parse_args(
            "test",
            [
                "--tcg",
                "lorcana",
                "--dry-run",
                "--series",
                "TFC",
                "--lang",
                "fr",
                "--limit",
                "5",
                "--continue-on-error",
                "--skip-images",
                "--checkpoint",
                str(tmp_path / "cp.json"),
            ],
        )

        assert args.tcg == "lorcana"
        assert args.dry_run is True
        assert (args.series, args.lang, args.limit) == ("TFC", "fr", 5)
        assert args.continue_on_error is True
        assert args.skip_images is True
        assert args.checkpoint_path("ingest-series") == tmp_path / "cp.json"
        assert args.extras == {}

    def test_defaults(self) -> None:
        args = parse_args("test", [], default_tcg="lorcana")

        assert args.tcg == "lorcana"
        assert args.dry_run is False
        assert args.limit is None
        expected = settings.log_dir / "copy-images-progress.json"
        assert args.checkpoint_path("copy-images") == expected

    def test_job_specific_flags_land_in_extras(self) -> None:
        args = parse_args("test", ["--source-lang", "fr"], extra_arguments=add_copy_arguments)

        assert args.extras == {"source_lang": "fr"}

    def test_filters_ignore_case(self) -> None:
        args = JobArgs(tcg="onepiece", series="op09", lang="FR")

        assert args.wants_series("OP09")
        assert not args.wants_series("OP10")
        assert args.wants_language("fr")
        assert JobArgs(tcg="onepiece").wants_series("anything")

    def test_pipeline_options(self) -> None:
        options = JobArgs(tcg="onepiece", dry_run=True, limit=3).pipeline_options()

        assert options.dry_run is True
        assert options.limit == 3


class TestDiscoverTargets:
    async def test_walks_selected_listings(self, source_config, tmp_path: Path) -> None:
        args = job_args(tmp_path, lang="fr")

        targets = await discover_targets(
            source_config, op09_fr_listing(), args, sleep=AsyncMock()
        )

        assert [(t.series.code, t.language) for t in targets] == [("OP09", "fr")]
        assert len(targets[0].items) == 3

    async def test_failed_listing_is_left_out(self, source_config, tmp_path: Path) -> None:
        """A listing that cannot be fetched does not stop the others."""
        targets = await discover_targets(
            source_config, op09_fr_listing(), job_args(tmp_path), sleep=AsyncMock()
        )

        assert [(t.series.code, t.language) for t in targets] == [("OP09", "fr")]

    async def test_skipped_series(self, source_config, tmp_path: Path) -> None:
        source_config.series[0].skip = True

        targets = await discover_targets(
            source_config, op09_fr_listing(), job_args(tmp_path), sleep=AsyncMock()
        )

        assert targets == []


class TestRunIngest:
    async def test_ingests_discovered_cards(
        self, use_source, session_factory, storage, client, tmp_path: Path
    ) -> None:
        args = job_args(tmp_path, series="OP09", lang="fr", skip_images=True)

        summary = await run_ingest(
            args,
            session_factory=session_factory,
            storage=storage,
            client=client,
            page_source=op09_fr_listing(),
            sleep=AsyncMock(),
        )

        assert summary.success == 3
        async with session_factory() as session:
            series = await get_series_by_slug(session, "onepiece", "OP09")
            assert await get_card(session, series.id, "003", "fr") is not None
        assert not args.checkpoint.exists()

    async def test_dry_run_leaves_no_checkpoint(
        self, use_source, session_factory, storage, client, tmp_path: Path
    ) -> None:
        args = job_args(tmp_path, lang="fr", dry_run=True, skip_images=True)

        summary = await run_ingest(
            args,
            session_factory=session_factory,
            storage=storage,
            client=client,
            page_source=op09_fr_listing(),
            sleep=AsyncMock(),
        )

        assert summary.success == 3
        assert not args.checkpoint.exists()
        async with session_factory() as session:
            assert await get_series_by_slug(session, "onepiece", "OP09") is None


class TestPlanCopyTasks:
    def card(self, card_id: int, number: str, language: str, image_url: str | None = None):
        return CardDB(
            id=card_id,
            series_id=1,
            number=number,
            name="x",
            language=language,
            image_url=image_url,
        )

    def test_pairs_targets_with_reference(self, source_config, tmp_path: Path) -> None:
        cards = [
            ("OP09", self.card(1, "001", "en", "https://cdn.test/en/001.webp")),
            ("OP09", self.card(2, "001", "fr")),
            ("OP09", self.card(3, "002", "en")),
            ("OP09", self.card(4, "002", "fr")),
            ("OP09", self.card(5, "003", "en", "https://cdn.test/en/003.webp")),
            ("OP09", self.card(6, "003", "fr", "https://cdn.test/fr/003.webp")),
        ]
        checkpoint = ProgressCheckpoint.load(tmp_path / "cp.json", read_only=True)

        tasks = plan_copy_tasks(cards, source_config, "en", ["fr"], checkpoint)

        assert [task.card_id for task in tasks] == [2]
        assert tasks[0].image.target_path == "OP09/fr/001.webp"
        assert tasks[0].image.sibling_images == {"en": "https://cdn.test/en/001.webp"}

    def test_checkpointed_targets_are_skipped(self, source_config, tmp_path: Path) -> None:
        cards = [
            ("OP09", self.card(1, "001", "en", "https://cdn.test/en/001.webp")),
            ("OP09", self.card(2, "001", "fr")),
        ]
        checkpoint = ProgressCheckpoint.load(tmp_path / "cp.json")
        checkpoint.mark("card:2", Outcome.SUCCESS)

        assert plan_copy_tasks(cards, source_config, "en", ["fr"], checkpoint) == []

    def test_task_key(self) -> None:
        task = CopyTask(card_id=7, image=None)
        assert task.key == "card:7"


class TestRunCopy:
    async def test_copies_reference_image(
        self, use_source, session, session_factory, storage, client, tmp_path: Path
    ) -> None:
        await storage.upload(BUCKET, "OP09/en/001.webp", b"en-art")
        series_id = await seed_cards(session, stored_en_card(storage), bare_card())

        summary = await run_copy(
            job_args(tmp_path),
            session_factory=session_factory,
            storage=storage,
            client=client,
            sleep=AsyncMock(),
        )

        assert summary.success == 1
        assert (storage.root / BUCKET / "OP09/fr/001.webp").read_bytes() == b"en-art"
        async with session_factory() as check:
            fr = await get_card(check, series_id, "001", "fr")
        assert fr.image_url == storage.public_url(BUCKET, "OP09/fr/001.webp")

    async def test_dry_run_changes_nothing(
        self, use_source, session, session_factory, storage, client, tmp_path: Path
    ) -> None:
        await storage.upload(BUCKET, "OP09/en/001.webp", b"en-art")
        series_id = await seed_cards(session, stored_en_card(storage), bare_card())

        summary = await run_copy(
            job_args(tmp_path, dry_run=True),
            session_factory=session_factory,
            storage=storage,
            client=client,
            sleep=AsyncMock(),
        )

        assert summary.success == 1
        assert not await storage.exists(BUCKET, "OP09/fr/001.webp")
        async with session_factory() as check:
            assert (await get_card(check, series_id, "001", "fr")).image_url is None

    async def test_missing_source_object_is_counted(
        self, use_source, session, session_factory, storage, client, tmp_path: Path
    ) -> None:
        await seed_cards(session, stored_en_card(storage), bare_card())

        summary = await run_copy(
            job_args(tmp_path),
            session_factory=session_factory,
            storage=storage,
            client=client,
            sleep=AsyncMock(),
        )

        assert summary.errors == 1
        assert (tmp_path / "progress.json").exists()

    async def test_limit(
        self, use_source, session, session_factory, storage, client, tmp_path: Path
    ) -> None:
        for number in ["001", "002"]:
            await storage.upload(BUCKET, f"OP09/en/{number}.webp", b"en-art")
        await seed_cards(
            session,
            stored_en_card(storage, "001"),
            stored_en_card(storage, "002"),
            bare_card("001"),
            bare_card("002"),
        )

        summary = await run_copy(
            job_args(tmp_path, limit=1),
            session_factory=session_factory,
            storage=storage,
            client=client,
            sleep=AsyncMock(),
        )

        assert summary.processed == 1

    async def test_nothing_copied_when_artwork_differs(
        self, use_source, session, session_factory, storage, client, tmp_path: Path
    ) -> None:
        use_source.share_artwork = False
        await storage.upload(BUCKET, "OP09/en/001.webp", b"en-art")
        await seed_cards(session, stored_en_card(storage), bare_card())

        summary = await run_copy(
            job_args(tmp_path),
            session_factory=session_factory,
            storage=storage,
            client=client,
            sleep=AsyncMock(),
        )

        assert summary.processed == 0
        assert not await storage.exists(BUCKET, "OP09/fr/001.webp")
        assert not (tmp_path / "progress.json").exists()

    async def test_unreachable_tables_abort(
        self, use_source, unmigrated_session_factory, storage, client, tmp_path: Path
    ) -> None:
        with pytest.raises(RunAborted) as exc_info:
            await run_copy(
                job_args(tmp_path),
                session_factory=unmigrated_session_factory,
                storage=storage,
                client=client,
                sleep=AsyncMock(),
            )

        assert exc_info.value.summary.aborted is True


class TestAudit:
    async def test_lists_missing_images(
        self, session, session_factory, storage, tmp_path: Path
    ) -> None:
        await seed_cards(
            session, stored_en_card(storage), bare_card("001"), bare_card("002")
        )

        missing = await run_audit(job_args(tmp_path), session_factory=session_factory)

        assert [(m.number, m.language) for m in missing] == [("001", "fr"), ("002", "fr")]
        assert summarize_missing(missing) == {("OP09", "fr"): 2}

    async def test_filters_and_limit(
        self, session, session_factory, storage, tmp_path: Path
    ) -> None:
        await seed_cards(session, bare_card("001", "en"), bare_card("002", "fr"))

        only_en = await run_audit(job_args(tmp_path, lang="en"), session_factory=session_factory)
        limited = await run_audit(job_args(tmp_path, limit=1), session_factory=session_factory)

        assert [m.language for m in only_en] == ["en"]
        assert len(limited) == 1


class TestUploadBanners:
    @pytest.fixture
    def banner_source(self, use_source, image_bytes, tmp_path: Path) -> SourceConfig:
        banner = tmp_path / "op09.png"
        banner.write_bytes(image_bytes(size=(1200, 300)))
        use_source.series[0].banner_url = str(banner)
        return use_source

    async def test_uploads_and_links_banner(
        self, banner_source, session_factory, storage, client, tmp_path: Path
    ) -> None:
        summary = await run_upload_banners(
            job_args(tmp_path),
            session_factory=session_factory,
            storage=storage,
            client=client,
            sleep=AsyncMock(),
        )

        assert summary.success == 1
        async with session_factory() as session:
            series = await get_series_by_slug(session, "onepiece", "OP09")
        assert series.image_url == storage.public_url(BUCKET, "series/OP09.webp")

    async def test_dry_run(
        self, banner_source, session_factory, storage, client, tmp_path: Path
    ) -> None:
        summary = await run_upload_banners(
            job_args(tmp_path, dry_run=True),
            session_factory=session_factory,
            storage=storage,
            client=client,
            sleep=AsyncMock(),
        )

        assert summary.success == 1
        assert not await storage.exists(BUCKET, "series/OP09.webp")

    async def test_missing_banner_file_is_error(
        self, banner_source, session_factory, storage, client, tmp_path: Path
    ) -> None:
        banner_source.series[0].banner_url = str(tmp_path / "missing.png")

        summary = await run_upload_banners(
            job_args(tmp_path),
            session_factory=session_factory,
            storage=storage,
            client=client,
            sleep=AsyncMock(),
        )

        assert summary.errors == 1

    async def test_limit_counts_only_new_banners(
        self, banner_source, session_factory, storage, client, tmp_path: Path
    ) -> None:
        banner_source.series[1].banner_url = banner_source.series[0].banner_url
        done = ProgressCheckpoint.load(tmp_path / "progress.json")
        done.mark("banner:OP09", Outcome.SUCCESS)
        done.flush()

        summary = await run_upload_banners(
            job_args(tmp_path, limit=1),
            session_factory=session_factory,
            storage=storage,
            client=client,
            sleep=AsyncMock(),
        )

        assert summary.resumed == 1
        assert summary.success == 1
        assert await storage.exists(BUCKET, "series/PRB01.webp")
        assert not await storage.exists(BUCKET, "series/OP09.webp")

    async def test_unreachable_tables_are_counted(
        self, banner_source, unmigrated_session_factory, storage, client, tmp_path: Path
    ) -> None:
        summary = await run_upload_banners(
            job_args(tmp_path, continue_on_error=True),
            session_factory=unmigrated_session_factory,
            storage=storage,
            client=client,
            sleep=AsyncMock(),
        )

        assert summary.errors == 1
        assert summary.aborted is False


class TestMain:
    def test_abort_exits_nonzero(self) -> None:
        aborted = RunAborted(DatabaseFailure("Card upsert failed"), RunSummary(aborted=True))

        with (
            patch.object(ingest_series, "configure_logging"),
            patch.object(ingest_series, "run_ingest", AsyncMock(side_effect=aborted)),
        ):
            with pytest.raises(SystemExit) as exc_info:
                ingest_series.main(["--tcg", "onepiece"])

        assert exc_info.value.code == 1

    def test_errors_without_abort_exit_cleanly(self) -> None:
        summary = RunSummary(processed=2, success=1, errors=1)

        with (
            patch.object(ingest_series, "configure_logging"),
            patch.object(ingest_series, "run_ingest", AsyncMock(return_value=summary)),
        ):
            ingest_series.main(["--tcg", "onepiece"])
