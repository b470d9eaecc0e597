"""
Ingestion pipeline.

Runs each discovered card through the stages in order:

    checkpoint skip -> parse -> normalize -> details -> image -> upsert -> mark

Every dependency (sessions, storage, page source, HTTP client, tables,
checkpoint) is passed in, so the jobs decide what is real and tests decide
what is fake.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from collectorverse.config import DELAYS, SeriesSource, SourceConfig
from collectorverse.db.operations import (
    SeriesResolver,
    database_errors,
    find_sibling_images,
    get_series_by_slug,
    upsert_card,
)
from collectorverse.models.card import (
    CandidateItem,
    CardDetails,
    CardIdentifier,
    CardRecord,
    SeriesRecord,
    Unrecognized,
)
from collectorverse.models.failure import (
    DatabaseFailure,
    FetchFailure,
    NotFoundFailure,
    ParseFailure,
    StorageFailure,
    TranscodeFailure,
)
from collectorverse.parsers.card_numbers import slug_to_title
from collectorverse.parsers.identifiers import parse_identifier
from collectorverse.scrapers.detail import fetch_card_details
from collectorverse.scrapers.listing import PageSource
from collectorverse.services.checkpoint import Outcome, ProgressCheckpoint
from collectorverse.services.images import CardImageTask, ImagePipeline, ImagePlan
from collectorverse.services.normalizer import NormalizerTables
from collectorverse.services.storage import ObjectStorage

logger = logging.getLogger(__name__)


@dataclass
class PipelineOptions:
    """Run-wide switches, straight from the command line."""

    dry_run: bool = False
    continue_on_error: bool = False
    skip_images: bool = False
    limit: int | None = None
    item_delay: float = DELAYS.between_items


@dataclass
class IngestionTarget:
    """All candidates discovered for one series in one language."""

    series: SeriesSource
    language: str
    items: list[CandidateItem] = field(default_factory=list)

    def item_key(self, item: CandidateItem) -> str:
        """Checkpoint key; the same detail page can be listed for several languages."""
        return f"{self.series.code}/{self.language}/{item.key}"


@dataclass
class RunSummary:
    """Counts for one run. Items skipped because a checkpoint had them are `resumed`."""

    processed: int = 0
    success: int = 0
    errors: int = 0
    not_found: int = 0
    skipped: int = 0
    resumed: int = 0
    aborted: bool = False

    def add(self, outcome: Outcome) -> None:
        self.processed += 1
        if outcome == Outcome.SUCCESS:
            self.success += 1
        elif outcome == Outcome.ERROR:
            self.errors += 1
        elif outcome == Outcome.NOT_FOUND:
            self.not_found += 1
        else:
            self.skipped += 1

    def __str__(self) -> str:
        return (
            f"processed={self.processed} success={self.success} errors={self.errors} "
            f"not_found={self.not_found} skipped={self.skipped} resumed={self.resumed}"
        )


class RunAborted(Exception):
    """A database failure stopped the run."""

    def __init__(self, cause: DatabaseFailure, summary: RunSummary):
        self.cause = cause
        self.summary = summary
        super().__init__(str(cause))


def series_record(source: SourceConfig, series: SeriesSource) -> SeriesRecord:
    return SeriesRecord(
        code=series.code,
        name=series.name,
        tcg_slug=source.tcg_slug,
        release_date=series.release_date,
        max_set_base=series.card_count,
        master_set=series.master_set,
    )


def catalog_number(identifier: CardIdentifier, series_code: str) -> str:
    """
    Catalog number of a parsed card within the series being ingested.

    Reprints listed under another series (premium boxes) keep their original
    set as a prefix so "OP06-003" and "OP07-003" do not collide.
    """
    number = identifier.card_number
    if identifier.series_code.upper() == series_code.upper():
        return number
    if identifier.number.startswith("DON-"):
        return number
    return f"{identifier.series_code}-{number}"


class IngestionPipeline:
    """
    Ingests discovered cards of one TCG into the catalog.

    Args:
        source: Source configuration of the TCG
        session_factory: Async session factory for the catalog database
        storage: Object storage for card images
        client: HTTP client for image downloads
        page_source: Loader for detail pages
        tables: Rarity and name normalization tables
        checkpoint: Progress checkpoint for this run
        options: Run switches
        sleep: Delay function between items
    """

    def __init__(
        self,
        source: SourceConfig,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        storage: ObjectStorage,
        client: httpx.AsyncClient,
        page_source: PageSource | None,
        tables: NormalizerTables,
        checkpoint: ProgressCheckpoint,
        options: PipelineOptions | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.source = source
        self.session_factory = session_factory
        self.page_source = page_source
        self.tables = tables
        self.checkpoint = checkpoint
        self.options = options or PipelineOptions()
        self.sleep = sleep
        self.images = ImagePipeline(storage, client, share_artwork=source.share_artwork)
        self.resolver = SeriesResolver(source.tcg_slug, source.tcg_name)

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    def parse(self, item: CandidateItem, target: IngestionTarget) -> CardIdentifier:
        """
        Parse an item's URL, then its image filename.

        Raises:
            ParseFailure: If neither yields an identifier
        """
        result = parse_identifier(item.url, target.language, series_code=target.series.code)
        if isinstance(result, Unrecognized) and item.image_url:
            result = parse_identifier(
                item.image_url, target.language, series_code=target.series.code
            )
        if isinstance(result, Unrecognized):
            raise ParseFailure(f"Unrecognized card slug: {result.text}", detail=result.reason)
        return result

    async def details(self, item: CandidateItem, language: str) -> CardDetails:
        if not self.source.fetch_details or self.page_source is None:
            return CardDetails()
        return await fetch_card_details(self.page_source, item.url, language)

    def normalize(
        self,
        identifier: CardIdentifier,
        item: CandidateItem,
        details: CardDetails,
        target: IngestionTarget,
    ) -> CardRecord:
        tcg = self.source.tcg_slug
        raw_name = details.name or item.name or slug_to_title(identifier.name_slug)
        raw_rarity = identifier.rarity_code or details.attributes.get("rarity")

        attributes: dict[str, Any] = {**item.attributes, **details.attributes}
        attributes.pop("rarity", None)
        attributes["source_url"] = item.url
        if identifier.variant_tag:
            attributes["variant"] = identifier.variant_tag
        if identifier.series_code.upper() != target.series.code.upper():
            attributes["original_card"] = f"{identifier.series_code}-{identifier.number}"

        return CardRecord(
            series_code=target.series.code,
            number=catalog_number(identifier, target.series.code),
            name=self.tables.correct_name(raw_name, tcg),
            language=target.language,
            rarity=self.tables.normalize_rarity(raw_rarity, tcg),
            attributes=attributes,
        )

    def normalize_record(self, prepared: CardRecord, target: IngestionTarget) -> CardRecord:
        """Apply the name and rarity tables to a record an API source built."""
        tcg = self.source.tcg_slug
        return replace(
            prepared,
            series_code=target.series.code,
            language=target.language,
            name=self.tables.correct_name(prepared.name, tcg),
            rarity=self.tables.normalize_rarity(prepared.rarity, tcg),
            attributes=dict(prepared.attributes),
        )

    async def _image_task(self, record: CardRecord, source_url: str | None) -> CardImageTask:
        """Build the image task, reading the target row and its siblings."""
        siblings: dict[str, str | None] = {}
        with database_errors("Image lookup", key=record.series_code):
            async with self.session_factory() as session:
                series = await get_series_by_slug(
                    session, self.source.tcg_slug, record.series_code
                )
                if series is not None:
                    siblings = await find_sibling_images(session, series.id, record.number)

        return CardImageTask(
            series_code=record.series_code,
            language=record.language,
            number=record.number,
            bucket=self.source.bucket,
            source_url=source_url,
            current_image_url=siblings.pop(record.language, None),
            sibling_images=siblings,
            referer=self.source.image_referer,
            fit=self.source.fit,
        )

    async def store(self, record: CardRecord, series: SeriesSource) -> None:
        """Upsert one card in its own transaction."""
        key = f"{record.series_code}/{record.language}/{record.number}"
        try:
            with database_errors("Card commit", key=key):
                async with self.session_factory() as session, session.begin():
                    series_id = await self.resolver.resolve(
                        session, series_record(self.source, series)
                    )
                    await upsert_card(session, series_id, record)
        except DatabaseFailure:
            self.resolver.forget(series.code)
            raise

    # -------------------------------------------------------------------------
    # Driver
    # -------------------------------------------------------------------------

    async def process(self, item: CandidateItem, target: IngestionTarget) -> Outcome:
        """
        Run one item through every stage.

        Raises:
            DatabaseFailure: The only failure that escapes; the caller decides
                whether it ends the run.
        """
        key = item.key
        if item.record is not None:
            record = self.normalize_record(item.record, target)
            source_url = item.image_url
        else:
            try:
                identifier = self.parse(item, target)
            except ParseFailure as e:
                logger.warning("Skipping %s: %s", key, e)
                return Outcome.SKIPPED

            try:
                details = await self.details(item, target.language)
            except NotFoundFailure:
                logger.warning("Detail page not found: %s", item.url)
                return Outcome.NOT_FOUND
            except FetchFailure as e:
                logger.error("Detail fetch failed for %s: %s", key, e)
                return Outcome.ERROR

            record = self.normalize(identifier, item, details, target)
            source_url = details.image_url or item.image_url

        if not self.options.skip_images:
            task = await self._image_task(record, source_url)
            decision = self.images.plan(task)

            if self.options.dry_run:
                logger.info(
                    "[dry-run] %s %s/%s/%s image=%s",
                    record.name,
                    record.series_code,
                    record.language,
                    record.number,
                    decision.plan.value,
                )
                return Outcome.SUCCESS

            try:
                materialized = await self.images.materialize(task, decision)
            except (FetchFailure, TranscodeFailure) as e:
                logger.error("Image failed for %s: %s", task.key, e)
                return Outcome.ERROR
            except StorageFailure as e:
                logger.error("Storage failed for %s, not writing row: %s", task.key, e)
                return Outcome.ERROR
            if materialized.plan != ImagePlan.SKIP:
                record.image_url = materialized.url
        elif self.options.dry_run:
            logger.info("[dry-run] %s %s/%s", record.name, record.series_code, record.number)
            return Outcome.SUCCESS

        await self.store(record, target.series)
        logger.debug("Stored %s/%s/%s", record.series_code, record.language, record.number)
        return Outcome.SUCCESS

    async def run(self, targets: list[IngestionTarget]) -> RunSummary:
        """
        Process all targets sequentially.

        Raises:
            RunAborted: On a database failure without continue_on_error. The
                checkpoint is flushed first so a re-run resumes at that item.
        """
        summary = RunSummary()
        first = True

        for target in targets:
            logger.info(
                "Ingesting %s [%s]: %d candidates",
                target.series.code,
                target.language,
                len(target.items),
            )
            for item in target.items:
                if self.options.limit is not None and summary.processed >= self.options.limit:
                    logger.info("Limit of %d items reached", self.options.limit)
                    self.checkpoint.flush()
                    logger.info("Run summary: %s", summary)
                    return summary

                key = target.item_key(item)
                if self.checkpoint.is_processed(key):
                    summary.resumed += 1
                    continue

                if not first:
                    await self.sleep(self.options.item_delay)
                first = False

                try:
                    outcome = await self.process(item, target)
                except DatabaseFailure as e:
                    logger.error("Database write failed for %s: %s", key, e)
                    summary.add(Outcome.ERROR)
                    self.checkpoint.mark(key, Outcome.ERROR)
                    if not self.options.continue_on_error:
                        summary.aborted = True
                        self.checkpoint.abort()
                        raise RunAborted(e, summary) from e
                    continue

                summary.add(outcome)
                self.checkpoint.mark(key, outcome)

        return self._finish(summary)

    def _finish(self, summary: RunSummary) -> RunSummary:
        self.checkpoint.finish()
        logger.info("Run summary: %s", summary)
        return summary
