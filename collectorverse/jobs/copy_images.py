"""
Backfill missing card images by copying a reference language's artwork.

Languages of a TCG usually share artwork, so a French card without an image
can reuse the stored English one. The copy lands at the French card's own
deterministic path, then the row is pointed at it.

Usage:
    python -m collectorverse.jobs.copy_images --tcg onepiece --dry-run
    python -m collectorverse.jobs.copy_images --series OP09 --lang fr --limit 50
"""

import argparse
import asyncio
import logging
import sys
from collections import defaultdict
from collections.abc import Awaitable, Callable
from contextlib import AsyncExitStack
from dataclasses import dataclass

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from collectorverse.config import DELAYS, SourceConfig, load_source_config
from collectorverse.db.database import async_session_factory
from collectorverse.db.operations import (
    database_errors,
    iter_cards_in_batches,
    list_series,
    update_card_image,
)
from collectorverse.jobs.options import JobArgs, configure_logging, parse_args
from collectorverse.models.db import CardDB
from collectorverse.models.failure import DatabaseFailure, StorageFailure
from collectorverse.scrapers.http import create_client
from collectorverse.services.checkpoint import Outcome, ProgressCheckpoint
from collectorverse.services.images import CardImageTask, ImagePipeline, ImagePlan
from collectorverse.services.pipeline import RunAborted, RunSummary
from collectorverse.services.storage import ObjectStorage, SupabaseStorage

logger = logging.getLogger(__name__)

JOB_NAME = "copy-images"
DEFAULT_SOURCE_LANGUAGE = "en"


@dataclass
class CopyTask:
    card_id: int
    image: CardImageTask

    @property
    def key(self) -> str:
        return f"card:{self.card_id}"


def plan_copy_tasks(
    cards: list[tuple[str, CardDB]],
    source: SourceConfig,
    source_language: str,
    target_languages: list[str],
    checkpoint: ProgressCheckpoint,
) -> list[CopyTask]:
    """
    Pair each target-language card missing an image with its reference card.

    Cards are grouped series -> number -> language. A pair is skipped when
    the reference has no image, the target already has one, or the
    checkpoint already holds the target.
    """
    grouped: dict[str, dict[str, dict[str, CardDB]]] = defaultdict(lambda: defaultdict(dict))
    for series_code, card in cards:
        grouped[series_code][card.number][card.language] = card

    tasks: list[CopyTask] = []
    for series_code, by_number in grouped.items():
        for number, by_language in by_number.items():
            reference = by_language.get(source_language)
            if reference is None or not reference.image_url:
                continue

            for language in target_languages:
                card = by_language.get(language)
                if card is None or card.image_url:
                    continue
                task = CopyTask(
                    card_id=card.id,
                    image=CardImageTask(
                        series_code=series_code,
                        language=language,
                        number=number,
                        bucket=source.bucket,
                        sibling_images={source_language: reference.image_url},
                        fit=source.fit,
                    ),
                )
                if checkpoint.is_processed(task.key):
                    continue
                tasks.append(task)

    return tasks


async def load_cards(
    session: AsyncSession,
    source: SourceConfig,
    args: JobArgs,
    languages: list[str],
) -> list[tuple[str, CardDB]]:
    """Cards of the selected series in the given languages, with their series code."""
    codes = {
        series.id: series.code
        for series in await list_series(session, source.tcg_slug)
        if args.wants_series(series.code)
    }
    if not codes:
        logger.warning("No series found for %s (filter: %s)", source.tcg_slug, args.series)
        return []

    cards: list[tuple[str, CardDB]] = []
    async for batch in iter_cards_in_batches(
        session, series_ids=list(codes), languages=languages
    ):
        cards.extend((codes[card.series_id], card) for card in batch)
        logger.info("Loaded %d cards", len(cards))
    return cards


async def run_copy(
    args: JobArgs,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    storage: ObjectStorage | None = None,
    client: httpx.AsyncClient | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RunSummary:
    """
    Copy reference-language images into target rows that lack one.

    Raises:
        RunAborted: If a database write failed without --continue-on-error
    """
    source = load_source_config(args.tcg)
    session_factory = session_factory or async_session_factory
    source_language = args.extras.get("source_lang") or DEFAULT_SOURCE_LANGUAGE
    target_languages = [
        lang for lang in source.languages if lang != source_language and args.wants_language(lang)
    ]
    if args.lang and args.lang.lower() not in target_languages:
        target_languages.append(args.lang.lower())

    if not source.share_artwork:
        logger.warning("%s languages do not share artwork, nothing to copy", source.tcg_slug)
        return RunSummary()

    checkpoint = ProgressCheckpoint.load(args.checkpoint_path(JOB_NAME), read_only=args.dry_run)
    summary = RunSummary()

    async with AsyncExitStack() as stack:
        if client is None:
            client = await stack.enter_async_context(create_client())
        if storage is None:
            storage = SupabaseStorage(client)
        images = ImagePipeline(
            storage,
            client,
            share_artwork=source.share_artwork,
            reference_languages=(source_language,),
        )

        try:
            with database_errors("Loading cards", key=source.tcg_slug):
                async with session_factory() as session:
                    cards = await load_cards(
                        session, source, args, [source_language, *target_languages]
                    )
        except DatabaseFailure as e:
            summary.aborted = True
            raise RunAborted(e, summary) from e

        tasks = plan_copy_tasks(cards, source, source_language, target_languages, checkpoint)
        if args.limit is not None:
            tasks = tasks[: args.limit]
        logger.info("%d images to copy from %s", len(tasks), source_language)

        for index, task in enumerate(tasks):
            if index:
                await sleep(DELAYS.between_uploads)

            decision = images.plan(task.image)
            if decision.plan != ImagePlan.COPY:
                logger.debug("Skipping %s: %s", task.image.key, decision.reason or "not copyable")
                summary.add(Outcome.SKIPPED)
                checkpoint.mark(task.key, Outcome.SKIPPED)
                continue

            if args.dry_run:
                logger.info("[dry-run] copy %s -> %s", source_language, task.image.target_path)
                summary.add(Outcome.SUCCESS)
                continue

            try:
                materialized = await images.materialize(task.image, decision)
            except StorageFailure as e:
                logger.error("Copy failed for %s: %s", task.image.key, e)
                summary.add(Outcome.ERROR)
                checkpoint.mark(task.key, Outcome.ERROR)
                continue

            try:
                with database_errors("Card image commit", key=task.key):
                    async with session_factory() as session, session.begin():
                        await update_card_image(session, task.card_id, materialized.url)
            except DatabaseFailure as e:
                logger.error("Database update failed for %s: %s", task.image.key, e)
                summary.add(Outcome.ERROR)
                checkpoint.mark(task.key, Outcome.ERROR)
                if not args.continue_on_error:
                    summary.aborted = True
                    checkpoint.abort()
                    raise RunAborted(e, summary) from e
                continue

            summary.add(Outcome.SUCCESS)
            checkpoint.mark(task.key, Outcome.SUCCESS)

    checkpoint.finish()
    logger.info("Copy summary: %s", summary)
    return summary


def add_copy_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--source-lang",
        default=DEFAULT_SOURCE_LANGUAGE,
        help="Language whose stored images are copied",
    )


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the image copy backfill."""
    args = parse_args(
        "Copy reference-language card images into rows missing one",
        argv,
        extra_arguments=add_copy_arguments,
    )
    configure_logging()

    try:
        summary = asyncio.run(run_copy(args))
    except RunAborted as e:
        logger.error("Run aborted: %s. Re-run to resume. (%s)", e, e.summary)
        sys.exit(1)

    logger.info("Done: %d copied, %d errors", summary.success, summary.errors)


if __name__ == "__main__":
    main()
