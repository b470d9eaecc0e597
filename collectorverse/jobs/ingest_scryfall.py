"""
Ingest Magic: The Gathering cards from Scryfall bulk data.

Streams the bulk file, groups printings by set and language, and runs
them through the same pipeline as scraped series: checkpoint, image
transcode and upload, catalog upsert.

Usage:
    python -m collectorverse.jobs.ingest_scryfall --download
    python -m collectorverse.jobs.ingest_scryfall --series MH3 --lang fr --dry-run
"""

import argparse
import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable, Iterable
from contextlib import AsyncExitStack
from pathlib import Path
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from collectorverse.config import SeriesSource, SourceConfig, load_source_config
from collectorverse.db.database import async_session_factory, init_db
from collectorverse.jobs.options import JobArgs, configure_logging, parse_args
from collectorverse.models.card import CandidateItem
from collectorverse.models.failure import FetchFailure
from collectorverse.parsers.card_numbers import number_sort_key
from collectorverse.parsers.scryfall import BACK_SUFFIX, iter_printings, stream_bulk_cards
from collectorverse.scrapers.http import create_client
from collectorverse.scrapers.scryfall import DEFAULT_BULK_TYPE, download_bulk_data
from collectorverse.services.checkpoint import ProgressCheckpoint
from collectorverse.services.normalizer import default_tables
from collectorverse.services.pipeline import (
    IngestionPipeline,
    IngestionTarget,
    RunAborted,
    RunSummary,
)
from collectorverse.services.storage import ObjectStorage, SupabaseStorage

logger = logging.getLogger(__name__)

JOB_NAME = "ingest-scryfall"
DEFAULT_BULK_FILE = Path("scripts/data/scryfall-all-cards.json")


def add_scryfall_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--bulk-file", type=Path, default=DEFAULT_BULK_FILE, help="Scryfall bulk JSON file"
    )
    parser.add_argument(
        "--download", action="store_true", help="Download a fresh bulk file first"
    )
    parser.add_argument("--bulk-type", default=DEFAULT_BULK_TYPE, help="Scryfall bulk type")


def collect_targets(
    cards: Iterable[dict[str, Any]],
    source: SourceConfig,
    args: JobArgs,
) -> list[IngestionTarget]:
    """
    Group bulk entries into one target per set and language.

    Duplicate printings are dropped. Sets are ordered by release date, items
    by collector number. A set's size is its largest language, front faces only.
    """
    sets: dict[str, SeriesSource] = {}
    grouped: dict[tuple[str, str], dict[tuple[str, str, str], CandidateItem]] = {}

    for card in cards:
        for printing in iter_printings(card):
            record = printing.record
            if record.language not in source.languages:
                continue
            if not args.wants_series(printing.set_code) or not args.wants_language(
                record.language
            ):
                continue

            if printing.set_code not in sets:
                sets[printing.set_code] = SeriesSource(
                    code=printing.set_code,
                    name=printing.set_name,
                    release_date=printing.released_at,
                )
            items = grouped.setdefault((printing.set_code, record.language), {})
            if record.key in items:
                logger.debug("Duplicate printing %s", record.key)
                continue
            items[record.key] = CandidateItem(
                url=printing.uri,
                image_url=printing.image_url,
                name=record.name,
                record=record,
            )

    for code, series in sets.items():
        counts = [
            sum(1 for key in items if not key[1].endswith(BACK_SUFFIX))
            for (set_code, _), items in grouped.items()
            if set_code == code
        ]
        series.card_count = max(counts)
        series.master_set = series.card_count

    language_order = {language: i for i, language in enumerate(source.languages)}
    targets = [
        IngestionTarget(
            series=sets[code],
            language=language,
            items=sorted(items.values(), key=lambda item: number_sort_key(item.record.number)),
        )
        for (code, language), items in grouped.items()
    ]
    targets.sort(
        key=lambda t: (t.series.release_date or "", t.series.code, language_order[t.language])
    )
    return targets


async def run_scryfall_ingest(
    args: JobArgs,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    storage: ObjectStorage | None = None,
    client: httpx.AsyncClient | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RunSummary:
    """
    Ingest every selected Scryfall set/language.

    Raises:
        FetchFailure: If the bulk file had to be downloaded and could not be
        RunAborted: If a database write failed without --continue-on-error
    """
    source = load_source_config(args.tcg)
    bulk_file: Path = args.extras.get("bulk_file") or DEFAULT_BULK_FILE
    bulk_type: str = args.extras.get("bulk_type") or DEFAULT_BULK_TYPE
    checkpoint = ProgressCheckpoint.load(args.checkpoint_path(JOB_NAME), read_only=args.dry_run)

    async with AsyncExitStack() as stack:
        if client is None:
            client = await stack.enter_async_context(create_client())
        if storage is None:
            storage = SupabaseStorage(client)

        if args.extras.get("download") or not bulk_file.exists():
            await download_bulk_data(client, bulk_file, bulk_type)

        logger.info("Reading %s", bulk_file)
        targets = collect_targets(stream_bulk_cards(bulk_file), source, args)
        total = sum(len(t.items) for t in targets)
        logger.info("Collected %d printings in %d set/language groups", total, len(targets))

        if session_factory is None:
            if not args.dry_run:
                await init_db()
            session_factory = async_session_factory

        pipeline = IngestionPipeline(
            source,
            session_factory=session_factory,
            storage=storage,
            client=client,
            page_source=None,
            tables=default_tables(),
            checkpoint=checkpoint,
            options=args.pipeline_options(),
            sleep=sleep,
        )
        return await pipeline.run(targets)


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for Scryfall ingestion."""
    args = parse_args(
        "Ingest Magic cards from Scryfall bulk data",
        argv,
        default_tcg="mtg",
        extra_arguments=add_scryfall_arguments,
    )
    configure_logging()

    if args.dry_run:
        logger.info("DRY RUN: no database, storage or checkpoint writes")

    try:
        summary = asyncio.run(run_scryfall_ingest(args))
    except FetchFailure as e:
        logger.error("Bulk data unavailable: %s", e)
        sys.exit(1)
    except RunAborted as e:
        logger.error("Run aborted: %s. Re-run to resume. (%s)", e, e.summary)
        sys.exit(1)

    logger.info(
        "Done: %d success, %d errors, %d not found, %d skipped",
        summary.success,
        summary.errors,
        summary.not_found,
        summary.skipped,
    )


if __name__ == "__main__":
    main()
