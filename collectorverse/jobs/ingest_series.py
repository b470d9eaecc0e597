"""
Ingest card series from a source site.

Walks each configured series listing, then runs every discovered card
through the ingestion pipeline. Resumable through a progress checkpoint.

Usage:
    python -m collectorverse.jobs.ingest_series --tcg onepiece --series OP09 --lang fr
    python -m collectorverse.jobs.ingest_series --tcg lorcana --dry-run
"""

import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from contextlib import AsyncExitStack

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from collectorverse.config import PaginationMode, SourceConfig, load_source_config
from collectorverse.db.database import async_session_factory, init_db
from collectorverse.jobs.options import JobArgs, configure_logging, parse_args
from collectorverse.models.failure import FetchFailure
from collectorverse.scrapers.browser import BrowserPageSource, open_browser
from collectorverse.scrapers.http import create_client
from collectorverse.scrapers.listing import (
    HttpPageSource,
    PageSource,
    paginate_listing,
    strategy_for,
)
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

JOB_NAME = "ingest-series"


async def discover_targets(
    source: SourceConfig,
    page_source: PageSource,
    args: JobArgs,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> list[IngestionTarget]:
    """
    Walk the listing of every selected series/language.

    A listing whose first page fails is logged and left out; the other
    series still run.
    """
    strategy = strategy_for(source.pagination)
    targets: list[IngestionTarget] = []

    for series in source.series:
        if series.skip or not args.wants_series(series.code):
            continue

        for language in source.languages:
            if not args.wants_language(language):
                continue

            listing_url = source.listing_for(series, language)
            if listing_url is None:
                logger.debug("No %s listing for %s", language, series.code)
                continue

            logger.info("Listing %s [%s]: %s", series.code, language, listing_url)
            try:
                listing = await paginate_listing(
                    page_source,
                    listing_url,
                    strategy,
                    base_url=source.base_url,
                    link_pattern=source.link_pattern,
                    expected_total=series.master_set or series.card_count,
                    sleep=sleep,
                )
            except FetchFailure as e:
                logger.error("Listing %s [%s] failed: %s", series.code, language, e)
                continue

            targets.append(IngestionTarget(series=series, language=language, items=listing.items))

    return targets


async def run_ingest(
    args: JobArgs,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    storage: ObjectStorage | None = None,
    client: httpx.AsyncClient | None = None,
    page_source: PageSource | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RunSummary:
    """
    Discover and ingest all selected series of one TCG.

    Raises:
        RunAborted: If a database write failed without --continue-on-error
    """
    source = load_source_config(args.tcg)
    checkpoint = ProgressCheckpoint.load(args.checkpoint_path(JOB_NAME), read_only=args.dry_run)

    async with AsyncExitStack() as stack:
        if client is None:
            client = await stack.enter_async_context(create_client())
        if page_source is None:
            if source.pagination == PaginationMode.CLICK:
                page = await stack.enter_async_context(open_browser())
                page_source = BrowserPageSource(page)
            else:
                page_source = HttpPageSource(client)
        if storage is None:
            storage = SupabaseStorage(client)

        targets = await discover_targets(source, page_source, args, sleep=sleep)
        total = sum(len(t.items) for t in targets)
        logger.info("Discovered %d candidates in %d listings", total, len(targets))

        if session_factory is None:
            if not args.dry_run:
                await init_db()
            session_factory = async_session_factory

        pipeline = IngestionPipeline(
            source,
            session_factory=session_factory,
            storage=storage,
            client=client,
            page_source=page_source,
            tables=default_tables(),
            checkpoint=checkpoint,
            options=args.pipeline_options(),
            sleep=sleep,
        )
        return await pipeline.run(targets)


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for series ingestion."""
    args = parse_args("Ingest card series from a source site", argv)
    configure_logging()

    if args.dry_run:
        logger.info("DRY RUN: no database, storage or checkpoint writes")

    try:
        summary = asyncio.run(run_ingest(args))
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
