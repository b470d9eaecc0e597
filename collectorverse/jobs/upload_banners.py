"""
Upload series banners and point each series row at its banner.

Banner sources come from the source configuration (`banner_url`), either a
URL or a local file path.

Usage:
    python -m collectorverse.jobs.upload_banners --tcg lorcana
    python -m collectorverse.jobs.upload_banners --tcg lorcana --series 3 --dry-run
"""

import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from contextlib import AsyncExitStack

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from collectorverse.config import DELAYS, SeriesSource, load_source_config
from collectorverse.db.database import async_session_factory
from collectorverse.db.operations import (
    SeriesResolver,
    database_errors,
    get_series_by_slug,
    update_series_image,
)
from collectorverse.jobs.options import JobArgs, configure_logging, parse_args
from collectorverse.models.failure import (
    DatabaseFailure,
    FetchFailure,
    StorageFailure,
    TranscodeFailure,
)
from collectorverse.scrapers.http import create_client
from collectorverse.services.checkpoint import Outcome, ProgressCheckpoint
from collectorverse.services.images import ImagePipeline
from collectorverse.services.pipeline import RunAborted, RunSummary, series_record
from collectorverse.services.storage import ObjectStorage, SupabaseStorage

logger = logging.getLogger(__name__)

JOB_NAME = "upload-banners"


def banner_key(series_code: str) -> str:
    return f"banner:{series_code}"


async def run_upload_banners(
    args: JobArgs,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    storage: ObjectStorage | None = None,
    client: httpx.AsyncClient | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RunSummary:
    """
    Upload the banner of every selected series that has one configured.

    Raises:
        RunAborted: If a database write failed without --continue-on-error
    """
    source = load_source_config(args.tcg)
    session_factory = session_factory or async_session_factory
    checkpoint = ProgressCheckpoint.load(args.checkpoint_path(JOB_NAME), read_only=args.dry_run)
    resolver = SeriesResolver(source.tcg_slug, source.tcg_name)
    summary = RunSummary()

    selected: list[SeriesSource] = []
    for series in source.series:
        if not series.banner_url or series.skip or not args.wants_series(series.code):
            continue
        if checkpoint.is_processed(banner_key(series.code)):
            summary.resumed += 1
            continue
        selected.append(series)
    if args.limit is not None:
        selected = selected[: args.limit]

    async with AsyncExitStack() as stack:
        if client is None:
            client = await stack.enter_async_context(create_client())
        if storage is None:
            storage = SupabaseStorage(client)
        images = ImagePipeline(storage, client)

        for index, series in enumerate(selected):
            key = banner_key(series.code)
            if index:
                await sleep(DELAYS.between_uploads)

            if args.dry_run:
                logger.info("[dry-run] banner %s <- %s", series.code, series.banner_url)
                summary.add(Outcome.SUCCESS)
                continue

            try:
                url = await images.upload_series_banner(
                    series.code, series.banner_url, source.bucket
                )
            except (FetchFailure, TranscodeFailure, StorageFailure) as e:
                logger.error("Banner for %s failed: %s", series.code, e)
                summary.add(Outcome.ERROR)
                checkpoint.mark(key, Outcome.ERROR)
                continue

            try:
                with database_errors("Series banner commit", key=key):
                    async with session_factory() as session, session.begin():
                        await resolver.resolve(session, series_record(source, series))
                        row = await get_series_by_slug(session, source.tcg_slug, series.code)
                        await update_series_image(session, row, url)
            except DatabaseFailure as e:
                resolver.forget(series.code)
                logger.error("Could not store banner URL for %s: %s", series.code, e)
                summary.add(Outcome.ERROR)
                checkpoint.mark(key, Outcome.ERROR)
                if not args.continue_on_error:
                    summary.aborted = True
                    checkpoint.abort()
                    raise RunAborted(e, summary) from e
                continue

            logger.info("Banner for %s: %s", series.code, url)
            summary.add(Outcome.SUCCESS)
            checkpoint.mark(key, Outcome.SUCCESS)

    checkpoint.finish()
    logger.info("Banner summary: %s", summary)
    return summary


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for banner upload."""
    args = parse_args("Upload series banners", argv, default_tcg="lorcana")
    configure_logging()

    try:
        summary = asyncio.run(run_upload_banners(args))
    except RunAborted as e:
        logger.error("Run aborted: %s. Re-run to resume. (%s)", e, e.summary)
        sys.exit(1)

    logger.info("Done: %d banners uploaded, %d errors", summary.success, summary.errors)


if __name__ == "__main__":
    main()
