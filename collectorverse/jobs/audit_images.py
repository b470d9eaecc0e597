"""
Report cards that have no image. Read-only.

Usage:
    python -m collectorverse.jobs.audit_images --tcg onepiece
    python -m collectorverse.jobs.audit_images --tcg lorcana --series 1 --lang fr
"""

import asyncio
import logging
from collections import Counter

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from collectorverse.db.database import async_session_factory
from collectorverse.db.operations import MissingImage, list_cards_missing_images
from collectorverse.jobs.options import JobArgs, configure_logging, parse_args

logger = logging.getLogger(__name__)

# Individual cards listed per series/language before the report truncates
SAMPLE_SIZE = 10


def summarize_missing(missing: list[MissingImage]) -> dict[tuple[str, str], int]:
    """Count missing images per (series_code, language)."""
    return dict(sorted(Counter((m.series_code, m.language) for m in missing).items()))


async def run_audit(
    args: JobArgs,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> list[MissingImage]:
    session_factory = session_factory or async_session_factory
    async with session_factory() as session:
        missing = await list_cards_missing_images(
            session, args.tcg, series_code=args.series, language=args.lang
        )

    if args.limit is not None:
        missing = missing[: args.limit]

    if not missing:
        logger.info("No cards missing images for %s", args.tcg)
        return missing

    for (series_code, language), count in summarize_missing(missing).items():
        logger.info("%s [%s]: %d cards without image", series_code, language, count)
        sample = [m for m in missing if (m.series_code, m.language) == (series_code, language)]
        for card in sample[:SAMPLE_SIZE]:
            logger.info("  %s %s", card.number, card.name)
        if count > SAMPLE_SIZE:
            logger.info("  ... and %d more", count - SAMPLE_SIZE)

    logger.info("Total: %d cards without image", len(missing))
    return missing


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the missing-image audit."""
    args = parse_args("Report cards that have no image", argv)
    configure_logging()
    asyncio.run(run_audit(args))


if __name__ == "__main__":
    main()
