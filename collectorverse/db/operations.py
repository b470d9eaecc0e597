"""
Catalog database operations.

Async functions for resolving TCGs and series, and for upserting cards
keyed on (series_id, number, language).
"""

from collections.abc import AsyncIterator, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from collectorverse.config import QUERY_BATCH_SIZE
from collectorverse.models.card import CardRecord, SeriesRecord
from collectorverse.models.db import CardDB, SeriesDB, TcgGameDB
from collectorverse.models.failure import DatabaseFailure


@contextmanager
def database_errors(action: str, key: str | None = None) -> Iterator[None]:
    """Re-raise SQLAlchemy errors as DatabaseFailure."""
    try:
        yield
    except SQLAlchemyError as e:
        raise DatabaseFailure(f"{action} failed", detail=str(e.__cause__ or e), key=key) from e


# --- TCG Operations ---


async def get_tcg_game(session: AsyncSession, slug: str) -> TcgGameDB | None:
    """Get a TCG by slug. Returns None if unknown."""
    with database_errors("TCG lookup", key=slug):
        result = await session.execute(select(TcgGameDB).where(TcgGameDB.slug == slug))
    return result.scalar_one_or_none()


async def get_or_create_tcg_game(
    session: AsyncSession, slug: str, name: str
) -> tuple[TcgGameDB, bool]:
    """
    Get existing TCG or create it.

    Returns:
        Tuple of (tcg_game, created) where created is True if new.
    """
    game = await get_tcg_game(session, slug)
    if game:
        return game, False

    with database_errors("Creating TCG", key=slug):
        game = TcgGameDB(slug=slug, name=name)
        session.add(game)
        await session.flush()
    return game, True


# --- Series Operations ---


async def get_series(session: AsyncSession, tcg_game_id: int, code: str) -> SeriesDB | None:
    """Get a series by its code within one TCG."""
    with database_errors("Series lookup", key=code):
        result = await session.execute(
            select(SeriesDB).where(
                SeriesDB.tcg_game_id == tcg_game_id,
                SeriesDB.code == code,
            )
        )
    return result.scalar_one_or_none()


async def get_series_by_slug(session: AsyncSession, tcg_slug: str, code: str) -> SeriesDB | None:
    """Get a series by TCG slug and series code."""
    with database_errors("Series lookup", key=f"{tcg_slug}/{code}"):
        result = await session.execute(
            select(SeriesDB)
            .join(TcgGameDB, SeriesDB.tcg_game_id == TcgGameDB.id)
            .where(TcgGameDB.slug == tcg_slug, SeriesDB.code == code)
        )
    return result.scalar_one_or_none()


async def list_series(session: AsyncSession, tcg_slug: str) -> list[SeriesDB]:
    """All series of a TCG, ordered by code."""
    with database_errors("Series listing", key=tcg_slug):
        result = await session.execute(
            select(SeriesDB)
            .join(TcgGameDB, SeriesDB.tcg_game_id == TcgGameDB.id)
            .where(TcgGameDB.slug == tcg_slug)
            .order_by(SeriesDB.code)
        )
    return list(result.scalars().all())


async def get_or_create_series(
    session: AsyncSession, tcg_game: TcgGameDB, record: SeriesRecord
) -> tuple[SeriesDB, bool]:
    """
    Get a series or create it with whatever metadata is known now.

    Existing series are returned untouched.
    """
    series = await get_series(session, tcg_game.id, record.code)
    if series:
        return series, False

    with database_errors("Creating series", key=record.code):
        series = SeriesDB(
            tcg_game_id=tcg_game.id,
            code=record.code,
            name=record.name,
            release_date=record.release_date,
            max_set_base=record.max_set_base,
            master_set=record.master_set,
            image_url=record.image_url,
        )
        session.add(series)
        await session.flush()
    return series, True


async def update_series_image(session: AsyncSession, series: SeriesDB, image_url: str) -> None:
    with database_errors("Updating series image", key=series.code):
        series.image_url = image_url
        await session.flush()


@dataclass
class SeriesResolver:
    """
    Resolves (tcg, series code) to a series id, creating rows on first use.

    Ids are cached for the lifetime of the resolver, one ingestion run.
    """

    tcg_slug: str
    tcg_name: str
    _ids: dict[str, int] = field(default_factory=dict)

    async def resolve(self, session: AsyncSession, record: SeriesRecord) -> int:
        cached = self._ids.get(record.code)
        if cached is not None:
            return cached

        game, _ = await get_or_create_tcg_game(session, self.tcg_slug, self.tcg_name)
        series, _ = await get_or_create_series(session, game, record)
        self._ids[record.code] = series.id
        return series.id

    def forget(self, code: str) -> None:
        """Drop a cached id, e.g. after the transaction that created it rolled back."""
        self._ids.pop(code, None)


# --- Card Operations ---


async def get_card(
    session: AsyncSession, series_id: int, number: str, language: str
) -> CardDB | None:
    """Get one card by its upsert key."""
    with database_errors("Card lookup", key=f"{series_id}/{number}/{language}"):
        result = await session.execute(
            select(CardDB).where(
                CardDB.series_id == series_id,
                CardDB.number == number,
                CardDB.language == language,
            )
        )
    return result.scalar_one_or_none()


async def upsert_card(
    session: AsyncSession, series_id: int, record: CardRecord
) -> tuple[CardDB, bool]:
    """
    Insert or update a card keyed on (series_id, number, language).

    On update, name, rarity and attributes are replaced. The image URL is
    only replaced when the record carries one.

    Returns:
        Tuple of (card, created).

    Raises:
        DatabaseFailure: If the write is rejected
    """
    key = f"{series_id}/{record.number}/{record.language}"
    with database_errors("Card upsert", key=key):
        existing = await get_card(session, series_id, record.number, record.language)

        if existing:
            existing.name = record.name
            existing.rarity = record.rarity
            existing.attributes = dict(record.attributes)
            if record.image_url is not None:
                existing.image_url = record.image_url
            await session.flush()
            return existing, False

        card = CardDB(
            series_id=series_id,
            number=record.number,
            name=record.name,
            language=record.language,
            rarity=record.rarity,
            image_url=record.image_url,
            attributes=dict(record.attributes),
        )
        session.add(card)
        await session.flush()
        return card, True


async def update_card_image(session: AsyncSession, card_id: int, image_url: str) -> bool:
    """
    Point a card at a new image.

    Returns True if updated, False if the card does not exist.
    """
    with database_errors("Card image update", key=str(card_id)):
        card = await session.get(CardDB, card_id)
        if card is None:
            return False
        card.image_url = image_url
        await session.flush()
    return True


async def find_sibling_images(
    session: AsyncSession, series_id: int, number: str
) -> dict[str, str | None]:
    """Image URL of the same card in every language present, keyed by language."""
    with database_errors("Sibling image lookup", key=f"{series_id}/{number}"):
        result = await session.execute(
            select(CardDB.language, CardDB.image_url).where(
                CardDB.series_id == series_id,
                CardDB.number == number,
            )
        )
    return {language: image_url for language, image_url in result.all()}


async def iter_cards_in_batches(
    session: AsyncSession,
    *,
    series_ids: list[int] | None = None,
    languages: list[str] | None = None,
    missing_image: bool = False,
    batch_size: int = QUERY_BATCH_SIZE,
) -> AsyncIterator[list[CardDB]]:
    """
    Yield cards in fixed-size pages, ordered by (series_id, number, language).

    Pages are fetched with offset/limit so no single query carries a large
    id list or result set.
    """
    query = select(CardDB).order_by(CardDB.series_id, CardDB.number, CardDB.language)
    if series_ids is not None:
        query = query.where(CardDB.series_id.in_(series_ids))
    if languages is not None:
        query = query.where(CardDB.language.in_(languages))
    if missing_image:
        query = query.where(CardDB.image_url.is_(None))

    offset = 0
    while True:
        with database_errors("Card batch query"):
            result = await session.execute(query.offset(offset).limit(batch_size))
        batch = list(result.scalars().all())
        if not batch:
            return
        yield batch
        if len(batch) < batch_size:
            return
        offset += batch_size


@dataclass
class MissingImage:
    series_code: str
    number: str
    language: str
    name: str


async def list_cards_missing_images(
    session: AsyncSession,
    tcg_slug: str,
    *,
    series_code: str | None = None,
    language: str | None = None,
    batch_size: int = QUERY_BATCH_SIZE,
) -> list[MissingImage]:
    """Cards of a TCG with no image, optionally narrowed to one series/language."""
    series = await list_series(session, tcg_slug)
    if series_code is not None:
        series = [s for s in series if s.code.upper() == series_code.upper()]
    codes = {s.id: s.code for s in series}
    if not codes:
        return []

    missing: list[MissingImage] = []
    async for batch in iter_cards_in_batches(
        session,
        series_ids=list(codes),
        languages=[language] if language else None,
        missing_image=True,
        batch_size=batch_size,
    ):
        missing.extend(
            MissingImage(
                series_code=codes[card.series_id],
                number=card.number,
                language=card.language,
                name=card.name,
            )
            for card in batch
        )
    return missing


def card_to_record(card: CardDB, series_code: str) -> CardRecord:
    """Convert a database card to a domain record."""
    return CardRecord(
        series_code=series_code,
        number=card.number,
        name=card.name,
        language=card.language,
        rarity=card.rarity,
        image_url=card.image_url,
        attributes=dict(card.attributes or {}),
    )
