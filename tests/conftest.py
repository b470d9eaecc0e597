from io import BytesIO
from pathlib import Path
from unittest.mock import AsyncMock

import httpx
import pytest
from PIL import Image
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from collectorverse.config import FitPolicy, PaginationMode, SeriesSource, SourceConfig
from collectorverse.models.db import Base
from collectorverse.services.normalizer import NormalizerTables, load_normalizer_tables
from collectorverse.services.storage import LocalStorage


def make_image_bytes(
    size: tuple[int, int] = (600, 840),
    color: tuple[int, ...] = (200, 30, 30),
    mode: str = "RGB",
    fmt: str = "PNG",
) -> bytes:
    """Solid-color image encoded in memory."""
    out = BytesIO()
    Image.new(mode, size, color).save(out, fmt)
    return out.getvalue()


@pytest.fixture
def image_bytes():
    """Factory for in-memory test images."""
    return make_image_bytes


@pytest.fixture
async def async_engine():
    """Create an in-memory SQLite engine shared by every session of a test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def unmigrated_session_factory():
    """Sessions on a database whose tables were never created."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def session(session_factory) -> AsyncSession:
    """Provide a database session for tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def storage(tmp_path: Path) -> LocalStorage:
    return LocalStorage(tmp_path / "storage", public_base="https://cdn.test/storage")


@pytest.fixture
async def client():
    async with httpx.AsyncClient() as client:
        yield client


@pytest.fixture
def no_sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture(scope="session")
def tables() -> NormalizerTables:
    return load_normalizer_tables()


@pytest.fixture
def source_config() -> SourceConfig:
    """A One Piece-like source with two series and two languages."""
    return SourceConfig(
        tcg_slug="onepiece",
        tcg_name="One Piece Card Game",
        base_url="https://cards.test",
        bucket="onepiece-cards",
        listing_url="{base}/cards/search?serie={site_id}&language={lang_upper}",
        pagination=PaginationMode.URL,
        image_referer="https://cards.test/",
        fit=FitPolicy.COVER,
        languages=["fr", "en"],
        fetch_details=False,
        series=[
            SeriesSource(
                code="OP09",
                name="The Four Emperors",
                card_count=3,
                site_ids={"fr": 477, "en": 462},
            ),
            SeriesSource(code="PRB01", name="Premium Booster", site_ids={"en": 435}),
        ],
    )
