"""
SQLAlchemy ORM models for the card catalog.

The ingestion pipeline is the only writer of these tables; the web app
reads them.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class TcgGameDB(Base):
    """One trading card game (Pokemon, One Piece, Lorcana, ...)."""

    __tablename__ = "tcg_games"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255))

    series: Mapped[list["SeriesDB"]] = relationship(back_populates="tcg_game")

    def __repr__(self) -> str:
        return f"<TcgGameDB(slug={self.slug})>"


class SeriesDB(Base):
    """
    One released set or expansion of a TCG.

    Created lazily by ingestion before its first card is written.
    """

    __tablename__ = "series"
    __table_args__ = (UniqueConstraint("tcg_game_id", "code", name="uq_series_game_code"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tcg_game_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tcg_games.id", ondelete="CASCADE"), index=True
    )
    code: Mapped[str] = mapped_column(String(50), index=True)
    name: Mapped[str] = mapped_column(String(255))
    release_date: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Non-promo card count, and count including foil/promo variants
    max_set_base: Mapped[int | None] = mapped_column(Integer, nullable=True)
    master_set: Mapped[int | None] = mapped_column(Integer, nullable=True)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    tcg_game: Mapped["TcgGameDB"] = relationship(back_populates="series")
    cards: Mapped[list["CardDB"]] = relationship(
        back_populates="series", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<SeriesDB(code={self.code}, name={self.name})>"


class CardDB(Base):
    """
    One printed card in one language.

    `(series_id, number, language)` is unique and is the upsert key.
    """

    __tablename__ = "cards"
    __table_args__ = (
        UniqueConstraint("series_id", "number", "language", name="uq_card_series_number_lang"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    series_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("series.id", ondelete="CASCADE"), index=True
    )
    number: Mapped[str] = mapped_column(String(50), index=True)
    name: Mapped[str] = mapped_column(String(255))
    language: Mapped[str] = mapped_column(String(10), index=True)
    rarity: Mapped[str | None] = mapped_column(String(50), nullable=True)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Per-TCG fields: cost, power, domains, illustrator, ...
    attributes: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    series: Mapped["SeriesDB"] = relationship(back_populates="cards")

    def __repr__(self) -> str:
        return f"<CardDB(number={self.number}, language={self.language}, name={self.name})>"
