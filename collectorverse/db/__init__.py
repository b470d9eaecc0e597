from collectorverse.db.database import async_session_factory, create_engine, init_db
from collectorverse.db.operations import (
    SeriesResolver,
    card_to_record,
    find_sibling_images,
    get_card,
    get_or_create_series,
    get_or_create_tcg_game,
    get_series,
    iter_cards_in_batches,
    list_cards_missing_images,
    update_card_image,
    update_series_image,
    upsert_card,
)

__all__ = [
    "SeriesResolver",
    "async_session_factory",
    "card_to_record",
    "create_engine",
    "find_sibling_images",
    "get_card",
    "get_or_create_series",
    "get_or_create_tcg_game",
    "get_series",
    "init_db",
    "iter_cards_in_batches",
    "list_cards_missing_images",
    "update_card_image",
    "update_series_image",
    "upsert_card",
]
