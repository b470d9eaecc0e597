from collectorverse.models.card import (
    CandidateItem,
    CardDetails,
    CardIdentifier,
    CardRecord,
    ParseResult,
    SeriesRecord,
    Unrecognized,
)
from collectorverse.models.db import Base, CardDB, SeriesDB, TcgGameDB
from collectorverse.models.failure import (
    DatabaseFailure,
    FailureKind,
    FetchFailure,
    IngestionError,
    NotFoundFailure,
    ParseFailure,
    StorageFailure,
    TranscodeFailure,
)

__all__ = [
    "Base",
    "CandidateItem",
    "CardDB",
    "CardDetails",
    "CardIdentifier",
    "CardRecord",
    "DatabaseFailure",
    "FailureKind",
    "FetchFailure",
    "IngestionError",
    "NotFoundFailure",
    "ParseFailure",
    "ParseResult",
    "SeriesDB",
    "SeriesRecord",
    "StorageFailure",
    "TcgGameDB",
    "TranscodeFailure",
    "Unrecognized",
]
