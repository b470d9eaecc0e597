"""
Ingestion failure taxonomy.

Every per-item failure raised inside the pipeline is an `IngestionError`
carrying a `FailureKind`. The pipeline decides what each kind means for the
run:

- ParseFailure: item skipped, run continues
- FetchFailure / NotFoundFailure: item skipped, counted
- TranscodeFailure: item skipped, counted as error
- StorageFailure: item's database write is not attempted
- DatabaseFailure: run aborts unless --continue-on-error

HTTP 429 responses are not failures; they are retried with backoff
before any FetchFailure is raised.
"""

from enum import Enum


class FailureKind(str, Enum):
    """Classification of ingestion failures."""

    PARSE_FAILURE = "parse_failure"
    FETCH_FAILURE = "fetch_failure"
    NOT_FOUND = "not_found"
    TRANSCODE_FAILURE = "transcode_failure"
    STORAGE_FAILURE = "storage_failure"
    DATABASE_FAILURE = "database_failure"


class IngestionError(Exception):
    """
    Base class for known, explainable ingestion failures.

    Subclass this for errors where the pipeline knows exactly what went wrong.
    """

    kind: FailureKind = FailureKind.FETCH_FAILURE

    def __init__(
        self,
        message: str,
        detail: str | None = None,
        key: str | None = None,
    ):
        self.message = message
        self.detail = detail
        self.key = key
        super().__init__(message)

    def __str__(self) -> str:
        if self.detail:
            return f"{self.message} ({self.detail})"
        return self.message


class ParseFailure(IngestionError):
    """Source text did not match any known identifier pattern."""

    kind = FailureKind.PARSE_FAILURE


class FetchFailure(IngestionError):
    """Network, timeout or HTTP error reaching a source page or image."""

    kind = FailureKind.FETCH_FAILURE

    def __init__(
        self,
        message: str,
        detail: str | None = None,
        key: str | None = None,
        status_code: int | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, detail=detail, key=key)


class NotFoundFailure(FetchFailure):
    """Source answered 404 for a page or image."""

    kind = FailureKind.NOT_FOUND


class TranscodeFailure(IngestionError):
    """Image bytes were fetched but could not be resized or encoded."""

    kind = FailureKind.TRANSCODE_FAILURE


class StorageFailure(IngestionError):
    """Upload or copy to object storage failed."""

    kind = FailureKind.STORAGE_FAILURE


class DatabaseFailure(IngestionError):
    """A catalog write or read was rejected by the relational store."""

    kind = FailureKind.DATABASE_FAILURE
