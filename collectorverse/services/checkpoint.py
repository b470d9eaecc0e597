"""
Progress checkpoint for resumable ingestion runs.

One JSON file per job invocation:

    {
        "startedAt": "...", "lastUpdated": "...",
        "processed": 12, "success": 10, "errors": 1, "notFound": 1, "skipped": 0,
        "processedIds": ["...", ...]
    }

Keys that completed (success, not_found, skipped) are recorded and skipped
on the next run. Errored keys are counted but not recorded, so a re-run
retries them. The file is deleted after a clean run.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

from collectorverse.config import CHECKPOINT_FLUSH_EVERY

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    NOT_FOUND = "not_found"
    SKIPPED = "skipped"


class CheckpointState(str, Enum):
    FRESH = "fresh"
    RUNNING = "running"
    COMPLETED = "completed"
    INTERRUPTED = "interrupted"


def _now() -> str:
    return datetime.now(UTC).isoformat()


@dataclass
class ProgressCheckpoint:
    """
    Durable record of which items a job has already handled.

    Use `load()` rather than the constructor so an existing file is resumed.
    """

    path: Path
    flush_every: int = CHECKPOINT_FLUSH_EVERY
    read_only: bool = False
    started_at: str = field(default_factory=_now)
    last_updated: str | None = None
    processed: int = 0
    success: int = 0
    errors: int = 0
    not_found: int = 0
    skipped: int = 0
    # dict keeps insertion order and gives O(1) membership
    processed_ids: dict[str, None] = field(default_factory=dict)
    state: CheckpointState = CheckpointState.FRESH
    _pending: int = 0

    @classmethod
    def load(
        cls,
        path: Path,
        *,
        flush_every: int = CHECKPOINT_FLUSH_EVERY,
        read_only: bool = False,
    ) -> "ProgressCheckpoint":
        """
        Open the checkpoint at `path`, resuming it if the file exists.

        A file that cannot be parsed is ignored with a warning, and the run
        starts fresh.
        """
        checkpoint = cls(path=Path(path), flush_every=flush_every, read_only=read_only)
        if not checkpoint.path.exists():
            return checkpoint

        try:
            with open(checkpoint.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable checkpoint %s: %s", checkpoint.path, e)
            return checkpoint

        checkpoint.started_at = data.get("startedAt", checkpoint.started_at)
        checkpoint.last_updated = data.get("lastUpdated")
        # Errored items are retried, so their count starts over
        errors = int(data.get("errors", 0))
        checkpoint.processed = int(data.get("processed", 0)) - errors
        checkpoint.success = int(data.get("success", 0))
        checkpoint.not_found = int(data.get("notFound", 0))
        checkpoint.skipped = int(data.get("skipped", 0))
        checkpoint.processed_ids = dict.fromkeys(data.get("processedIds", []))
        checkpoint.state = CheckpointState.RUNNING

        logger.info(
            "Resuming from checkpoint %s: %d items already processed",
            checkpoint.path,
            len(checkpoint.processed_ids),
        )
        return checkpoint

    @property
    def resumed(self) -> bool:
        return self.state == CheckpointState.RUNNING and bool(self.processed_ids)

    def is_processed(self, key: str) -> bool:
        return key in self.processed_ids

    def mark(self, key: str, outcome: Outcome | str) -> None:
        """Record one item's outcome, flushing every `flush_every` marks."""
        outcome = Outcome(outcome)
        self.state = CheckpointState.RUNNING
        self.processed += 1

        if outcome == Outcome.SUCCESS:
            self.success += 1
        elif outcome == Outcome.ERROR:
            self.errors += 1
        elif outcome == Outcome.NOT_FOUND:
            self.not_found += 1
        else:
            self.skipped += 1

        if outcome != Outcome.ERROR:
            self.processed_ids[key] = None

        self._pending += 1
        if self._pending >= self.flush_every:
            self.flush()

    def to_dict(self) -> dict:
        return {
            "startedAt": self.started_at,
            "lastUpdated": self.last_updated,
            "processed": self.processed,
            "success": self.success,
            "errors": self.errors,
            "notFound": self.not_found,
            "skipped": self.skipped,
            "processedIds": list(self.processed_ids),
        }

    def flush(self) -> None:
        """Write the checkpoint atomically. No-op when read-only."""
        self._pending = 0
        if self.read_only:
            return

        self.last_updated = _now()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self.to_dict(), f, indent=2)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def finish(self) -> CheckpointState:
        """
        Close out the run.

        Deletes the file when the run processed something without errors.
        Otherwise the file is flushed and left for the next run to resume.
        """
        clean = self.errors == 0 and self.processed > 0
        self.state = CheckpointState.COMPLETED if clean else CheckpointState.INTERRUPTED

        if self.read_only or (self.processed == 0 and not self.path.exists()):
            return self.state

        if clean:
            self.path.unlink(missing_ok=True)
            logger.info("Run complete, checkpoint %s removed", self.path)
        else:
            self.flush()
            logger.info("Checkpoint kept at %s (%d errors)", self.path, self.errors)
        return self.state

    def abort(self) -> None:
        """Flush and mark the run interrupted, e.g. before exiting on a fatal error."""
        self.state = CheckpointState.INTERRUPTED
        self.flush()


def checkpoint_path(log_dir: Path, job: str) -> Path:
    """Default checkpoint location for a job: `{log_dir}/{job}-progress.json`."""
    return Path(log_dir) / f"{job}-progress.json"
