"""
Command-line flags shared by every ingestion job.
"""

import argparse
import logging
from collections.abc import Callable
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from collectorverse.config import settings
from collectorverse.services.checkpoint import checkpoint_path
from collectorverse.services.pipeline import PipelineOptions

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class JobArgs:
    """Parsed flags. Combinations are not validated; irrelevant flags are ignored."""

    tcg: str
    dry_run: bool = False
    series: str | None = None
    lang: str | None = None
    limit: int | None = None
    continue_on_error: bool = False
    skip_images: bool = False
    checkpoint: Path | None = None
    extras: dict[str, Any] = field(default_factory=dict)

    def pipeline_options(self) -> PipelineOptions:
        return PipelineOptions(
            dry_run=self.dry_run,
            continue_on_error=self.continue_on_error,
            skip_images=self.skip_images,
            limit=self.limit,
        )

    def checkpoint_path(self, job: str) -> Path:
        return self.checkpoint or checkpoint_path(settings.log_dir, job)

    def wants_series(self, code: str) -> bool:
        return self.series is None or self.series.upper() == code.upper()

    def wants_language(self, language: str) -> bool:
        return self.lang is None or self.lang.lower() == language.lower()


def build_parser(description: str, default_tcg: str = "onepiece") -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=description)
    parser.add_argument("--tcg", default=default_tcg, help="Source configuration to use")
    parser.add_argument(
        "--dry-run", action="store_true", help="Log what would change, write nothing"
    )
    parser.add_argument("--series", help="Only this series code (e.g. OP09)")
    parser.add_argument("--lang", help="Only this language code (e.g. fr)")
    parser.add_argument("--limit", type=int, help="Stop after N items")
    parser.add_argument(
        "--continue-on-error",
        action="store_true",
        help="Keep going after a database write fails",
    )
    parser.add_argument("--skip-images", action="store_true", help="Do not touch images")
    parser.add_argument("--checkpoint", type=Path, help="Checkpoint file path override")
    return parser


def parse_args(
    description: str,
    argv: list[str] | None = None,
    default_tcg: str = "onepiece",
    extra_arguments: Callable[[argparse.ArgumentParser], None] | None = None,
) -> JobArgs:
    """
    Parse the shared flags plus any job-specific ones.

    Job-specific values land in `JobArgs.extras`.
    """
    parser = build_parser(description, default_tcg)
    if extra_arguments is not None:
        extra_arguments(parser)

    values = vars(parser.parse_args(argv))
    common = {f.name for f in fields(JobArgs)} - {"extras"}
    extras = {key: value for key, value in values.items() if key not in common}
    return JobArgs(**{key: values[key] for key in common}, extras=extras)


def configure_logging() -> None:
    level = logging.DEBUG if settings.debug else settings.log_level.upper()
    logging.basicConfig(level=level, format=LOG_FORMAT)
