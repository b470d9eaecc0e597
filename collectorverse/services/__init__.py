"""
CollectorVerse services.

Normalization, image materialization, storage, progress tracking and the
ingestion pipeline that ties them together.
"""

from collectorverse.services.checkpoint import Outcome, ProgressCheckpoint
from collectorverse.services.images import (
    CardImageTask,
    ImagePipeline,
    ImagePlan,
    transcode_banner,
    transcode_card_image,
)
from collectorverse.services.normalizer import (
    NormalizerTables,
    correct_name,
    load_normalizer_tables,
    normalize_rarity,
)
from collectorverse.services.pipeline import (
    IngestionPipeline,
    IngestionTarget,
    PipelineOptions,
    RunAborted,
    RunSummary,
)
from collectorverse.services.storage import LocalStorage, ObjectStorage, SupabaseStorage

__all__ = [
    "CardImageTask",
    "ImagePipeline",
    "ImagePlan",
    "IngestionPipeline",
    "IngestionTarget",
    "LocalStorage",
    "NormalizerTables",
    "ObjectStorage",
    "Outcome",
    "PipelineOptions",
    "ProgressCheckpoint",
    "RunAborted",
    "RunSummary",
    "SupabaseStorage",
    "correct_name",
    "load_normalizer_tables",
    "normalize_rarity",
    "transcode_banner",
    "transcode_card_image",
]
