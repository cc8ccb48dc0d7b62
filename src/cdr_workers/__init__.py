"""
CDR Ingest Workers - chunked, retrying ingestion of call detail record files

This package provides:
- Streaming splitting of arbitrarily large CSV uploads into bounded chunk files
- Header validation and per-row normalization while splitting
- Parallel, deduplicated, at-least-once ingestion of chunks into PostgreSQL
- Background job processing with Celery/Redis
"""

__version__ = "1.0.0"
__author__ = "CDR Ingest Team"

from .errors import (
    AggregateIngestionError,
    CdrPipelineError,
    DecodeError,
    IngestionError,
    PipelineCancelled,
    SchemaError,
    TransformError,
)
from .models import Chunk, IngestionOutcome, IngestionTask, SourceStream
from .parsers import ByteBound, DateTimeMergeTransformer, RowBound, StreamSplitter
from .ingestion import CallDetailsUploader, IngestionCoordinator, derive_dedup_key

__all__ = [
    "AggregateIngestionError",
    "CdrPipelineError",
    "DecodeError",
    "IngestionError",
    "PipelineCancelled",
    "SchemaError",
    "TransformError",
    "Chunk",
    "IngestionOutcome",
    "IngestionTask",
    "SourceStream",
    "ByteBound",
    "DateTimeMergeTransformer",
    "RowBound",
    "StreamSplitter",
    "CallDetailsUploader",
    "IngestionCoordinator",
    "derive_dedup_key",
]
