"""Chunk ingestion: dedup keys, bounded retry, parallel dispatch and the upload pipeline"""

from .contracts import IngestClient, IngestClientFactory, QueryClient
from .coordinator import IngestionCoordinator
from .dedup import build_tasks, derive_dedup_key
from .pipeline import CallDetailsUploader, name_prefix_for, remove_chunk_files
from .retry import ErrorClassifier, RetryManager, RetryPolicy

__all__ = [
    "IngestClient",
    "IngestClientFactory",
    "QueryClient",
    "IngestionCoordinator",
    "build_tasks",
    "derive_dedup_key",
    "CallDetailsUploader",
    "name_prefix_for",
    "remove_chunk_files",
    "ErrorClassifier",
    "RetryManager",
    "RetryPolicy",
]
