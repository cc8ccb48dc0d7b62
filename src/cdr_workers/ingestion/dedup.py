"""
Deduplication keys for chunk ingestion

The destination ingests a chunk only if its key has not been seen before, so
re-running an upload with the same inputs and naming is safe. The key is the
chunk's file name: stable across retries, distinct between chunks. Changing
the chunk naming scheme therefore breaks deduplication against earlier runs.
"""
import os
import socket
from datetime import datetime, timezone
from typing import Iterable, List

from ..models import Chunk, IngestionTask


def derive_dedup_key(path: str) -> str:
    """Dedup key for the chunk artifact at ``path``"""
    key = os.path.basename(path)
    if not key:
        raise ValueError(f"Cannot derive a dedup key from {path!r}")
    return key


def build_tasks(chunks: Iterable[Chunk], destination_table: str, compress: bool = True) -> List[IngestionTask]:
    """One ingestion task per chunk, keyed by the chunk's file name"""
    return [
        IngestionTask(
            chunk=chunk,
            dedup_key=derive_dedup_key(chunk.file_path),
            destination_table=destination_table,
            compress=compress,
        )
        for chunk in chunks
    ]


def provenance_tag() -> str:
    """Free-form tag recorded alongside an ingestion for auditing"""
    return f"Ingested from {socket.gethostname()}, started at {datetime.now(timezone.utc).isoformat()}"
