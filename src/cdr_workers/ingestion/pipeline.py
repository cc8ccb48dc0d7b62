"""
Upload pipeline: split a call detail CSV upload, then ingest its chunks
"""
import os
import threading
import uuid
from pathlib import Path
from typing import BinaryIO, Callable, Iterable, List, Optional

import structlog

from ..config import Settings
from ..models import CALL_DETAIL_COLUMNS, Chunk, SourceStream, UploadResult
from ..parsers import BoundPolicy, DateTimeMergeTransformer, RowTransformer, StreamSplitter, bound_from_config
from .contracts import IngestClientFactory
from .coordinator import IngestionCoordinator

logger = structlog.get_logger(__name__)

ChunkCleanup = Callable[[List[Chunk]], None]


def remove_chunk_files(chunks: Iterable[Chunk]) -> None:
    """Delete chunk files from temporary storage, ignoring ones already gone"""
    for chunk in chunks:
        try:
            os.remove(chunk.file_path)
        except FileNotFoundError:
            continue
        logger.debug("Removed chunk file", file_path=chunk.file_path)


def name_prefix_for(file_name: Optional[str]) -> Optional[str]:
    """Chunk prefix for an uploaded file: its name without directory or extension"""
    if not file_name:
        return None
    return Path(file_name).stem or None


class CallDetailsUploader:
    """Splits an upload into chunks and dispatches them to the destination.

    Instances hold configuration only, so one uploader can serve concurrent
    uploads. Chunk files are retained after ingestion unless a ``cleanup``
    collaborator is given; it only ever sees successfully ingested chunks.
    """

    def __init__(
        self,
        splitter: StreamSplitter,
        coordinator: IngestionCoordinator,
        bound: BoundPolicy,
        transform: Optional[RowTransformer] = None,
        max_concurrency: int = 1,
        encoding: Optional[str] = None,
        detect_encoding: bool = False,
        cleanup: Optional[ChunkCleanup] = None,
    ):
        self.splitter = splitter
        self.coordinator = coordinator
        self.bound = bound
        self.transform = transform
        self.max_concurrency = max_concurrency
        self.encoding = encoding
        self.detect_encoding = detect_encoding
        self.cleanup = cleanup

    @classmethod
    def from_settings(cls, settings: Settings, client_factory: IngestClientFactory) -> "CallDetailsUploader":
        split_config = settings.splitter_config
        ingest_config = settings.ingestion_config

        transform = DateTimeMergeTransformer(
            expected_field_count=len(CALL_DETAIL_COLUMNS) if split_config["strict_field_count"] else None
        )
        return cls(
            splitter=StreamSplitter(
                temp_dir=split_config["temp_dir"],
                validate_header=split_config["validate_header"],
            ),
            coordinator=IngestionCoordinator(
                client_factory,
                ingest_config["destination_table"],
                compress=ingest_config["compress"],
                fail_fast=ingest_config["fail_fast"],
            ),
            bound=bound_from_config(split_config["max_lines"], split_config["max_bytes"]),
            transform=transform,
            max_concurrency=ingest_config["max_concurrency"],
            encoding=None if split_config["detect_encoding"] else split_config["encoding"],
            detect_encoding=split_config["detect_encoding"],
            cleanup=remove_chunk_files if ingest_config["cleanup"] else None,
        )

    def upload(
        self,
        stream: BinaryIO,
        file_name: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> UploadResult:
        """Split ``stream`` and ingest every chunk; errors propagate unchanged"""
        prefix = name_prefix_for(file_name) or str(uuid.uuid4())
        logger.info("Processing call details upload", file_name=file_name, name_prefix=prefix)

        source = SourceStream(
            stream=stream,
            encoding=self.encoding,
            detect_encoding=self.detect_encoding,
        )
        chunks = self.splitter.split(
            source,
            name_prefix=prefix,
            bound=self.bound,
            transform=self.transform,
            cancel_event=cancel_event,
        )
        outcomes = self.coordinator.dispatch(
            chunks,
            max_concurrency=self.max_concurrency,
            cancel_event=cancel_event,
        )

        result = UploadResult(
            name_prefix=prefix,
            chunks=chunks,
            outcomes=outcomes,
        )

        if self.cleanup is not None and chunks:
            self.cleanup([outcome.task.chunk for outcome in outcomes if outcome.succeeded])

        logger.info(
            "Call details upload completed",
            file_name=file_name,
            chunks=len(chunks),
            total_rows=result.total_rows,
            total_bytes=result.total_bytes,
        )
        return result
