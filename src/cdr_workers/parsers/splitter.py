"""
Streaming splitter for very large call detail CSV files

Reads the input exactly once and writes it out as a sequence of bounded,
header-repeating chunk files:
- the header is validated before any chunk file exists
- chunk boundaries follow a row-count or encoded byte-size bound
- a row is never split; a single row larger than a byte bound gets a chunk to itself
- chunk files are named ``{prefix}_{index}.csv`` and are never deleted here
"""
import os
import tempfile
import threading
import time
import uuid
from dataclasses import dataclass
from typing import List, Optional, Union

import psutil
import structlog

from ..errors import PipelineCancelled, SchemaError
from ..models import Chunk, SourceStream
from .chunk_writer import ChunkWriter
from .line_reader import LineReader
from .schema import SchemaValidator, split_header
from .transformer import RowTransformer

logger = structlog.get_logger(__name__)

DEFAULT_MAX_ROWS = 10000000


@dataclass(frozen=True)
class RowBound:
    """Seal a chunk once it holds ``max_rows`` data rows"""
    max_rows: int

    def __post_init__(self):
        if self.max_rows <= 0:
            raise ValueError("max_rows must be positive")

    def is_full(self, writer: ChunkWriter) -> bool:
        return writer.row_count >= self.max_rows

    def overflows(self, writer: ChunkWriter, row_size: int) -> bool:
        return False


@dataclass(frozen=True)
class ByteBound:
    """Seal a chunk before its encoded size would exceed ``max_bytes``"""
    max_bytes: int

    def __post_init__(self):
        if self.max_bytes <= 0:
            raise ValueError("max_bytes must be positive")

    def is_full(self, writer: ChunkWriter) -> bool:
        return False

    def overflows(self, writer: ChunkWriter, row_size: int) -> bool:
        # An empty chunk always takes the row, however large
        return writer.row_count > 0 and writer.byte_size + row_size > self.max_bytes


BoundPolicy = Union[RowBound, ByteBound]


def bound_from_config(max_rows: Optional[int] = None, max_bytes: Optional[int] = None) -> BoundPolicy:
    """Byte bound when configured, row bound otherwise"""
    if max_bytes:
        return ByteBound(max_bytes)
    return RowBound(max_rows or DEFAULT_MAX_ROWS)


class StreamSplitter:
    """Splits a SourceStream into sealed Chunk files"""

    def __init__(
        self,
        temp_dir: Optional[str] = None,
        validate_header: bool = True,
        output_encoding: str = "utf-8",
        delimiter: str = ",",
    ):
        self.temp_dir = temp_dir
        self.validate_header = validate_header
        self.output_encoding = output_encoding
        self.delimiter = delimiter

    @property
    def directory(self) -> str:
        return self.temp_dir or tempfile.gettempdir()

    def chunk_path(self, prefix: str, index: int) -> str:
        return os.path.join(self.directory, f"{prefix}_{index}.csv")

    def split(
        self,
        source: SourceStream,
        name_prefix: Optional[str] = None,
        bound: Optional[BoundPolicy] = None,
        transform: Optional[RowTransformer] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[Chunk]:
        """
        Split ``source`` into chunk files and return their descriptors in order

        Args:
            source: Input stream with its encoding and expected columns
            name_prefix: Chunk file name prefix; a random UUID when blank
            bound: Row or byte bound per chunk
            transform: Optional per-row transform; also rewrites the header
            cancel_event: Checked between rows

        Returns:
            Sealed chunks, ordered by sequence number
        """
        prefix = name_prefix if name_prefix and name_prefix.strip() else str(uuid.uuid4())
        bound = bound or RowBound(DEFAULT_MAX_ROWS)
        start_time = time.time()
        chunks: List[Chunk] = []

        with LineReader(
            source.stream,
            encoding=source.encoding,
            detect_encoding=source.detect_encoding,
            leave_open=source.leave_open,
            name=prefix,
        ) as reader:
            header = reader.read_header()
            if header is None:
                logger.info("Empty input, nothing to split", name_prefix=prefix)
                return chunks

            output_header = self._output_header(header, source, name_prefix, transform)
            os.makedirs(self.directory, exist_ok=True)

            logger.info(
                "Starting CSV split",
                name_prefix=prefix,
                encoding=reader.encoding,
                bound=repr(bound),
                transform=type(transform).__name__ if transform else None,
            )

            writer: Optional[ChunkWriter] = None
            try:
                for line in reader:
                    if cancel_event is not None and cancel_event.is_set():
                        if writer is not None:
                            chunks.append(writer.seal())
                            writer = None
                        logger.warning("Split cancelled", name_prefix=prefix, chunks=len(chunks))
                        raise PipelineCancelled("split", chunks)

                    if writer is not None and bound.is_full(writer):
                        chunks.append(writer.seal())
                        writer = None

                    if writer is None:
                        writer = self._open_chunk(prefix, len(chunks), output_header)

                    if transform is not None:
                        line = transform.transform(line, writer.file_path, writer.row_count, reader.line_number)

                    data = writer.encode_line(line)
                    if bound.overflows(writer, len(data)):
                        chunks.append(writer.seal())
                        writer = self._open_chunk(prefix, len(chunks), output_header)

                    writer.write_encoded(data)
            except Exception as e:
                logger.error(
                    "CSV split aborted",
                    name_prefix=prefix,
                    line_number=reader.line_number,
                    chunk_paths=[chunk.file_path for chunk in chunks]
                    + ([writer.file_path] if writer is not None else []),
                    error=str(e),
                )
                raise
            finally:
                # The open chunk is kept on every exit path, never discarded
                if writer is not None:
                    chunks.append(writer.seal())

        self._log_completion(prefix, chunks, start_time)
        return chunks

    def _output_header(
        self,
        header: str,
        source: SourceStream,
        name_prefix: Optional[str],
        transform: Optional[RowTransformer],
    ) -> str:
        if self.validate_header:
            validator = SchemaValidator(source.expected_columns, self.delimiter)
            columns = validator.validate(header, name_prefix)
        else:
            columns = split_header(header, self.delimiter)

        if transform is None:
            return self.delimiter.join(columns)

        try:
            return self.delimiter.join(transform.transform_columns(columns))
        except ValueError as e:
            raise SchemaError(self.delimiter.join(source.expected_columns), header, name_prefix) from e

    def _open_chunk(self, prefix: str, index: int, header: str) -> ChunkWriter:
        return ChunkWriter(
            self.chunk_path(prefix, index),
            header,
            index,
            encoding=self.output_encoding,
        )

    def _log_completion(self, prefix: str, chunks: List[Chunk], start_time: float) -> None:
        elapsed = time.time() - start_time
        total_rows = sum(chunk.row_count for chunk in chunks)
        logger.info(
            "CSV split completed",
            name_prefix=prefix,
            chunks=len(chunks),
            total_rows=total_rows,
            total_bytes=sum(chunk.byte_size for chunk in chunks),
            processing_time_ms=int(elapsed * 1000),
            throughput_rows_per_sec=total_rows / elapsed if elapsed > 0 else 0,
            memory_rss_mb=psutil.Process().memory_info().rss / 1024 / 1024,
        )
