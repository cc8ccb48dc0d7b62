"""
Writer for a single bounded chunk file
"""
from typing import Optional

import structlog

from ..models import Chunk

logger = structlog.get_logger(__name__)

DEFAULT_WRITE_BUFFER = 81920


class ChunkWriter:
    """Owns one open chunk file until it is sealed.

    The header is written on creation. ``row_count`` counts data rows only;
    ``byte_size`` is the exact encoded size of everything written, header
    included.
    """

    def __init__(
        self,
        file_path: str,
        header: str,
        sequence_number: int,
        encoding: str = "utf-8",
        newline: str = "\n",
        buffer_size: int = DEFAULT_WRITE_BUFFER,
    ):
        if "".encode(encoding):
            raise ValueError(f"Encoding {encoding!r} writes a byte-order mark and cannot be sized per line")

        self.file_path = file_path
        self.header = header
        self.sequence_number = sequence_number
        self.encoding = encoding
        self.newline = newline
        self.row_count = 0
        self.byte_size = 0
        self._chunk: Optional[Chunk] = None

        self._file = open(file_path, "wb", buffering=buffer_size)
        try:
            self._write(self.encode_line(header))
        except BaseException:
            self._file.close()
            raise

        logger.info("Creating csv chunk file", file_path=file_path, sequence_number=sequence_number)

    @property
    def sealed(self) -> bool:
        return self._chunk is not None

    def encode_line(self, line: str) -> bytes:
        return (line + self.newline).encode(self.encoding)

    def _write(self, data: bytes) -> None:
        if self.sealed:
            raise ValueError(f"Chunk {self.file_path} is already sealed")
        self._file.write(data)
        self.byte_size += len(data)

    def write_encoded(self, data: bytes) -> None:
        """Append one already-encoded data row"""
        self._write(data)
        self.row_count += 1

    def write_row(self, line: str) -> None:
        self.write_encoded(self.encode_line(line))

    def seal(self) -> Chunk:
        """Flush and close the file; the returned descriptor is immutable"""
        if self._chunk is None:
            try:
                self._file.flush()
            finally:
                self._file.close()
            self._chunk = Chunk(
                sequence_number=self.sequence_number,
                file_path=self.file_path,
                row_count=self.row_count,
                byte_size=self.byte_size,
                header=self.header,
            )
        return self._chunk

    def __enter__(self) -> "ChunkWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.seal()
