"""
Buffered, forward-only line reader over a binary CSV stream

Encoding resolution order:
- a byte-order mark at the start of the stream always wins
- otherwise the declared encoding
- otherwise, when sniffing is enabled, chardet's guess over the first buffer
- otherwise UTF-8
"""
import codecs
import io
from typing import BinaryIO, Iterator, Optional

import chardet
import structlog

from ..errors import DecodeError

logger = structlog.get_logger(__name__)

DEFAULT_ENCODING = "utf-8"
DEFAULT_BUFFER_SIZE = 1 << 20

# UTF-32 LE must be tested before UTF-16 LE, they share a prefix
_BYTE_ORDER_MARKS = (
    (codecs.BOM_UTF32_LE, "utf-32"),
    (codecs.BOM_UTF32_BE, "utf-32"),
    (codecs.BOM_UTF8, "utf-8-sig"),
    (codecs.BOM_UTF16_LE, "utf-16"),
    (codecs.BOM_UTF16_BE, "utf-16"),
)


def detect_bom(sample: bytes) -> Optional[str]:
    """Return the codec implied by a leading byte-order mark, if any"""
    for mark, encoding in _BYTE_ORDER_MARKS:
        if sample.startswith(mark):
            return encoding
    return None


def sniff_encoding(sample: bytes, default: str = DEFAULT_ENCODING, min_confidence: float = 0.8) -> str:
    """Guess the encoding of a sample with chardet, falling back to ``default``"""
    if not sample:
        return default

    result = chardet.detect(sample)
    encoding = result.get("encoding")
    confidence = result.get("confidence") or 0.0

    # ASCII samples say nothing about the bytes further down the file
    if not encoding or encoding.lower() == "ascii" or confidence < min_confidence:
        return default

    try:
        return codecs.lookup(encoding).name
    except LookupError:
        logger.warning("Sniffed encoding is unknown, using default", encoding=encoding, default=default)
        return default


class LineReader:
    """Reads a header line and then data lines, without line terminators"""

    def __init__(
        self,
        stream: BinaryIO,
        encoding: Optional[str] = None,
        detect_encoding: bool = False,
        leave_open: bool = True,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        name: Optional[str] = None,
    ):
        self.name = name
        self._leave_open = leave_open
        self._owns_buffer = not hasattr(stream, "peek")
        self._buffer = io.BufferedReader(stream, buffer_size) if self._owns_buffer else stream
        self.line_number = 0

        bom_encoding = detect_bom(self._buffer.peek(4))
        if bom_encoding:
            self.encoding = bom_encoding
        elif encoding:
            self.encoding = encoding
        elif detect_encoding:
            self.encoding = sniff_encoding(self._buffer.peek(buffer_size))
        else:
            self.encoding = DEFAULT_ENCODING

        self._text = io.TextIOWrapper(self._buffer, encoding=self.encoding, newline=None)
        self._closed = False

    def read_header(self) -> Optional[str]:
        """Read the first line; None when the stream is empty"""
        return next(iter(self), None)

    def __iter__(self) -> Iterator[str]:
        while True:
            try:
                line = self._text.readline()
            except UnicodeDecodeError as e:
                logger.warning(
                    "Undecodable input",
                    name=self.name,
                    encoding=self.encoding,
                    line_number=self.line_number + 1,
                    error=str(e),
                )
                raise DecodeError(self.line_number + 1, self.encoding, self.name, e.reason) from e
            if not line:
                return
            self.line_number += 1
            yield line[:-1] if line.endswith("\n") else line

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._leave_open:
            # Detaching releases the wrappers without closing the caller's stream
            self._text.detach()
            if self._owns_buffer:
                self._buffer.detach()
        else:
            self._text.close()

    def __enter__(self) -> "LineReader":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
