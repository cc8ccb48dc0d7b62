"""Pytest configuration and fixtures for the CDR ingestion workers."""

import io
import threading
import time
import uuid
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

import pytest

from cdr_workers.errors import IngestionError
from cdr_workers.models import Chunk, IngestReceipt

INPUT_HEADER = "caller_id,recipient,call_date,end_time,duration,cost,reference,currency"
OUTPUT_HEADER = "caller_id,recipient,call_end_datetime,duration,cost,reference,currency"


def make_row(index: int, caller: Optional[str] = None) -> str:
    """A valid call detail row with a unique reference."""
    return (
        f"{caller or 441215598896},{448000096481 + index},16/08/2016,14:21:33,"
        f"{43 + index % 100},0.{index % 10},{uuid.uuid4().hex.upper()},GBP"
    )


def make_csv(row_count: int, header: str = INPUT_HEADER, newline: str = "\n") -> str:
    """CSV text with a header and ``row_count`` data rows."""
    lines = [header] + [make_row(i) for i in range(row_count)]
    return newline.join(lines) + newline


def read_lines(path: str) -> List[str]:
    with open(path, "r", encoding="utf-8", newline="") as f:
        return f.read().splitlines()


class FakeDestination:
    """In-memory stand-in for the destination with ingest-if-not-exists semantics."""

    def __init__(self, fail_keys: Iterable[str] = (), delay: float = 0.0):
        self.fail_keys = set(fail_keys)
        self.delay = delay
        self.ingested: Dict[str, bytes] = {}
        self.calls: List[str] = []
        self.clients_created = 0
        self.clients_closed = 0
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def client(self) -> "FakeIngestClient":
        with self._lock:
            self.clients_created += 1
        return FakeIngestClient(self)

    @property
    def rows(self) -> int:
        return sum(len(payload.splitlines()) - 1 for payload in self.ingested.values())


class FakeIngestClient:
    def __init__(self, destination: FakeDestination):
        self.destination = destination

    def ingest(self, stream, dedup_key: str, destination: str, compress: bool = False) -> IngestReceipt:
        dest = self.destination
        with dest._lock:
            dest.calls.append(dedup_key)
            dest.active += 1
            dest.max_active = max(dest.max_active, dest.active)
        try:
            if dest.delay:
                time.sleep(dest.delay)
            if dedup_key in dest.fail_keys:
                raise IngestionError(dedup_key, 4, ConnectionError("connection reset"))
            payload = stream.read()
            with dest._lock:
                if dedup_key in dest.ingested:
                    return IngestReceipt(dedup_key=dedup_key, attempts=1, skipped_duplicate=True)
                dest.ingested[dedup_key] = payload
            return IngestReceipt(dedup_key=dedup_key, attempts=1)
        finally:
            with dest._lock:
                dest.active -= 1

    def close(self) -> None:
        with self.destination._lock:
            self.destination.clients_closed += 1


@pytest.fixture
def csv_bytes() -> Callable[..., bytes]:
    """Build encoded CSV input."""
    def _build(row_count: int, header: str = INPUT_HEADER, encoding: str = "utf-8", newline: str = "\n") -> bytes:
        return make_csv(row_count, header, newline).encode(encoding)
    return _build


@pytest.fixture
def csv_file(tmp_path: Path) -> Callable[..., Path]:
    """Write a CSV upload to disk and return its path."""
    def _write(row_count: int, name: str = "calls.csv", header: str = INPUT_HEADER) -> Path:
        path = tmp_path / name
        path.write_text(make_csv(row_count, header), encoding="utf-8")
        return path
    return _write


@pytest.fixture
def chunk_dir(tmp_path: Path) -> Path:
    path = tmp_path / "chunks"
    path.mkdir()
    return path


@pytest.fixture
def make_chunks(chunk_dir: Path) -> Callable[..., List[Chunk]]:
    """Chunk files with a couple of rows each, named like the splitter names them."""
    def _make(count: int, prefix: str = "upload") -> List[Chunk]:
        chunks = []
        for index in range(count):
            path = chunk_dir / f"{prefix}_{index}.csv"
            content = "\n".join([OUTPUT_HEADER, make_row(index), make_row(index + 1)]) + "\n"
            path.write_bytes(content.encode("utf-8"))
            chunks.append(Chunk(index, str(path), 2, path.stat().st_size, OUTPUT_HEADER))
        return chunks
    return _make


@pytest.fixture
def destination() -> FakeDestination:
    return FakeDestination()


@pytest.fixture
def source_stream():
    """Wrap bytes in a stream the way an upload arrives."""
    def _wrap(data: bytes) -> io.BytesIO:
        return io.BytesIO(data)
    return _wrap
