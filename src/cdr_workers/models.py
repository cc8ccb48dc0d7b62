"""
Data model shared by the splitter, the ingestion coordinator and the repository
"""
import os
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, BinaryIO, Dict, List, Optional, Tuple

# Columns of an uploaded call detail CSV
CALL_DETAIL_COLUMNS: Tuple[str, ...] = (
    "caller_id",
    "recipient",
    "call_date",
    "end_time",
    "duration",
    "cost",
    "reference",
    "currency",
)

# Columns written to chunk files once call_date and end_time are merged
TRANSFORMED_CALL_DETAIL_COLUMNS: Tuple[str, ...] = (
    "caller_id",
    "recipient",
    "call_end_datetime",
    "duration",
    "cost",
    "reference",
    "currency",
)


@dataclass
class SourceStream:
    """Raw input bytes plus how to decode and validate them.

    The splitter only reads ``stream``; it is left open unless
    ``leave_open`` is False.
    """
    stream: BinaryIO
    encoding: Optional[str] = None
    expected_columns: Tuple[str, ...] = CALL_DETAIL_COLUMNS
    leave_open: bool = True
    detect_encoding: bool = False


@dataclass(frozen=True)
class Chunk:
    """A sealed, header-repeating slice of the input materialized on disk"""
    sequence_number: int
    file_path: str
    row_count: int
    byte_size: int
    header: str

    @property
    def file_name(self) -> str:
        return os.path.basename(self.file_path)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class IngestionTask:
    """One chunk bound for the destination"""
    chunk: Chunk
    dedup_key: str
    destination_table: str
    compress: bool = True


@dataclass(frozen=True)
class IngestReceipt:
    """What the ingestion contract reports for a successful call"""
    dedup_key: str
    attempts: int = 1
    skipped_duplicate: bool = False


@dataclass
class IngestionOutcome:
    """Result of one ingestion task, produced exactly once per started task"""
    task: IngestionTask
    succeeded: bool
    attempts: int = 0
    last_error: Optional[BaseException] = None
    skipped_duplicate: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dedup_key": self.task.dedup_key,
            "file_path": self.task.chunk.file_path,
            "succeeded": self.succeeded,
            "attempts": self.attempts,
            "skipped_duplicate": self.skipped_duplicate,
            "error": str(self.last_error) if self.last_error else None,
        }


@dataclass
class UploadResult:
    """Summary of a split-and-ingest run for one upload"""
    name_prefix: str
    chunks: List[Chunk] = field(default_factory=list)
    outcomes: List[IngestionOutcome] = field(default_factory=list)

    @property
    def total_rows(self) -> int:
        return sum(chunk.row_count for chunk in self.chunks)

    @property
    def total_bytes(self) -> int:
        return sum(chunk.byte_size for chunk in self.chunks)

    @property
    def succeeded(self) -> bool:
        return all(outcome.succeeded for outcome in self.outcomes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name_prefix": self.name_prefix,
            "chunks": len(self.chunks),
            "total_rows": self.total_rows,
            "total_bytes": self.total_bytes,
            "succeeded": self.succeeded,
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
        }


@dataclass
class CallDetail:
    """A persisted call detail record as returned by the query path"""
    reference: str
    caller: Optional[str] = None
    recipient: Optional[str] = None
    call_end_datetime: Optional[datetime] = None
    duration_sec: Optional[int] = None
    cost: Optional[float] = None
    currency: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "CallDetail":
        """Map a destination row (column names as stored) to a record"""
        duration = row.get("duration")
        cost = row.get("cost")
        return cls(
            reference=row.get("reference"),
            caller=row.get("caller_id"),
            recipient=row.get("recipient"),
            call_end_datetime=row.get("call_end_datetime"),
            duration_sec=int(duration) if duration is not None else None,
            cost=float(cost) if cost is not None else None,
            currency=row.get("currency"),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if isinstance(self.call_end_datetime, datetime):
            data["call_end_datetime"] = self.call_end_datetime.isoformat()
        return data
