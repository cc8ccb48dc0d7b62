"""
Error taxonomy for the splitting and ingestion pipeline

Every pipeline failure is surfaced to the caller with enough context to find
the offending chunk and row:
- SchemaError: header does not match the expected columns
- TransformError: a data row cannot be normalized
- DecodeError: input bytes are invalid in the resolved encoding
- IngestionError: the destination rejected a chunk after exhausting retries
- AggregateIngestionError: one or more chunk ingestions failed during dispatch
- PipelineCancelled: a cancellation signal was observed between units of work

Underlying I/O failures are not wrapped; OSError propagates as-is.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorSeverity(Enum):
    """Error severity levels"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories used in logs and task results"""
    SCHEMA_ERROR = "schema_error"
    DATA_QUALITY_ERROR = "data_quality_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"
    CANCELLED = "cancelled"
    UNKNOWN_ERROR = "unknown_error"


class CdrPipelineError(Exception):
    """Base class for pipeline errors carrying structured context"""

    category = ErrorCategory.UNKNOWN_ERROR
    severity = ErrorSeverity.HIGH

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context
        self.created_at = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/task results"""
        return {
            "error_type": type(self).__name__,
            "category": self.category.value,
            "severity": self.severity.value,
            "message": self.message,
            "context": self.context,
            "created_at": self.created_at.isoformat(),
        }


class SchemaError(CdrPipelineError):
    """Input header does not match the expected schema"""

    category = ErrorCategory.SCHEMA_ERROR
    severity = ErrorSeverity.CRITICAL

    def __init__(self, expected: str, actual: str, name_prefix: Optional[str] = None):
        super().__init__(
            f"Invalid format of input file. File prefix: {name_prefix}, "
            f"CSV header: {actual}. Expected: {expected}",
            expected=expected,
            actual=actual,
            name_prefix=name_prefix,
        )
        self.expected = expected
        self.actual = actual
        self.name_prefix = name_prefix


class TransformError(CdrPipelineError):
    """A data row could not be normalized"""

    category = ErrorCategory.DATA_QUALITY_ERROR
    severity = ErrorSeverity.HIGH

    def __init__(
        self,
        line: str,
        file_path: Optional[str],
        row_index: int,
        source_line: Optional[int] = None,
        reason: Optional[str] = None,
    ):
        message = f"Error transforming line: {line} of file:{file_path}, row:{row_index}"
        if source_line is not None:
            message += f", source line:{source_line}"
        if reason:
            message += f" ({reason})"
        super().__init__(
            message,
            line=line,
            file_path=file_path,
            row_index=row_index,
            source_line=source_line,
            reason=reason,
        )
        self.line = line
        self.file_path = file_path
        self.row_index = row_index
        self.source_line = source_line


class DecodeError(CdrPipelineError):
    """Input bytes are not valid in the resolved encoding.

    Text is decoded ahead of the line being read, so ``line_number`` is the
    first line that could not be returned, not necessarily the line holding
    the bad bytes.
    """

    category = ErrorCategory.DATA_QUALITY_ERROR
    severity = ErrorSeverity.HIGH

    def __init__(self, line_number: int, encoding: str, name_prefix: Optional[str] = None, reason: Optional[str] = None):
        super().__init__(
            f"Cannot decode input as {encoding} at or after line {line_number}. "
            f"File prefix: {name_prefix}" + (f" ({reason})" if reason else ""),
            line_number=line_number,
            encoding=encoding,
            name_prefix=name_prefix,
            reason=reason,
        )
        self.line_number = line_number
        self.encoding = encoding
        self.name_prefix = name_prefix


class IngestionError(CdrPipelineError):
    """The destination failed a chunk after all retries"""

    category = ErrorCategory.EXTERNAL_SERVICE_ERROR
    severity = ErrorSeverity.HIGH

    def __init__(self, dedup_key: str, attempts: int, cause: Optional[BaseException] = None):
        super().__init__(
            f"Ingestion of {dedup_key} failed after {attempts} attempt(s): {cause}",
            dedup_key=dedup_key,
            attempts=attempts,
            cause=repr(cause) if cause is not None else None,
        )
        self.dedup_key = dedup_key
        self.attempts = attempts
        self.cause = cause


class AggregateIngestionError(CdrPipelineError):
    """One or more chunk ingestions failed during a dispatch"""

    category = ErrorCategory.EXTERNAL_SERVICE_ERROR
    severity = ErrorSeverity.CRITICAL

    def __init__(self, failures: List[Any], outcomes: List[Any], pending: Optional[List[Any]] = None):
        self.failures = list(failures)
        self.outcomes = list(outcomes)
        self.pending = list(pending or [])
        first = self.failures[0] if self.failures else None
        super().__init__(
            f"{len(self.failures)} of {len(self.outcomes) + len(self.pending)} chunk ingestion(s) failed; "
            f"{len(self.pending)} not started. First failure: {first.last_error if first else None}",
            failed_keys=[outcome.task.dedup_key for outcome in self.failures],
            pending_keys=[task.dedup_key for task in self.pending],
        )

    @property
    def first_error(self) -> Optional[BaseException]:
        return self.failures[0].last_error if self.failures else None


class PipelineCancelled(CdrPipelineError):
    """Cancellation was requested while the pipeline was running"""

    category = ErrorCategory.CANCELLED
    severity = ErrorSeverity.MEDIUM

    def __init__(self, stage: str, completed: Optional[List[Any]] = None):
        self.stage = stage
        self.completed = list(completed or [])
        super().__init__(
            f"Operation cancelled during {stage} after {len(self.completed)} completed item(s)",
            stage=stage,
            completed=len(self.completed),
        )
