"""
Celery tasks for the call detail ingestion pipeline

- ingest_call_details_file: split a stored upload and ingest every chunk
- query_call_details: read call details back for a caller
"""
import time
from typing import Any, Dict, Optional

import structlog
from celery import Task

from ..config import settings
from ..errors import CdrPipelineError
from ..ingestion import CallDetailsUploader
from ..queue.celery_app import celery_app
from ..utils.database import CallDetailRepository

logger = structlog.get_logger(__name__)


def create_repository() -> CallDetailRepository:
    """A short-lived destination client; one is created per chunk"""
    return CallDetailRepository.from_settings(settings)


class BaseIngestionTask(Task):
    """Base class for ingestion tasks with common failure logging"""

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        logger.error(
            "Task failed",
            task_id=task_id,
            task_name=self.name,
            exception=str(exc),
            args=args,
            kwargs=kwargs
        )

    def on_success(self, retval, task_id, args, kwargs):
        logger.info(
            "Task completed successfully",
            task_id=task_id,
            task_name=self.name
        )


@celery_app.task(bind=True, base=BaseIngestionTask, name="cdr_workers.tasks.ingest_call_details_file")
def ingest_call_details_file(self, file_path: str, file_name: Optional[str] = None) -> Dict[str, Any]:
    """
    Split the upload stored at ``file_path`` into chunks and ingest them

    Pipeline errors (bad header, bad row, failed chunks) are reported in the
    result with their context; anything else fails the task.
    """
    start_time = time.time()
    file_name = file_name or file_path

    logger.info("Starting call details ingestion", task_id=self.request.id, file_path=file_path, file_name=file_name)

    uploader = CallDetailsUploader.from_settings(settings, create_repository)
    try:
        with open(file_path, "rb") as stream:
            result = uploader.upload(stream, file_name)
    except CdrPipelineError as e:
        logger.error("Call details ingestion failed", task_id=self.request.id, file_name=file_name, error=str(e))
        return {"status": "failed", "file_name": file_name, "error": e.to_dict()}

    summary = result.to_dict()
    summary["status"] = "completed"
    summary["processing_time_ms"] = int((time.time() - start_time) * 1000)
    return summary


@celery_app.task(bind=True, base=BaseIngestionTask, name="cdr_workers.tasks.query_call_details")
def query_call_details(self, caller: Optional[str] = None, take: Optional[int] = None) -> Dict[str, Any]:
    """Return call details for ``caller`` as JSON-serialisable rows"""
    records = create_repository().get_by_caller(caller, take)
    return {
        "caller": caller,
        "take": take,
        "count": len(records),
        "records": [record.to_dict() for record in records],
    }
