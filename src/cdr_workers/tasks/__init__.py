"""Celery tasks for the CDR ingestion workers"""

from .ingestion_tasks import (
    ingest_call_details_file,
    query_call_details,
)

__all__ = [
    "ingest_call_details_file",
    "query_call_details",
]
