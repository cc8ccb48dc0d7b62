"""Utilities for the CDR ingestion workers"""

from .database import CallDetailRepository, postgres_error_classifier

__all__ = ["CallDetailRepository", "postgres_error_classifier"]
