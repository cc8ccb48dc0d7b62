"""Configuration for the CDR ingestion workers"""

from .settings import Settings, settings

__all__ = ["Settings", "settings"]
