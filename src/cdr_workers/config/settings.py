"""
Configuration settings for the CDR ingestion workers
"""
from typing import Optional, Dict, Any
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Configuration settings for the ingestion workers"""

    # Redis/Celery Configuration
    redis_url: str = "redis://localhost:6379/0"
    celery_broker_url: Optional[str] = None
    celery_result_backend: Optional[str] = None

    # Destination Configuration
    database_url: str = ""
    destination_table: str = "call_details"
    ingestion_tags_table: str = "ingestion_tags"
    input_date_style: str = "DMY"  # Field order of dates in uploads: DMY, MDY or YMD

    # Splitting Configuration
    temp_dir: Optional[str] = None  # System temp dir if None
    ingest_max_lines: int = 10000000  # ~500MB of data
    ingest_max_bytes: Optional[int] = None  # Byte bound wins over line bound when set
    input_encoding: str = "utf-8"
    detect_encoding: bool = False
    validate_header: bool = True
    strict_field_count: bool = False

    # Ingestion Configuration
    ingest_max_concurrency: int = 1
    ingest_max_retries: int = 3
    ingest_retry_base_delay: float = 1.0
    ingest_retry_max_delay: float = 60.0
    ingest_compress: bool = True
    ingest_fail_fast: bool = True
    cleanup_ingested_chunks: bool = False

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    # Environment
    environment: str = "development"

    class Config:
        env_file = ".env"
        env_prefix = "CDR_"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)

        # Set default celery URLs if not provided
        if not self.celery_broker_url:
            self.celery_broker_url = self.redis_url
        if not self.celery_result_backend:
            self.celery_result_backend = self.redis_url

    @property
    def celery_config(self) -> Dict[str, Any]:
        """Get Celery configuration dictionary"""
        return {
            "broker_url": self.celery_broker_url,
            "result_backend": self.celery_result_backend,
            "task_serializer": "json",
            "accept_content": ["json"],
            "result_serializer": "json",
            "timezone": "UTC",
            "enable_utc": True,
            "task_track_started": True,
            "worker_prefetch_multiplier": 1,
            "task_acks_late": True,
            "task_reject_on_worker_lost": True,
            "result_expires": 3600,
            "task_routes": {
                "cdr_workers.tasks.ingest_call_details_file": {"queue": "ingestion"},
                "cdr_workers.tasks.query_call_details": {"queue": "queries"},
            }
        }

    @property
    def splitter_config(self) -> Dict[str, Any]:
        """Get splitting configuration dictionary"""
        return {
            "temp_dir": self.temp_dir,
            "max_lines": self.ingest_max_lines,
            "max_bytes": self.ingest_max_bytes,
            "encoding": self.input_encoding,
            "detect_encoding": self.detect_encoding,
            "validate_header": self.validate_header,
            "strict_field_count": self.strict_field_count,
        }

    @property
    def ingestion_config(self) -> Dict[str, Any]:
        """Get ingestion configuration dictionary"""
        return {
            "destination_table": self.destination_table,
            "max_concurrency": self.ingest_max_concurrency,
            "max_retries": self.ingest_max_retries,
            "compress": self.ingest_compress,
            "fail_fast": self.ingest_fail_fast,
            "cleanup": self.cleanup_ingested_chunks,
            "date_style": self.input_date_style,
            "retry": {
                "base_delay": self.ingest_retry_base_delay,
                "max_delay": self.ingest_retry_max_delay,
            },
        }


# Global settings instance
settings = Settings()
