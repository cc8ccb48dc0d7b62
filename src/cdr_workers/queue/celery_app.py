"""
Celery application configuration for the CDR ingestion workers
"""
import structlog
from celery import Celery
from celery.signals import setup_logging, worker_ready, worker_shutdown

from ..config import settings
from ..logging_config import configure_logging

logger = structlog.get_logger(__name__)


@setup_logging.connect
def config_loggers(*args, **kwargs):
    """Configure structured logging for Celery"""
    configure_logging(settings.log_level, settings.log_json)


@worker_ready.connect
def on_worker_ready(sender=None, **kwargs):
    logger.info(
        "Ingestion worker ready",
        hostname=getattr(sender, "hostname", None),
        environment=settings.environment,
        destination=settings.destination_table,
        max_concurrency=settings.ingest_max_concurrency,
    )


@worker_shutdown.connect
def on_worker_shutdown(sender=None, **kwargs):
    logger.info("Ingestion worker shutting down", hostname=getattr(sender, "hostname", None))


# Create Celery app instance
celery_app = Celery(
    "cdr_workers",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["cdr_workers.tasks.ingestion_tasks"],
)

celery_app.conf.update(settings.celery_config)
