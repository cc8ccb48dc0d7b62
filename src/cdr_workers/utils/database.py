"""
Database utilities: PostgreSQL destination for call detail chunks

Implements the ingestion contract ("ingest if this dedup key has not been
seen") and the thin query path. Deduplication uses a tag table: the tag row
and the COPY of the chunk commit in one transaction, so a chunk is either
fully ingested under its key or not at all.
"""
from contextlib import contextmanager
from typing import Any, BinaryIO, Callable, Dict, List, Optional

import psycopg2
from psycopg2 import sql
from psycopg2.extras import RealDictCursor
import structlog

from ..config import Settings
from ..ingestion.dedup import provenance_tag
from ..ingestion.retry import ErrorClassifier, RetryManager, RetryPolicy
from ..models import CallDetail, IngestReceipt, TRANSFORMED_CALL_DETAIL_COLUMNS

logger = structlog.get_logger(__name__)

CALL_DETAILS_DDL = """
CREATE TABLE IF NOT EXISTS {table} (
    caller_id TEXT,
    recipient TEXT,
    call_end_datetime TIMESTAMP,
    duration INTEGER,
    cost DOUBLE PRECISION,
    reference TEXT,
    currency TEXT
)
"""

INGESTION_TAGS_DDL = """
CREATE TABLE IF NOT EXISTS {table} (
    tag TEXT PRIMARY KEY,
    destination_table TEXT NOT NULL,
    compressed BOOLEAN NOT NULL DEFAULT FALSE,
    provenance TEXT,
    ingested_at TIMESTAMPTZ NOT NULL DEFAULT now()
)
"""


DATE_STYLES = ("DMY", "MDY", "YMD")


def postgres_error_classifier() -> ErrorClassifier:
    """Connection-level psycopg2 failures are transient; data errors are not"""
    return ErrorClassifier(transient_types=(psycopg2.OperationalError, psycopg2.InterfaceError))


class CallDetailRepository:
    """Ingests chunk streams into PostgreSQL and reads call details back.

    Holds no open connection: each call opens and closes its own, so an
    instance is cheap to create per ingestion task.
    """

    def __init__(
        self,
        database_url: str,
        table: str = "call_details",
        tags_table: str = "ingestion_tags",
        retry_manager: Optional[RetryManager] = None,
        connect: Callable[..., Any] = psycopg2.connect,
        date_style: str = "DMY",
    ):
        if date_style.upper() not in DATE_STYLES:
            raise ValueError(f"date_style must be one of {', '.join(DATE_STYLES)}, got {date_style!r}")
        self.database_url = database_url
        self.date_style = date_style.upper()
        self.table = table
        self.tags_table = tags_table
        self.retry_manager = retry_manager or RetryManager(classifier=postgres_error_classifier())
        self._connect = connect

    @classmethod
    def from_settings(cls, settings: Settings) -> "CallDetailRepository":
        retry_config = settings.ingestion_config["retry"]
        return cls(
            settings.database_url,
            table=settings.destination_table,
            tags_table=settings.ingestion_tags_table,
            retry_manager=RetryManager(
                RetryPolicy(
                    max_retries=settings.ingest_max_retries,
                    base_delay=retry_config["base_delay"],
                    max_delay=retry_config["max_delay"],
                ),
                classifier=postgres_error_classifier(),
            ),
            date_style=settings.input_date_style,
        )

    @contextmanager
    def get_connection(self):
        """Get PostgreSQL connection using context manager"""
        conn = None
        try:
            conn = self._connect(self.database_url, cursor_factory=RealDictCursor)
            conn.autocommit = False
            yield conn
        except Exception as e:
            if conn:
                conn.rollback()
            logger.error("Database connection error", error=str(e))
            raise
        finally:
            if conn:
                conn.close()

    def ensure_schema(self) -> None:
        """Create the call details and ingestion tag tables if missing"""
        with self.get_connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute(sql.SQL(CALL_DETAILS_DDL).format(table=sql.Identifier(self.table)))
                cursor.execute(sql.SQL(INGESTION_TAGS_DDL).format(table=sql.Identifier(self.tags_table)))
            conn.commit()
        logger.info("Database schema ensured", table=self.table, tags_table=self.tags_table)

    def ingest(
        self,
        stream: BinaryIO,
        dedup_key: str,
        destination: str,
        compress: bool = False,
    ) -> IngestReceipt:
        """Ingest a chunk stream unless ``dedup_key`` was already ingested"""
        logger.info("Ingesting file", dedup_key=dedup_key, destination=destination)

        ingested, attempts = self.retry_manager.execute(
            dedup_key, self._ingest_once, stream, dedup_key, destination, compress
        )

        if ingested:
            logger.info("Ingested file", dedup_key=dedup_key, attempts=attempts)
        else:
            logger.info("File already ingested under this tag", dedup_key=dedup_key, attempts=attempts)
        return IngestReceipt(dedup_key=dedup_key, attempts=attempts, skipped_duplicate=not ingested)

    def _ingest_once(self, stream: BinaryIO, dedup_key: str, destination: str, compress: bool) -> bool:
        # Every attempt sends the whole chunk again
        stream.seek(0)

        claim_tag = sql.SQL(
            "INSERT INTO {} (tag, destination_table, compressed, provenance) "
            "VALUES (%s, %s, %s, %s) ON CONFLICT (tag) DO NOTHING RETURNING tag"
        ).format(sql.Identifier(self.tags_table))

        copy_rows = sql.SQL("COPY {} ({}) FROM STDIN WITH (FORMAT csv, HEADER true)").format(
            sql.Identifier(destination),
            sql.SQL(", ").join(sql.Identifier(column) for column in TRANSFORMED_CALL_DETAIL_COLUMNS),
        )

        # Scoped to the ingest transaction
        set_date_style = sql.SQL("SET LOCAL datestyle = {}").format(sql.Literal(f"ISO, {self.date_style}"))

        with self.get_connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute(set_date_style)
                cursor.execute(claim_tag, (dedup_key, destination, compress, provenance_tag()))
                if cursor.fetchone() is None:
                    conn.rollback()
                    return False
                cursor.copy_expert(copy_rows, stream)
            conn.commit()
        return True

    def get_by_caller(self, caller: Optional[str] = None, take: Optional[int] = None) -> List[CallDetail]:
        """Call details for ``caller`` (all callers when None), at most ``take`` rows"""
        if take is not None and take < 0:
            raise ValueError("take must be non-negative")

        query = sql.SQL("SELECT {} FROM {}").format(
            sql.SQL(", ").join(sql.Identifier(column) for column in TRANSFORMED_CALL_DETAIL_COLUMNS),
            sql.Identifier(self.table),
        )
        params: List[Any] = []
        if caller is not None:
            query += sql.SQL(" WHERE caller_id = %s")
            params.append(str(caller))
        if take is not None:
            query += sql.SQL(" LIMIT %s")
            params.append(int(take))

        with self.get_connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute(query, params or None)
                rows: List[Dict[str, Any]] = cursor.fetchall()

        logger.info("Queried call details", caller=caller, take=take, rows=len(rows))
        return [CallDetail.from_row(dict(row)) for row in rows]

    def close(self) -> None:
        """Connections are per call; nothing to release"""
