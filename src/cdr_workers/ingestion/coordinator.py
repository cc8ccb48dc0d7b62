"""
Parallel dispatch of sealed chunks to the destination

Each chunk is ingested independently, keyed by its dedup key, by a fresh
client obtained from the factory. Concurrency is bounded by
``max_concurrency``; dispatch order carries no meaning.

Failure policy:
- fail-fast (default): after the first failed chunk no further chunk is
  started. Chunks already started run to completion, then
  AggregateIngestionError is raised with every outcome and the tasks that
  never started.
- best-effort (``fail_fast=False``): every chunk is attempted and the
  aggregate error is raised at the end if any failed.

A cancellation event is checked before every dispatch with the same drain
semantics: started chunks finish, the rest never start, PipelineCancelled is
raised.

Retries belong to the client. Chunk files are never deleted here.
"""
import threading
import time
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Deque, Dict, Iterable, List, Optional

import structlog

from ..errors import AggregateIngestionError, IngestionError, PipelineCancelled
from ..models import Chunk, IngestionOutcome, IngestionTask
from .contracts import IngestClientFactory
from .dedup import build_tasks

logger = structlog.get_logger(__name__)


class IngestionCoordinator:
    """Pushes chunks to an ingestion contract with bounded parallelism"""

    def __init__(
        self,
        client_factory: IngestClientFactory,
        destination_table: str,
        compress: bool = True,
        fail_fast: bool = True,
    ):
        self.client_factory = client_factory
        self.destination_table = destination_table
        self.compress = compress
        self.fail_fast = fail_fast

    def dispatch(
        self,
        chunks: Iterable[Chunk],
        max_concurrency: int = 1,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[IngestionOutcome]:
        """
        Ingest every chunk once and return the outcomes in chunk order

        Raises:
            AggregateIngestionError: at least one chunk failed
            PipelineCancelled: ``cancel_event`` was set before all chunks started
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")

        tasks = build_tasks(chunks, self.destination_table, self.compress)
        if not tasks:
            return []

        start_time = time.time()
        logger.info(
            "Starting chunk ingestion",
            chunks=len(tasks),
            destination=self.destination_table,
            max_concurrency=max_concurrency,
            fail_fast=self.fail_fast,
        )

        pending: Deque[IngestionTask] = deque(tasks)
        in_flight: Dict[Future, IngestionTask] = {}
        outcomes: List[IngestionOutcome] = []
        failed = False
        cancelled = False

        with ThreadPoolExecutor(
            max_workers=min(max_concurrency, len(tasks)),
            thread_name_prefix="cdr-ingest",
        ) as executor:
            while pending or in_flight:
                while pending and len(in_flight) < max_concurrency and not cancelled:
                    if failed and self.fail_fast:
                        break
                    if cancel_event is not None and cancel_event.is_set():
                        cancelled = True
                        logger.warning("Ingestion cancelled", not_started=len(pending), in_flight=len(in_flight))
                        break
                    task = pending.popleft()
                    in_flight[executor.submit(self._ingest_one, task)] = task

                if not in_flight:
                    break

                done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in done:
                    del in_flight[future]
                    outcome = future.result()
                    outcomes.append(outcome)
                    if not outcome.succeeded:
                        failed = True

        outcomes.sort(key=lambda outcome: outcome.task.chunk.sequence_number)
        failures = [outcome for outcome in outcomes if not outcome.succeeded]

        logger.info(
            "Chunk ingestion completed",
            chunks=len(tasks),
            succeeded=len(outcomes) - len(failures),
            failed=len(failures),
            not_started=len(pending),
            processing_time_ms=int((time.time() - start_time) * 1000),
        )

        if failures:
            raise AggregateIngestionError(failures, outcomes, list(pending)) from failures[0].last_error
        if cancelled:
            raise PipelineCancelled("ingestion", outcomes)
        return outcomes

    def _ingest_one(self, task: IngestionTask) -> IngestionOutcome:
        log = logger.bind(dedup_key=task.dedup_key, file_path=task.chunk.file_path)
        log.info("Ingesting chunk", rows=task.chunk.row_count, size_bytes=task.chunk.byte_size)

        client = None
        try:
            client = self.client_factory()
            with open(task.chunk.file_path, "rb") as stream:
                receipt = client.ingest(stream, task.dedup_key, task.destination_table, compress=task.compress)
        except IngestionError as e:
            log.error("Chunk ingestion failed", attempts=e.attempts, error=str(e))
            return IngestionOutcome(task=task, succeeded=False, attempts=e.attempts, last_error=e)
        except Exception as e:
            log.error("Chunk ingestion failed", attempts=1, error=str(e))
            return IngestionOutcome(task=task, succeeded=False, attempts=1, last_error=e)
        finally:
            if client is not None:
                client.close()

        if receipt.skipped_duplicate:
            log.info("Chunk already ingested, skipped", attempts=receipt.attempts)
        else:
            log.info("Ingested chunk", attempts=receipt.attempts)
        return IngestionOutcome(
            task=task,
            succeeded=True,
            attempts=receipt.attempts,
            skipped_duplicate=receipt.skipped_duplicate,
        )
