"""
Narrow contracts for the external destination

The coordinator only needs ``ingest``; the query path only needs
``get_by_caller``. Anything implementing these can stand in for the
PostgreSQL repository, including test fakes.
"""
from typing import BinaryIO, Callable, List, Optional, Protocol

from ..models import CallDetail, IngestReceipt


class IngestClient(Protocol):
    """Ingests a CSV byte stream if its dedup key has not been seen yet.

    Implementations own their bounded retry and raise IngestionError once it
    is exhausted.
    """

    def ingest(
        self,
        stream: BinaryIO,
        dedup_key: str,
        destination: str,
        compress: bool = False,
    ) -> IngestReceipt:
        ...

    def close(self) -> None:
        ...


class QueryClient(Protocol):
    """Reads persisted call details"""

    def get_by_caller(self, caller: Optional[str] = None, take: Optional[int] = None) -> List[CallDetail]:
        ...


IngestClientFactory = Callable[[], IngestClient]
