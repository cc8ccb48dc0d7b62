"""
Bounded retry with exponential backoff for destination calls

Transient failures (connection drops, timeouts, deadlocks, throttling) are
retried up to ``max_retries`` times after the first attempt; anything else
fails immediately. Exhaustion surfaces as IngestionError carrying the number
of attempts made.
"""
import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple, Type, TypeVar

import structlog

from ..errors import IngestionError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Retry limits and backoff shape"""
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    jitter: float = 0.1

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must be non-negative")

    def delay_for(self, retry_count: int) -> float:
        """Backoff before retry number ``retry_count`` (0-based)"""
        delay = min(self.base_delay * (2 ** retry_count), self.max_delay)
        if self.jitter and delay > 0:
            delay += delay * self.jitter * random.uniform(-0.5, 0.5)
        return max(delay, 0.0)


class ErrorClassifier:
    """Decides whether a destination failure is worth retrying"""

    DEFAULT_TRANSIENT_TYPES: Tuple[Type[BaseException], ...] = (ConnectionError, TimeoutError)

    transient_patterns = (
        'connection',
        'timeout',
        'timed out',
        'deadlock',
        'too many',
        'rate limit',
        'temporarily unavailable',
    )

    def __init__(self, transient_types: Tuple[Type[BaseException], ...] = ()):
        self.transient_types = self.DEFAULT_TRANSIENT_TYPES + tuple(transient_types)

    def is_transient(self, exc: BaseException) -> bool:
        if isinstance(exc, self.transient_types):
            return True
        message = str(exc).lower()
        return any(pattern in message for pattern in self.transient_patterns)


class RetryManager:
    """Runs an operation under a RetryPolicy"""

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        classifier: Optional[ErrorClassifier] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.policy = policy or RetryPolicy()
        self.classifier = classifier or ErrorClassifier()
        self._sleep = sleep

    def execute(self, key: str, operation: Callable[..., T], *args: Any, **kwargs: Any) -> Tuple[T, int]:
        """Return ``(result, attempts)`` or raise IngestionError for ``key``"""
        attempts = 0
        while True:
            attempts += 1
            try:
                return operation(*args, **kwargs), attempts
            except Exception as e:
                retry_count = attempts - 1
                if not self.classifier.is_transient(e):
                    logger.error("Operation failed with non-transient error", key=key, attempts=attempts, error=str(e))
                    raise IngestionError(key, attempts, e) from e
                if retry_count >= self.policy.max_retries:
                    logger.error("Retries exhausted", key=key, attempts=attempts, error=str(e))
                    raise IngestionError(key, attempts, e) from e

                delay = self.policy.delay_for(retry_count)
                logger.warning(
                    "Operation failed, retrying",
                    key=key,
                    attempt=attempts,
                    max_retries=self.policy.max_retries,
                    retry_delay=delay,
                    error=str(e),
                )
                self._sleep(delay)
