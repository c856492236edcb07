"""
Retry with exponential backoff for store writes.

Checkpoint writes, answer upserts and score persistence all go through
``with_retry``. Delays grow as ``base_delay * exponential_base ** attempt``,
are capped at ``max_delay`` and carry +/-25% jitter so concurrent writers
do not retry in lockstep.

Usage:
    from tryout.core.retry import RetryConfig, with_retry

    config = RetryConfig.for_persistence()
    with_retry(lambda: store.save_checkpoint(...), "save checkpoint", config)
"""
import logging
import random
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple, Type, TypeVar

from sqlalchemy.exc import OperationalError

from tryout.core.config import settings
from tryout.core.exceptions import PersistenceFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Lower bound for any computed delay (seconds)
MIN_RETRY_DELAY = 0.05

# Jitter applied to every delay, as a fraction of the delay
JITTER_FRACTION = 0.25

# Exceptions treated as transient by default
DEFAULT_RETRYABLE: Tuple[Type[BaseException], ...] = (
    PersistenceFailure,
    OperationalError,
    ConnectionError,
    TimeoutError,
)


@dataclass
class RetryConfig:
    """Backoff parameters for a retried operation."""

    max_retries: int = 3
    base_delay: float = 0.5
    max_delay: float = 10.0
    exponential_base: float = 2.0

    @classmethod
    def for_persistence(cls) -> "RetryConfig":
        """Retry policy for checkpoint and answer writes."""
        return cls(
            max_retries=settings.PERSISTENCE_MAX_RETRIES,
            base_delay=settings.RETRY_BASE_DELAY_SECONDS,
            max_delay=settings.RETRY_MAX_DELAY_SECONDS,
            exponential_base=settings.RETRY_EXPONENTIAL_BASE,
        )

    @classmethod
    def for_submission(cls) -> "RetryConfig":
        """Retry policy for score persistence, which must not be lost."""
        return cls(
            max_retries=settings.SUBMISSION_MAX_RETRIES,
            base_delay=settings.RETRY_BASE_DELAY_SECONDS,
            max_delay=settings.RETRY_MAX_DELAY_SECONDS,
            exponential_base=settings.RETRY_EXPONENTIAL_BASE,
        )


@dataclass
class RetryMetrics:
    """Thread-safe counters describing retry behaviour per operation."""

    total_retries: int = 0
    successful_retries: int = 0
    exhausted_retries: int = 0
    retries_by_operation: Dict[str, int] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record_retry(self, operation_name: str, success: bool) -> None:
        with self._lock:
            self.total_retries += 1
            if success:
                self.successful_retries += 1
            self.retries_by_operation[operation_name] = (
                self.retries_by_operation.get(operation_name, 0) + 1
            )

    def record_exhausted(self, operation_name: str) -> None:
        with self._lock:
            self.exhausted_retries += 1
            self.retries_by_operation.setdefault(operation_name, 0)

    def get_summary(self) -> Dict[str, Any]:
        with self._lock:
            success_rate = (
                self.successful_retries / self.total_retries
                if self.total_retries
                else 0.0
            )
            return {
                "total_retries": self.total_retries,
                "successful_retries": self.successful_retries,
                "exhausted_retries": self.exhausted_retries,
                "success_rate": success_rate,
                "retries_by_operation": dict(self.retries_by_operation),
            }


_retry_metrics = RetryMetrics()


def get_retry_metrics() -> RetryMetrics:
    """Return the process-wide retry metrics."""
    return _retry_metrics


def reset_retry_metrics() -> None:
    """Reset the process-wide retry metrics (used by tests)."""
    global _retry_metrics
    _retry_metrics = RetryMetrics()


def calculate_backoff_delay(
    attempt: int,
    base_delay: float,
    max_delay: float,
    exponential_base: float,
) -> float:
    """
    Calculate the delay before the next attempt.

    Args:
        attempt: Zero-based attempt number that just failed
        base_delay: Delay after the first failure, in seconds
        max_delay: Upper bound before jitter, in seconds
        exponential_base: Growth factor per attempt

    Returns:
        Delay in seconds, never below MIN_RETRY_DELAY
    """
    delay = min(base_delay * (exponential_base**attempt), max_delay)
    jitter = delay * JITTER_FRACTION * (2 * random.random() - 1)
    return max(MIN_RETRY_DELAY, delay + jitter)


def with_retry(
    operation: Callable[[], T],
    operation_name: str,
    config: Optional[RetryConfig] = None,
    *,
    retry_on: Tuple[Type[BaseException], ...] = DEFAULT_RETRYABLE,
) -> T:
    """
    Run ``operation`` and retry transient failures with exponential backoff.

    Args:
        operation: Zero-argument callable to execute
        operation_name: Human-readable name used in logs and metrics
        config: Backoff parameters (defaults to RetryConfig())
        retry_on: Exception types considered transient

    Returns:
        The operation's return value

    Raises:
        PersistenceFailure: When every attempt failed. The last error is
            attached as ``original_error``.
        Exception: Any non-retryable exception propagates unchanged.
    """
    config = config or RetryConfig()
    last_error: Optional[BaseException] = None

    for attempt in range(config.max_retries + 1):
        try:
            result = operation()
        except retry_on as e:
            last_error = e
            if attempt > 0:
                _retry_metrics.record_retry(operation_name, success=False)
            if attempt >= config.max_retries:
                break
            delay = calculate_backoff_delay(
                attempt,
                config.base_delay,
                config.max_delay,
                config.exponential_base,
            )
            logger.warning(
                f"{operation_name} failed (attempt {attempt + 1}/"
                f"{config.max_retries + 1}), retrying in {delay:.2f}s: {e}"
            )
            time.sleep(delay)
            continue

        if attempt > 0:
            _retry_metrics.record_retry(operation_name, success=True)
            logger.info(f"{operation_name} succeeded after {attempt} retries")
        return result

    _retry_metrics.record_exhausted(operation_name)
    logger.error(
        f"{operation_name} failed after {config.max_retries + 1} attempts: {last_error}"
    )
    if isinstance(last_error, PersistenceFailure):
        raise last_error
    raise PersistenceFailure(
        operation_name,
        last_error if isinstance(last_error, Exception) else None,
    )
