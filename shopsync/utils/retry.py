"""
Retry utilities with exponential backoff for marketplace API calls.

Only transient failures are retried. Expired credentials and rejected
requests surface immediately.
"""
import asyncio
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Tuple, Type, TypeVar

from shopsync.utils.errors import AuthExpiredError, TransientPlatformError, ValidationError
from shopsync.utils.logger import log

T = TypeVar("T")


@dataclass
class RetryStats:
    """Tracks retry statistics for a single operation."""
    attempts: int = 0
    total_delay_seconds: float = 0.0
    last_error: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    success: bool = False

    def record_attempt(self, error: Optional[Exception] = None, delay: float = 0.0):
        """Record a retry attempt."""
        self.attempts += 1
        self.total_delay_seconds += delay
        if error:
            error_str = f"{type(error).__name__}: {str(error)}"
            self.last_error = error_str
            self.errors.append(error_str)

    def mark_success(self):
        self.success = True

    @property
    def retries(self) -> int:
        return max(self.attempts - 1, 0)

    def to_dict(self) -> dict:
        """Convert to dictionary for logging/storage."""
        return {
            "attempts": self.attempts,
            "total_delay_seconds": round(self.total_delay_seconds, 2),
            "success": self.success,
            "last_error": self.last_error,
            "errors": self.errors[:5]  # Cap at 5 errors
        }


# Default retryable exceptions (network/API errors)
DEFAULT_RETRYABLE_EXCEPTIONS: Tuple[Type[Exception], ...] = (
    TransientPlatformError,
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
)


def calculate_backoff(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True
) -> float:
    """
    Calculate delay for exponential backoff.

    Args:
        attempt: Current attempt number (1-indexed)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap
        exponential_base: Base for exponential calculation
        jitter: Add randomness to prevent thundering herd

    Returns:
        Delay in seconds
    """
    delay = base_delay * (exponential_base ** (attempt - 1))
    delay = min(delay, max_delay)

    # Add jitter (0-25% of delay)
    if jitter:
        delay += delay * random.uniform(0, 0.25)

    return delay


def is_retryable_error(
    error: Exception,
    retryable_exceptions: Tuple[Type[Exception], ...] = DEFAULT_RETRYABLE_EXCEPTIONS,
) -> bool:
    """
    Check if an error is retryable.

    Auth and validation failures are never retried, whatever their message says.
    """
    if isinstance(error, (AuthExpiredError, ValidationError)):
        return False
    return isinstance(error, retryable_exceptions)


async def retry_operation(
    operation: Callable[[], Awaitable[T]],
    operation_name: str = "operation",
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    stats: Optional[RetryStats] = None,
) -> T:
    """
    Await ``operation()`` until it succeeds, fails permanently, or attempts run out.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        operation_name: Name for logging
        max_attempts: Maximum number of attempts
        base_delay: Initial delay between retries
        max_delay: Maximum delay cap
        stats: RetryStats to record into (mutated in place)
    """
    stats = stats if stats is not None else RetryStats()

    for attempt in range(1, max_attempts + 1):
        try:
            result = await operation()
            stats.record_attempt()
            stats.mark_success()
            if attempt > 1:
                log.info(
                    f"{operation_name} succeeded on attempt {attempt} "
                    f"after {stats.total_delay_seconds:.1f}s total delay"
                )
            return result

        except Exception as e:
            if attempt >= max_attempts or not is_retryable_error(e):
                stats.record_attempt(error=e)
                raise

            delay = calculate_backoff(attempt, base_delay=base_delay, max_delay=max_delay)
            stats.record_attempt(error=e, delay=delay)

            log.warning(
                f"{operation_name} attempt {attempt} failed: {e}. "
                f"Retrying in {delay:.1f}s..."
            )

            await asyncio.sleep(delay)

    raise RuntimeError("Retry exhausted")
