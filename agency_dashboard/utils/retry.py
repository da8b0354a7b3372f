"""
Retry utilities with exponential backoff for provider probes.

Only transient failures are retried; a rejected credential is final.
"""
import asyncio
import random
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple, Type
from agency_dashboard.connectors.errors import ProviderUnavailable
from agency_dashboard.utils.logger import log


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
        """Mark the operation as successful."""
        self.success = True

    def to_dict(self) -> dict:
        """Convert to dictionary for logging."""
        return {
            "attempts": self.attempts,
            "total_delay_seconds": round(self.total_delay_seconds, 2),
            "success": self.success,
            "last_error": self.last_error,
            "errors": self.errors[:5]  # Cap at 5 errors
        }


DEFAULT_RETRYABLE_EXCEPTIONS: Tuple[Type[Exception], ...] = (
    ProviderUnavailable,
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


async def retry_call(
    func: Callable,
    *args,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    retryable_exceptions: Tuple[Type[Exception], ...] = DEFAULT_RETRYABLE_EXCEPTIONS,
    stats: Optional[RetryStats] = None,
    **kwargs
):
    """
    Await func(*args, **kwargs), retrying retryable failures with backoff.

    The last error is re-raised once attempts are exhausted.
    """
    stats = stats if stats is not None else RetryStats()
    name = getattr(func, "__name__", "operation")
    max_attempts = max(1, max_attempts)

    for attempt in range(1, max_attempts + 1):
        try:
            result = await func(*args, **kwargs)
            stats.record_attempt()
            stats.mark_success()

            if attempt > 1:
                log.info(
                    f"{name} succeeded on attempt {attempt} "
                    f"after {stats.total_delay_seconds:.1f}s total delay"
                )

            return result

        except retryable_exceptions as e:
            if attempt >= max_attempts:
                stats.record_attempt(error=e)
                log.error(f"{name} failed after {attempt} attempts: {e}")
                raise

            delay = calculate_backoff(attempt, base_delay=base_delay, max_delay=max_delay)
            stats.record_attempt(error=e, delay=delay)

            log.warning(
                f"{name} attempt {attempt} failed: {e}. "
                f"Retrying in {delay:.1f}s..."
            )

            await asyncio.sleep(delay)
