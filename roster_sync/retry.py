"""
Retry utilities for the roster and directory fetches.

Directory writes are never retried within a run: a failed write is recorded
and the run moves on to the next intent.
"""

import time
import logging
from typing import Callable, Any, Tuple, Type, Optional

logger = logging.getLogger(__name__)

# Substrings of error messages that carry no status code but are worth another attempt
TRANSIENT_MESSAGES = (
    'timeout',
    'timed out',
    'connection reset',
    'connection refused',
    'connection error',
    'network is unreachable',
    'temporary failure',
)


class MaxRetriesExceeded(Exception):
    """Raised when every fetch attempt failed."""

    def __init__(self, attempts: int, last_exception: Exception):
        self.attempts = attempts
        self.last_exception = last_exception
        super().__init__(f"Failed after {attempts} attempts: {last_exception}")


def retry_call(
    func: Callable[[], Any],
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 1.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    retry_if: Optional[Callable[[Exception], bool]] = None,
    on_retry: Optional[Callable[[int, Exception], None]] = None
) -> Any:
    """
    Call a fetch function until it succeeds or the attempts run out.

    Args:
        func: Zero-argument callable, usually a bound fetch method
        max_attempts: Total number of calls allowed
        delay: Seconds to wait before the second attempt
        backoff: Multiplier applied to the delay after each wait
        exceptions: Exception types that count as a failed attempt
        retry_if: Predicate; a failure it rejects is re-raised at once
        on_retry: Called with (attempt number, exception) before each wait

    Returns:
        Whatever func returns

    Raises:
        MaxRetriesExceeded: If the last allowed attempt failed too
    """
    wait = delay
    last_exception = None

    for attempt in range(1, max_attempts + 1):
        try:
            result = func()
        except exceptions as e:
            if retry_if is not None and not retry_if(e):
                raise
            last_exception = e
            if attempt == max_attempts:
                break
            if on_retry:
                on_retry(attempt, e)
            time.sleep(wait)
            wait *= backoff
            continue

        if attempt > 1:
            logger.info(f"Fetch succeeded on attempt {attempt}")
        return result

    raise MaxRetriesExceeded(max_attempts, last_exception)


def is_retryable_error(exception: Exception) -> bool:
    """
    Decide whether a fetch failure is transient.

    HTTP 429 and 5xx are transient, any other status code is final.
    Failures without a status code are judged by their message.
    """
    if isinstance(exception, (ConnectionError, TimeoutError)):
        return True

    status_code = getattr(exception, 'status_code', None)
    if status_code is not None:
        return status_code == 429 or 500 <= status_code < 600

    message = str(exception).lower()
    return any(pattern in message for pattern in TRANSIENT_MESSAGES)


def create_retry_callback(operation_name: str) -> Callable[[int, Exception], None]:
    """Build an on_retry callback that logs each failed attempt as a warning."""
    def on_retry(attempt: int, exception: Exception):
        logger.warning(f"{operation_name} failed on attempt {attempt}, "
                       f"retrying due to {type(exception).__name__}: {exception}")

    return on_retry
