"""
Retry utilities for handling transient failures.

Connectors never retry on their own; callers such as the sync orchestrator
decide whether a failed operation is worth another attempt. This module
provides the helpers they use to do so.
"""

import time
import logging
import functools
from typing import Callable, Any, Dict, Tuple, Type, Optional

from sqlalchemy.exc import DisconnectionError

from sql_user_sync.errors import AlreadyExistsError, BackendError, driver_error_code

logger = logging.getLogger(__name__)

# Lock wait timeout, deadlock, can't connect, server gone away, lost connection
TRANSIENT_ERROR_CODES = frozenset({1205, 1213, 2003, 2006, 2013})


class MaxRetriesExceeded(Exception):
    """Raised when maximum retry attempts are exceeded."""

    def __init__(self, attempts: int, last_exception: Exception):
        self.attempts = attempts
        self.last_exception = last_exception
        super().__init__(f"Failed after {attempts} attempts: {last_exception}")


def retry(
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 1.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    should_retry: Optional[Callable[[Exception], bool]] = None,
    on_retry: Optional[Callable[[int, Exception], None]] = None
):
    """
    Decorator to retry function calls on specified exceptions.

    Args:
        max_attempts: Maximum number of attempts (including initial call)
        delay: Initial delay between retries in seconds
        backoff: Multiplier for delay after each retry (exponential backoff)
        exceptions: Tuple of exception types to catch and retry on
        should_retry: Optional predicate; exceptions it rejects are raised at once
        on_retry: Optional callback function called on each retry

    Returns:
        Decorated function
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            return retry_call(
                func, args, kwargs,
                max_attempts=max_attempts,
                delay=delay,
                backoff=backoff,
                exceptions=exceptions,
                should_retry=should_retry,
                on_retry=on_retry
            )
        return wrapper
    return decorator


def retry_call(
    func: Callable,
    args: tuple = (),
    kwargs: dict = None,
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 1.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    should_retry: Optional[Callable[[Exception], bool]] = None,
    on_retry: Optional[Callable[[int, Exception], None]] = None
) -> Any:
    """
    Call a function with retry logic.

    Args:
        func: Function to call
        args: Positional arguments for function
        kwargs: Keyword arguments for function
        max_attempts: Maximum number of attempts
        delay: Initial delay between retries
        backoff: Delay multiplier for exponential backoff
        exceptions: Exception types to catch and retry on
        should_retry: Optional predicate; exceptions it rejects are raised at once
        on_retry: Optional callback for retry events

    Returns:
        Function result

    Raises:
        MaxRetriesExceeded: If all retry attempts fail
    """
    if kwargs is None:
        kwargs = {}

    last_exception = None
    current_delay = delay

    for attempt in range(max_attempts):
        try:
            result = func(*args, **kwargs)
            if attempt > 0:
                logger.info(f"Operation succeeded on attempt {attempt + 1}")
            return result

        except exceptions as e:
            if should_retry is not None and not should_retry(e):
                raise

            last_exception = e

            # Don't retry on last attempt
            if attempt == max_attempts - 1:
                break

            logger.debug(f"Attempt {attempt + 1} failed with {type(e).__name__}: {e}")
            logger.debug(f"Retrying in {current_delay:.1f} seconds...")

            if on_retry:
                try:
                    on_retry(attempt + 1, e)
                except Exception as callback_error:
                    logger.warning(f"Retry callback failed: {callback_error}")

            time.sleep(current_delay)
            current_delay *= backoff

    raise MaxRetriesExceeded(max_attempts, last_exception)


def is_retryable_error(exception: Exception) -> bool:
    """
    Determine if an exception should trigger a retry.

    Only transient backend failures qualify: lost connections, timeouts and
    lock waits. Input errors, invariant violations and duplicate accounts are
    never retried.

    Args:
        exception: Exception to check

    Returns:
        True if the exception indicates a transient failure
    """
    if isinstance(exception, (ConnectionError, TimeoutError)):
        return True

    if not isinstance(exception, BackendError) or isinstance(exception, AlreadyExistsError):
        return False

    cause = exception.__cause__
    if isinstance(cause, DisconnectionError) or getattr(cause, 'connection_invalidated', False):
        return True

    # The driver reports most server errors, permanent ones included, as
    # OperationalError; only the error code tells them apart
    code = driver_error_code(cause)
    if code is not None:
        return code in TRANSIENT_ERROR_CODES

    error_msg = str(exception).lower()
    transient_patterns = [
        'timeout',
        'timed out',
        'connection reset',
        'connection refused',
        'lost connection',
        'gone away',
        'deadlock',
        'lock wait'
    ]

    return any(pattern in error_msg for pattern in transient_patterns)


def create_retry_callback(operation_name: str) -> Callable[[int, Exception], None]:
    """
    Create a standard retry callback for logging retry attempts.

    Args:
        operation_name: Name of the operation being retried

    Returns:
        Callback function for retry events
    """
    def on_retry(attempt: int, exception: Exception):
        logger.warning(f"{operation_name} failed on attempt {attempt}, "
                       f"retrying due to {type(exception).__name__}: {exception}")

    return on_retry


def retry_from_config(error_config: Dict[str, Any], operation_name: str):
    """
    Build a retry decorator from the ``error_handling`` configuration section.

    Args:
        error_config: Dictionary with ``max_retries``, ``retry_wait_seconds``
            and optionally ``retry_backoff``
        operation_name: Name used in retry log messages

    Returns:
        Retry decorator that only retries transient backend failures
    """
    return retry(
        max_attempts=error_config.get('max_retries', 3) + 1,  # +1 for initial attempt
        delay=error_config.get('retry_wait_seconds', 1.0),
        backoff=error_config.get('retry_backoff', 1.0),
        exceptions=(Exception,),
        should_retry=is_retryable_error,
        on_retry=create_retry_callback(operation_name)
    )
