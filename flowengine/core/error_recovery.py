"""Retry policy for run and workflow store writes."""

import logging
import time
from functools import wraps
from typing import Callable, Optional, Tuple, Type

from .exceptions import StorageError, WorkflowEngineError
from .logging import get_logger, log_with_context

logger = get_logger(__name__)


class RetryConfig:
    """
    How often and how patiently a store operation is retried.

    Only recoverable errors of the listed types are retried. A
    `WorkflowEngineError` that carries ``retry_after`` waits at least that
    long, capped by `max_delay`.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 0.2,
        max_delay: float = 5.0,
        retryable_exceptions: Tuple[Type[Exception], ...] = (StorageError,),
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.retryable_exceptions = tuple(retryable_exceptions)

    def is_retryable(self, error: Exception) -> bool:
        if not isinstance(error, self.retryable_exceptions):
            return False
        # RunStateError and NotFoundError are never recoverable
        return not isinstance(error, WorkflowEngineError) or error.recoverable

    def delay_for(self, attempt: int, error: Exception) -> float:
        delay = self.base_delay * (2 ** (attempt - 1))
        retry_after = getattr(error, "retry_after", None)
        if retry_after:
            delay = max(delay, retry_after)
        return min(delay, self.max_delay)


def with_retry(config: Optional[RetryConfig] = None):
    """Retry the decorated store method according to `config`.

    Each attempt re-runs the whole method, so state checks made inside it
    (such as a run still being ``running``) are repeated before every write.
    """
    config = config or RetryConfig()

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            attempt = 1
            while True:
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    if attempt >= config.max_attempts or not config.is_retryable(e):
                        if attempt > 1:
                            log_with_context(
                                logger, logging.ERROR,
                                f"{func.__name__} failed after {attempt} attempt(s): {str(e)}",
                                operation=func.__name__,
                                error_type=type(e).__name__,
                                attempts=attempt,
                            )
                        raise

                    delay = config.delay_for(attempt, e)
                    log_with_context(
                        logger, logging.WARNING,
                        f"{func.__name__} attempt {attempt}/{config.max_attempts} failed, retrying in {delay:.2f}s",
                        operation=func.__name__,
                        error_type=type(e).__name__,
                        attempt=attempt,
                    )
                    time.sleep(delay)
                    attempt += 1
        return wrapper

    return decorator
