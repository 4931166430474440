"""
Bounded tenacity retry for storage conflicts.

Upstream transport errors never pass through here. A failed API call is
left for the next scheduled run instead of being retried.
"""

import logging
from typing import Any, Callable, Tuple, Type

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from energy_miner.errors import StorageConflictError

logger = logging.getLogger(__name__)


def create_retry_decorator(
    max_attempts: int = 3,
    min_wait: float = 0.1,
    max_wait: float = 2.0,
    exceptions: Tuple[Type[BaseException], ...] = (StorageConflictError,),
    log: logging.Logger = logger,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Build a decorator that re-runs a read-modify-write on conflict.

    Args:
        max_attempts: Attempts in total, the first one included
        min_wait: First backoff in seconds, doubled on every further attempt
        max_wait: Cap on a single backoff in seconds
        exceptions: Only these are retried; anything else escapes at once
        log: Receives a warning before every backoff sleep

    Returns:
        Decorator. Once attempts are exhausted the last error propagates unchanged.
    """
    return retry(
        retry=retry_if_exception_type(exceptions),
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=min_wait, min=min_wait, max=max_wait),
        before_sleep=before_sleep_log(log, logging.WARNING),
        reraise=True,
    )
