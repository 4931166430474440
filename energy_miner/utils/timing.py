"""Elapsed-time logging for long running passes."""

import logging
import time
from contextlib import contextmanager
from typing import Generator, Optional

logger = logging.getLogger(__name__)


@contextmanager
def timed_operation(message: str, log: Optional[logging.Logger] = None) -> Generator[None, None, None]:
    """
    Log start, finish and elapsed seconds of the wrapped block.

    Failures are logged with the elapsed time and re-raised.
    """
    log = log or logger
    start = time.monotonic()
    log.info(f"Started: {message}")
    try:
        yield
    except Exception:
        log.error(f"Failed after {time.monotonic() - start:.2f}s: {message}")
        raise
    log.info(f"Finished in {time.monotonic() - start:.2f}s: {message}")
