"""Millisecond clock for ingest progress, request logs and the seed command."""
import logging
import time
from contextlib import contextmanager
from typing import Callable, Optional

logger = logging.getLogger(__name__)


def now_ms() -> float:
    return time.perf_counter() * 1000


@contextmanager
def time_operation(label: str, log_fn: Optional[Callable[..., None]] = None):
    """
    Log "<label> took N ms" when the block exits, even if it raised.

    seed_books wraps a whole import in this so the summary line carries the
    wall time next to the IngestReport counts.
    """
    log = log_fn or logger.debug
    start = now_ms()
    try:
        yield
    finally:
        log("%s took %.0fms", label, now_ms() - start)
