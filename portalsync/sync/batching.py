"""
Sequential batch processing over an index range.
"""

from typing import Callable

from ..config import get_logger

logger = get_logger(__name__)


def do_in_batch(batch_size: int, total: int, fn: Callable[[int, int], object]) -> int:
    """
    Call `fn(start, end)` for consecutive half-open ranges of `batch_size`
    covering `[0, total)`. The first exception stops processing and propagates.

    Returns:
        Number of batches processed
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")

    batches = 0
    for start in range(0, total, batch_size):
        end = min(start + batch_size, total)
        logger.info(f"do {start}:{end}")
        fn(start, end)
        logger.info(f"Done {start}/{end}")
        batches += 1
    return batches
