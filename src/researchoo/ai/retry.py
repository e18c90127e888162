"""Bounded retry with exponential backoff for calls to the AI service."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from researchoo.errors import is_retryable, status_of

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(base_delay: float, attempt_index: int) -> float:
    """Delay after the failed attempt at ``attempt_index`` (0-based)."""
    return base_delay * (2 ** attempt_index)


def retry(
    operation: Callable[[], T],
    max_attempts: int = 3,
    base_delay: float = 2.0,
    label: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation`` until it succeeds or the attempt budget is spent.

    Client errors (status 400-499 other than 429) are re-raised immediately.
    Anything else is retried after ``base_delay * 2**attempt`` seconds. The
    last error is re-raised unchanged once all attempts have failed.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    attempt = 0
    while True:
        try:
            return operation()
        except Exception as e:
            status = status_of(e)
            if not is_retryable(e):
                logger.warning("%s failed with non-retryable status %s: %s", label, status, e)
                raise
            attempt += 1
            if attempt >= max_attempts:
                logger.warning(
                    "%s failed (attempt %d/%d, status=%s), giving up: %s",
                    label, attempt, max_attempts, status, e,
                )
                raise
            delay = backoff_delay(base_delay, attempt - 1)
            logger.warning(
                "%s failed (attempt %d/%d, status=%s), retrying in %.1fs: %s",
                label, attempt, max_attempts, status, delay, e,
            )
            sleep(delay)
