"""Bounded retry with exponential backoff for transient storage errors."""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from .errors import StorageTransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Full-jitter exponential delay before retry number ``attempt`` (1-based)."""
    return random.uniform(0, min(cap, base * (2 ** (attempt - 1))))


async def retry_transient(
    operation: Callable[[], Awaitable[T]],
    *,
    description: str,
    attempts: int,
    base_delay: float,
    max_delay: float,
) -> T:
    """
    Run ``operation`` until it succeeds or stops failing transiently.

    Only StorageTransientError is retried. Every other exception, and the
    last transient failure, propagate unchanged.
    """
    attempt = 1
    while True:
        try:
            return await operation()
        except StorageTransientError as e:
            if attempt >= attempts:
                logger.warning(
                    f"{description} failed after {attempt} attempts: {e}",
                    extra={"attempts": attempt},
                )
                raise
            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.info(
                f"{description} failed transiently, retrying in {delay:.2f}s: {e}",
                extra={"attempt": attempt},
            )
            await asyncio.sleep(delay)
            attempt += 1
