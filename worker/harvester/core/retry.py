"""Exponential backoff around a whole single-query harvest attempt."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

BACKOFF_FACTOR = 1.5


async def with_retry(
    attempt: Callable[[], Awaitable[T]],
    max_retries: int,
    initial_delay: float,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    log: Optional[logging.Logger] = None,
) -> T:
    """Call `attempt`; on failure wait, grow the delay by 1.5x and try again.

    After `max_retries` retries the last exception propagates to the caller.
    """
    log = log or logger
    retries_left = max_retries
    delay = initial_delay
    while True:
        try:
            return await attempt()
        except Exception as exc:
            if retries_left <= 0:
                log.error("Attempt failed with no retries left: %s", exc)
                raise
            log.warning("Attempt failed (%s); retrying in %.1fs (%s left)", exc, delay, retries_left)
            await sleep(delay)
            retries_left -= 1
            delay *= BACKOFF_FACTOR
