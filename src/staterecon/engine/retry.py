"""Caller-side retry for transient failures outside a commit."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

from ..config import settings
from ..errors import TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_transient(
    operation: Callable[[], Awaitable[T]],
    delays_ms: Optional[Sequence[int]] = None,
) -> T:
    """
    Await ``operation()`` and retry it after each delay on TransientError.

    Makes at most ``len(delays_ms) + 1`` attempts, then re-raises the last
    error. Any other exception propagates immediately. Never wrap a commit
    in this: a failed commit has already been rolled back and audited.
    """
    delays = list(settings.retry_delays_ms if delays_ms is None else delays_ms)
    attempt = 0
    while True:
        try:
            return await operation()
        except TransientError as exc:
            if attempt >= len(delays):
                logger.warning(f"Giving up after {attempt + 1} attempts: {exc}")
                raise
            delay = delays[attempt]
            attempt += 1
            logger.warning(f"Transient failure ({exc}); retry {attempt}/{len(delays)} in {delay} ms")
            await asyncio.sleep(delay / 1000)
