"""Retry utilities - Bounded timeout and retry for message store operations."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from pymongo.errors import ConnectionFailure

from campool_chat.config import settings
from campool_chat.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    label: str = "store operation",
    timeout: Optional[float] = None,
    max_retries: Optional[int] = None,
    retry_delay: Optional[float] = None,
) -> T:
    """
    Execute an async store operation with a per-attempt timeout.

    Transient failures are retried up to ``max_retries`` extra times.
    The operation must be safe to repeat.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        label: Description for logging
        timeout: Timeout per attempt in seconds
        max_retries: Retries after the first attempt
        retry_delay: Delay between attempts in seconds

    Returns:
        The operation's result

    Raises:
        StoreUnavailableError: every attempt failed transiently
    """
    timeout = settings.store_timeout_seconds if timeout is None else timeout
    max_retries = settings.store_max_retries if max_retries is None else max_retries
    retry_delay = settings.store_retry_delay_seconds if retry_delay is None else retry_delay

    attempts = max_retries + 1
    for attempt in range(attempts):
        try:
            result = await asyncio.wait_for(operation(), timeout=timeout)
            if attempt > 0:
                logger.info(f"{label} succeeded on attempt {attempt + 1}")
            return result
        except asyncio.TimeoutError:
            logger.warning(f"{label} timeout, attempt {attempt + 1}/{attempts}")
        except ConnectionFailure as e:
            logger.warning(f"{label} failed: {e}, attempt {attempt + 1}/{attempts}")

        if attempt < attempts - 1:
            await asyncio.sleep(retry_delay)

    logger.error(f"{label} failed after {attempts} attempts")
    raise StoreUnavailableError()
