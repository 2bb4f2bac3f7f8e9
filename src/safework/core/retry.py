"""Retry with exponential backoff for boundary side effects.

Provides:
- retry_async: Await an operation, retrying listed exceptions (1x, 2x, 4x base delay)
"""

import asyncio
from typing import Awaitable, Callable, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    name: str,
    max_retries: int = 3,
    backoff_seconds: float = 1.0,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
) -> T:
    """Run an async operation with retry logic for transient failures.

    Args:
        operation: Zero-argument coroutine function, called once per attempt
        name: Operation name for log events
        max_retries: Total attempts (default: 3)
        backoff_seconds: Base delay; attempt n waits 2**n * base
        retry_on: Exception types that trigger a retry

    Returns:
        The operation's result

    Raises:
        Exception: The last error once all attempts are exhausted
    """
    log = logger.bind(operation=name, max_retries=max_retries)

    for attempt in range(max_retries):
        try:
            return await operation()
        except retry_on as e:
            if attempt >= max_retries - 1:
                log.error("retries_exhausted", attempts=attempt + 1, error=str(e))
                raise
            backoff = (2 ** attempt) * backoff_seconds
            log.warning(
                "retry_after_error",
                attempt=attempt + 1,
                error=str(e),
                backoff_seconds=backoff,
            )
            await asyncio.sleep(backoff)

    raise RuntimeError(f"{name}: max_retries must be at least 1")
