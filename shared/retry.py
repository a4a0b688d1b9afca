"""
Retry mechanism for idempotent read operations.
"""

import asyncio
from typing import Any, Optional, Callable, Awaitable

from shared.logging import get_logger


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(self, max_attempts: int = 4, interval: float = 5.0):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if interval < 0:
            raise ValueError("interval must not be negative")
        self.max_attempts = max_attempts
        self.interval = interval

    @classmethod
    def fixed(cls, retries: int, interval: float) -> "RetryConfig":
        """Budget of ``retries`` retries after the first attempt, ``interval`` apart."""
        return cls(max_attempts=retries + 1, interval=interval)


def retry_on_exception(exceptions: tuple = (Exception,),
                      config: Optional[RetryConfig] = None,
                      on_retry: Optional[Callable[[int, Exception], None]] = None) -> Callable:
    """Decorator for retrying async functions on exceptions.

    The last exception is re-raised unchanged once the budget is spent, so
    callers see the same error type they would without the decorator.
    """

    if config is None:
        config = RetryConfig()

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        async def wrapper(*args, **kwargs) -> Any:
            logger = get_logger(f"retry.{func.__name__}")

            for attempt in range(1, config.max_attempts + 1):
                try:
                    logger.debug(
                        "Retry attempt",
                        attempt=attempt,
                        max_attempts=config.max_attempts,
                        function=func.__name__
                    )

                    result = await func(*args, **kwargs)

                    if attempt > 1:
                        logger.info(
                            "Retry succeeded",
                            attempt=attempt,
                            function=func.__name__
                        )

                    return result

                except exceptions as e:
                    if attempt == config.max_attempts:
                        logger.error(
                            "All retry attempts exhausted",
                            attempt=attempt,
                            max_attempts=config.max_attempts,
                            function=func.__name__,
                            error=str(e)
                        )
                        raise

                    delay = config.interval

                    logger.warning(
                        "Retry attempt failed, waiting before next attempt",
                        attempt=attempt,
                        delay=delay,
                        function=func.__name__,
                        error=str(e)
                    )
                    if on_retry is not None:
                        on_retry(attempt, e)

                    await asyncio.sleep(delay)

        return wrapper

    return decorator

