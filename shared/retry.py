"""
Retry mechanism for resilient operations.

Retries are a separate policy from caching: they wrap a callable (usually a
source fetch) and are never applied inside the cache accessor itself.
"""

import asyncio
import random
from typing import Any, Optional, Callable, Awaitable, Tuple, Type

from .logging import get_logger


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(self,
                 max_attempts: int = 3,
                 base_delay: float = 1.0,
                 max_delay: float = 30.0,
                 exponential_base: float = 2.0,
                 jitter: bool = True):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter


async def call_with_retry(func: Callable[..., Awaitable[Any]],
                          *args,
                          retry_on: Tuple[Type[BaseException], ...] = (Exception,),
                          config: Optional[RetryConfig] = None,
                          sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
                          **kwargs) -> Any:
    """Await ``func(*args, **kwargs)``, retrying on ``retry_on`` exceptions.

    When attempts are exhausted the last exception is re-raised unchanged.
    """
    config = config or RetryConfig()
    name = getattr(func, "__qualname__", getattr(func, "__name__", repr(func)))
    logger = get_logger(f"retry.{name}")

    for attempt in range(1, config.max_attempts + 1):
        try:
            result = await func(*args, **kwargs)
        except retry_on as e:
            if attempt == config.max_attempts:
                logger.error(
                    "All retry attempts exhausted",
                    attempt=attempt,
                    max_attempts=config.max_attempts,
                    function=name,
                    error=str(e)
                )
                raise

            delay = calculate_delay(attempt, config)
            logger.warning(
                "Retry attempt failed, waiting before next attempt",
                attempt=attempt,
                delay=delay,
                function=name,
                error=str(e)
            )
            await sleep(delay)
        else:
            if attempt > 1:
                logger.info("Retry succeeded", attempt=attempt, function=name)
            return result

    raise AssertionError("unreachable: retry loop exited without result")


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Exponential backoff delay, capped at ``max_delay``, with 10% jitter."""
    delay = config.base_delay * (config.exponential_base ** (attempt - 1))
    delay = min(delay, config.max_delay)

    if config.jitter:
        jitter_amount = delay * 0.1  # 10% jitter
        delay += random.uniform(-jitter_amount, jitter_amount)

    return max(0.0, delay)
