"""
Retry mechanism for resilient adapter calls.
"""

import asyncio
from typing import Any, Callable, Awaitable, Optional, Tuple, Type

from shared.logging import get_logger


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(self,
                 max_attempts: int = 3,
                 base_delay: float = 0.1,
                 max_delay: float = 60.0):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay


async def retry_async(func: Callable[..., Awaitable[Any]],
                      *args: Any,
                      config: Optional[RetryConfig] = None,
                      exceptions: Tuple[Type[BaseException], ...] = (Exception,),
                      name: Optional[str] = None,
                      **kwargs: Any) -> Any:
    """Run ``func`` until it succeeds or ``config.max_attempts`` is exhausted.

    Attempts are strictly sequential. The delay after a failed attempt is
    computed by :func:`calculate_delay`; no delay follows the final attempt.
    Once the budget is spent the last exception is re-raised unchanged so the
    caller sees the root cause. Cancellation propagates out of the backoff
    sleep immediately.
    """
    if config is None:
        config = RetryConfig()

    label = name or getattr(func, "__name__", "call")
    logger = get_logger(f"retry.{label}")

    for attempt in range(1, config.max_attempts + 1):
        try:
            result = await func(*args, **kwargs)
        except exceptions as e:
            if attempt >= config.max_attempts:
                logger.error(
                    "All retry attempts exhausted",
                    attempt=attempt,
                    max_attempts=config.max_attempts,
                    function=label,
                    error=str(e)
                )
                raise

            delay = calculate_delay(attempt, config)
            logger.warning(
                "Retry attempt failed, waiting before next attempt",
                attempt=attempt,
                delay=delay,
                function=label,
                error=str(e)
            )
            await asyncio.sleep(delay)
            continue

        if attempt > 1:
            logger.info("Retry succeeded", attempt=attempt, function=label)
        return result

    raise ValueError("max_attempts must be at least 1")


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Linear backoff: wait ``base_delay * attempt`` after the (1-based) failed attempt."""
    return max(0.0, min(config.base_delay * attempt, config.max_delay))
