# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Unauthorized use, distribution, or modification is prohibited.

"""
Retry Utilities - Bounded retry with a fixed delay between attempts
"""
import time
import logging
from functools import wraps
from typing import Callable, TypeVar, Any

logger = logging.getLogger(__name__)

T = TypeVar('T')


def retry(
    operation: Callable[[], T],
    max_attempts: int = 5,
    delay_ms: int = 2000,
    retry_on: tuple = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
    description: str = None
) -> T:
    """
    Invoke `operation` until it succeeds or `max_attempts` calls have failed

    The delay is fixed (no exponential growth) and the sleep blocks the caller.
    The error from the final attempt propagates unchanged.

    Args:
        operation: Zero-argument callable to execute
        max_attempts: Total number of calls, including the first
        delay_ms: Delay between attempts in milliseconds
        retry_on: Tuple of exceptions to retry on; anything else raises immediately
        sleep: Sleep function, replaceable in tests
        description: Name used in log lines

    Returns:
        Whatever `operation` returns
    """
    name = description or getattr(operation, '__name__', 'operation')
    attempts = max(1, max_attempts)

    for attempt in range(1, attempts + 1):
        try:
            result = operation()
            if attempt > 1:
                logger.info(f"Retry successful for {name} after {attempt} attempts")
            return result
        except retry_on as e:
            if attempt >= attempts:
                logger.error(
                    f"Max attempts ({attempts}) exceeded for {name}. "
                    f"Final error: {type(e).__name__}: {e}"
                )
                raise
            logger.warning(
                f"Error in {name} (attempt {attempt}/{attempts}): "
                f"{type(e).__name__}: {e}. Retrying in {delay_ms / 1000:.1f} seconds..."
            )
            sleep(delay_ms / 1000)


def retry_fixed(
    max_attempts: int = 5,
    delay_ms: int = 2000,
    retry_on: tuple = (Exception,)
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Decorator form of retry()

    Returns:
        Decorated function that will retry on specified exceptions
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            return retry(
                lambda: func(*args, **kwargs),
                max_attempts=max_attempts,
                delay_ms=delay_ms,
                retry_on=retry_on,
                description=func.__name__
            )
        return wrapper
    return decorator
