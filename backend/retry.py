"""
Nexus Scheduling Agent - Retry Decorator
Bounded exponential backoff for calls to external services.
"""

import asyncio
import logging
from functools import wraps
from typing import Callable, Tuple, Type

logger = logging.getLogger(__name__)


def retry_async(
    max_retries: int = 3,
    delay: float = 1.0,
    retry_on: Tuple[Type[BaseException], ...] = (ConnectionError,),
):
    """
    Decorator to retry coroutine calls on transient errors.

    Args:
        max_retries: Maximum number of attempts
        delay: Initial delay between attempts (doubled each time)
        retry_on: Exception types considered transient. Anything else propagates at once.
    """
    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            last_error = None
            for attempt in range(max_retries):
                try:
                    return await func(*args, **kwargs)
                except retry_on as e:
                    last_error = e
                    if attempt == max_retries - 1:
                        break
                    wait_time = delay * (2 ** attempt)
                    logger.warning(
                        f"{func.__name__} failed ({type(e).__name__}), "
                        f"waiting {wait_time}s before retry {attempt + 1}/{max_retries}"
                    )
                    await asyncio.sleep(wait_time)
            raise last_error
        return wrapper
    return decorator
