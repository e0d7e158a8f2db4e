"""
tierstack/utils/async_retry.py

Provides a bounded-retry decorator for async functions. Used at the provider
adapter boundary (transient provider errors) and by the node bootstrap
reconciler (transient install/pull failures).
"""

import asyncio
import logging
from typing import Any, Callable, Coroutine, Tuple, Type
from typing_extensions import ParamSpec, TypeVar

P = ParamSpec("P")
R = TypeVar("R")

logger = logging.getLogger(__name__)


def async_retry(
    retries: int = 3,
    delay: float = 1.0,
    noisy: bool = False,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    label: str = "",
) -> Callable[
    [Callable[P, Coroutine[Any, Any, R]]], Callable[P, Coroutine[Any, Any, R]]
]:
    """Decorates an async function to retry upon failure.

    The decorated function will be attempted up to `retries` times, with a fixed
    delay of `delay` seconds between attempts (no backoff growth, no jitter).
    Only exceptions matching `retry_on` are retried; anything else propagates
    on the first occurrence. When the attempt budget is exhausted, the last
    exception is re-raised.

    Args:
        retries (int, optional):
            Maximum number of total attempts (not just failures). Defaults to 3.
        delay (float, optional):
            Delay in seconds between attempts. Defaults to 1.0.
        noisy (bool, optional):
            If True, logs a warning on each failure and an error if all attempts
            fail. Arguments are never logged, since they may carry secrets.
        retry_on (Tuple[Type[BaseException], ...], optional):
            Exception types that count as retryable. Defaults to (Exception,).
        label (str, optional):
            Name used in log lines instead of the function's qualified name.

    Returns:
        A decorator that, when applied to an async function, returns a wrapped
        version that retries on the selected exceptions.
    """
    if retries < 1:
        raise ValueError("retries must be at least 1")

    def decorator(
        func: Callable[P, Coroutine[Any, Any, R]]
    ) -> Callable[P, Coroutine[Any, Any, R]]:
        name = label or func.__qualname__

        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            async def attempt(remaining: int, attempt_number: int) -> R:
                try:
                    return await func(*args, **kwargs)
                except retry_on as exc:
                    if noisy:
                        logger.warning(
                            "Attempt %d/%d for %s failed: %s",
                            attempt_number,
                            retries,
                            name,
                            exc,
                        )
                    if remaining > 1:
                        await asyncio.sleep(delay)
                        return await attempt(remaining - 1, attempt_number + 1)

                    if noisy:
                        logger.error("All %d attempts failed for %s", retries, name)
                    raise

            return await attempt(retries, 1)

        return wrapper

    return decorator
