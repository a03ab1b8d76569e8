"""
Error-handling decorator shared by the settlement agent's collaborators.

`handle_errors` wraps a coroutine function and turns raised exceptions into a
fallback value. It is used where a failure must not interrupt the
reconciliation loop, e.g. a single receipt lookup during a confirmation sweep:
the failure is logged and the caller sees `default_return` instead.

`AppError` subclasses log themselves at their own severity; anything else is
logged with its traceback.
"""

import inspect
import functools
import logging
from typing import Any, Callable

from .app_error import AppError

logger = logging.getLogger(__name__)


def handle_errors(*, default_return: Any = None) -> Callable:
    """
    Decorator factory for unified error handling of coroutine functions.

    Args:
        default_return: Value returned when an exception is caught.

    Returns:
        A decorator applying the policy to a coroutine function.

    Raises:
        TypeError: If the decorated callable is not a coroutine function.

    Example:
        >>> @handle_errors(default_return=None)
        ... async def lookup(tx_hash):
        ...     ...
    """

    def decorator(func: Callable) -> Callable:
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"{func.__name__} is not a coroutine function")

        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except AppError as e:
                e.log()
                return default_return
            except Exception as e:
                logger.exception(f"Unexpected error in {func.__name__}: {e}")
                return default_return

        return wrapper

    return decorator
