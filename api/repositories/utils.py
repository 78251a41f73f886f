"""Timing for repository calls.

Verification and the allow-list gate sit on the public request path, so their
queries are timed; anything slower than ``SLOW_QUERY_MS`` is logged along with
every failure.
"""

import time
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import ParamSpec, TypeVar

from core.config import get_settings
from core.logger import get_logger

logger = get_logger(__name__)

P = ParamSpec("P")
R = TypeVar("R")


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def log_slow_query(
    operation_name: str,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """Time an async repository method.

    Usage:
        @log_slow_query("certificate_get_by_code")
        async def get_by_verification_code(self, code: str) -> Certificate | None:
            ...

    Exceptions are logged as ``db.query.failed`` and re-raised unchanged.
    """

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            started = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    "db.query.failed",
                    db_operation=operation_name,
                    db_duration_ms=_elapsed_ms(started),
                    db_error_type=type(e).__name__,
                )
                raise

            elapsed = _elapsed_ms(started)
            if elapsed > get_settings().slow_query_ms:
                logger.warning(
                    "db.query.slow",
                    db_operation=operation_name,
                    db_duration_ms=elapsed,
                )
            return result

        return wrapper

    return decorator
