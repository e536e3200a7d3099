"""
Retry wrapper for transient storage failures.

Only connection-level trouble is retried (network resets, pool timeouts,
"database is locked"). Integrity violations and domain errors pass straight
through. After the last attempt the failure surfaces as DependencyUnavailable.
"""

import functools
import logging
import time
from typing import Callable, Optional, Tuple, Type

from sqlalchemy.exc import DBAPIError, OperationalError, TimeoutError as PoolTimeoutError

from dineflow.config import (
    STORAGE_RETRY_ATTEMPTS,
    STORAGE_RETRY_BASE_DELAY,
    STORAGE_RETRY_MAX_DELAY,
)
from dineflow.errors import DependencyUnavailable

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS: Tuple[Type[BaseException], ...] = (OperationalError, PoolTimeoutError)


def is_transient(exc: BaseException) -> bool:
    """Return True for storage errors worth retrying."""
    if isinstance(exc, TRANSIENT_ERRORS):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


def backoff_delays(attempts: int, base_delay: float, max_delay: float):
    """Delays slept between attempts: base, 2*base, 4*base ... capped at max_delay."""
    return [min(base_delay * (2 ** i), max_delay) for i in range(max(attempts - 1, 0))]


def retry_transient(
    func: Optional[Callable] = None,
    *,
    attempts: int = STORAGE_RETRY_ATTEMPTS,
    base_delay: float = STORAGE_RETRY_BASE_DELAY,
    max_delay: float = STORAGE_RETRY_MAX_DELAY,
    sleep: Callable[[float], None] = time.sleep,
):
    """
    Decorator retrying ``func`` on transient storage errors.

    Usable bare (``@retry_transient``) or with arguments
    (``@retry_transient(attempts=5)``).
    """

    def decorator(fn: Callable):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            delays = backoff_delays(attempts, base_delay, max_delay)
            for attempt in range(1, attempts + 1):
                try:
                    return fn(*args, **kwargs)
                except Exception as exc:
                    if not is_transient(exc):
                        raise
                    if attempt >= attempts:
                        logger.error(
                            "%s failed after %d attempts: %s", fn.__name__, attempt, exc
                        )
                        raise DependencyUnavailable(
                            "Storage is temporarily unavailable, please retry",
                            operation=fn.__name__,
                            attempts=attempt,
                        ) from exc
                    delay = delays[attempt - 1]
                    logger.warning(
                        "Transient storage error in %s (attempt %d/%d), retrying in %.2fs: %s",
                        fn.__name__, attempt, attempts, delay, exc,
                    )
                    sleep(delay)

        return wrapper

    if func is not None:
        return decorator(func)
    return decorator
