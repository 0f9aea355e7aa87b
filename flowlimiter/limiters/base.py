"""Shared plumbing for store-backed limiters."""

import time
from typing import Callable, Optional

import redis

from flowlimiter.core.logging import get_log_context, get_logger
from flowlimiter.core.store import STORE_ERRORS, StoreBackend
from flowlimiter.exceptions import StoreNotConfiguredError

logger = get_logger(__name__)


class StoreBackedLimiter:
    """Base class for limiters whose state lives in a shared store.

    Subclasses never let a failure escape: they catch it at the operation
    boundary and turn it into the result's error string via
    ``_record_failure``.
    """

    limiter_name = "limiter"

    def __init__(
        self,
        store: Optional[StoreBackend],
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the limiter.

        Args:
            store: Store handle shared by every instance of this limiter
            clock: Time source returning UNIX time in seconds
        """
        self._store = store
        self._clock = clock

    @property
    def store(self) -> Optional[StoreBackend]:
        return self._store

    def _missing_store_error(self, operation: str, **context) -> Optional[str]:
        """Return the misconfiguration error when no store was supplied."""
        if self._store is not None:
            return None
        error = str(StoreNotConfiguredError())
        logger.error(
            f"{self.limiter_name}.{operation} called without a store: {error}",
            extra=get_log_context(
                limiter=self.limiter_name, operation=operation, **context
            ),
        )
        return error

    def _record_failure(self, operation: str, exc: Exception, **context) -> str:
        """Log a failed operation and return the text for the result record.

        Must be called from inside the ``except`` block handling ``exc``.
        """
        extra = get_log_context(
            limiter=self.limiter_name, operation=operation, **context
        )
        if isinstance(exc, redis.TimeoutError):
            # Store overloaded or unreachable within the socket timeout
            logger.warning(f"Store timeout during {operation}: {exc}", extra=extra)
        elif isinstance(exc, STORE_ERRORS):
            logger.error(f"Store error during {operation}: {exc}", extra=extra)
        else:
            logger.exception(f"Unexpected error during {operation}: {exc}", extra=extra)
        return str(exc) or exc.__class__.__name__
