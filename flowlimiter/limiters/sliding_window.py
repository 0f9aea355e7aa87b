"""Sliding window counter backed by a shared ordered set.

Each admitted action is recorded in an ordered set keyed by the action
identity, ranked by its admission time in milliseconds. An action is allowed
while fewer than ``max_in_window`` entries fall inside the trailing window.

Usage:
    >>> store = RedisStore.from_url("redis://localhost:6379/0")
    >>> throttle = SlidingWindowCounter(store)
    >>> result = throttle.is_allowed("read_topic:10089", 2, 4)
    >>> result.allowed, result.current_count
    (True, 1)
"""

import secrets
import time
from typing import Callable, Optional

from flowlimiter.core.config import settings
from flowlimiter.core.logging import get_log_context, get_logger
from flowlimiter.core.store import StoreBackend
from flowlimiter.limiters.base import StoreBackedLimiter
from flowlimiter.limiters.models import AdmissionResult

logger = get_logger(__name__)

# 2020-01-01 00:00:00 (UTC+8) in milliseconds; keeps stored ranks small.
# Changing it invalidates every stored window.
EPOCH_OFFSET_MS = 1577808000000

MS_PER_SECOND = 1000


class SlidingWindowCounter(StoreBackedLimiter):
    """Distributed sliding window counter.

    Admission is a pre-check followed by a pipelined insert-and-recount, not
    a single atomic script. Concurrent callers that all pass the pre-check
    each insert, so a window can briefly hold up to (racers - 1) entries more
    than ``max_in_window``; the recount reports those callers as denied.

    The ordered set expires on its own once a key goes idle for longer than
    one window plus ``expire_grace_seconds``.
    """

    limiter_name = "sliding_window"

    def __init__(
        self,
        store: Optional[StoreBackend],
        key_prefix: Optional[str] = None,
        expire_grace_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the counter.

        Args:
            store: Shared store handle
            key_prefix: Namespace prepended to every action identity
            expire_grace_seconds: Extra lifetime granted beyond one window
            clock: Time source returning UNIX time in seconds
        """
        super().__init__(store, clock)
        self.key_prefix = (
            key_prefix if key_prefix is not None else settings.sliding_window_key_prefix
        )
        self.expire_grace_seconds = (
            expire_grace_seconds
            if expire_grace_seconds is not None
            else settings.sliding_window_expire_grace_seconds
        )

    def make_key(self, action_id: str) -> str:
        """Create the store key for an action identity."""
        return f"{self.key_prefix}{action_id}"

    def _now_rank(self) -> int:
        return int(self._clock() * MS_PER_SECOND) - EPOCH_OFFSET_MS

    @staticmethod
    def _make_member(rank: int) -> str:
        # Random suffix keeps two events in the same millisecond distinct
        return f"{rank}:{secrets.token_hex(4)}"

    def is_allowed(
        self,
        action_id: str,
        window_seconds: int,
        max_in_window: int,
    ) -> AdmissionResult:
        """Check whether an action is allowed within the trailing window.

        Args:
            action_id: Unique action identity, e.g. "read_topic:10089"
            window_seconds: Window length in seconds
            max_in_window: Maximum admissions allowed inside the window

        Returns:
            AdmissionResult; ``current_count`` is the observed window count.
            On failure ``allowed`` is False, ``current_count`` is 0 and
            ``error`` describes the failure.
        """
        result = AdmissionResult()
        error = self._missing_store_error("is_allowed", action_id=action_id)
        if error:
            result.error = error
            return result

        key = self.make_key(action_id)
        now = self._now_rank()
        window_start = now - window_seconds * MS_PER_SECOND

        try:
            in_window = self._store.ordered_set_count(key, window_start, now)
            if in_window >= max_in_window:
                # Piggyback garbage collection on the rejection path
                self._store.ordered_set_remove_range(key, "-inf", window_start - 1)
                logger.debug(
                    f"Action rejected: {in_window}/{max_in_window} in {window_seconds}s window",
                    extra=get_log_context(
                        limiter=self.limiter_name, action_id=action_id, store_key=key
                    ),
                )
                result.current_count = in_window
                return result

            pipe = self._store.pipeline()
            pipe.ordered_set_add(key, now, self._make_member(now))
            pipe.ordered_set_count(key, window_start, now)
            pipe.time_to_live(key)
            _, current_count, ttl = pipe.execute()
            current_count = int(current_count)
            ttl = int(ttl)

            # Extend lifetime only when less than a window remains; -1 (no
            # expiry) and -2 (gone) count as zero remaining
            if ttl <= window_seconds:
                self._store.expire(
                    key, max(ttl, 0) + window_seconds + self.expire_grace_seconds
                )

            allowed = current_count <= max_in_window
            logger.debug(
                f"Action {'admitted' if allowed else 'over-admitted'}: "
                f"{current_count}/{max_in_window} in {window_seconds}s window",
                extra=get_log_context(
                    limiter=self.limiter_name, action_id=action_id, store_key=key
                ),
            )
            result.allowed = allowed
            result.current_count = current_count
        except Exception as e:
            result.error = self._record_failure(
                "is_allowed", e, action_id=action_id, store_key=key
            )
        return result
