"""Leaky bucket limiter with per-second granularity.

Water (admitted actions) fills the bucket and leaks out at a constant rate.
The bucket stores two scalars: the wall-clock second of the last refresh and
the water level at that refresh. Both expire after a short timeout, and an
expired bucket is simply treated as empty.
"""

import time
from typing import Callable, Optional

from flowlimiter.core.config import settings
from flowlimiter.core.logging import get_log_context, get_logger
from flowlimiter.core.store import StoreBackend
from flowlimiter.limiters.base import StoreBackedLimiter
from flowlimiter.limiters.models import PermissionResult

logger = get_logger(__name__)


class LeakyBucket(StoreBackedLimiter):
    """Distributed leaky bucket.

    By default the bucket empties completely whenever the wall-clock second
    changes, so at most ``burst`` actions are admitted per second. With
    ``proportional_drain`` the level instead drops by ``rate`` per elapsed
    second, which lets a full bucket carry over into the next second.

    Refresh and admit are separate round-trips; only store primitives
    (get, set, increment) are required.
    """

    limiter_name = "leaky_bucket"

    def __init__(
        self,
        store: Optional[StoreBackend],
        bucket_suffix: str,
        rate: int = 0,
        burst: int = 0,
        proportional_drain: bool = False,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the bucket.

        Args:
            store: Shared store handle
            bucket_suffix: Suffix keeping this bucket's keys apart from others
            rate: Units leaked per second (non-positive selects the default)
            burst: Bucket capacity (non-positive selects the default)
            proportional_drain: Drain ``rate`` per elapsed second instead of
                emptying the bucket on every new second
            clock: Time source returning UNIX time in seconds
        """
        super().__init__(store, clock)
        rate = int(rate)
        burst = int(burst)
        self.bucket_suffix = str(bucket_suffix)
        self.rate = rate if rate > 0 else settings.leaky_bucket_default_rate
        self.burst = burst if burst > 0 else settings.leaky_bucket_default_burst
        self.proportional_drain = proportional_drain
        self.timeout = settings.leaky_bucket_timeout_seconds
        self.refresh_time_key = f"{settings.leaky_bucket_refresh_key}:{self.bucket_suffix}"
        self.water_level_key = f"{settings.leaky_bucket_level_key}:{self.bucket_suffix}"

    def _drain(self, water_level: int, last_refresh: int, now: int) -> int:
        if now == last_refresh:
            return water_level
        if self.proportional_drain:
            return max(0, water_level - (now - last_refresh) * self.rate)
        # Leaked water cannot be reclaimed, so a new second starts empty
        return 0

    def refresh_water(self) -> int:
        """Leak water since the last refresh and persist the new state.

        Returns:
            Water level after leaking.

        Raises:
            Store errors propagate to the caller.
        """
        last_refresh, water_level = self._store.get_multiple(
            [self.refresh_time_key, self.water_level_key]
        )
        last_refresh = int(last_refresh or 0)
        water_level = max(0, int(water_level or 0))
        now = int(self._clock())

        water_level = self._drain(water_level, last_refresh, now)

        pipe = self._store.pipeline()
        pipe.set(self.refresh_time_key, now, self.timeout)
        pipe.set(self.water_level_key, water_level, self.timeout)
        pipe.execute()
        return water_level

    def permission_granted(self) -> PermissionResult:
        """Check whether the bucket can accept one more unit of water.

        Returns:
            PermissionResult; ``allowed`` is False when the bucket is full or
            the store failed (``error`` is set in the latter case).
        """
        result = PermissionResult()
        error = self._missing_store_error(
            "permission_granted", bucket=self.bucket_suffix
        )
        if error:
            result.error = error
            return result

        try:
            water_level = self.refresh_water()
            if water_level < self.burst:
                self._store.increment(self.water_level_key)
                result.allowed = True
            logger.debug(
                f"Bucket {'admitted' if result.allowed else 'full'}: "
                f"level {water_level}/{self.burst}",
                extra=get_log_context(
                    limiter=self.limiter_name,
                    bucket=self.bucket_suffix,
                    store_key=self.water_level_key,
                ),
            )
        except Exception as e:
            result.allowed = False
            result.error = self._record_failure(
                "permission_granted", e, bucket=self.bucket_suffix
            )
        return result
