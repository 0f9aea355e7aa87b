"""Token bucket limiter backed by a single shared counter.

A producer (usually a timer) refills the bucket with ``add_token_to_bucket``;
consumers take one token each with ``get_token``. The two sides never talk
to each other and rely on the store's atomic increment and decrement.

Usage:
    >>> bucket = TokenBucket(store, "tkb:test", 30)
    >>> bucket.reset_token_bucket()
    >>> bucket.add_token_to_bucket()
    >>> bucket.get_token().has_token
    True
"""

from typing import Optional

from flowlimiter.core.config import settings
from flowlimiter.core.logging import get_log_context, get_logger
from flowlimiter.core.store import StoreBackend
from flowlimiter.limiters.base import StoreBackedLimiter
from flowlimiter.limiters.models import BucketOperationResult, TokenResult

logger = get_logger(__name__)


class TokenBucket(StoreBackedLimiter):
    """Distributed token bucket.

    The stored level is kept within [0, burst]. A negative level can only
    appear transiently: decrementing an empty or expired key yields -1,
    which means "no token" and is immediately reset to 0.
    """

    limiter_name = "token_bucket"

    def __init__(
        self,
        store: Optional[StoreBackend],
        bucket_suffix: str,
        burst: int = 0,
    ) -> None:
        """Initialize the bucket.

        Args:
            store: Shared store handle
            bucket_suffix: Suffix keeping this bucket's key apart from others
            burst: Bucket capacity (non-positive selects the default)
        """
        super().__init__(store)
        burst = int(burst)
        self.bucket_suffix = str(bucket_suffix)
        self.burst = burst if burst > 0 else settings.token_bucket_default_burst
        self.timeout = settings.token_bucket_timeout_seconds
        self.token_key = f"{settings.token_bucket_key}:{self.bucket_suffix}"

    def _context(self) -> dict:
        return get_log_context(
            limiter=self.limiter_name,
            bucket=self.bucket_suffix,
            store_key=self.token_key,
        )

    def reset_token_bucket(self) -> BucketOperationResult:
        """Empty the bucket.

        Returns:
            BucketOperationResult with ``ok`` True once the level is 0.
        """
        result = BucketOperationResult()
        error = self._missing_store_error(
            "reset_token_bucket", bucket=self.bucket_suffix
        )
        if error:
            result.error = error
            return result

        try:
            result.ok = bool(self._store.set(self.token_key, 0, self.timeout))
        except Exception as e:
            result.error = self._record_failure(
                "reset_token_bucket", e, bucket=self.bucket_suffix
            )
        return result

    def add_token_to_bucket(self, amount: int = 0) -> BucketOperationResult:
        """Add tokens without exceeding the bucket capacity.

        Args:
            amount: Tokens to add; 0 refills the bucket to ``burst``.

        Returns:
            BucketOperationResult; ``ok`` is False with no error when the
            bucket was already full.
        """
        result = BucketOperationResult()
        error = self._missing_store_error(
            "add_token_to_bucket", bucket=self.bucket_suffix
        )
        if error:
            result.error = error
            return result

        amount = int(amount)
        if amount == 0:
            amount = self.burst

        try:
            # The key may have expired; an absent key reads as an empty bucket
            current = int(self._store.get(self.token_key) or 0)
            if current < 0:
                logger.info(
                    f"Negative token level {current}, resetting bucket",
                    extra=self._context(),
                )
                reset = self.reset_token_bucket()
                if reset.error:
                    logger.warning(
                        f"Bucket reset failed during refill: {reset.error}",
                        extra=self._context(),
                    )
                current = 0

            if current + amount > self.burst:
                amount = self.burst - current

            if amount > 0:
                pipe = self._store.pipeline()
                pipe.increment_by(self.token_key, amount)
                pipe.expire(self.token_key, self.timeout)
                pipe.execute()
                result.ok = True
                logger.debug(
                    f"Added {amount} tokens (level was {current}/{self.burst})",
                    extra=self._context(),
                )
        except Exception as e:
            result.error = self._record_failure(
                "add_token_to_bucket", e, bucket=self.bucket_suffix
            )
        return result

    def get_token(self) -> TokenResult:
        """Take one token from the bucket.

        Returns:
            TokenResult with ``has_token`` True when a token was available.
        """
        result = TokenResult()
        error = self._missing_store_error("get_token", bucket=self.bucket_suffix)
        if error:
            result.error = error
            return result

        try:
            pipe = self._store.pipeline()
            # An absent key decrements from 0 to -1, the empty-bucket signal
            pipe.decrement(self.token_key)
            pipe.expire(self.token_key, self.timeout)
            value, _ = pipe.execute()
            value = int(value)
            result.has_token = value >= 0
            if value < 0:
                reset = self.reset_token_bucket()
                if reset.error:
                    logger.warning(
                        f"Bucket reset failed after empty read: {reset.error}",
                        extra=self._context(),
                    )
        except Exception as e:
            result.has_token = False
            result.error = self._record_failure(
                "get_token", e, bucket=self.bucket_suffix
            )
        return result
