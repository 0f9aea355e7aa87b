"""Admission strategies backed by the shared store.

This package provides:
- SlidingWindowCounter: per-action counts over a trailing window
- LeakyBucket: per-bucket capacity drained every second
- TokenBucket: per-bucket tokens refilled by a separate producer
"""

from flowlimiter.limiters.leaky_bucket import LeakyBucket
from flowlimiter.limiters.models import (
    AdmissionResult,
    BucketOperationResult,
    PermissionResult,
    TokenResult,
)
from flowlimiter.limiters.sliding_window import EPOCH_OFFSET_MS, SlidingWindowCounter
from flowlimiter.limiters.token_bucket import TokenBucket

__all__ = [
    "AdmissionResult",
    "BucketOperationResult",
    "PermissionResult",
    "TokenResult",
    "EPOCH_OFFSET_MS",
    "SlidingWindowCounter",
    "LeakyBucket",
    "TokenBucket",
]
