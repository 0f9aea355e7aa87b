"""Distributed rate limiting primitives backed by a shared store."""

from flowlimiter.core.store import (
    InMemoryStore,
    RedisStore,
    StoreBackend,
    create_store,
)
from flowlimiter.exceptions import (
    FlowLimiterException,
    StoreError,
    StoreNotConfiguredError,
)
from flowlimiter.limiters import (
    AdmissionResult,
    BucketOperationResult,
    LeakyBucket,
    PermissionResult,
    SlidingWindowCounter,
    TokenBucket,
    TokenResult,
)

__version__ = "0.1.0"

__all__ = [
    "InMemoryStore",
    "RedisStore",
    "StoreBackend",
    "create_store",
    "FlowLimiterException",
    "StoreError",
    "StoreNotConfiguredError",
    "AdmissionResult",
    "BucketOperationResult",
    "LeakyBucket",
    "PermissionResult",
    "SlidingWindowCounter",
    "TokenBucket",
    "TokenResult",
]
