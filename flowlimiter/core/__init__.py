"""Core utilities for the flow limiter."""

from flowlimiter.core.config import settings
from flowlimiter.core.logging import get_logger, setup_logging
from flowlimiter.core.store import (
    STORE_ERRORS,
    InMemoryStore,
    RedisStore,
    StoreBackend,
    StoreCommand,
    StorePipeline,
    create_store,
)

__all__ = [
    "settings",
    "get_logger",
    "setup_logging",
    "STORE_ERRORS",
    "InMemoryStore",
    "RedisStore",
    "StoreBackend",
    "StoreCommand",
    "StorePipeline",
    "create_store",
]
