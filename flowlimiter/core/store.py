"""Store capability shared by every limiter.

Provides a pluggable store backend system with in-memory and Redis
implementations. The limiters only depend on ``StoreBackend``; all state that
must be consistent across processes lives in the store.
"""

import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

import redis

from flowlimiter.core.config import settings
from flowlimiter.core.logging import get_logger
from flowlimiter.exceptions import StoreError

logger = get_logger(__name__)

# Exceptions treated as store-operation failures (connectivity, timeout, protocol)
STORE_ERRORS = (
    redis.ConnectionError,
    redis.TimeoutError,
    redis.RedisError,
    StoreError,
)


@dataclass(frozen=True)
class StoreCommand:
    """A single queued store command.

    Attributes:
        name: StoreBackend method name (e.g. "ordered_set_add")
        args: Positional arguments for that method
    """
    name: str
    args: tuple = ()


BATCH_COMMANDS = frozenset({
    "ordered_set_add",
    "ordered_set_count",
    "ordered_set_remove_range",
    "get",
    "set",
    "increment",
    "increment_by",
    "decrement",
    "time_to_live",
    "get_multiple",
    "expire",
})


class StorePipeline:
    """Queues store commands and sends them in one round-trip.

    Results come back in submission order. The batch is not a transaction:
    another client's commands may land between two queued commands.

    Example:
        >>> pipe = store.pipeline()
        >>> pipe.decrement("flowlimit:tkbucket:token:api")
        >>> pipe.expire("flowlimit:tkbucket:token:api", 60)
        >>> value, _ = pipe.execute()
    """

    def __init__(self, store: "StoreBackend") -> None:
        self._store = store
        self._commands: List[StoreCommand] = []

    def __len__(self) -> int:
        return len(self._commands)

    def _queue(self, name: str, *args: Any) -> "StorePipeline":
        self._commands.append(StoreCommand(name=name, args=args))
        return self

    def ordered_set_add(self, key: str, rank: float, member: str) -> "StorePipeline":
        return self._queue("ordered_set_add", key, rank, member)

    def ordered_set_count(self, key: str, low: float, high: float) -> "StorePipeline":
        return self._queue("ordered_set_count", key, low, high)

    def ordered_set_remove_range(self, key: str, low: float, high: float) -> "StorePipeline":
        return self._queue("ordered_set_remove_range", key, low, high)

    def get(self, key: str) -> "StorePipeline":
        return self._queue("get", key)

    def set(self, key: str, value: int, ttl: Optional[int] = None) -> "StorePipeline":
        return self._queue("set", key, value, ttl)

    def increment(self, key: str) -> "StorePipeline":
        return self._queue("increment", key)

    def increment_by(self, key: str, amount: int) -> "StorePipeline":
        return self._queue("increment_by", key, amount)

    def decrement(self, key: str) -> "StorePipeline":
        return self._queue("decrement", key)

    def time_to_live(self, key: str) -> "StorePipeline":
        return self._queue("time_to_live", key)

    def get_multiple(self, keys: Sequence[str]) -> "StorePipeline":
        return self._queue("get_multiple", list(keys))

    def expire(self, key: str, ttl: int) -> "StorePipeline":
        return self._queue("expire", key, ttl)

    def execute(self) -> List[Any]:
        """Send all queued commands and return their results in order."""
        commands, self._commands = self._commands, []
        if not commands:
            return []
        return self._store.execute_batch(commands)


class StoreBackend(ABC):
    """Abstract base class for store backends.

    Counter commands treat a missing key as 0, so ``decrement`` on an absent
    key returns -1. ``time_to_live`` returns -2 for an absent key and -1 for a
    key without expiry.
    """

    @abstractmethod
    def ordered_set_add(self, key: str, rank: float, member: str) -> int:
        """Insert member with the given rank.

        Returns:
            1 if the member was new, 0 if only its rank was updated.
        """

    @abstractmethod
    def ordered_set_count(self, key: str, low: float, high: float) -> int:
        """Count members with rank in [low, high] (inclusive)."""

    @abstractmethod
    def ordered_set_remove_range(self, key: str, low: float, high: float) -> int:
        """Remove members with rank in [low, high] (inclusive)."""

    @abstractmethod
    def get(self, key: str) -> Optional[int]:
        """Read an integer value, or None if the key is absent."""

    @abstractmethod
    def set(self, key: str, value: int, ttl: Optional[int] = None) -> bool:
        """Store an integer value, optionally expiring after ttl seconds."""

    @abstractmethod
    def increment(self, key: str) -> int:
        """Atomically add 1 and return the new value."""

    @abstractmethod
    def increment_by(self, key: str, amount: int) -> int:
        """Atomically add amount and return the new value."""

    @abstractmethod
    def decrement(self, key: str) -> int:
        """Atomically subtract 1 and return the new value."""

    @abstractmethod
    def time_to_live(self, key: str) -> int:
        """Remaining lifetime in seconds, -1 for no expiry, -2 if absent."""

    @abstractmethod
    def get_multiple(self, keys: Sequence[str]) -> List[Optional[int]]:
        """Read several integer values; order matches keys."""

    @abstractmethod
    def expire(self, key: str, ttl: int) -> bool:
        """Set a key's lifetime. Returns False if the key does not exist."""

    @abstractmethod
    def execute_batch(self, commands: Sequence[StoreCommand]) -> List[Any]:
        """Send commands together and return per-command results in order."""

    def pipeline(self) -> StorePipeline:
        """Start a batch of commands sent in one round-trip."""
        return StorePipeline(self)


@dataclass
class _StoreEntry:
    """Internal store entry with TTL tracking."""

    value: Any
    expires_at: float | None = None

    def is_expired(self, now: float) -> bool:
        """Check if the entry has expired."""
        if self.expires_at is None:
            return False
        return now >= self.expires_at


class InMemoryStore(StoreBackend):
    """In-memory store implementation with Redis command semantics.

    Suitable for tests, local development and single-instance deployments.
    Expired keys are purged lazily when touched.

    Note: This store is not shared between processes, so limits are enforced
    per process only.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        """Initialize the in-memory store.

        Args:
            clock: Time source returning UNIX time in seconds.
        """
        self._clock = clock
        self._data: Dict[str, _StoreEntry] = {}
        self._lock = threading.RLock()

    def _live_entry(self, key: str) -> Optional[_StoreEntry]:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._data[key]
            return None
        return entry

    def _counter_entry(self, key: str) -> Optional[_StoreEntry]:
        entry = self._live_entry(key)
        if entry is not None and not isinstance(entry.value, int):
            raise StoreError(
                "WRONGTYPE operation against a key holding an ordered set", key=key
            )
        return entry

    def _ordered_set(self, key: str, create: bool = False) -> Optional[Dict[str, float]]:
        entry = self._live_entry(key)
        if entry is None:
            if not create:
                return None
            entry = _StoreEntry(value={})
            self._data[key] = entry
        if not isinstance(entry.value, dict):
            raise StoreError(
                "WRONGTYPE operation against a key holding a counter", key=key
            )
        return entry.value

    def ordered_set_add(self, key: str, rank: float, member: str) -> int:
        with self._lock:
            members = self._ordered_set(key, create=True)
            member = str(member)
            added = 0 if member in members else 1
            members[member] = float(rank)
            return added

    def ordered_set_count(self, key: str, low: float, high: float) -> int:
        low, high = float(low), float(high)
        with self._lock:
            members = self._ordered_set(key)
            if not members:
                return 0
            return sum(1 for rank in members.values() if low <= rank <= high)

    def ordered_set_remove_range(self, key: str, low: float, high: float) -> int:
        low, high = float(low), float(high)
        with self._lock:
            members = self._ordered_set(key)
            if not members:
                return 0
            doomed = [m for m, rank in members.items() if low <= rank <= high]
            for member in doomed:
                del members[member]
            if not members:
                # Redis drops empty sorted sets
                del self._data[key]
            return len(doomed)

    def get(self, key: str) -> Optional[int]:
        with self._lock:
            entry = self._counter_entry(key)
            return None if entry is None else entry.value

    def set(self, key: str, value: int, ttl: Optional[int] = None) -> bool:
        try:
            value = int(value)
        except (TypeError, ValueError) as e:
            raise StoreError("value is not an integer", key=key) from e
        with self._lock:
            expires_at = self._clock() + ttl if ttl and ttl > 0 else None
            self._data[key] = _StoreEntry(value=value, expires_at=expires_at)
            return True

    def increment_by(self, key: str, amount: int) -> int:
        with self._lock:
            entry = self._counter_entry(key)
            if entry is None:
                entry = _StoreEntry(value=0)
                self._data[key] = entry
            # Existing expiry is preserved, as with INCRBY
            entry.value += int(amount)
            return entry.value

    def increment(self, key: str) -> int:
        return self.increment_by(key, 1)

    def decrement(self, key: str) -> int:
        return self.increment_by(key, -1)

    def time_to_live(self, key: str) -> int:
        with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                return -2
            if entry.expires_at is None:
                return -1
            remaining_ms = (entry.expires_at - self._clock()) * 1000
            return int((remaining_ms + 500) // 1000)

    def get_multiple(self, keys: Sequence[str]) -> List[Optional[int]]:
        with self._lock:
            values: List[Optional[int]] = []
            for key in keys:
                entry = self._live_entry(key)
                # MGET reports keys of another type as missing
                if entry is None or not isinstance(entry.value, int):
                    values.append(None)
                else:
                    values.append(entry.value)
            return values

    def expire(self, key: str, ttl: int) -> bool:
        with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                return False
            if ttl <= 0:
                del self._data[key]
                return True
            entry.expires_at = self._clock() + ttl
            return True

    def execute_batch(self, commands: Sequence[StoreCommand]) -> List[Any]:
        with self._lock:
            results = []
            for command in commands:
                if command.name not in BATCH_COMMANDS:
                    raise StoreError(f"unsupported batch command: {command.name}")
                results.append(getattr(self, command.name)(*command.args))
            return results

    def clear(self) -> None:
        """Remove every key from the store."""
        with self._lock:
            self._data.clear()


def _to_int(value: Any) -> Optional[int]:
    return None if value is None else int(value)


# StoreBackend command name -> redis-py call; works on clients and pipelines alike
_REDIS_CALLS: Dict[str, Callable[..., Any]] = {
    "ordered_set_add": lambda r, key, rank, member: r.zadd(key, {member: rank}),
    "ordered_set_count": lambda r, key, low, high: r.zcount(key, low, high),
    "ordered_set_remove_range": lambda r, key, low, high: r.zremrangebyscore(key, low, high),
    "get": lambda r, key: r.get(key),
    "set": lambda r, key, value, ttl=None: r.set(key, value, ex=ttl if ttl and ttl > 0 else None),
    "increment": lambda r, key: r.incr(key),
    "increment_by": lambda r, key, amount: r.incrby(key, amount),
    "decrement": lambda r, key: r.decr(key),
    "time_to_live": lambda r, key: r.ttl(key),
    "get_multiple": lambda r, keys: r.mget(list(keys)),
    "expire": lambda r, key, ttl: r.expire(key, ttl),
}

_REDIS_REPLIES: Dict[str, Callable[[Any], Any]] = {
    "ordered_set_add": int,
    "ordered_set_count": int,
    "ordered_set_remove_range": int,
    "get": _to_int,
    "set": bool,
    "increment": int,
    "increment_by": int,
    "decrement": int,
    "time_to_live": int,
    "get_multiple": lambda values: [_to_int(v) for v in values],
    "expire": bool,
}


class RedisStore(StoreBackend):
    """Redis-based store implementation.

    Wraps a synchronous redis-py client. Batches are sent through a
    non-transactional pipeline, so they cost one round-trip but are not
    isolated from other clients.

    Example:
        >>> store = RedisStore.from_url("redis://localhost:6379/0")
        >>> store.increment("flowlimit:demo")
    """

    def __init__(self, client: redis.Redis) -> None:
        """Initialize the Redis store.

        Args:
            client: A connected (or lazily connecting) redis.Redis client.
        """
        self._redis = client

    @classmethod
    def from_url(cls, redis_url: Optional[str] = None) -> "RedisStore":
        """Build a store from a Redis URL with the configured socket timeouts."""
        client = redis.Redis.from_url(
            redis_url or settings.redis_url,
            socket_timeout=settings.redis_socket_timeout,
            socket_connect_timeout=settings.redis_socket_connect_timeout,
        )
        return cls(client)

    @property
    def client(self) -> redis.Redis:
        return self._redis

    def _call(self, name: str, *args: Any) -> Any:
        return _REDIS_REPLIES[name](_REDIS_CALLS[name](self._redis, *args))

    def ordered_set_add(self, key: str, rank: float, member: str) -> int:
        return self._call("ordered_set_add", key, rank, member)

    def ordered_set_count(self, key: str, low: float, high: float) -> int:
        return self._call("ordered_set_count", key, low, high)

    def ordered_set_remove_range(self, key: str, low: float, high: float) -> int:
        return self._call("ordered_set_remove_range", key, low, high)

    def get(self, key: str) -> Optional[int]:
        return self._call("get", key)

    def set(self, key: str, value: int, ttl: Optional[int] = None) -> bool:
        return self._call("set", key, value, ttl)

    def increment(self, key: str) -> int:
        return self._call("increment", key)

    def increment_by(self, key: str, amount: int) -> int:
        return self._call("increment_by", key, amount)

    def decrement(self, key: str) -> int:
        return self._call("decrement", key)

    def time_to_live(self, key: str) -> int:
        return self._call("time_to_live", key)

    def get_multiple(self, keys: Sequence[str]) -> List[Optional[int]]:
        return self._call("get_multiple", keys)

    def expire(self, key: str, ttl: int) -> bool:
        return self._call("expire", key, ttl)

    def execute_batch(self, commands: Sequence[StoreCommand]) -> List[Any]:
        pipe = self._redis.pipeline(transaction=False)
        for command in commands:
            if command.name not in BATCH_COMMANDS:
                raise StoreError(f"unsupported batch command: {command.name}")
            _REDIS_CALLS[command.name](pipe, *command.args)
        replies = pipe.execute()
        return [
            _REDIS_REPLIES[command.name](reply)
            for command, reply in zip(commands, replies)
        ]

    def close(self) -> None:
        """Close the Redis connection pool."""
        self._redis.close()


def create_store(
    backend: Optional[str] = None,
    redis_url: Optional[str] = None,
) -> StoreBackend:
    """Create a store backend from configuration.

    Each call builds a new store; callers own the handle and pass it to the
    limiters explicitly.

    Args:
        backend: 'redis', 'memory', or None to use settings.store_backend.
        redis_url: Redis connection URL. If not provided, uses settings.redis_url.

    Returns:
        A StoreBackend instance (RedisStore or InMemoryStore).

    Raises:
        ValueError: If the backend name is unknown.
    """
    backend = (backend or settings.store_backend).strip().lower()
    if backend == "memory":
        logger.debug("Using in-memory store backend")
        return InMemoryStore()
    if backend == "redis":
        logger.debug("Using Redis store backend")
        return RedisStore.from_url(redis_url)
    raise ValueError(f"Unknown store backend: {backend}")
