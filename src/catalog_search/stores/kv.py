"""
Key-value cache tier.

Two backends share one duck-typed interface (KeyValueStore):
1. InMemoryKeyValueStore: for development/testing, single process only
2. RedisKeyValueStore: for production

Besides plain get/set-with-TTL the engine needs sorted sets (query
frequency ledger, ranking index) and hash counters (daily search stats).
Every increment is a single server-side operation, never read-modify-write
from the application.
"""

import fnmatch
import threading
import time
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Mapping, Optional, Protocol, Sequence, Tuple, Union

import redis

from core.errors import StoreUnavailableError
from core.logging import get_logger

logger = get_logger(__name__)

Number = Union[int, float]


class KeyValueStore(Protocol):
    """Operations the engine uses on the cache tier."""

    def get(self, key: str) -> Optional[str]: ...

    def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None: ...

    def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool: ...

    def exists(self, key: str) -> bool: ...

    def delete(self, *keys: str) -> int: ...

    def delete_by_pattern(self, pattern: str) -> int: ...

    def increment_sorted_set_score(self, name: str, member: str, delta: float) -> float: ...

    def range_by_score_desc(self, name: str, start: int, stop: int) -> List[Tuple[str, float]]: ...

    def get_sorted_set_scores(self, name: str, members: Sequence[str]) -> Dict[str, Optional[float]]: ...

    def replace_sorted_set(self, name: str, scores: Mapping[str, float]) -> None: ...

    def trim_sorted_set(self, name: str, keep: int) -> int: ...

    def increment_counters(
        self, key: str, increments: Mapping[str, Number], ttl_seconds: Optional[int] = None
    ) -> None: ...

    def get_hash(self, key: str) -> Dict[str, str]: ...


# =============================================================================
# In-Memory Backend
# =============================================================================

class InMemoryKeyValueStore:
    """
    Thread-safe in-process store with Redis-like semantics.

    Note: Data is lost on restart and not shared across workers.
    Use RedisKeyValueStore in production.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.RLock()
        self._strings: Dict[str, str] = {}
        self._zsets: Dict[str, Dict[str, float]] = {}
        self._hashes: Dict[str, Dict[str, Number]] = {}
        self._expires: Dict[str, float] = {}

    # -------------------------------------------------------------------------
    # Expiry bookkeeping (caller holds the lock)
    # -------------------------------------------------------------------------

    def _purge_if_expired(self, key: str) -> None:
        deadline = self._expires.get(key)
        if deadline is not None and self._clock() >= deadline:
            self._drop(key)

    def _drop(self, key: str) -> bool:
        existed = False
        for space in (self._strings, self._zsets, self._hashes):
            if key in space:
                del space[key]
                existed = True
        self._expires.pop(key, None)
        return existed

    def _all_keys(self) -> List[str]:
        keys = set(self._strings) | set(self._zsets) | set(self._hashes)
        for key in list(keys):
            self._purge_if_expired(key)
        return [k for k in keys if k in self._strings or k in self._zsets or k in self._hashes]

    # -------------------------------------------------------------------------
    # Strings
    # -------------------------------------------------------------------------

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            self._purge_if_expired(key)
            return self._strings.get(key)

    def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._drop(key)
            self._strings[key] = value
            self._expires[key] = self._clock() + ttl_seconds

    def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        with self._lock:
            self._purge_if_expired(key)
            if key in self._strings or key in self._zsets or key in self._hashes:
                return False
            self._strings[key] = value
            self._expires[key] = self._clock() + ttl_seconds
            return True

    def exists(self, key: str) -> bool:
        with self._lock:
            self._purge_if_expired(key)
            return key in self._strings or key in self._zsets or key in self._hashes

    def delete(self, *keys: str) -> int:
        with self._lock:
            return sum(1 for key in keys if self._drop(key))

    def delete_by_pattern(self, pattern: str) -> int:
        with self._lock:
            matched = [k for k in self._all_keys() if fnmatch.fnmatchcase(k, pattern)]
            for key in matched:
                self._drop(key)
            return len(matched)

    def keys(self, pattern: str = "*") -> List[str]:
        with self._lock:
            return sorted(k for k in self._all_keys() if fnmatch.fnmatchcase(k, pattern))

    # -------------------------------------------------------------------------
    # Sorted sets
    # -------------------------------------------------------------------------

    def increment_sorted_set_score(self, name: str, member: str, delta: float) -> float:
        with self._lock:
            self._purge_if_expired(name)
            zset = self._zsets.setdefault(name, {})
            zset[member] = zset.get(member, 0.0) + delta
            return zset[member]

    def _ordered(self, name: str) -> List[Tuple[str, float]]:
        zset = self._zsets.get(name, {})
        # Redis orders equal scores by member, reversed for ZREVRANGE
        return sorted(zset.items(), key=lambda item: (item[1], item[0]), reverse=True)

    def range_by_score_desc(self, name: str, start: int, stop: int) -> List[Tuple[str, float]]:
        with self._lock:
            self._purge_if_expired(name)
            ordered = self._ordered(name)
            end = len(ordered) if stop == -1 else stop + 1
            return ordered[start:end]

    def get_sorted_set_scores(self, name: str, members: Sequence[str]) -> Dict[str, Optional[float]]:
        with self._lock:
            self._purge_if_expired(name)
            zset = self._zsets.get(name, {})
            return {member: zset.get(member) for member in members}

    def replace_sorted_set(self, name: str, scores: Mapping[str, float]) -> None:
        with self._lock:
            self._drop(name)
            if scores:
                self._zsets[name] = dict(scores)

    def trim_sorted_set(self, name: str, keep: int) -> int:
        with self._lock:
            self._purge_if_expired(name)
            ordered = self._ordered(name)
            removed = ordered[keep:]
            for member, _ in removed:
                del self._zsets[name][member]
            return len(removed)

    # -------------------------------------------------------------------------
    # Hash counters
    # -------------------------------------------------------------------------

    def increment_counters(
        self, key: str, increments: Mapping[str, Number], ttl_seconds: Optional[int] = None
    ) -> None:
        with self._lock:
            self._purge_if_expired(key)
            counters = self._hashes.setdefault(key, {})
            for field_name, delta in increments.items():
                counters[field_name] = counters.get(field_name, 0) + delta
            if ttl_seconds is not None:
                self._expires[key] = self._clock() + ttl_seconds

    def get_hash(self, key: str) -> Dict[str, str]:
        with self._lock:
            self._purge_if_expired(key)
            return {k: str(v) for k, v in self._hashes.get(key, {}).items()}


# =============================================================================
# Redis Backend
# =============================================================================

@contextmanager
def _redis_errors(operation: str) -> Iterator[None]:
    """Translate driver failures into StoreUnavailableError."""
    try:
        yield
    except redis.RedisError as e:
        logger.error("Redis operation failed", operation=operation, error=str(e))
        raise StoreUnavailableError(f"Cache tier unavailable during {operation}: {e}", store="cache") from e


class RedisKeyValueStore:
    """
    Redis-based store for production.

    Pattern deletes use SCAN (never KEYS) so large keyspaces don't block
    the server. The ranking index is rebuilt into a temporary key and
    swapped in with RENAME so readers never see a half-written set.
    """

    SCAN_COUNT = 1000
    WRITE_BATCH = 1000

    def __init__(self, client: redis.Redis):
        self._redis = client

    def get(self, key: str) -> Optional[str]:
        with _redis_errors("get"):
            return self._redis.get(key)

    def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        with _redis_errors("setex"):
            self._redis.setex(key, ttl_seconds, value)

    def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        with _redis_errors("set_nx"):
            return bool(self._redis.set(key, value, nx=True, ex=ttl_seconds))

    def exists(self, key: str) -> bool:
        with _redis_errors("exists"):
            return bool(self._redis.exists(key))

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        with _redis_errors("delete"):
            return int(self._redis.delete(*keys))

    def delete_by_pattern(self, pattern: str) -> int:
        deleted = 0
        batch: List[str] = []
        with _redis_errors("delete_by_pattern"):
            for key in self._redis.scan_iter(match=pattern, count=self.SCAN_COUNT):
                batch.append(key)
                if len(batch) >= self.SCAN_COUNT:
                    deleted += int(self._redis.delete(*batch))
                    batch = []
            if batch:
                deleted += int(self._redis.delete(*batch))
        return deleted

    def increment_sorted_set_score(self, name: str, member: str, delta: float) -> float:
        with _redis_errors("zincrby"):
            return float(self._redis.zincrby(name, delta, member))

    def range_by_score_desc(self, name: str, start: int, stop: int) -> List[Tuple[str, float]]:
        with _redis_errors("zrevrange"):
            rows = self._redis.zrevrange(name, start, stop, withscores=True)
        return [(member, float(score)) for member, score in rows]

    def get_sorted_set_scores(self, name: str, members: Sequence[str]) -> Dict[str, Optional[float]]:
        if not members:
            return {}
        with _redis_errors("zmscore"):
            scores = self._redis.zmscore(name, list(members))
        return {
            member: float(score) if score is not None else None
            for member, score in zip(members, scores)
        }

    def replace_sorted_set(self, name: str, scores: Mapping[str, float]) -> None:
        staging = f"{name}:staging"
        items = list(scores.items())
        with _redis_errors("replace_sorted_set"):
            pipe = self._redis.pipeline(transaction=True)
            pipe.delete(staging)
            for i in range(0, len(items), self.WRITE_BATCH):
                pipe.zadd(staging, dict(items[i:i + self.WRITE_BATCH]))
            if items:
                pipe.rename(staging, name)
            else:
                pipe.delete(name)
            pipe.execute()

    def trim_sorted_set(self, name: str, keep: int) -> int:
        with _redis_errors("zremrangebyrank"):
            return int(self._redis.zremrangebyrank(name, 0, -(keep + 1)))

    def increment_counters(
        self, key: str, increments: Mapping[str, Number], ttl_seconds: Optional[int] = None
    ) -> None:
        with _redis_errors("increment_counters"):
            pipe = self._redis.pipeline(transaction=False)
            for field_name, delta in increments.items():
                if isinstance(delta, float):
                    pipe.hincrbyfloat(key, field_name, delta)
                else:
                    pipe.hincrby(key, field_name, delta)
            if ttl_seconds is not None:
                pipe.expire(key, ttl_seconds)
            pipe.execute()

    def get_hash(self, key: str) -> Dict[str, str]:
        with _redis_errors("hgetall"):
            return dict(self._redis.hgetall(key))
