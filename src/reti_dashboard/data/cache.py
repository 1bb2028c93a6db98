"""Query cache with per-entity freshness policies and LRU eviction."""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import wraps
from typing import Any, Callable, Hashable

from ..core.config import get_settings

logger = logging.getLogger(__name__)

QueryKey = tuple[Hashable, ...]


@dataclass(frozen=True)
class QueryPolicy:
    """Freshness rules for one kind of query.

    ``stale_time`` is how long a value is served without refetching
    (``None`` means forever). ``refetch_interval`` is how often a polling
    consumer should refresh it; when there is no stale time it also bounds
    how long the entry is kept.
    """

    stale_time: float | None
    refetch_interval: float | None = None

    @property
    def ttl(self) -> float | None:
        if self.stale_time is not None:
            return self.stale_time
        return self.refetch_interval


QUERY_POLICIES: dict[str, QueryPolicy] = {
    "num-validators": QueryPolicy(stale_time=60),
    "mbr": QueryPolicy(stale_time=None),
    "constraints": QueryPolicy(stale_time=60 * 60),
    "validator-config": QueryPolicy(stale_time=None, refetch_interval=2 * 60 * 60),
    "validator-state": QueryPolicy(stale_time=30, refetch_interval=30),
    "validator-pools": QueryPolicy(stale_time=30, refetch_interval=30),
    "validator-node-pool-assignments": QueryPolicy(
        stale_time=None, refetch_interval=2 * 60 * 60
    ),
    "validator-metrics": QueryPolicy(stale_time=30),
    "staked-info": QueryPolicy(stale_time=30),
    "stakes": QueryPolicy(stale_time=60, refetch_interval=60),
    "nfd": QueryPolicy(stale_time=5 * 60),
    "nfd-lookup": QueryPolicy(stale_time=5 * 60),
    "asset": QueryPolicy(stale_time=None),
    "block-times": QueryPolicy(stale_time=30 * 60),
    "pool-apy": QueryPolicy(stale_time=60 * 60),
}


def query_key(entity: str, *identifier: Hashable, **params: Hashable) -> QueryKey:
    """Build a cache key from entity type, identifier and view parameters."""
    return (entity, *identifier, tuple(sorted(params.items())))


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    fetched_at: datetime
    expires_at: datetime | None


class QueryCache:
    """
    In-memory cache keyed by (entity, identifier, params).

    Safe for single-threaded async but not thread-safe.
    Uses OrderedDict for LRU eviction when max_size is reached.
    """

    def __init__(
        self,
        default_ttl: int | None = None,
        max_size: int | None = None,
        policies: dict[str, QueryPolicy] | None = None,
    ):
        settings = get_settings()
        self._cache: OrderedDict[QueryKey, CacheEntry] = OrderedDict()
        self._default_ttl = default_ttl or settings.cache_ttl_seconds
        self._max_size = max_size or settings.cache_max_size
        self._policies = dict(QUERY_POLICIES if policies is None else policies)

    def policy_for(self, entity: str) -> QueryPolicy:
        return self._policies.get(entity, QueryPolicy(stale_time=self._default_ttl))

    def lookup(self, key: QueryKey) -> CacheEntry | None:
        """Get the entry if not expired. Moves accessed key to end (LRU)."""
        entry = self._cache.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and datetime.now() >= entry.expires_at:
            del self._cache[key]
            return None
        self._cache.move_to_end(key)
        return entry

    def get(self, key: QueryKey) -> Any | None:
        entry = self.lookup(key)
        return entry.value if entry is not None else None

    def contains(self, key: QueryKey) -> bool:
        return self.lookup(key) is not None

    def set(self, key: QueryKey, value: Any) -> None:
        """Store a value using the policy of the key's entity. Evicts LRU entries if full."""
        if key in self._cache:
            del self._cache[key]

        while len(self._cache) >= self._max_size:
            oldest_key, _ = self._cache.popitem(last=False)
            logger.debug(f"Cache eviction: removed {oldest_key!r}")

        now = datetime.now()
        ttl = self.policy_for(str(key[0])).ttl
        expires_at = now + timedelta(seconds=ttl) if ttl is not None else None
        self._cache[key] = CacheEntry(value=value, fetched_at=now, expires_at=expires_at)

    def invalidate(self, entity: str, *identifier: Hashable) -> int:
        """Drop every entry of an entity whose identifier starts with the given parts."""
        prefix = (entity, *identifier)
        doomed = [key for key in self._cache if key[: len(prefix)] == prefix]
        for key in doomed:
            del self._cache[key]
        return len(doomed)

    def clear(self) -> None:
        """Clear all cached values."""
        self._cache.clear()

    def cleanup_expired(self) -> int:
        """Remove all expired entries. Returns count of removed entries."""
        now = datetime.now()
        expired_keys = [
            key
            for key, entry in self._cache.items()
            if entry.expires_at is not None and now >= entry.expires_at
        ]
        for key in expired_keys:
            del self._cache[key]
        return len(expired_keys)

    @property
    def size(self) -> int:
        """Current number of entries in cache."""
        return len(self._cache)


def cached(entity: str) -> Callable:
    """Decorator caching an async reader method in the instance's ``cache``."""

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
            cache: QueryCache = self.cache
            key = query_key(entity, *args, **kwargs)

            entry = cache.lookup(key)
            if entry is not None:
                return entry.value

            result = await func(self, *args, **kwargs)
            cache.set(key, result)
            return result

        return wrapper

    return decorator
