"""
Cache Manager: short-TTL result cache in front of the catalog.

Key layout:
    search:<category-token|_>:<sha1 of canonical request>
    autocomplete:<normalized prefix>:<limit>
    popularity:<limit>

Concurrent misses for the same key are allowed to race: compute functions
are idempotent reads, so both callers compute and the last writer's value
and TTL win. There is intentionally no lock around population.

Invalidation is driven by catalog write paths through invalidate(scope).
"""

import hashlib
import re
from typing import Any, Callable, Dict, List, Optional, TypeVar

from pydantic import TypeAdapter, ValidationError

from config.constants import (
    AUTOCOMPLETE_KEY_PREFIX,
    INVALIDATE_ALL,
    POPULARITY_KEY_PREFIX,
    SEARCH_KEY_PREFIX,
    UNSCOPED_CATEGORY,
)
from core.logging import LoggerMixin
from catalog_search.stores.kv import KeyValueStore

T = TypeVar("T")

_SAFE_TOKEN_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9_.\-]*")


def scope_token(category_id: Optional[str]) -> str:
    """
    Key-safe token for a category scope.

    Ids with glob or separator characters are hashed so pattern deletes
    can never match more (or less) than the intended category.
    """
    if not category_id or category_id == UNSCOPED_CATEGORY:
        return UNSCOPED_CATEGORY
    if _SAFE_TOKEN_RE.fullmatch(category_id):
        return category_id
    return "h" + hashlib.sha1(category_id.encode("utf-8")).hexdigest()[:16]


def search_key(scope: Optional[str], canonical: str) -> str:
    digest = hashlib.sha1(canonical.encode("utf-8")).hexdigest()
    return f"{SEARCH_KEY_PREFIX}:{scope_token(scope)}:{digest}"


def autocomplete_key(prefix: str, limit: int) -> str:
    digest = hashlib.sha1(prefix.encode("utf-8")).hexdigest()[:16]
    return f"{AUTOCOMPLETE_KEY_PREFIX}:{digest}:{limit}"


def popularity_key(limit: int) -> str:
    return f"{POPULARITY_KEY_PREFIX}:{limit}"


class CacheManager(LoggerMixin):
    """
    Get-or-compute over the key-value store.

    Usage:
        cache = CacheManager(store)
        result = cache.get_or_compute(key, 300, compute, SearchResult)
        cache.invalidate("cat-shirts")
    """

    def __init__(self, store: KeyValueStore):
        self._store = store
        self._adapters: Dict[Any, TypeAdapter] = {}

    def _adapter(self, value_type: Any) -> TypeAdapter:
        adapter = self._adapters.get(value_type)
        if adapter is None:
            adapter = TypeAdapter(value_type)
            self._adapters[value_type] = adapter
        return adapter

    def get_or_compute(
        self,
        key: str,
        ttl_seconds: int,
        compute_fn: Callable[[], T],
        value_type: Any,
        should_cache: Optional[Callable[[T], bool]] = None,
    ) -> T:
        """
        Return the cached value for key, computing and storing it on a miss.

        Args:
            key: Cache key
            ttl_seconds: TTL applied when the value is (re)written
            compute_fn: Side-effect-free producer of the value
            value_type: Type used to (de)serialize the value, e.g.
                        SearchResult or List[str]
            should_cache: Optional predicate; a computed value it rejects is
                          returned but not written

        Raises:
            StoreUnavailableError: If the key-value store fails.
        """
        adapter = self._adapter(value_type)

        cached = self._store.get(key)
        if cached is not None:
            try:
                value = adapter.validate_json(cached)
                self.logger.debug("Cache hit", key=key)
                return value
            except ValidationError as e:
                self.logger.warning("Discarding undecodable cache entry", key=key, error=str(e))

        self.logger.debug("Cache miss", key=key)
        value = compute_fn()
        if should_cache is not None and not should_cache(value):
            self.logger.info("Cache write skipped", key=key)
            return value
        self._store.set_with_ttl(key, adapter.dump_json(value).decode("utf-8"), ttl_seconds)
        return value

    def invalidate(self, scope: Optional[str] = INVALIDATE_ALL) -> int:
        """
        Drop cached entries affected by a catalog change.

        Args:
            scope: "all" (or None) for every search/autocomplete entry, or a
                   category id. A category scope also drops unscoped search
                   entries, which may contain products of that category.

        Returns:
            Number of deleted keys.
        """
        patterns: List[str]
        if scope is None or scope == INVALIDATE_ALL:
            patterns = [f"{SEARCH_KEY_PREFIX}:*", f"{AUTOCOMPLETE_KEY_PREFIX}:*"]
        else:
            patterns = [
                f"{SEARCH_KEY_PREFIX}:{scope_token(scope)}:*",
                f"{SEARCH_KEY_PREFIX}:{UNSCOPED_CATEGORY}:*",
                f"{AUTOCOMPLETE_KEY_PREFIX}:*",
            ]

        deleted = sum(self._store.delete_by_pattern(pattern) for pattern in dict.fromkeys(patterns))
        self.logger.info("Cache invalidated", scope=scope or INVALIDATE_ALL, deleted=deleted)
        return deleted
