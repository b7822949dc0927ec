"""
Store adapters: catalog readers and key-value cache tiers.
"""

from catalog_search.stores.catalog import (
    CatalogReader,
    InMemoryCatalogReader,
    SupabaseCatalogReader,
)
from catalog_search.stores.kv import (
    InMemoryKeyValueStore,
    KeyValueStore,
    RedisKeyValueStore,
)

__all__ = [
    "CatalogReader",
    "InMemoryCatalogReader",
    "SupabaseCatalogReader",
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "RedisKeyValueStore",
]
