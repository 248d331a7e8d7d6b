"""Response cache and its backing store."""

from src.cache.kv_cache import CacheEntry, CacheMetadata, KVCache
from src.cache.store import InMemoryKeyValueStore, KeyValueStore

__all__ = [
    "CacheEntry",
    "CacheMetadata",
    "InMemoryKeyValueStore",
    "KVCache",
    "KeyValueStore",
]
