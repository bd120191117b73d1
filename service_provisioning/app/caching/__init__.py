"""
Provisioning caching package.

Process-local lookup caches in front of the management plane. Entries are
short-lived, bounded, and invalidated explicitly after mutations.
"""

from .lookup_cache import LookupCache, CacheEntry, cache_key

__all__ = ["LookupCache", "CacheEntry", "cache_key"]
