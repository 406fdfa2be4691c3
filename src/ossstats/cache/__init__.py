"""Persistent cache for ossstats.

SQLite-backed key/value entries with TTL and write-once semantics, plus the
package registry that maps npm packages onto libraries.
"""

from ossstats.cache.registry import PackageRegistry, RegisteredPackage
from ossstats.cache.store import CacheEntry, CacheStore

__all__ = ["CacheStore", "CacheEntry", "PackageRegistry", "RegisteredPackage"]
