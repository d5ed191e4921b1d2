"""
Response caching package.

Provides the SQLite-backed TTL store used by the cache service and the
interception layer that serves repeated read-only requests from it.
Caching is an optimization only: a cache failure never fails a request.
"""

from .sqlite_cache import CacheEntry, SQLiteCache
from .interceptor import CacheInterceptor, CacheOptions, CacheRequest, ResponseCapture
from .http_middleware import ResponseCacheMiddleware

__all__ = [
    "CacheEntry",
    "SQLiteCache",
    "CacheInterceptor",
    "CacheOptions",
    "CacheRequest",
    "ResponseCapture",
    "ResponseCacheMiddleware",
]
