"""Cache engines and the run-scoped cache delegator."""

from binforge.cache.base import CacheEngine
from binforge.cache.delegator import CacheDelegator, create_engine
from binforge.cache.http import HTTPCacheEngine
from binforge.cache.local import LocalCacheEngine
from binforge.cache.s3 import S3CacheEngine

__all__ = [
    "CacheEngine",
    "CacheDelegator",
    "create_engine",
    "LocalCacheEngine",
    "HTTPCacheEngine",
    "S3CacheEngine",
]
