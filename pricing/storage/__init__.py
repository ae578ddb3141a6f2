"""
Price Storage

In-memory TTL cache, file and Redis backends, and the facade that selects
between them.
"""

from .base import AllPrices, ListedPrices, StorageBackend
from .cache import CacheEntry, PriceCache
from .facade import FacadeState, StorageFacade, StorageType
from .file_storage import FileStorage
from .redis_storage import RedisStorage

__all__ = [
    "AllPrices",
    "ListedPrices",
    "StorageBackend",
    "CacheEntry",
    "PriceCache",
    "FacadeState",
    "StorageFacade",
    "StorageType",
    "FileStorage",
    "RedisStorage",
]
