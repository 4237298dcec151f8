"""两级缓存与后台重验证导出。"""

from .redis_store import CacheEntry, DurableStore, RedisDurableStore
from .service import MemorySnapshot, SOSCacheService

__all__ = [
    "CacheEntry",
    "DurableStore",
    "RedisDurableStore",
    "MemorySnapshot",
    "SOSCacheService",
]
