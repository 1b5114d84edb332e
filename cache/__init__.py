"""
zpool client-side cache layer

Makes repeated ledger reads cheap while staying correct after
state-changing transactions:
- A TTL cache store with bounded size, eviction and durable persistence
- A deterministic key scheme enabling group invalidation per address
- Request coalescing so concurrent identical reads share one fetch
- Invalidation rules driven by on-chain Transfer/Deposit/Withdraw events
"""

from .core import CacheEntry, CacheStore
from .storage import (
    CacheStorage,
    JsonFileStorage,
    MemoryStorage,
    RedisStorage,
    StorageError,
    create_storage
)
from .keys import CacheKeys, KeyCategory, TTLPolicy, TTL_CONFIG, category_for_key
from .coordinator import Debouncer, RequestCoordinator
from .invalidation import CacheInvalidator

__all__ = [
    'CacheEntry',
    'CacheStore',
    'CacheStorage',
    'JsonFileStorage',
    'MemoryStorage',
    'RedisStorage',
    'StorageError',
    'create_storage',
    'CacheKeys',
    'KeyCategory',
    'TTLPolicy',
    'TTL_CONFIG',
    'category_for_key',
    'Debouncer',
    'RequestCoordinator',
    'CacheInvalidator',
    'build_store',
]


def build_store(settings=None) -> CacheStore:
    """Create a cache store from settings."""
    if settings is None:
        from config.settings import get_settings
        settings = get_settings()
    return CacheStore(
        max_size=settings.max_size,
        default_ttl=settings.default_ttl,
        cleanup_interval=settings.cleanup_interval,
        storage=create_storage(settings),
    )
