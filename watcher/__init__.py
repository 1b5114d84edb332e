"""Ledger event watchers that keep the cache consistent with on-chain state."""

from .base import Watcher
from .subscription import SubscriptionWatcher
from .polling import PollingWatcher
from .supervisor import WatcherState, WatcherSupervisor
from .session import CacheSession, is_address

__all__ = [
    'Watcher',
    'SubscriptionWatcher',
    'PollingWatcher',
    'WatcherState',
    'WatcherSupervisor',
    'CacheSession',
    'is_address',
]
