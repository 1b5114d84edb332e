"""
Connection-scoped wiring of the cache layer.

A session exists while a wallet account is connected to a chain endpoint.
It owns the request coordinator and the watcher supervisor; the cache store
it is given outlives every session.
"""
import asyncio
import re
from typing import Any, Awaitable, Callable, Optional

import structlog

from cache.coordinator import RequestCoordinator
from cache.core import CacheStore
from cache.invalidation import CacheInvalidator
from cache.keys import TTLPolicy
from config.settings import DEFAULT_LEDGER_ADDRESS, CacheSettings
from error_handling.retry import RetryPolicy
from .supervisor import WatcherState, WatcherSupervisor

logger = structlog.get_logger()

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def is_address(value: Optional[str]) -> bool:
    return bool(value) and bool(_ADDRESS_RE.match(value))


class CacheSession:
    """
    Lifecycle of the watchers for one connected account.

    Usage:
        session = CacheSession(store, provider)
        await session.connect("0xabc...")
        balance = await session.coordinator.fetch(key, fetch_fn)
        await session.disconnect()
    """

    def __init__(
        self,
        store: CacheStore,
        provider: Any = None,
        ledger_address: str = DEFAULT_LEDGER_ADDRESS,
        retry_policy: Optional[RetryPolicy] = None,
        polling_interval: float = 10.0,
        debounce_delay: float = 0.2,
        ttl_policy: Optional[TTLPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.store = store
        self.provider = provider
        self.ledger_address = ledger_address
        self.retry_policy = retry_policy or RetryPolicy()
        self.polling_interval = polling_interval
        self._sleep = sleep

        self.invalidator = CacheInvalidator(store)
        self.coordinator = RequestCoordinator(
            store, ttl_policy=ttl_policy, debounce_delay=debounce_delay
        )
        self.account: Optional[str] = None
        self.supervisor: Optional[WatcherSupervisor] = None

    @classmethod
    def from_settings(cls, store: CacheStore, provider: Any, settings: CacheSettings,
                      **kwargs) -> "CacheSession":
        return cls(
            store,
            provider,
            ledger_address=settings.ledger_address,
            retry_policy=RetryPolicy(settings.max_retries, settings.retry_base_delay),
            polling_interval=settings.polling_interval,
            debounce_delay=settings.debounce_delay,
            ttl_policy=TTLPolicy(settings.ttl_overrides, default_ttl=settings.default_ttl),
            **kwargs,
        )

    @property
    def state(self) -> WatcherState:
        if self.supervisor is None:
            return WatcherState.DISCONNECTED
        return self.supervisor.state

    @property
    def connected(self) -> bool:
        return self.supervisor is not None

    async def connect(self, account: str, provider: Any = None) -> WatcherSupervisor:
        """
        Start watching the ledger for ``account``.

        Connecting while already connected (an account or network switch)
        tears the previous watchers down first.

        Raises:
            ValueError: If the account is not an address or no provider is set
        """
        if not is_address(account):
            raise ValueError(f"Invalid account address: {account!r}")
        provider = provider if provider is not None else self.provider
        if provider is None:
            raise ValueError("A chain provider is required to connect")

        if self.connected:
            logger.info("session_switch", previous_account=self.account, account=account.lower(),
                        network_changed=provider is not self.provider)
            await self.disconnect()

        self.provider = provider
        self.account = account.lower()
        self.store.start_cleanup()

        self.supervisor = WatcherSupervisor(
            provider,
            self.invalidator,
            self.ledger_address,
            retry_policy=self.retry_policy,
            polling_interval=self.polling_interval,
            sleep=self._sleep,
        )
        await self.supervisor.start()
        logger.info("session_connected", account=self.account, ledger=self.ledger_address)
        return self.supervisor

    async def switch_account(self, account: str) -> WatcherSupervisor:
        return await self.connect(account)

    async def switch_network(self, provider: Any) -> WatcherSupervisor:
        if self.account is None:
            raise ValueError("No account connected")
        return await self.connect(self.account, provider=provider)

    async def disconnect(self) -> None:
        supervisor, self.supervisor = self.supervisor, None
        if supervisor is not None:
            await supervisor.stop()
        self.coordinator.reset()
        if self.account is not None:
            logger.info("session_disconnected", account=self.account)
        self.account = None

    async def close(self) -> None:
        """Disconnect, stop the store's expiry sweep and flush pending writes."""
        await self.disconnect()
        await self.store.stop_cleanup()
        await self.store.flush()

    async def __aenter__(self) -> "CacheSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def get_stats(self):
        return {
            'account': self.account,
            'state': self.state.value,
            'watcher': self.supervisor.get_state() if self.supervisor else None,
            'coordinator': self.coordinator.get_stats(),
            'cache': self.store.get_stats(),
        }
