"""
Supervision of the ledger event watchers.

The supervisor owns the watcher lifecycle for one connection:

    Disconnected -> Subscribing -> Active
                        |  ^         |
              retries   |  +---------+  subscription lost
              exhausted v
                     Polling (until stop)

Only one watcher is ever installed at a time, and ``stop()`` always
leaves the supervisor in ``Disconnected`` with no handlers attached.
"""
import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Tuple

import structlog

from cache.invalidation import CacheInvalidator
from cache.monitoring import record_watcher_state
from config.logging import log_error
from chain.rpc import supports_subscriptions
from error_handling.retry import RetryExhausted, RetryPolicy
from .base import Watcher
from .polling import PollingWatcher
from .subscription import SubscriptionWatcher

logger = structlog.get_logger()


class WatcherState(str, Enum):
    DISCONNECTED = "disconnected"
    SUBSCRIBING = "subscribing"
    ACTIVE = "active"
    POLLING = "polling"


_ALL_STATES = [state.value for state in WatcherState]


class WatcherSupervisor:
    """Runs the watcher state machine as a single background task."""

    def __init__(
        self,
        provider: Any,
        invalidator: CacheInvalidator,
        ledger_address: Optional[str],
        retry_policy: Optional[RetryPolicy] = None,
        polling_interval: float = 10.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        poll_sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Args:
            provider: Chain provider (see ``chain.rpc.JsonRpcProvider``)
            invalidator: Receives every decoded ledger event
            ledger_address: Contract whose logs are watched
            retry_policy: Backoff between subscription attempts
            polling_interval: Seconds between polling ticks
            sleep: Awaitable used for the retry backoff
            poll_sleep: Awaitable used between polling ticks
        """
        self.provider = provider
        self.invalidator = invalidator
        self.ledger_address = ledger_address
        self.retry_policy = retry_policy or RetryPolicy()
        self.polling_interval = polling_interval
        self._sleep = sleep
        self._poll_sleep = poll_sleep

        self._state = WatcherState.DISCONNECTED
        self._task: Optional[asyncio.Task] = None
        self._watcher: Optional[Watcher] = None
        self._waiters: List[Tuple[WatcherState, asyncio.Future]] = []
        self.history: List[WatcherState] = [self._state]
        self.failed_attempts = 0

    @property
    def state(self) -> WatcherState:
        return self._state

    @property
    def watcher(self) -> Optional[Watcher]:
        return self._watcher

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _set_state(self, state: WatcherState) -> None:
        if state == self._state:
            return
        logger.info("watcher_state_changed", previous=self._state.value, state=state.value,
                    ledger=self.ledger_address)
        self._state = state
        self.history.append(state)
        record_watcher_state(state.value, _ALL_STATES)

        waiting = []
        for wanted, future in self._waiters:
            if future.done():
                continue
            if wanted == state:
                future.set_result(state)
            else:
                waiting.append((wanted, future))
        self._waiters = waiting

    async def wait_for_state(self, state: WatcherState, timeout: Optional[float] = None) -> WatcherState:
        if self._state == state:
            return state
        future = asyncio.get_running_loop().create_future()
        self._waiters.append((state, future))
        return await asyncio.wait_for(future, timeout)

    async def start(self) -> None:
        if self.running:
            return
        self.failed_attempts = 0
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        """Tear down whichever watcher is installed and return to Disconnected."""
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._remove_watcher()
        self._set_state(WatcherState.DISCONNECTED)

    async def _remove_watcher(self) -> None:
        watcher, self._watcher = self._watcher, None
        if watcher is not None:
            await watcher.stop()

    async def _run(self) -> None:
        self._set_state(WatcherState.SUBSCRIBING)
        try:
            if not supports_subscriptions(self.provider):
                logger.info("subscriptions_unavailable", fallback="polling")
            else:
                while True:
                    watcher = await self._subscribe()
                    if watcher is None:
                        break
                    self._watcher = watcher
                    self._set_state(WatcherState.ACTIVE)
                    await watcher.wait_closed()

                    logger.warning("subscription_lost", ledger=self.ledger_address)
                    await self._remove_watcher()
                    self._set_state(WatcherState.SUBSCRIBING)

            await self._poll()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log_error(logger, e, {"ledger": self.ledger_address}, event="watcher_supervisor_failed")
            await self._remove_watcher()
            self._set_state(WatcherState.DISCONNECTED)

    async def _subscribe(self) -> Optional[SubscriptionWatcher]:
        self.failed_attempts = 0

        async def attempt() -> SubscriptionWatcher:
            watcher = SubscriptionWatcher(self.provider, self.invalidator, self.ledger_address)
            try:
                await watcher.start()
            except Exception:
                self.failed_attempts += 1
                raise
            return watcher

        try:
            return await self.retry_policy.run(attempt, sleep=self._sleep, name="event_subscription")
        except RetryExhausted as e:
            logger.warning("event_setup_failed_fallback_polling", attempts=e.attempts,
                           error=str(e.last_error))
            return None

    async def _poll(self) -> None:
        watcher = PollingWatcher(
            self.provider, self.invalidator, self.ledger_address,
            interval=self.polling_interval, sleep=self._poll_sleep,
        )
        await watcher.start()
        self._watcher = watcher
        self._set_state(WatcherState.POLLING)
        await watcher.wait_closed()

    def get_state(self):
        return {
            'state': self._state.value,
            'mode': self._watcher.mode if self._watcher else None,
            'failed_attempts': self.failed_attempts,
            'retry': self.retry_policy.get_state(),
            'polling_interval': self.polling_interval,
        }
