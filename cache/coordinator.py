"""
Request coordination in front of the cache store.

When several callers ask for the same key at once, only one underlying
fetch is issued and every caller receives its result. Successful results
are cached under the key's category TTL; failures are never cached.
"""
import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog

from .core import CacheStore, _MISSING
from .keys import TTLPolicy
from .monitoring import CacheMonitor, get_monitor

logger = structlog.get_logger()

FetchFn = Callable[[], Awaitable[Any]]


@dataclass
class InFlightRequest:
    """Tracks an outstanding fetch shared by every caller of one key."""
    task: asyncio.Task
    started_at: float = field(default_factory=time.monotonic)
    waiter_count: int = 1


class Debouncer:
    """
    Collapses bursts of triggers for one key into a single call.

    Each trigger restarts the key's timer; when it finally fires, the most
    recently supplied function runs once and every trigger of the burst
    receives its result. Every trigger gets its own future, so a caller that
    stops waiting leaves the rest of the burst untouched.
    """

    def __init__(self, delay: float = 0.2):
        self.delay = delay
        self._pending: Dict[str, Dict[str, Any]] = {}

    def call(self, key: str, fn: FetchFn) -> 'asyncio.Future[Any]':
        loop = asyncio.get_running_loop()
        pending = self._pending.get(key)
        if pending is None:
            pending = {'waiters': []}
            self._pending[key] = pending
        else:
            pending['handle'].cancel()
            logger.debug("debounce_restarted", key=key)
        waiter = loop.create_future()
        pending['waiters'].append(waiter)
        pending['fn'] = fn
        pending['handle'] = loop.call_later(self.delay, self._fire, key)
        return waiter

    def cancel(self, key: str) -> bool:
        """Drop a pending trigger before its fetch is issued."""
        pending = self._pending.pop(key, None)
        if pending is None:
            return False
        pending['handle'].cancel()
        for waiter in pending['waiters']:
            waiter.cancel()
        return True

    def cancel_all(self) -> int:
        keys = list(self._pending)
        for key in keys:
            self.cancel(key)
        return len(keys)

    @property
    def pending_keys(self):
        return list(self._pending)

    def _fire(self, key: str) -> None:
        pending = self._pending.pop(key, None)
        if pending is None:
            return
        waiters = pending['waiters']
        task = asyncio.ensure_future(pending['fn']())

        def _settle(done: asyncio.Task) -> None:
            error = None if done.cancelled() else done.exception()
            for waiter in waiters:
                if waiter.done():
                    continue
                if done.cancelled():
                    waiter.cancel()
                elif error is not None:
                    waiter.set_exception(error)
                else:
                    waiter.set_result(done.result())

        task.add_done_callback(_settle)


class RequestCoordinator:
    """
    Serves reads from the cache, coalescing concurrent misses per key.

    Usage:
        coordinator = RequestCoordinator(store)
        balance = await coordinator.fetch(
            CacheKeys.balance(user, token, with_fhe=True),
            lambda: ledger_read(user, token),
        )
    """

    def __init__(
        self,
        store: CacheStore,
        ttl_policy: Optional[TTLPolicy] = None,
        debounce_delay: float = 0.2,
        monitor: Optional[CacheMonitor] = None,
    ):
        self.store = store
        self.ttl_policy = ttl_policy or TTLPolicy()
        self._in_flight: Dict[str, InFlightRequest] = {}
        self._debouncer = Debouncer(debounce_delay)
        self._monitor = monitor or get_monitor()

    async def fetch(
        self,
        key: str,
        fetch_fn: FetchFn,
        ttl: Optional[float] = None,
        force_refresh: bool = False,
    ) -> Any:
        """
        Return the cached value for ``key`` or fetch it once for all callers.

        Args:
            key: Composite cache key
            fetch_fn: Zero-argument coroutine function performing the read
            ttl: Lifetime override; defaults to the key category's TTL
            force_refresh: Skip the cache lookup (still coalesced)

        Returns:
            The cached or freshly fetched value

        Raises:
            Exception: Any error from fetch_fn, delivered to every current waiter
        """
        if not force_refresh:
            cached = self.store.get(key, _MISSING)
            if cached is not _MISSING:
                return cached

        in_flight = self._in_flight.get(key)
        if in_flight is not None:
            in_flight.waiter_count += 1
            self._monitor.record_coalesced(key)
            logger.debug("request_coalesced", key=key, waiters=in_flight.waiter_count)
            return await asyncio.shield(in_flight.task)

        entry_ttl = ttl if ttl is not None else self.ttl_policy.ttl_for_key(key)
        task = asyncio.ensure_future(self._run_fetch(key, fetch_fn, entry_ttl))
        in_flight = InFlightRequest(task=task)
        self._in_flight[key] = in_flight
        task.add_done_callback(lambda done: self._settle(key, in_flight))
        logger.debug("fetch_started", key=key)
        return await asyncio.shield(task)

    async def _run_fetch(self, key: str, fetch_fn: FetchFn, ttl: Optional[float]) -> Any:
        started = time.monotonic()
        try:
            result = await fetch_fn()
        except Exception:
            self._monitor.record_fetch(key, time.monotonic() - started, failed=True)
            raise
        self._monitor.record_fetch(key, time.monotonic() - started)
        self.store.set(key, result, ttl)
        return result

    def _settle(self, key: str, in_flight: InFlightRequest) -> None:
        if self._in_flight.get(key) is in_flight:
            del self._in_flight[key]
        task = in_flight.task
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning("fetch_failed", key=key, error=str(error), waiters=in_flight.waiter_count)

    def refresh(self, key: str, fetch_fn: FetchFn, ttl: Optional[float] = None) -> 'asyncio.Future[Any]':
        """
        Schedule a debounced forced refetch of ``key``.

        Triggers arriving within the debounce delay collapse into one fetch.
        """
        return self._debouncer.call(
            key, lambda: self.fetch(key, fetch_fn, ttl=ttl, force_refresh=True)
        )

    def cancel_refresh(self, key: Optional[str] = None) -> int:
        """Cancel pending debounced refetches, for one key or all of them."""
        if key is None:
            return self._debouncer.cancel_all()
        return int(self._debouncer.cancel(key))

    def invalidate(self, key: str) -> bool:
        return self.store.delete(key)

    def reset(self) -> None:
        """
        Forget the session's tickets and pending debounce timers.

        Fetches already issued keep running; their results still land in
        the store.
        """
        cancelled = self._debouncer.cancel_all()
        dropped = len(self._in_flight)
        self._in_flight.clear()
        if cancelled or dropped:
            logger.info("coordinator_reset", cancelled_refreshes=cancelled, dropped_tickets=dropped)

    def is_in_flight(self, key: str) -> bool:
        return key in self._in_flight

    @property
    def active_requests(self) -> int:
        return len(self._in_flight)

    def get_stats(self) -> Dict[str, Any]:
        return {
            'active_requests': len(self._in_flight),
            'active_keys': list(self._in_flight),
            'pending_debounce': self._debouncer.pending_keys,
        }
