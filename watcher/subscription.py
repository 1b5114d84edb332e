import asyncio
from typing import Any, Dict, Optional

import structlog

from chain.events import event_topics
from .base import Watcher

logger = structlog.get_logger()

class SubscriptionWatcher(Watcher):
    """Receives ledger logs pushed by the provider's log subscription."""

    mode = "subscription"

    def __init__(self, provider, invalidator, ledger_address):
        super().__init__(provider, invalidator, ledger_address)
        self._subscription: Optional[Any] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """
        Subscribe to Transfer, Deposit and Withdraw logs.

        Raises:
            Exception: Any provider error; the supervisor decides on retries
        """
        self._running = True
        try:
            self._subscription = await self.provider.subscribe_logs(
                self.ledger_address, event_topics(), self._on_log
            )
        except BaseException:
            self._running = False
            raise
        logger.info("event_listeners_ready", ledger=self.ledger_address)

    def _on_log(self, log: Dict[str, Any]) -> None:
        # Late deliveries after teardown are dropped
        if not self._running:
            return
        self.handle_log(log)

    async def stop(self) -> None:
        self._running = False
        subscription, self._subscription = self._subscription, None
        if subscription is None:
            return
        try:
            await subscription.unsubscribe()
        except Exception as e:
            logger.error("event_listener_cleanup_failed", error=str(e))
        else:
            logger.info("event_listeners_removed")

    async def wait_closed(self) -> None:
        """Return when the subscription ends on its own."""
        subscription = self._subscription
        wait = getattr(subscription, "wait_closed", None)
        if wait is None:
            await asyncio.Event().wait()
        else:
            await wait()
