"""
Block-range polling for ledger events.

Used when no push subscription can be established. Each tick reads the
current block height and scans every block after the last processed one.
A failed tick leaves ``last_processed_block`` untouched, so the same range
(grown by any new blocks) is scanned again on the next tick.
"""
import asyncio
from typing import Awaitable, Callable, Optional

import structlog

from chain.events import event_topics
from .base import Watcher

logger = structlog.get_logger()


class PollingWatcher(Watcher):

    mode = "polling"

    def __init__(
        self,
        provider,
        invalidator,
        ledger_address,
        interval: float = 10.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        super().__init__(provider, invalidator, ledger_address)
        self.interval = interval
        self.last_processed_block: Optional[int] = None
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    async def seed(self) -> None:
        """Start from the current height so history is never scanned."""
        try:
            self.last_processed_block = await self.provider.get_block_number()
        except Exception as e:
            logger.warning("polling_seed_failed", error=str(e))
            return
        logger.info("polling_seeded", block=self.last_processed_block)

    async def poll_once(self) -> int:
        """
        Scan new blocks once.

        Returns:
            Number of ledger events applied

        Raises:
            Exception: Provider errors; the range is not advanced
        """
        current_block = await self.provider.get_block_number()

        if self.last_processed_block is None:
            self.last_processed_block = current_block
            logger.info("polling_seeded", block=current_block)
            return 0
        if current_block <= self.last_processed_block:
            return 0

        from_block = self.last_processed_block + 1
        logs = await self.provider.get_logs(
            self.ledger_address, event_topics(), from_block, current_block
        )
        logs = sorted(logs, key=_log_position)
        applied = 0
        for log in logs:
            before = self.events_processed
            self.handle_log(log)
            applied += self.events_processed - before

        self.last_processed_block = current_block
        logger.debug("polling_tick", from_block=from_block, to_block=current_block, events=applied)
        return applied

    async def run(self) -> None:
        while True:
            await self._sleep(self.interval)
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("polling_tick_failed", error=str(e),
                               last_processed_block=self.last_processed_block)

    async def start(self) -> None:
        await self.seed()
        self._task = asyncio.get_running_loop().create_task(self.run())
        logger.info("polling_started", interval=self.interval, ledger=self.ledger_address)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("polling_stopped", last_processed_block=self.last_processed_block)

    async def wait_closed(self) -> None:
        if self._task is not None:
            await self._task


def _log_position(log) -> tuple:
    def as_int(value) -> int:
        if value is None:
            return 0
        if isinstance(value, int):
            return value
        return int(value, 16) if str(value).startswith("0x") else int(value)
    return as_int(log.get("blockNumber")), as_int(log.get("logIndex"))
