"""Common behaviour of the subscription and polling watchers."""
from typing import Any, Dict, Optional

import structlog

from cache.invalidation import CacheInvalidator
from cache.monitoring import record_event
from chain.events import LogDecodeError, decode_log

logger = structlog.get_logger()


class Watcher:
    """
    Observes ledger logs and invalidates the cache entries they touch.

    Subclasses decide how logs arrive (push subscription or block-range
    polling); both hand every raw log to ``handle_log``.
    """

    mode = "watcher"

    def __init__(self, provider: Any, invalidator: CacheInvalidator, ledger_address: Optional[str]):
        self.provider = provider
        self.invalidator = invalidator
        self.ledger_address = ledger_address
        self.events_processed = 0

    def handle_log(self, log: Dict[str, Any]) -> int:
        """
        Decode one raw log and apply its invalidation.

        Returns:
            Number of cache entries removed
        """
        try:
            event = decode_log(log)
        except LogDecodeError as e:
            logger.warning("ledger_log_undecodable", source=self.mode, error=str(e),
                           tx_hash=log.get("transactionHash"))
            return 0
        if event is None:
            return 0

        logger.info("ledger_event", source=self.mode, event_name=event.name,
                    block=event.block_number, principals=event.principals)
        removed = self.invalidator.apply(event)
        self.events_processed += 1
        record_event(event.name, self.mode)
        return removed

    async def start(self) -> None:
        raise NotImplementedError

    async def stop(self) -> None:
        raise NotImplementedError

    async def wait_closed(self) -> None:
        raise NotImplementedError
