#!/usr/bin/env python
"""
Example script demonstrating the zpool cache layer.

Connects to a Sepolia endpoint, reads public balances and token support
for the configured tokens through the request coordinator, and shows the
effect of request coalescing and caching on repeated reads.

    ZPOOL_CACHE_RPC_URL=https://... python examples/cache_example.py 0xYourAccount
"""
import asyncio
import sys
import time

import structlog

from cache import build_store
from chain import JsonRpcProvider, LedgerClient
from config import AVAILABLE_TOKENS, configure_logging, get_settings
from services import BalanceService, ContractService
from watcher import CacheSession, WatcherState

logger = structlog.get_logger()


async def run(account: str) -> None:
    settings = get_settings()
    store = build_store(settings)

    async with JsonRpcProvider(settings.rpc_url, ws_url=settings.ws_url) as provider:
        session = CacheSession.from_settings(store, provider, settings)
        supervisor = await session.connect(account)
        ledger = LedgerClient(provider, settings.ledger_address)
        balances = BalanceService(session.coordinator, ledger)
        contracts = ContractService(session.coordinator, ledger)

        # Concurrent identical reads share one eth_call
        token = AVAILABLE_TOKENS[0]
        start_time = time.time()
        results = await asyncio.gather(*(balances.get_token_balance(account, token) for _ in range(5)))
        first_call_time = time.time() - start_time
        logger.info("Coalesced balance reads", token=token.symbol,
                    public=str(results[0].public), elapsed=f"{first_call_time:.3f}s")

        start_time = time.time()
        await balances.get_token_balance(account, token)
        logger.info("Cached balance read", elapsed=f"{time.time() - start_time:.6f}s")

        for token in AVAILABLE_TOKENS:
            supported = await contracts.is_token_supported(token.address)
            logger.info("Token support", token=token.symbol, supported=supported)

        try:
            await supervisor.wait_for_state(WatcherState.ACTIVE, timeout=5)
        except asyncio.TimeoutError:
            pass
        logger.info("Watcher state", state=session.state.value)
        logger.info("Cache statistics", **session.get_stats()['cache'])

        await session.close()
        await store.close()


def main():
    """Run the cache example."""
    settings = get_settings()
    configure_logging(settings.log_level, json_logs=False)
    if len(sys.argv) < 2 or not settings.rpc_url:
        print("usage: ZPOOL_CACHE_RPC_URL=<url> cache_example.py <account>")
        sys.exit(1)
    asyncio.run(run(sys.argv[1]))


if __name__ == "__main__":
    main()
