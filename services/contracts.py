from cache.coordinator import RequestCoordinator
from cache.keys import CacheKeys
from chain.ledger import LedgerClient


class ContractService:
    """Cached checks on contract deployment and ledger token support."""

    def __init__(self, coordinator: RequestCoordinator, ledger: LedgerClient):
        self.coordinator = coordinator
        self.ledger = ledger

    async def is_token_supported(self, token_address: str) -> bool:
        return await self.coordinator.fetch(
            CacheKeys.token_support(token_address),
            lambda: self.ledger.is_token_supported(token_address),
        )

    async def contract_exists(self, address: str) -> bool:
        return await self.coordinator.fetch(
            CacheKeys.contract_exists(address),
            lambda: self.ledger.contract_exists(address),
        )
