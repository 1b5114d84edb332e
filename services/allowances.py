"""Cached ERC-20 allowance reads for deposits into the ledger."""
from typing import Optional

import structlog
from pydantic import BaseModel

from cache.coordinator import RequestCoordinator
from cache.invalidation import CacheInvalidator
from cache.keys import CacheKeys
from chain.ledger import LedgerClient
from config.tokens import TokenConfig
from .units import format_units, parse_units

logger = structlog.get_logger()


class AllowanceInfo(BaseModel):
    allowance: int = 0
    allowance_formatted: str = "0.0"
    has_enough_allowance: bool = False
    required_amount: str = "0"
    error: Optional[str] = None


class AllowanceService:
    """
    Reads how much of a token the ledger may pull from a user.

    Refreshes are debounced so bursts of amount edits trigger one read.
    """

    def __init__(self, coordinator: RequestCoordinator, ledger: LedgerClient,
                 invalidator: Optional[CacheInvalidator] = None):
        self.coordinator = coordinator
        self.ledger = ledger
        self.invalidator = invalidator or CacheInvalidator(coordinator.store)

    def _spender(self, spender_address: Optional[str]) -> str:
        return spender_address or self.ledger.ledger_address

    async def get_allowance(self, user_address: str, token_address: str,
                            spender_address: Optional[str] = None) -> int:
        spender = self._spender(spender_address)
        return await self.coordinator.fetch(
            CacheKeys.allowance(user_address, token_address, spender),
            lambda: self.ledger.allowance(token_address, user_address, spender),
        )

    async def refresh_allowance(self, user_address: str, token_address: str,
                                spender_address: Optional[str] = None) -> int:
        spender = self._spender(spender_address)
        return await self.coordinator.refresh(
            CacheKeys.allowance(user_address, token_address, spender),
            lambda: self.ledger.allowance(token_address, user_address, spender),
        )

    async def get_allowance_info(self, user_address: str, token: TokenConfig, required_amount: str,
                                 spender_address: Optional[str] = None) -> AllowanceInfo:
        """
        Compare the current allowance with the amount about to be deposited.

        Read or parse failures are reported in ``error`` rather than raised.
        """
        try:
            allowance = await self.get_allowance(user_address, token.address, spender_address)
            required = parse_units(required_amount, token.decimals)
        except Exception as e:
            logger.warning("allowance_info_failed", user=user_address.lower(),
                           token=token.symbol, error=str(e))
            return AllowanceInfo(required_amount=str(required_amount), error=str(e))

        return AllowanceInfo(
            allowance=allowance,
            allowance_formatted=format_units(allowance, token.decimals),
            has_enough_allowance=allowance >= required,
            required_amount=str(required_amount),
        )

    def after_approval(self, user_address: str, token_address: str) -> int:
        """Drop cached allowances once an approval transaction is mined."""
        return self.invalidator.after_approval(user_address, token_address)
