"""
Cached balance reads.

Public balances come from the token contracts; private balances are
encrypted handles held by the ledger and need a decryptor, which asks the
user for a signature, so decrypted results are cached too.
"""
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional, Protocol

import structlog
from pydantic import BaseModel

from cache.coordinator import RequestCoordinator
from cache.keys import CacheKeys
from chain.ledger import LedgerClient
from config.tokens import AVAILABLE_TOKENS, TokenConfig
from .units import format_units, to_token_amount

logger = structlog.get_logger()


class Decryptor(Protocol):
    async def decrypt(self, handle: str) -> Any:
        ...


class TokenBalance(BaseModel):
    token: str
    private: Optional[Decimal] = None
    public: Decimal = Decimal(0)
    total: Decimal = Decimal(0)


class TotalBalance(BaseModel):
    total_private: Decimal = Decimal(0)
    total_public: Decimal = Decimal(0)
    tokens: Dict[str, TokenBalance] = {}


def _is_empty_handle(handle: Optional[str]) -> bool:
    if not handle or handle == "0x":
        return True
    return int(handle, 16) == 0


class BalanceService:
    """
    Reads public and private balances through the request coordinator.

    Args:
        coordinator: Shared request coordinator
        ledger: Ledger and token reader
        decryptor: Optional decryptor for private balance handles
    """

    def __init__(self, coordinator: RequestCoordinator, ledger: LedgerClient,
                 decryptor: Optional[Decryptor] = None):
        self.coordinator = coordinator
        self.ledger = ledger
        self.decryptor = decryptor

    @property
    def with_fhe(self) -> bool:
        return self.decryptor is not None

    def _balance_key(self, user_address: str, token: TokenConfig) -> str:
        return CacheKeys.balance(user_address, token.address, with_fhe=self.with_fhe)

    async def get_token_balance(self, user_address: str, token: TokenConfig) -> TokenBalance:
        data = await self.coordinator.fetch(
            self._balance_key(user_address, token),
            lambda: self._read_token_balance(user_address, token),
        )
        return TokenBalance.model_validate(data)

    async def refresh_balance(self, user_address: str, token: TokenConfig) -> TokenBalance:
        """Refetch one token balance, dropping the user's stale total."""
        self.coordinator.invalidate(CacheKeys.total_balance(user_address, with_fhe=self.with_fhe))
        data = await self.coordinator.fetch(
            self._balance_key(user_address, token),
            lambda: self._read_token_balance(user_address, token),
            force_refresh=True,
        )
        return TokenBalance.model_validate(data)

    async def _read_token_balance(self, user_address: str, token: TokenConfig) -> Dict[str, Any]:
        raw_public = await self.ledger.balance_of(token.address, user_address)
        public = Decimal(format_units(raw_public, token.decimals))

        private = None
        if self.decryptor is not None:
            private = Decimal(0)
            if await self.ledger.has_balance(user_address, token.address):
                handle = await self.ledger.get_encrypted_balance(user_address, token.address)
                if not _is_empty_handle(handle):
                    private = await self.decrypt_balance(handle, token.decimals)

        balance = TokenBalance(
            token=token.address.lower(),
            private=private,
            public=public,
            total=public + (private or Decimal(0)),
        )
        return balance.model_dump(mode="json")

    async def decrypt_balance(self, handle: str, decimals: int = 18) -> Decimal:
        """
        Decrypt an encrypted balance handle into a token amount.

        Raises:
            ValueError: If no decryptor is configured or the handle is malformed
        """
        if self.decryptor is None:
            raise ValueError("A decryptor is required to decrypt balances")
        if not handle.startswith("0x") or len(handle) < 10:
            raise ValueError(f"Invalid encrypted balance handle: {handle!r}")

        async def decrypt() -> str:
            value = await self.decryptor.decrypt(handle)
            return str(to_token_amount(value, decimals))

        return Decimal(await self.coordinator.fetch(CacheKeys.decrypt_result(handle), decrypt))

    async def get_total_balance(self, user_address: str,
                                tokens: Optional[Iterable[TokenConfig]] = None) -> TotalBalance:
        tokens = list(tokens if tokens is not None else AVAILABLE_TOKENS)

        async def read_total() -> Dict[str, Any]:
            total = TotalBalance()
            for token in tokens:
                balance = await self.get_token_balance(user_address, token)
                total.tokens[balance.token] = balance
                total.total_public += balance.public
                if balance.private is not None:
                    total.total_private += balance.private
            logger.debug("total_balance_read", user=user_address.lower(), tokens=len(tokens))
            return total.model_dump(mode="json")

        data = await self.coordinator.fetch(
            CacheKeys.total_balance(user_address, with_fhe=self.with_fhe), read_total
        )
        return TotalBalance.model_validate(data)
