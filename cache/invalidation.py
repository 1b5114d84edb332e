from typing import Iterable, Optional
import structlog

from .core import CacheStore
from .keys import KeyCategory

logger = structlog.get_logger()

class CacheInvalidator:
    """Invalidation rules for ledger state changes."""

    def __init__(self, store: CacheStore):
        self.store = store
        self.category_groups = {
            'balance': [KeyCategory.BALANCE, KeyCategory.TOTAL_BALANCE],
            'allowance': [KeyCategory.ALLOWANCE],
            'fhe': [
                KeyCategory.ENCRYPT_RESULT,
                KeyCategory.DECRYPT_RESULT,
                KeyCategory.PUBLIC_DECRYPT_RESULT,
            ],
            'contract': [KeyCategory.CONTRACT_EXISTS, KeyCategory.TOKEN_SUPPORT],
        }

    def invalidate_principal(self, address: Optional[str]) -> int:
        """Drop every entry whose key embeds the address."""
        if not address:
            return 0
        return self.store.clear_pattern(address.lower())

    def invalidate_user(self, user_address: Optional[str]) -> int:
        removed = self.invalidate_principal(user_address)
        logger.info("cache_invalidated", type="user", address=user_address, entries=removed)
        return removed

    def invalidate_token(self, token_address: Optional[str]) -> int:
        removed = self.invalidate_principal(token_address)
        logger.info("cache_invalidated", type="token", address=token_address, entries=removed)
        return removed

    def _invalidate_principals(self, kind: str, addresses: Iterable[Optional[str]]) -> int:
        removed = sum(self.invalidate_principal(address) for address in addresses)
        logger.info("cache_invalidated", type=kind, entries=removed)
        return removed

    def after_transfer(self, from_address: str, to_address: str, token_address: str) -> int:
        return self._invalidate_principals("transfer", (from_address, to_address, token_address))

    def after_deposit(self, user_address: str, token_address: str) -> int:
        return self._invalidate_principals("deposit", (user_address, token_address))

    def after_withdrawal(self, user_address: str, token_address: str) -> int:
        return self._invalidate_principals("withdraw", (user_address, token_address))

    def after_approval(self, user_address: str, token_address: str) -> int:
        """Approvals only move allowances, so balances stay cached."""
        prefix = f"{KeyCategory.ALLOWANCE.prefix}{user_address.lower()}:{token_address.lower()}"
        removed = self.store.clear_prefix(prefix)
        logger.info("cache_invalidated", type="approval", user=user_address,
                    token=token_address, entries=removed)
        return removed

    def _clear_group(self, group: str) -> int:
        removed = sum(
            self.store.clear_prefix(category.prefix) for category in self.category_groups[group]
        )
        logger.info("cache_invalidated", type=group, entries=removed)
        return removed

    def clear_balance_cache(self) -> int:
        return self._clear_group('balance')

    def clear_allowance_cache(self) -> int:
        return self._clear_group('allowance')

    def clear_fhe_cache(self) -> int:
        return self._clear_group('fhe')

    def clear_contract_cache(self) -> int:
        return self._clear_group('contract')

    def clear_all(self) -> int:
        return self.store.clear()

    def apply(self, event) -> int:
        """
        Invalidate everything a decoded ledger event touches.

        Args:
            event: A ``chain.events.LedgerEvent``

        Returns:
            Number of entries removed
        """
        name = event.name
        args = event.args
        if name == "Transfer":
            return self.after_transfer(args.get("from"), args.get("to"), args.get("token"))
        if name == "Deposit":
            return self.after_deposit(args.get("user"), args.get("token"))
        if name == "Withdraw":
            return self.after_withdrawal(args.get("user"), args.get("token"))
        logger.debug("event_ignored", event=name)
        return 0
