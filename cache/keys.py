"""
Cache key scheme and TTL policy for ledger reads.

Every key that concerns a principal (a user, token or contract address)
embeds that address lowercased, so all entries for a principal can be
dropped with a single substring invalidation. Each key starts with the
prefix of its category; the category decides the entry lifetime.
"""
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union


class KeyCategory(Enum):
    """Categories of cached data, by key prefix."""
    BALANCE = "balance"
    TOTAL_BALANCE = "total-balance"
    ALLOWANCE = "allowance"
    TOKEN_SUPPORT = "token-support"
    CONTRACT_EXISTS = "contract-exists"
    ENCRYPT_RESULT = "encrypt-result"
    DECRYPT_RESULT = "decrypt-result"
    PUBLIC_DECRYPT_RESULT = "public-decrypt-result"
    NETWORK_INFO = "network-info"

    @property
    def prefix(self) -> str:
        return f"{self.value}:"


# Seconds. Balances move with every transfer, contract code almost never.
TTL_CONFIG: Dict[KeyCategory, float] = {
    KeyCategory.BALANCE: 15,
    KeyCategory.TOTAL_BALANCE: 20,
    KeyCategory.ALLOWANCE: 30,
    KeyCategory.TOKEN_SUPPORT: 60,
    KeyCategory.CONTRACT_EXISTS: 300,
    KeyCategory.ENCRYPT_RESULT: 60,
    KeyCategory.DECRYPT_RESULT: 30,
    KeyCategory.PUBLIC_DECRYPT_RESULT: 30,
    KeyCategory.NETWORK_INFO: 60,
}

_BY_PREFIX = {category.prefix: category for category in KeyCategory}


def _fhe_flag(with_fhe: bool) -> str:
    return "fhe" if with_fhe else "no-fhe"


class CacheKeys:
    """Builders for namespaced cache keys."""

    @staticmethod
    def balance(user_address: str, token_address: str, with_fhe: bool = False) -> str:
        return f"balance:{user_address.lower()}:{token_address.lower()}:{_fhe_flag(with_fhe)}"

    @staticmethod
    def total_balance(user_address: str, with_fhe: bool = False) -> str:
        return f"total-balance:{user_address.lower()}:{_fhe_flag(with_fhe)}"

    @staticmethod
    def allowance(user_address: str, token_address: str, spender_address: str) -> str:
        return (f"allowance:{user_address.lower()}:{token_address.lower()}:"
                f"{spender_address.lower()}")

    @staticmethod
    def token_support(token_address: str) -> str:
        return f"token-support:{token_address.lower()}"

    @staticmethod
    def contract_exists(address: str) -> str:
        return f"contract-exists:{address.lower()}"

    @staticmethod
    def encrypt_result(value: Any, user_address: str) -> str:
        return f"encrypt-result:{value}:{user_address.lower()}"

    @staticmethod
    def decrypt_result(handle: str) -> str:
        return f"decrypt-result:{handle.lower()}"

    @staticmethod
    def public_decrypt_result(handle: str) -> str:
        return f"public-decrypt-result:{handle.lower()}"

    @staticmethod
    def network_info(chain_id: Union[int, str]) -> str:
        return f"network-info:{chain_id}"


def category_for_key(key: str) -> Optional[KeyCategory]:
    """Return the category a key belongs to, or None for foreign keys."""
    prefix, sep, _ = key.partition(":")
    if not sep:
        return None
    return _BY_PREFIX.get(prefix + sep)


def category_label(key: str) -> str:
    """Metric label for a key."""
    category = category_for_key(key)
    return category.value if category else "other"


class TTLPolicy:
    """
    Per-category TTL lookup with overrides.

    Args:
        overrides: Category value (e.g. ``"balance"``) or KeyCategory to seconds
        default_ttl: Lifetime for keys outside the scheme; None defers to the store
    """

    def __init__(
        self,
        overrides: Optional[Mapping[Union[str, KeyCategory], float]] = None,
        default_ttl: Optional[float] = None,
    ):
        self._table = dict(TTL_CONFIG)
        for category, ttl in (overrides or {}).items():
            if not isinstance(category, KeyCategory):
                category = KeyCategory(category)
            self._table[category] = ttl
        self.default_ttl = default_ttl

    def ttl_for(self, category: KeyCategory) -> float:
        return self._table[category]

    def ttl_for_key(self, key: str) -> Optional[float]:
        category = category_for_key(key)
        if category is None:
            return self.default_ttl
        return self._table[category]

    def as_dict(self) -> Dict[str, float]:
        return {category.value: ttl for category, ttl in self._table.items()}
