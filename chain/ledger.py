"""Read-only access to the ZPool ledger and ERC-20 tokens through eth_call."""
from typing import Any, List

from .events import strip_hex, encode_address_topic, keccak256_hex


def selector(signature: str) -> str:
    """First four bytes of the keccak hash of a function signature."""
    return keccak256_hex(signature)[:10]


def encode_call(signature: str, *addresses: str) -> str:
    """ABI-encode a call whose arguments are all addresses."""
    return selector(signature) + "".join(strip_hex(encode_address_topic(a)) for a in addresses)


def _words(result: str) -> List[str]:
    data = strip_hex(result or "0x")
    return [data[i:i + 64] for i in range(0, len(data), 64)]


def decode_uint(result: str) -> int:
    words = _words(result)
    if not words:
        raise ValueError("empty eth_call result")
    return int(words[0], 16)


def decode_bool(result: str) -> bool:
    return decode_uint(result) != 0


def decode_bytes32(result: str) -> str:
    words = _words(result)
    if not words:
        raise ValueError("empty eth_call result")
    return "0x" + words[0]


class LedgerClient:
    """
    Typed reads against the ledger contract and the tokens it accepts.

    Args:
        provider: A chain provider exposing ``eth_call`` and ``get_code``
        ledger_address: Address of the ZPool contract
    """

    def __init__(self, provider: Any, ledger_address: str):
        self.provider = provider
        self.ledger_address = ledger_address

    async def has_balance(self, user_address: str, token_address: str) -> bool:
        data = encode_call("hasBalance(address,address)", user_address, token_address)
        return decode_bool(await self.provider.eth_call(self.ledger_address, data))

    async def get_encrypted_balance(self, user_address: str, token_address: str) -> str:
        """Encrypted balance handle; decrypting it needs the user's signature."""
        data = encode_call("getBalance(address,address)", user_address, token_address)
        return decode_bytes32(await self.provider.eth_call(self.ledger_address, data))

    async def is_token_supported(self, token_address: str) -> bool:
        data = encode_call("supportedTokens(address)", token_address)
        return decode_bool(await self.provider.eth_call(self.ledger_address, data))

    async def balance_of(self, token_address: str, owner_address: str) -> int:
        data = encode_call("balanceOf(address)", owner_address)
        return decode_uint(await self.provider.eth_call(token_address, data))

    async def allowance(self, token_address: str, owner_address: str, spender_address: str) -> int:
        data = encode_call("allowance(address,address)", owner_address, spender_address)
        return decode_uint(await self.provider.eth_call(token_address, data))

    async def contract_exists(self, address: str) -> bool:
        code = await self.provider.get_code(address)
        return bool(code) and code not in ("0x", "0x0")
