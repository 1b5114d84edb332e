"""Tokens accepted by the ZPool ledger on Sepolia."""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class TokenConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    address: str
    symbol: str
    name: str
    decimals: int = 18


AVAILABLE_TOKENS: List[TokenConfig] = [
    TokenConfig(
        address="0x662E0846592CD39fc0129e94eC752f5F92FB3444",
        symbol="TEST",
        name="Test Token",
    ),
    TokenConfig(
        address="0x4d6634c673dB0a55e1fF0DBc893D3e116b28CbD0",
        symbol="TEST2",
        name="Test Token 2",
    ),
    TokenConfig(
        address="0x20e95adE07D966AeA72537347B8C364e67F3285D",
        symbol="TEST3",
        name="Test Token 3",
    ),
]

DEFAULT_TOKEN = AVAILABLE_TOKENS[0]


def get_token_by_address(address: str) -> Optional[TokenConfig]:
    """Look up a configured token by address (case-insensitive)."""
    address = address.lower()
    for token in AVAILABLE_TOKENS:
        if token.address.lower() == address:
            return token
    return None


def get_token_by_symbol(symbol: str) -> Optional[TokenConfig]:
    """Look up a configured token by symbol (case-insensitive)."""
    symbol = symbol.lower()
    for token in AVAILABLE_TOKENS:
        if token.symbol.lower() == symbol:
            return token
    return None
