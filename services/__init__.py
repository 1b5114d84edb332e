"""Ledger reads served through the cache coordinator."""

from .units import format_units, parse_units, to_token_amount
from .balances import BalanceService, Decryptor, TokenBalance, TotalBalance
from .allowances import AllowanceInfo, AllowanceService
from .contracts import ContractService

__all__ = [
    'format_units',
    'parse_units',
    'to_token_amount',
    'BalanceService',
    'Decryptor',
    'TokenBalance',
    'TotalBalance',
    'AllowanceInfo',
    'AllowanceService',
    'ContractService',
]
