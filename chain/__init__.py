"""Chain access for the zpool cache: ledger events, JSON-RPC and contract reads."""

from .events import (
    DEPOSIT,
    LEDGER_EVENTS,
    TRANSFER,
    WITHDRAW,
    EventParam,
    EventSpec,
    LedgerEvent,
    LogDecodeError,
    decode_log,
    event_topics,
)
from .rpc import (
    JsonRpcProvider,
    LogSubscription,
    RpcError,
    SubscriptionUnsupported,
    supports_subscriptions,
)
from .ledger import LedgerClient

__all__ = [
    'DEPOSIT',
    'LEDGER_EVENTS',
    'TRANSFER',
    'WITHDRAW',
    'EventParam',
    'EventSpec',
    'LedgerEvent',
    'LogDecodeError',
    'decode_log',
    'event_topics',
    'JsonRpcProvider',
    'LogSubscription',
    'RpcError',
    'SubscriptionUnsupported',
    'supports_subscriptions',
    'LedgerClient',
]
