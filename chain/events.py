"""
Ledger events consumed by the cache watchers.

Topics are the keccak-256 hash of the canonical event signature. Indexed
arguments are read from the log topics, the rest from the 32-byte words
of the log data.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from Crypto.Hash import keccak

WORD_HEX = 64


class LogDecodeError(ValueError):
    """Raised when a log does not match its event layout."""


def keccak256_hex(text: str) -> str:
    digest = keccak.new(digest_bits=256)
    digest.update(text.encode("utf-8"))
    return "0x" + digest.hexdigest()


@dataclass(frozen=True)
class EventParam:
    name: str
    type: str
    indexed: bool = False


@dataclass(frozen=True)
class EventSpec:
    """ABI description of one event."""
    name: str
    params: Tuple[EventParam, ...]

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(param.type for param in self.params)})"

    @property
    def topic0(self) -> str:
        return keccak256_hex(self.signature)

    @property
    def address_params(self) -> List[str]:
        return [param.name for param in self.params if param.type == "address"]


TRANSFER = EventSpec("Transfer", (
    EventParam("from", "address", indexed=True),
    EventParam("to", "address", indexed=True),
    EventParam("token", "address", indexed=True),
    EventParam("amount", "uint256"),
))

DEPOSIT = EventSpec("Deposit", (
    EventParam("user", "address", indexed=True),
    EventParam("token", "address", indexed=True),
    EventParam("amount", "uint256"),
))

WITHDRAW = EventSpec("Withdraw", (
    EventParam("user", "address", indexed=True),
    EventParam("token", "address", indexed=True),
    EventParam("amount", "uint256"),
))

LEDGER_EVENTS: Tuple[EventSpec, ...] = (TRANSFER, DEPOSIT, WITHDRAW)


def event_topics(specs: Tuple[EventSpec, ...] = LEDGER_EVENTS) -> List[List[str]]:
    """Topic filter matching any of the given events in position 0."""
    return [[spec.topic0 for spec in specs]]


@dataclass
class LedgerEvent:
    """A decoded ledger log."""
    name: str
    args: Dict[str, Any]
    block_number: Optional[int] = None
    tx_hash: Optional[str] = None
    log_index: Optional[int] = None
    principals: List[str] = field(default_factory=list)


def strip_hex(value: str) -> str:
    value = value.lower()
    return value[2:] if value.startswith("0x") else value


def _to_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    return int(value, 16) if str(value).startswith("0x") else int(value)


def decode_word(word: str, abi_type: str) -> Any:
    """Decode one 32-byte hex word of a static ABI type."""
    word = strip_hex(word).rjust(WORD_HEX, "0")
    if len(word) != WORD_HEX:
        raise LogDecodeError(f"Expected a 32-byte word, got {len(word) // 2} bytes")
    if abi_type == "address":
        return "0x" + word[-40:]
    if abi_type.startswith("uint"):
        return int(word, 16)
    if abi_type == "bool":
        return int(word, 16) != 0
    if abi_type.startswith("bytes"):
        return "0x" + word
    raise LogDecodeError(f"Unsupported ABI type: {abi_type}")


def decode_log(log: Dict[str, Any], specs: Tuple[EventSpec, ...] = LEDGER_EVENTS) -> Optional[LedgerEvent]:
    """
    Decode a raw JSON-RPC log into a LedgerEvent.

    Returns:
        The decoded event, or None when topic 0 matches none of ``specs``

    Raises:
        LogDecodeError: If the topics or data do not fit the event layout
    """
    topics = log.get("topics") or []
    if not topics:
        return None
    by_topic = {spec.topic0: spec for spec in specs}
    spec = by_topic.get(topics[0].lower())
    if spec is None:
        return None

    indexed_values = topics[1:]
    data = strip_hex(log.get("data") or "0x")
    words = [data[i:i + WORD_HEX] for i in range(0, len(data), WORD_HEX)]

    args: Dict[str, Any] = {}
    topic_pos = 0
    word_pos = 0
    for param in spec.params:
        if param.indexed:
            if topic_pos >= len(indexed_values):
                raise LogDecodeError(f"{spec.name} log is missing indexed '{param.name}'")
            args[param.name] = decode_word(indexed_values[topic_pos], param.type)
            topic_pos += 1
        else:
            if word_pos >= len(words):
                raise LogDecodeError(f"{spec.name} log is missing data for '{param.name}'")
            args[param.name] = decode_word(words[word_pos], param.type)
            word_pos += 1

    return LedgerEvent(
        name=spec.name,
        args=args,
        block_number=_to_int(log.get("blockNumber")),
        tx_hash=log.get("transactionHash"),
        log_index=_to_int(log.get("logIndex")),
        principals=[args[name] for name in spec.address_params if args.get(name)],
    )


def encode_address_topic(address: str) -> str:
    """Left-pad an address into a 32-byte topic."""
    return "0x" + strip_hex(address).rjust(WORD_HEX, "0")
