"""Fakes and fixtures data shared by the test modules."""
import asyncio
import math

from chain.events import encode_address_topic
from chain.rpc import RpcError

USER_A = "0x" + "a1" * 20
USER_B = "0x" + "b2" * 20
USER_C = "0x" + "c3" * 20
TOKEN_1 = "0x" + "d4" * 20
TOKEN_2 = "0x" + "e5" * 20
LEDGER = "0x" + "f6" * 20


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_log(spec, *indexed, amount=1, block=1, log_index=0):
    """Build a raw JSON-RPC log for a ledger event."""
    return {
        "address": LEDGER,
        "topics": [spec.topic0] + [encode_address_topic(address) for address in indexed],
        "data": "0x" + format(amount, "064x"),
        "blockNumber": hex(block),
        "logIndex": hex(log_index),
        "transactionHash": "0x" + "11" * 32,
    }


class FakeSubscription:
    def __init__(self, callback):
        self.callback = callback
        self.unsubscribed = False
        self._closed = asyncio.Event()

    def emit(self, log):
        # Delivers even after unsubscribe, like a late socket message
        self.callback(log)

    def drop(self):
        self._closed.set()

    async def unsubscribe(self):
        self.unsubscribed = True
        self._closed.set()

    async def wait_closed(self):
        await self._closed.wait()


class FakeProvider:
    """Polling-only chain provider with a scripted height and log set."""

    def __init__(self, block_number: int = 100):
        self.block_number = block_number
        self.logs = []
        self.get_logs_calls = []
        self.fail_block_number = False
        self.fail_get_logs = False

    async def get_block_number(self):
        if self.fail_block_number:
            raise RpcError("eth_blockNumber failed")
        return self.block_number

    async def get_logs(self, address, topics, from_block, to_block):
        self.get_logs_calls.append((from_block, to_block))
        if self.fail_get_logs:
            raise RpcError("eth_getLogs failed")
        return [
            log for log in self.logs
            if from_block <= int(log["blockNumber"], 16) <= to_block
        ]


class FakeSubscriptionProvider(FakeProvider):
    """Provider whose first ``failures`` subscription attempts fail."""

    def __init__(self, failures=0, block_number: int = 100):
        super().__init__(block_number)
        self.failures = failures
        self.subscribe_calls = 0
        self.subscriptions = []

    async def subscribe_logs(self, address, topics, callback):
        self.subscribe_calls += 1
        if self.subscribe_calls <= self.failures:
            raise RpcError("eth_subscribe failed")
        subscription = FakeSubscription(callback)
        self.subscriptions.append(subscription)
        return subscription



ALWAYS_FAIL = math.inf
