import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from chain.ledger import LedgerClient, decode_bool, decode_bytes32, decode_uint, encode_call, selector
from chain.rpc import JsonRpcProvider, RpcError, SubscriptionUnsupported, supports_subscriptions
from tests.helpers import LEDGER, TOKEN_1, USER_A, FakeProvider, FakeSubscriptionProvider

TRUE_WORD = "0x" + "0" * 63 + "1"


@pytest.fixture
def provider():
    provider = Mock()
    provider.eth_call = AsyncMock(return_value=TRUE_WORD)
    provider.get_code = AsyncMock(return_value="0x6080")
    return provider


@pytest.fixture
def ledger(provider):
    return LedgerClient(provider, LEDGER)


def test_selectors():
    assert selector("balanceOf(address)") == "0x70a08231"
    assert selector("allowance(address,address)") == "0xdd62ed3e"


def test_encode_call_pads_addresses():
    data = encode_call("allowance(address,address)", USER_A, LEDGER)
    assert data.startswith("0xdd62ed3e")
    assert len(data) == 10 + 64 * 2
    assert data.endswith(LEDGER[2:])


def test_result_decoding():
    assert decode_uint("0x" + format(12345, "064x")) == 12345
    assert decode_bool(TRUE_WORD) is True
    assert decode_bool("0x" + "0" * 64) is False
    assert decode_bytes32("0x" + "ab" * 32) == "0x" + "ab" * 32
    with pytest.raises(ValueError):
        decode_uint("0x")


def test_has_balance(ledger, provider, loop):
    assert loop.run_until_complete(ledger.has_balance(USER_A, TOKEN_1)) is True
    to, data = provider.eth_call.await_args.args
    assert to == LEDGER
    assert data.startswith(selector("hasBalance(address,address)"))


def test_balance_of_targets_token(ledger, provider, loop):
    provider.eth_call.return_value = "0x" + format(10 ** 18, "064x")
    assert loop.run_until_complete(ledger.balance_of(TOKEN_1, USER_A)) == 10 ** 18
    to, data = provider.eth_call.await_args.args
    assert to == TOKEN_1
    assert data.startswith("0x70a08231")


def test_encrypted_balance_handle(ledger, provider, loop):
    provider.eth_call.return_value = "0x" + "cd" * 32
    assert loop.run_until_complete(ledger.get_encrypted_balance(USER_A, TOKEN_1)) == "0x" + "cd" * 32


def test_contract_exists(ledger, provider, loop):
    assert loop.run_until_complete(ledger.contract_exists(LEDGER)) is True
    provider.get_code.return_value = "0x"
    assert loop.run_until_complete(ledger.contract_exists(LEDGER)) is False


def test_supports_subscriptions():
    assert supports_subscriptions(FakeSubscriptionProvider())
    assert not supports_subscriptions(FakeProvider())
    assert supports_subscriptions(JsonRpcProvider("http://node", ws_url="ws://node"))
    assert not supports_subscriptions(JsonRpcProvider("http://node"))


def test_subscribe_without_websocket(loop):
    provider = JsonRpcProvider("http://node")
    with pytest.raises(SubscriptionUnsupported):
        loop.run_until_complete(provider.subscribe_logs(LEDGER, None, lambda log: None))


class FakeResponse:
    def __init__(self, payload):
        self.payload = payload

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def json(self, content_type=None):
        return self.payload


class FakeSession:
    closed = False

    def __init__(self, payload):
        self.payload = payload
        self.requests = []
        self.ws = None

    def post(self, url, json):
        self.requests.append(json)
        return FakeResponse(self.payload)

    async def ws_connect(self, url):
        return self.ws


class FakeWebSocket:
    """Websocket whose subscribe reply is scripted, or never arrives."""

    def __init__(self, reply=None):
        self.reply = reply
        self.send_json = AsyncMock()
        self.close = AsyncMock()

    async def receive_json(self):
        if self.reply is None:
            await asyncio.Event().wait()
        return self.reply


def test_rpc_call_decodes_result(loop):
    session = FakeSession({"jsonrpc": "2.0", "id": 1, "result": "0x10"})
    provider = JsonRpcProvider("http://node", session=session)

    assert loop.run_until_complete(provider.get_block_number()) == 16
    assert session.requests[0]["method"] == "eth_blockNumber"


def test_rpc_error_reply(loop):
    session = FakeSession({"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": "boom"}})
    provider = JsonRpcProvider("http://node", session=session)

    with pytest.raises(RpcError):
        loop.run_until_complete(provider.get_block_number())


def test_get_logs_filter(loop):
    session = FakeSession({"jsonrpc": "2.0", "id": 1, "result": None})
    provider = JsonRpcProvider("http://node", session=session)

    logs = loop.run_until_complete(provider.get_logs(LEDGER, [["0xabc"]], 101, 110))

    assert logs == []
    assert session.requests[0]["params"] == [
        {"fromBlock": "0x65", "toBlock": "0x6e", "address": LEDGER, "topics": [["0xabc"]]}
    ]


def test_subscribe_cancelled_during_handshake_closes_socket(loop):
    session = FakeSession(None)
    session.ws = FakeWebSocket(reply=None)
    provider = JsonRpcProvider("http://node", ws_url="ws://node", session=session)

    async def cancel_mid_handshake():
        task = asyncio.ensure_future(provider.subscribe_logs(LEDGER, None, lambda log: None))
        for _ in range(10):
            await asyncio.sleep(0)
        assert session.ws.send_json.await_count == 1
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    loop.run_until_complete(cancel_mid_handshake())
    session.ws.close.assert_awaited_once()


def test_subscribe_refused_closes_socket(loop):
    session = FakeSession(None)
    session.ws = FakeWebSocket(reply={"jsonrpc": "2.0", "id": 1, "error": {"code": -32601, "message": "no"}})
    provider = JsonRpcProvider("http://node", ws_url="ws://node", session=session)

    with pytest.raises(RpcError):
        loop.run_until_complete(provider.subscribe_logs(LEDGER, None, lambda log: None))
    session.ws.close.assert_awaited_once()
