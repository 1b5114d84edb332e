"""
Chain RPC access for the watchers and the ledger reader.

Two capability sets are supported: every provider answers block height,
log queries and calls over HTTP; providers configured with a websocket
endpoint can additionally push logs through ``eth_subscribe``.
"""
import asyncio
import json
from typing import Any, Callable, Dict, List, Optional

import aiohttp
import structlog

logger = structlog.get_logger()

LogCallback = Callable[[Dict[str, Any]], None]


class RpcError(Exception):
    """Raised for JSON-RPC error replies and transport failures."""


class SubscriptionUnsupported(RpcError):
    """Raised when push subscriptions are requested from a polling-only provider."""


def supports_subscriptions(provider: Any) -> bool:
    """Whether ``provider`` can push logs."""
    if not callable(getattr(provider, "subscribe_logs", None)):
        return False
    return bool(getattr(provider, "supports_subscriptions", True))


class LogSubscription:
    """
    A live ``eth_subscribe`` logs stream.

    Notifications are handed to ``callback`` in arrival order until
    ``unsubscribe()`` is called or the socket closes.
    """

    def __init__(self, ws: aiohttp.ClientWebSocketResponse, subscription_id: str,
                 callback: LogCallback):
        self.ws = ws
        self.subscription_id = subscription_id
        self.callback = callback
        self._active = True
        self._closed = asyncio.Event()
        self._reader: Optional[asyncio.Task] = None

    def start(self) -> None:
        self._reader = asyncio.get_running_loop().create_task(self._read())

    @property
    def active(self) -> bool:
        return self._active

    async def _read(self) -> None:
        try:
            async for msg in self.ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._dispatch(msg.data)
                elif msg.type in (aiohttp.WSMsgType.ERROR, aiohttp.WSMsgType.CLOSED):
                    break
        finally:
            if self._active:
                logger.warning("log_subscription_lost", subscription=self.subscription_id)
            self._active = False
            self._closed.set()

    def _dispatch(self, raw: str) -> None:
        try:
            payload = json.loads(raw)
        except ValueError:
            logger.warning("log_subscription_bad_message")
            return
        if payload.get("method") != "eth_subscription":
            return
        params = payload.get("params") or {}
        if params.get("subscription") != self.subscription_id or not self._active:
            return
        try:
            self.callback(params.get("result") or {})
        except Exception as e:
            logger.error("log_callback_failed", error=str(e))

    async def unsubscribe(self) -> None:
        """Stop delivery and close the socket. Safe to call twice."""
        was_active, self._active = self._active, False
        if was_active and not self.ws.closed:
            try:
                await self.ws.send_json({
                    "jsonrpc": "2.0", "id": 0,
                    "method": "eth_unsubscribe", "params": [self.subscription_id],
                })
            except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
                logger.debug("eth_unsubscribe_failed", error=str(e))
        if self._reader is not None and not self._reader.done():
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
        if not self.ws.closed:
            await self.ws.close()
        self._closed.set()

    async def wait_closed(self) -> None:
        await self._closed.wait()


class JsonRpcProvider:
    """
    Ethereum JSON-RPC client over aiohttp.

    Args:
        url: HTTP endpoint
        ws_url: Optional websocket endpoint enabling push subscriptions
        timeout_sec: Per-request timeout
    """

    def __init__(self, url: str, ws_url: Optional[str] = None, timeout_sec: float = 12,
                 session: Optional[aiohttp.ClientSession] = None):
        self.url = url
        self.ws_url = ws_url
        self.timeout = aiohttp.ClientTimeout(total=timeout_sec)
        self._session = session
        self._owns_session = session is None
        self._id = 1

    async def __aenter__(self) -> "JsonRpcProvider":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def supports_subscriptions(self) -> bool:
        return bool(self.ws_url)

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()

    def _next_id(self) -> int:
        request_id = self._id
        self._id += 1
        return request_id

    async def call(self, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": self._next_id(), "method": method, "params": params}
        try:
            async with self._get_session().post(self.url, json=payload) as resp:
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RpcError(f"{method} failed: {e}") from e
        if not isinstance(data, dict):
            raise RpcError(f"{method} returned a malformed reply")
        if data.get("error"):
            raise RpcError(f"{method} error: {data['error']}")
        return data.get("result")

    async def get_block_number(self) -> int:
        result = await self.call("eth_blockNumber", [])
        return int(result, 16)

    async def get_chain_id(self) -> int:
        result = await self.call("eth_chainId", [])
        return int(result, 16)

    async def get_logs(
        self,
        address: Optional[str],
        topics: Optional[List[Any]],
        from_block: int,
        to_block: int,
    ) -> List[Dict[str, Any]]:
        log_filter: Dict[str, Any] = {"fromBlock": hex(from_block), "toBlock": hex(to_block)}
        if address:
            log_filter["address"] = address
        if topics:
            log_filter["topics"] = topics
        result = await self.call("eth_getLogs", [log_filter])
        return result or []

    async def eth_call(self, to: str, data: str, block: str = "latest") -> str:
        return await self.call("eth_call", [{"to": to, "data": data}, block])

    async def get_code(self, address: str, block: str = "latest") -> str:
        return await self.call("eth_getCode", [address, block])

    async def subscribe_logs(
        self,
        address: Optional[str],
        topics: Optional[List[Any]],
        callback: LogCallback,
    ) -> LogSubscription:
        """
        Open a websocket and subscribe to matching logs.

        Raises:
            SubscriptionUnsupported: If no websocket endpoint is configured
            RpcError: If the socket cannot be opened or the node refuses
        """
        if not self.ws_url:
            raise SubscriptionUnsupported("No websocket endpoint configured")

        log_filter: Dict[str, Any] = {}
        if address:
            log_filter["address"] = address
        if topics:
            log_filter["topics"] = topics

        try:
            ws = await self._get_session().ws_connect(self.ws_url)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RpcError(f"websocket connect failed: {e}") from e

        try:
            subscription_id = await self._eth_subscribe(ws, log_filter)
        except BaseException:
            # Includes cancellation during the handshake
            await ws.close()
            raise

        subscription = LogSubscription(ws, subscription_id, callback)
        subscription.start()
        logger.info("log_subscription_opened", subscription=subscription.subscription_id)
        return subscription

    async def _eth_subscribe(self, ws, log_filter: Dict[str, Any]) -> str:
        try:
            await ws.send_json({
                "jsonrpc": "2.0", "id": self._next_id(),
                "method": "eth_subscribe", "params": ["logs", log_filter],
            })
            reply = await asyncio.wait_for(ws.receive_json(), timeout=self.timeout.total)
        except (aiohttp.ClientError, asyncio.TimeoutError, TypeError, ValueError) as e:
            raise RpcError(f"eth_subscribe failed: {e}") from e

        if not isinstance(reply, dict) or reply.get("error") or not reply.get("result"):
            error = reply.get("error") if isinstance(reply, dict) else reply
            raise RpcError(f"eth_subscribe refused: {error}")
        return reply["result"]
