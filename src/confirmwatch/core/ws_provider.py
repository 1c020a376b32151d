"""
JSON-RPC over a single WebSocket connection, with newHeads subscriptions.

One reader task owns the socket's receive side:
1. Responses are matched to pending requests by id
2. eth_subscription notifications are routed to subscriptions by id
3. On disconnect every pending request and subscription fails

Usage:
    async with WebsocketProvider("wss://node.example/ws") as provider:
        heads = provider.new_heads()
        await heads.subscribe()
        async for header in heads:
            ...
"""

import asyncio
import itertools
import json
from typing import Any, Callable, Optional

import websockets

from confirmwatch.core.exceptions import (
    ObservationStateError,
    RPCError,
    RPCTimeoutError,
    SubscriptionError,
    TransportError,
)
from confirmwatch.core.models import BlockHeader
from confirmwatch.core.provider import HeadsSubscription, JsonRpcProvider, SubscriptionProvider
from confirmwatch.utils.logger import get_logger

logger = get_logger(__name__)

_CLOSED = object()

# Notifications kept for a subscription id whose eth_subscribe reply is
# still being processed.
MAX_ORPHAN_NOTIFICATIONS = 32


class NewHeadsSubscription(HeadsSubscription):
    """eth_subscribe("newHeads") feed bound to one WebsocketProvider."""

    def __init__(self, provider: "WebsocketProvider"):
        self._provider = provider
        self._queue: asyncio.Queue = asyncio.Queue()
        self.subscription_id: Optional[str] = None
        self._active = False
        self._finished = False
        self._unsubscribed = False

    @property
    def active(self) -> bool:
        return self._active

    async def subscribe(self) -> None:
        if self._active or self._finished:
            raise ObservationStateError("newHeads subscription can only be started once")

        subscription_id = await self._provider.request("eth_subscribe", ["newHeads"])
        if self._finished:
            # unsubscribe() ran while eth_subscribe was in flight
            self._provider._unregister_subscription(subscription_id)
            await self._provider.request("eth_unsubscribe", [subscription_id])
            self._provider._forget_subscription(subscription_id)
            return

        self.subscription_id = subscription_id
        self._active = True
        self._provider._register_subscription(subscription_id, self)
        logger.info(f"[WS] Subscribed to newHeads: {subscription_id}")

    async def unsubscribe(self) -> None:
        if self._finished:
            return
        was_active = self._active
        self._active = False
        self._finished = True
        self._unsubscribed = True
        self._queue.put_nowait(_CLOSED)

        if not was_active:
            return

        self._provider._unregister_subscription(self.subscription_id)
        if not self._provider.connected:
            self._provider._forget_subscription(self.subscription_id)
            return
        try:
            await self._provider.request("eth_unsubscribe", [self.subscription_id])
            logger.info(f"[WS] Unsubscribed from newHeads: {self.subscription_id}")
        except TransportError as e:
            # Late notifications may still arrive, keep the id retired
            logger.warning(f"[WS] eth_unsubscribe {self.subscription_id} failed: {e}")
            return
        self._provider._forget_subscription(self.subscription_id)

    def _push(self, head: Any) -> None:
        if self._active:
            self._queue.put_nowait(head)

    def _fail(self, error: SubscriptionError) -> None:
        if self._finished:
            return
        self._active = False
        self._finished = True
        self._queue.put_nowait(error)

    def __aiter__(self) -> "NewHeadsSubscription":
        return self

    async def __anext__(self) -> BlockHeader:
        if self._unsubscribed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        if self._unsubscribed:
            # Heads still queued when unsubscribe() ran are dropped
            raise StopAsyncIteration
        return BlockHeader.from_rpc(item)


class WebsocketProvider(JsonRpcProvider, SubscriptionProvider):
    """Push-capable JSON-RPC provider over websockets."""

    supports_subscriptions = True

    def __init__(
        self,
        wss_endpoint: str,
        request_timeout: float = 10.0,
        connect: Callable = websockets.connect,
        ping_interval: float = 20.0,
    ):
        """Initialize WebSocket provider.

        Args:
            wss_endpoint: ws:// or wss:// JSON-RPC endpoint
            request_timeout: Seconds to wait for each response
            connect: Connection factory, websockets.connect by default
            ping_interval: Keepalive ping period in seconds
        """
        self.wss_endpoint = wss_endpoint
        self.request_timeout = request_timeout
        self.ping_interval = ping_interval
        self._connect = connect
        self._ws = None
        self._reader_task: Optional[asyncio.Task] = None
        self._connect_lock = asyncio.Lock()
        self._closing = False
        self._ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future] = {}
        self._subscriptions: dict[str, NewHeadsSubscription] = {}
        self._orphans: dict[str, list] = {}
        self._retired: set[str] = set()

    async def __aenter__(self) -> "WebsocketProvider":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def connected(self) -> bool:
        return (
            self._ws is not None
            and self._reader_task is not None
            and not self._reader_task.done()
        )

    async def connect(self) -> None:
        """Open the connection if it is not open yet."""
        async with self._connect_lock:
            if self.connected:
                return
            try:
                ws = await self._connect(
                    self.wss_endpoint,
                    ping_interval=self.ping_interval,
                    ping_timeout=self.ping_interval,
                    close_timeout=10,
                )
            except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
                logger.warning(f"[WS] Connection to {self.wss_endpoint} failed: {e}")
                raise TransportError(
                    f"WebSocket connection failed: {e}",
                    details={"endpoint": self.wss_endpoint},
                ) from e

            self._ws = ws
            self._closing = False
            self._reader_task = asyncio.create_task(self._read_loop(ws))
            logger.info(f"[WS] Connected to {self.wss_endpoint}")

    async def close(self) -> None:
        """Close the connection and fail whatever still waits on it."""
        self._closing = True
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()

        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None

        self._fail_all("WebSocket provider closed")

    def new_heads(self) -> NewHeadsSubscription:
        return NewHeadsSubscription(self)

    async def request(self, method: str, params: Optional[list] = None) -> Any:
        await self.connect()
        ws = self._ws
        if ws is None:
            raise TransportError("WebSocket is not connected", details={"method": method})

        request_id = next(self._ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        payload = {
            "jsonrpc": "2.0",
            "id": request_id,
            "method": method,
            "params": params or [],
        }

        try:
            await ws.send(json.dumps(payload))
            return await asyncio.wait_for(future, timeout=self.request_timeout)
        except asyncio.TimeoutError as e:
            raise RPCTimeoutError(
                f"RPC timeout: {method}",
                details={"method": method, "timeout": self.request_timeout},
            ) from e
        except websockets.exceptions.ConnectionClosed as e:
            raise TransportError(
                f"WebSocket closed during {method}: {e}",
                details={"method": method},
            ) from e
        finally:
            self._pending.pop(request_id, None)

    async def _read_loop(self, ws) -> None:
        reason = "WebSocket connection closed"
        try:
            async for raw in ws:
                self._dispatch(raw)
        except websockets.exceptions.ConnectionClosed as e:
            reason = f"WebSocket connection closed: {e}"

        if not self._closing:
            logger.warning(f"[WS] {reason}")
        if self._ws is ws:
            self._ws = None
        self._fail_all(reason)

    def _dispatch(self, raw) -> None:
        try:
            message = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"[WS] Ignoring non-JSON frame: {str(raw)[:80]}")
            return

        messages = message if isinstance(message, list) else [message]
        for item in messages:
            if isinstance(item, dict):
                self._handle_message(item)

    def _handle_message(self, message: dict) -> None:
        if message.get("method") == "eth_subscription":
            params = message.get("params") or {}
            subscription_id = params.get("subscription")
            subscription = self._subscriptions.get(subscription_id)
            if subscription is not None:
                subscription._push(params.get("result"))
            elif subscription_id not in self._retired:
                backlog = self._orphans.setdefault(subscription_id, [])
                if len(backlog) < MAX_ORPHAN_NOTIFICATIONS:
                    backlog.append(params.get("result"))
            return

        future = self._pending.get(message.get("id"))
        if future is None or future.done():
            logger.debug(f"[WS] Unmatched response id={message.get('id')}")
            return

        error = message.get("error")
        if error:
            if not isinstance(error, dict):
                error = {"message": str(error)}
            future.set_exception(RPCError(
                f"RPC error: {error.get('message', error)}",
                code=error.get("code"),
                data=error.get("data"),
            ))
        else:
            future.set_result(message.get("result"))

    def _register_subscription(self, subscription_id: str, subscription: NewHeadsSubscription) -> None:
        self._subscriptions[subscription_id] = subscription
        for head in self._orphans.pop(subscription_id, []):
            subscription._push(head)

    def _unregister_subscription(self, subscription_id: str) -> None:
        self._subscriptions.pop(subscription_id, None)
        self._orphans.pop(subscription_id, None)
        self._retired.add(subscription_id)

    def _forget_subscription(self, subscription_id: str) -> None:
        """Stop tracking a retired id once the node confirmed eth_unsubscribe.

        The reply comes after any notification sent before it, so nothing
        for this id can follow.
        """
        self._retired.discard(subscription_id)

    def _fail_all(self, reason: str) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(TransportError(reason, details={"endpoint": self.wss_endpoint}))
        self._pending.clear()

        subscriptions = list(self._subscriptions.values())
        self._subscriptions.clear()
        self._orphans.clear()
        self._retired.clear()
        for subscription in subscriptions:
            subscription._fail(SubscriptionError(reason, details={"endpoint": self.wss_endpoint}))
