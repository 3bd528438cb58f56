"""Store adapter that talks to the store service over a websocket."""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any, Dict, Mapping

import aiohttp

from .errors import StoreError
from .store import DISCONNECT_OPS, Snapshot, SnapshotCallback, Store, Subscription

logger = logging.getLogger(__name__)


class RemoteStore(Store):
    """Client side of one store connection.

    Requests are correlated with replies by frame id; snapshot pushes are
    routed by subscription id. Subscription ids are chosen here, so the first
    snapshot of a subscription is delivered before ``subscribe`` returns.
    There is no reconnection: once the socket drops every pending and future
    call fails with ``StoreError`` and callers start over on a new connection.
    """

    def __init__(
        self,
        ws: aiohttp.ClientWebSocketResponse,
        *,
        session: aiohttp.ClientSession | None = None,
        request_timeout: float = 10.0,
    ) -> None:
        self._ws = ws
        self._session = session
        self._request_timeout = request_timeout
        self._ids = itertools.count(1)
        self._pending: Dict[str, asyncio.Future] = {}
        self._subscriptions: Dict[str, Subscription] = {}
        self._closed = False
        self._reader = asyncio.create_task(self._read())

    @classmethod
    async def connect(
        cls,
        url: str,
        *,
        session: aiohttp.ClientSession | None = None,
        request_timeout: float = 10.0,
    ) -> "RemoteStore":
        """Open a connection to ``url`` (the service's ``/v1/ws`` endpoint)."""

        owned = session is None
        session = session or aiohttp.ClientSession()
        try:
            ws = await session.ws_connect(url)
        except aiohttp.ClientError as exc:
            if owned:
                await session.close()
            raise StoreError(f"cannot connect to {url}: {exc}", code="unavailable") from exc
        return cls(ws, session=session if owned else None, request_timeout=request_timeout)

    @property
    def closed(self) -> bool:
        return self._closed

    async def get(self, path: str) -> Any:
        body = await self._request("store.get", {"path": path})
        return body.get("value")

    async def set(self, path: str, value: Any) -> None:
        await self._request("store.set", {"path": path, "value": value})

    async def update(self, path: str, values: Mapping[str, Any]) -> None:
        await self._request("store.update", {"path": path, "values": dict(values)})

    async def remove(self, path: str) -> None:
        await self._request("store.remove", {"path": path})

    async def push(self, path: str, value: Any) -> str:
        body = await self._request("store.push", {"path": path, "value": value})
        return str(body["key"])

    async def subscribe(self, path: str, callback: SnapshotCallback) -> Subscription:
        sub_id = f"sub{next(self._ids)}"
        subscription = Subscription(sub_id=sub_id, path=path, callback=callback)
        self._subscriptions[sub_id] = subscription
        try:
            await self._request("store.subscribe", {"path": path, "sub_id": sub_id})
        except StoreError:
            self._subscriptions.pop(sub_id, None)
            raise
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        if self._subscriptions.pop(subscription.sub_id, None) is None:
            return
        if self._closed:
            return
        await self._request("store.unsubscribe", {"sub_id": subscription.sub_id})

    async def on_disconnect(self, path: str, op: str, value: Any = None) -> None:
        if op not in DISCONNECT_OPS:
            raise StoreError(f"unknown disconnect op {op!r}", code="invalid_request")
        await self._request("store.on_disconnect", {"path": path, "op": op, "value": value})

    async def cancel_on_disconnect(self, path: str) -> None:
        await self._request("store.cancel_disconnect", {"path": path})

    async def _request(self, frame_type: str, body: dict[str, Any]) -> dict[str, Any]:
        if self._closed:
            raise StoreError("connection closed", code="disconnected")
        request_id = f"r{next(self._ids)}"
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._ws.send_json({"v": 1, "t": frame_type, "id": request_id, "body": body})
            return await asyncio.wait_for(future, self._request_timeout)
        except asyncio.TimeoutError as exc:
            raise StoreError(f"{frame_type} timed out", code="timeout") from exc
        except ConnectionError as exc:
            raise StoreError(f"{frame_type} failed: {exc}", code="disconnected") from exc
        finally:
            self._pending.pop(request_id, None)

    async def _read(self) -> None:
        try:
            async for msg in self._ws:
                if msg.type != aiohttp.WSMsgType.TEXT:
                    if msg.type in {aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR}:
                        break
                    continue
                try:
                    frame = msg.json()
                except ValueError:
                    logger.warning("ignoring malformed frame from store service")
                    continue
                await self._handle(frame)
        except asyncio.CancelledError:
            pass
        finally:
            self._fail_pending()

    async def _handle(self, frame: dict[str, Any]) -> None:
        frame_type = frame.get("t")
        body = frame.get("body") or {}
        if frame_type == "store.snapshot":
            subscription = self._subscriptions.get(body.get("sub_id"))
            if subscription is not None:
                subscription.deliver(Snapshot(subscription.path, body.get("value")))
            return
        if frame_type == "ping":
            await self._ws.send_json({"v": 1, "t": "pong"})
            return
        future = self._pending.get(frame.get("id"))
        if future is None or future.done():
            if frame_type == "error":
                logger.warning("store service error: %s", body.get("message"))
            return
        if frame_type == "error":
            future.set_exception(StoreError(str(body.get("message")), code=str(body.get("code"))))
        else:
            future.set_result(body)

    def _fail_pending(self) -> None:
        self._closed = True
        for future in self._pending.values():
            if not future.done():
                future.set_exception(StoreError("connection lost", code="disconnected"))
        self._pending.clear()
        self._subscriptions.clear()

    async def close(self) -> None:
        """Close the socket; the service then fires this connection's disconnect writes."""

        self._closed = True
        await self._ws.close()
        self._reader.cancel()
        await asyncio.gather(self._reader, return_exceptions=True)
        if self._session is not None:
            await self._session.close()

    async def __aenter__(self) -> "RemoteStore":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
