"""Websocket service exposing the shared store.

Every websocket is one store connection. When the socket goes away for any
reason (client close, network drop, missed heartbeats) the connection's
pre-registered disconnect writes fire exactly once.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Union

from aiohttp import WSMsgType, web

from .errors import StoreError
from .memory import InMemoryStore, MemoryConnection
from .sqlite_backend import SQLiteBackend
from .store import Snapshot, Subscription

logger = logging.getLogger(__name__)


class Runtime:
    def __init__(self, *, store: InMemoryStore) -> None:
        self.store = store


RUNTIME_KEY = web.AppKey("runtime", Runtime)
WS_CONFIG_KEY = web.AppKey("ws_config", dict)


async def handle_health(_: web.Request) -> web.Response:
    return web.Response(text="ok")


def create_app(
    *,
    ping_interval_s: int = 30,
    ping_miss_limit: int = 2,
    max_msg_size: int = 1_048_576,
    db_path: str | None = None,
    store: InMemoryStore | None = None,
) -> web.Application:
    backend: SQLiteBackend | None = None
    if store is None:
        if db_path is not None:
            backend = SQLiteBackend(db_path)
        store = InMemoryStore(backend=backend)

    app = web.Application()
    app[RUNTIME_KEY] = Runtime(store=store)
    app[WS_CONFIG_KEY] = {
        "ping_interval_s": ping_interval_s,
        "ping_miss_limit": ping_miss_limit,
        "max_msg_size": max_msg_size,
    }
    app.router.add_get("/healthz", handle_health)
    app.router.add_get("/v1/ws", websocket_handler)
    if backend is not None:
        async def close_db(_: web.Application) -> None:
            backend.close()

        app.on_cleanup.append(close_db)
    return app


def _error_frame(code: str, message: str, *, request_id: str | None = None) -> dict[str, Any]:
    return {"v": 1, "t": "error", "id": request_id, "body": {"code": code, "message": message}}


def _reply(frame_type: str, request_id: str | None, body: dict[str, Any] | None = None) -> dict[str, Any]:
    return {"v": 1, "t": frame_type, "id": request_id, "body": body or {}}


def _require_path(body: dict[str, Any]) -> str:
    path = body.get("path")
    if not isinstance(path, str):
        raise StoreError("path required", code="invalid_request")
    return path


async def _dispatch(
    connection: MemoryConnection,
    subscriptions: Dict[str, Subscription],
    frame_type: str,
    request_id: str | None,
    body: dict[str, Any],
    snapshot_sink,
) -> dict[str, Any]:
    if frame_type == "store.get":
        path = _require_path(body)
        return _reply("store.value", request_id, {"path": path, "value": await connection.get(path)})
    if frame_type == "store.set":
        await connection.set(_require_path(body), body.get("value"))
        return _reply("store.ok", request_id)
    if frame_type == "store.update":
        values = body.get("values")
        if not isinstance(values, dict):
            raise StoreError("values must be an object", code="invalid_request")
        await connection.update(_require_path(body), values)
        return _reply("store.ok", request_id)
    if frame_type == "store.remove":
        await connection.remove(_require_path(body))
        return _reply("store.ok", request_id)
    if frame_type == "store.push":
        key = await connection.push(_require_path(body), body.get("value"))
        return _reply("store.pushed", request_id, {"key": key})
    if frame_type == "store.subscribe":
        path = _require_path(body)
        sub_id = body.get("sub_id")
        if not isinstance(sub_id, str) or not sub_id:
            raise StoreError("sub_id required", code="invalid_request")
        if sub_id in subscriptions:
            raise StoreError("sub_id already in use", code="invalid_request")
        subscriptions[sub_id] = await connection.subscribe(path, snapshot_sink(sub_id))
        return _reply("store.subscribed", request_id, {"sub_id": sub_id})
    if frame_type == "store.unsubscribe":
        subscription = subscriptions.pop(str(body.get("sub_id")), None)
        if subscription is None:
            raise StoreError("unknown sub_id", code="unknown_subscription")
        await connection.unsubscribe(subscription)
        return _reply("store.ok", request_id)
    if frame_type == "store.on_disconnect":
        await connection.on_disconnect(_require_path(body), str(body.get("op")), body.get("value"))
        return _reply("store.ok", request_id)
    if frame_type == "store.cancel_disconnect":
        await connection.cancel_on_disconnect(_require_path(body))
        return _reply("store.ok", request_id)
    raise StoreError("unknown frame type", code="invalid_request")


async def websocket_handler(request: web.Request) -> web.WebSocketResponse:
    runtime = request.app[RUNTIME_KEY]
    ws_config: dict[str, Any] = request.app[WS_CONFIG_KEY]

    ws = web.WebSocketResponse(max_msg_size=ws_config["max_msg_size"])
    await ws.prepare(request)

    loop = asyncio.get_running_loop()
    last_activity = loop.time()
    missed_heartbeats = 0
    outbound: asyncio.Queue[Union[dict, None]] = asyncio.Queue(maxsize=1000)
    subscriptions: Dict[str, Subscription] = {}
    connection = runtime.store.connect()
    closed = False

    async def close_with_error(message: str) -> None:
        nonlocal closed
        if closed:
            return
        closed = True
        await ws.close(code=1011, message=message.encode("utf-8"))

    def mark_activity() -> None:
        nonlocal last_activity, missed_heartbeats
        last_activity = loop.time()
        missed_heartbeats = 0

    def enqueue(frame: dict) -> None:
        try:
            outbound.put_nowait(frame)
        except asyncio.QueueFull:
            asyncio.create_task(close_with_error("backpressure"))

    def snapshot_sink(sub_id: str):
        def _deliver(snapshot: Snapshot) -> None:
            enqueue(
                {
                    "v": 1,
                    "t": "store.snapshot",
                    "body": {"sub_id": sub_id, "path": snapshot.path, "value": snapshot.value},
                }
            )

        return _deliver

    async def writer() -> None:
        try:
            while True:
                frame = await outbound.get()
                if frame is None:
                    break
                await ws.send_json(frame)
        except asyncio.CancelledError:
            return
        except ConnectionResetError:
            return

    async def heartbeat() -> None:
        nonlocal missed_heartbeats
        try:
            while True:
                await asyncio.sleep(ws_config["ping_interval_s"])
                if ws.closed:
                    return
                if loop.time() - last_activity >= ws_config["ping_interval_s"]:
                    enqueue({"v": 1, "t": "ping"})
                    missed_heartbeats += 1
                    if missed_heartbeats > ws_config["ping_miss_limit"]:
                        logger.info("closing store connection %s: heartbeat timeout", connection.conn_id)
                        await ws.close(code=1001, message=b"heartbeat timeout")
                        return
        except asyncio.CancelledError:
            return

    writer_task = asyncio.create_task(writer())
    heartbeat_task = asyncio.create_task(heartbeat())
    logger.info("store connection %s opened from %s", connection.conn_id, request.remote)

    try:
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                try:
                    frame = msg.json()
                except ValueError:
                    enqueue(_error_frame("invalid_request", "malformed json"))
                    continue
                if not isinstance(frame, dict):
                    enqueue(_error_frame("invalid_request", "frame must be an object"))
                    continue

                mark_activity()
                request_id = frame.get("id")
                if frame.get("v") != 1:
                    enqueue(_error_frame("invalid_request", "unsupported version", request_id=request_id))
                    continue

                frame_type = frame.get("t")
                body = frame.get("body") or {}
                if not isinstance(body, dict):
                    enqueue(_error_frame("invalid_request", "body must be an object", request_id=request_id))
                    continue
                if frame_type == "ping":
                    enqueue({"v": 1, "t": "pong", "id": request_id})
                    continue
                if frame_type == "pong":
                    continue
                try:
                    reply = await _dispatch(connection, subscriptions, frame_type, request_id, body, snapshot_sink)
                except StoreError as exc:
                    enqueue(_error_frame(exc.code, str(exc), request_id=request_id))
                    continue
                enqueue(reply)
            elif msg.type in {WSMsgType.CLOSE, WSMsgType.CLOSED, WSMsgType.ERROR}:
                break
            else:
                await ws.close(code=1003, message=b"unsupported frame type")
                break
    finally:
        heartbeat_task.cancel()
        subscriptions.clear()
        connection.disconnect()
        logger.info("store connection %s closed", connection.conn_id)
        try:
            outbound.put_nowait(None)
        except asyncio.QueueFull:
            writer_task.cancel()
        await asyncio.gather(heartbeat_task, writer_task, return_exceptions=True)

    return ws
