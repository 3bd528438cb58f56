"""Command line entry point: run the store service or replay store frames."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Iterable, TextIO

from aiohttp import web

from .config import Settings, load_settings_from_env
from .errors import StoreError
from .memory import InMemoryStore, MemoryConnection
from .store import Snapshot
from .ws_transport import create_app

logger = logging.getLogger(__name__)


async def _simulate(frames: Iterable[dict], output: TextIO) -> None:
    store = InMemoryStore()
    connections: dict[str, MemoryConnection] = {}

    def connection_for(name: str) -> MemoryConnection:
        if name not in connections or connections[name].closed:
            connections[name] = store.connect()
        return connections[name]

    def emit(message: dict) -> None:
        output.write(json.dumps(message, sort_keys=True) + "\n")

    def sink(name: str):
        def _deliver(snapshot: Snapshot) -> None:
            emit({"t": "store.snapshot", "conn": name, "path": snapshot.path, "value": snapshot.value})

        return _deliver

    for frame in frames:
        frame_type = frame.get("t")
        name = str(frame.get("conn", "default"))
        path = frame.get("path", "")
        try:
            if frame_type == "store.get":
                value = await connection_for(name).get(path)
                emit({"t": "store.value", "conn": name, "path": path, "value": value})
            elif frame_type == "store.subscribe":
                await connection_for(name).subscribe(path, sink(name))
            elif frame_type == "store.set":
                await connection_for(name).set(path, frame.get("value"))
            elif frame_type == "store.update":
                await connection_for(name).update(path, frame.get("values") or {})
            elif frame_type == "store.remove":
                await connection_for(name).remove(path)
            elif frame_type == "store.push":
                key = await connection_for(name).push(path, frame.get("value"))
                emit({"t": "store.pushed", "conn": name, "path": path, "key": key})
            elif frame_type == "store.on_disconnect":
                await connection_for(name).on_disconnect(path, frame.get("op", "remove"), frame.get("value"))
            elif frame_type == "disconnect":
                connection_for(name).disconnect()
            else:
                raise StoreError(f"unsupported frame type: {frame_type}", code="invalid_request")
        except StoreError as exc:
            emit({"t": "error", "conn": name, "code": exc.code, "message": str(exc)})


def simulate(frames: Iterable[dict], output: TextIO) -> None:
    """Apply JSON store frames to a fresh in-memory store and emit events."""

    asyncio.run(_simulate(frames, output))


def _load_frames(handle: TextIO) -> Iterable[dict]:
    content = handle.read()
    if not content.strip():
        return []

    try:
        parsed = json.loads(content)
    except json.JSONDecodeError:
        parsed = None

    if parsed is None:
        frames: list[dict] = []
        for line in content.splitlines():
            if line.strip():
                frames.append(json.loads(line))
        return frames

    if isinstance(parsed, list):
        return parsed
    return [parsed]


def _run_simulation(args: argparse.Namespace, output: TextIO) -> int:
    try:
        frames = _load_frames(args.file or sys.stdin)
    finally:
        if args.file is not None:
            args.file.close()
    simulate(frames, output)
    return 0


def _run_serve(args: argparse.Namespace, settings: Settings) -> int:
    app = create_app(
        ping_interval_s=args.ping_interval if args.ping_interval is not None else settings.ping_interval_s,
        ping_miss_limit=settings.ping_miss_limit,
        max_msg_size=settings.max_msg_size,
        db_path=args.db if args.db is not None else settings.db_path,
    )
    logger.info("starting chatsync store service on %s:%s", args.host, args.port)
    web.run_app(app, host=args.host, port=args.port)
    return 0


def main(argv: list[str] | None = None, output: TextIO | None = None) -> int:
    """Entry point for CLI commands."""

    if argv is None:
        argv = sys.argv[1:]

    settings = load_settings_from_env()

    parser = argparse.ArgumentParser(description="chatsync store service")
    parser.add_argument("--log-level", default=settings.log_level, help="Logging level name")
    subparsers = parser.add_subparsers(dest="command", required=True)

    simulate_parser = subparsers.add_parser("simulate", help="Replay store frames against an in-memory store")
    simulate_parser.add_argument(
        "-f",
        "--file",
        type=argparse.FileType("r"),
        default=None,
        help="Path to JSON frames file; defaults to stdin",
    )

    serve_parser = subparsers.add_parser("serve", help="Run the aiohttp store service")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Host to bind")
    serve_parser.add_argument("--port", type=int, default=8080, help="Port to bind")
    serve_parser.add_argument(
        "--ping-interval",
        type=int,
        default=None,
        help="Seconds between heartbeat pings",
    )
    serve_parser.add_argument("--db", type=str, default=None, help="Path to SQLite database for durability")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "simulate":
        return _run_simulation(args, output or sys.stdout)
    return _run_serve(args, settings)


if __name__ == "__main__":  # pragma: no cover - convenience execution
    raise SystemExit(main())
