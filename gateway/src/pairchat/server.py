"""Command line entry points: serve the gateway, simulate frames, import legacy data."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import sys
from typing import Any, Dict, Iterable, TextIO

from aiohttp import web

from .config import LOG_LEVELS, GatewayConfig, configure_logging, load_config_from_env
from .directory import SQLiteIdentityDirectory
from .errors import ChatError, LegacyImportError
from .hub import Connection
from .legacy import import_legacy
from .sqlite_backend import SQLiteBackend
from .store import SQLiteConversationStore
from .ws_transport import Runtime, build_runtime, create_app, handle_frame

_CONTROL_KEYS = {"t", "id", "connection"}


async def simulate_async(frames: Iterable[dict], output: TextIO, *, runtime: Runtime | None = None) -> None:
    """Drive frames through an in-memory runtime, writing every delivered frame as NDJSON."""

    runtime = runtime or build_runtime()
    connections: Dict[str, Connection] = {}

    def connection_for(connection_id: str) -> Connection:
        if connection_id not in connections:
            def _send(frame: dict, cid: str = connection_id) -> None:
                output.write(json.dumps({"connection": cid, **frame}, ensure_ascii=False) + "\n")

            connections[connection_id] = Connection(connection_id=connection_id, send=_send)
        return connections[connection_id]

    for frame in frames:
        frame_type = frame.get("t")
        if frame_type == "register":
            runtime.directory.register(
                frame["handle"],
                internal_id=frame.get("internal_id"),
                fullname=frame.get("fullname", ""),
                username=frame.get("username", ""),
            )
            continue

        connection_id = frame.get("connection")
        if not connection_id:
            raise ValueError(f"frame {frame_type!r} needs a connection")
        connection = connection_for(connection_id)
        if frame_type == "leave":
            runtime.connections.leave(connection)
            continue

        body = {key: value for key, value in frame.items() if key not in _CONTROL_KEYS}
        request = {"v": 1, "t": frame_type, "id": frame.get("id"), "body": body}
        try:
            await handle_frame(runtime, connection, request)
        except ChatError as exc:
            connection.deliver(
                {"v": 1, "t": "error", "id": frame.get("id"), "body": {"code": exc.code, "message": str(exc)}}
            )


def simulate(frames: Iterable[dict], output: TextIO) -> None:
    asyncio.run(simulate_async(frames, output))


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


def _log_level_arg(value: str) -> str:
    level = value.upper()
    if level not in LOG_LEVELS:
        raise argparse.ArgumentTypeError(f"log level must be one of {', '.join(LOG_LEVELS)}")
    return level


def _resolve_config(args: argparse.Namespace) -> GatewayConfig:
    config = load_config_from_env()
    overrides: dict[str, Any] = {}
    for field in ("host", "port", "db_path", "ping_interval_s", "log_level"):
        value = getattr(args, field, None)
        if value is not None:
            overrides[field] = value
    return dataclasses.replace(config, **overrides)


def _run_serve(args: argparse.Namespace) -> int:
    config = _resolve_config(args)
    configure_logging(config.log_level)
    app = create_app(
        ping_interval_s=config.ping_interval_s,
        ping_miss_limit=config.ping_miss_limit,
        max_msg_size=config.max_msg_size,
        db_path=config.db_path,
        max_text_len=config.max_text_len,
    )
    web.run_app(app, host=config.host, port=config.port)
    return 0


def _run_simulation(args: argparse.Namespace, output: TextIO) -> int:
    frames = _load_frames(args.file or sys.stdin)
    simulate(frames, output)
    return 0


def _run_import(args: argparse.Namespace, output: TextIO) -> int:
    configure_logging(args.log_level or "INFO")
    backend = SQLiteBackend(args.db)
    try:
        report = asyncio.run(
            import_legacy(
                SQLiteIdentityDirectory(backend),
                SQLiteConversationStore(backend),
                args.users,
                args.chats,
            )
        )
    except LegacyImportError as exc:
        sys.stderr.write(f"import failed: {exc}\n")
        return 1
    finally:
        backend.close()
    output.write(json.dumps(dataclasses.asdict(report)) + "\n")
    return 0


def main(argv: list[str] | None = None, output: TextIO | None = None) -> int:
    """Entry point for CLI commands."""

    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(description="Two-party chat gateway")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the aiohttp chat gateway")
    serve_parser.add_argument("--host", default=None, help="Host to bind")
    serve_parser.add_argument("--port", type=int, default=None, help="Port to bind")
    serve_parser.add_argument(
        "--ping-interval",
        dest="ping_interval_s",
        type=int,
        default=None,
        help="Seconds between heartbeat pings",
    )
    serve_parser.add_argument("--db", dest="db_path", type=str, default=None, help="Path to SQLite database")
    serve_parser.add_argument("--log-level", type=_log_level_arg, default=None, help="DEBUG, INFO, WARNING or ERROR")

    simulate_parser = subparsers.add_parser("simulate", help="Run chat frames through an in-memory gateway")
    simulate_parser.add_argument(
        "-f",
        "--file",
        type=argparse.FileType("r"),
        default=None,
        help="Path to JSON frames file; defaults to stdin",
    )

    import_parser = subparsers.add_parser("import-legacy", help="Load users.json/chats.json into SQLite")
    import_parser.add_argument("--users", required=True, help="Path to users.json")
    import_parser.add_argument("--chats", required=True, help="Path to chats.json")
    import_parser.add_argument("--db", required=True, help="Target SQLite database")
    import_parser.add_argument("--log-level", type=_log_level_arg, default=None, help="DEBUG, INFO, WARNING or ERROR")

    args = parser.parse_args(argv)

    if args.command == "simulate":
        return _run_simulation(args, output or sys.stdout)
    if args.command == "import-legacy":
        return _run_import(args, output or sys.stdout)
    return _run_serve(args)


if __name__ == "__main__":  # pragma: no cover - convenience execution
    raise SystemExit(main())
