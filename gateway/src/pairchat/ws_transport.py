from __future__ import annotations

import asyncio
import logging
import secrets
from typing import Any, Union

from aiohttp import WSMsgType, web

from .chat_list import ChatListAggregator
from .directory import InMemoryIdentityDirectory, SQLiteIdentityDirectory
from .errors import ChatError, InvalidRequest, StoreCorrupted, UnknownIdentity
from .hub import ChannelHub, Connection, ConnectionManager, Frame, event_frame
from .messages import DEFAULT_MAX_TEXT_LEN
from .receipts import ReadReceiptProcessor
from .router import MessageRouter
from .sqlite_backend import SQLiteBackend
from .store import InMemoryConversationStore, SQLiteConversationStore

logger = logging.getLogger(__name__)


class Runtime:
    def __init__(
        self,
        *,
        directory: Union[InMemoryIdentityDirectory, SQLiteIdentityDirectory],
        store: Union[InMemoryConversationStore, SQLiteConversationStore],
        hub: ChannelHub,
        backend: SQLiteBackend | None = None,
        max_text_len: int = DEFAULT_MAX_TEXT_LEN,
    ) -> None:
        self.directory = directory
        self.store = store
        self.hub = hub
        self.backend = backend
        self.connections = ConnectionManager(hub, directory, store)
        self.router = MessageRouter(directory, store, hub, max_text_len=max_text_len)
        self.receipts = ReadReceiptProcessor(directory, store, hub)
        self.chat_list = ChatListAggregator(directory, store)

    def close(self) -> None:
        if self.backend is not None:
            self.backend.close()


def build_runtime(*, db_path: str | None = None, max_text_len: int = DEFAULT_MAX_TEXT_LEN) -> Runtime:
    if db_path is not None:
        backend = SQLiteBackend(db_path)
        return Runtime(
            directory=SQLiteIdentityDirectory(backend),
            store=SQLiteConversationStore(backend),
            hub=ChannelHub(),
            backend=backend,
            max_text_len=max_text_len,
        )
    return Runtime(
        directory=InMemoryIdentityDirectory(),
        store=InMemoryConversationStore(),
        hub=ChannelHub(),
        max_text_len=max_text_len,
    )


RUNTIME_KEY = web.AppKey("runtime", Runtime)
WS_CONFIG_KEY = web.AppKey("ws_config", dict)


async def handle_health(_: web.Request) -> web.Response:
    return web.Response(text="ok")


def _invalid_request(message: str) -> web.Response:
    return web.json_response({"code": "invalid_request", "message": message}, status=400)


def _not_found(message: str) -> web.Response:
    return web.json_response({"code": "not_found", "message": message}, status=404)


def _store_corrupted(message: str) -> web.Response:
    return web.json_response({"code": "store_corrupted", "message": message}, status=500)


def _with_no_store(response: web.Response) -> web.Response:
    response.headers["Cache-Control"] = "no-store"
    return response


def _no_store_response(data: dict[str, Any], status: int = 200) -> web.Response:
    return _with_no_store(web.json_response(data, status=status))


async def handle_my_chats(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    handle = request.query.get("handle")
    if not handle:
        return _with_no_store(_invalid_request("handle required"))
    try:
        summaries = await runtime.chat_list.list_for(handle)
    except UnknownIdentity as exc:
        return _with_no_store(_not_found(str(exc)))
    except StoreCorrupted as exc:
        return _with_no_store(_store_corrupted(str(exc)))
    return _no_store_response({"chats": [summary.to_api_dict() for summary in summaries]})


async def handle_user_info(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    handle = request.query.get("handle")
    if not handle:
        return _with_no_store(_invalid_request("handle required"))
    try:
        identity = await runtime.directory.resolve(handle)
    except UnknownIdentity as exc:
        return _with_no_store(_not_found(str(exc)))
    return _no_store_response(identity.public_summary())


def create_app(
    *,
    ping_interval_s: int = 30,
    ping_miss_limit: int = 2,
    max_msg_size: int = 1_048_576,
    db_path: str | None = None,
    max_text_len: int = DEFAULT_MAX_TEXT_LEN,
    runtime: Runtime | None = None,
) -> web.Application:
    runtime = runtime or build_runtime(db_path=db_path, max_text_len=max_text_len)
    app = web.Application()
    app[RUNTIME_KEY] = runtime
    app[WS_CONFIG_KEY] = {
        "ping_interval_s": ping_interval_s,
        "ping_miss_limit": ping_miss_limit,
        "max_msg_size": max_msg_size,
    }
    app.router.add_get("/healthz", handle_health)
    app.router.add_get("/api/my-chats", handle_my_chats)
    app.router.add_get("/api/user-info", handle_user_info)
    app.router.add_get("/v1/ws", websocket_handler)

    async def close_runtime(_: web.Application) -> None:
        runtime.close()

    app.on_cleanup.append(close_runtime)
    return app


def _error_frame(code: str, message: str, *, request_id: str | None = None) -> Frame:
    return {"v": 1, "t": "error", "id": request_id, "body": {"code": code, "message": message}}


def _require_str(body: dict[str, Any], *names: str) -> list[str]:
    values = [body.get(name) for name in names]
    if any(not isinstance(value, str) or not value for value in values):
        raise InvalidRequest(f"{', '.join(names)} required")
    return values  # type: ignore[return-value]


def _optional_str(body: dict[str, Any], name: str) -> str | None:
    value = body.get(name)
    if value is not None and not isinstance(value, str):
        raise InvalidRequest(f"{name} must be a string")
    return value


async def handle_frame(runtime: Runtime, connection: Connection, frame: dict[str, Any]) -> None:
    """Apply one client frame; domain failures raise ``ChatError``."""

    frame_type = frame.get("t")
    request_id = frame.get("id")
    body = frame.get("body") or {}
    if not isinstance(body, dict):
        raise InvalidRequest("body must be an object")

    if frame_type == "ping":
        connection.deliver({"v": 1, "t": "pong", "id": request_id})
    elif frame_type == "pong":
        return
    elif frame_type == "join_home":
        (handle,) = _require_str(body, "handle")
        await runtime.connections.join_home(connection, handle)
        connection.deliver(event_frame("join_home.acked", {"handle": handle}, request_id=request_id))
    elif frame_type == "join_chat":
        my_handle, other_handle = _require_str(body, "my_handle", "other_handle")
        await runtime.connections.join_room(connection, my_handle, other_handle, request_id=request_id)
    elif frame_type == "send_message":
        my_handle, other_handle = _require_str(body, "my_handle", "other_handle")
        message = await runtime.router.send(
            my_handle,
            other_handle,
            text=_optional_str(body, "text"),
            kind=_optional_str(body, "kind"),
            attachment_url=_optional_str(body, "attachment_url"),
            attachment_name=_optional_str(body, "attachment_name"),
        )
        connection.deliver(
            event_frame("send_message.acked", {"message": message.to_api_dict()}, request_id=request_id)
        )
    elif frame_type == "mark_read":
        my_handle, other_handle = _require_str(body, "my_handle", "other_handle")
        marked = await runtime.receipts.mark_read(my_handle, other_handle)
        connection.deliver(event_frame("mark_read.acked", {"marked": marked}, request_id=request_id))
    else:
        raise InvalidRequest("unknown frame type")


async def websocket_handler(request: web.Request) -> web.WebSocketResponse:
    runtime = request.app[RUNTIME_KEY]
    ws_config: dict[str, Any] = request.app[WS_CONFIG_KEY]

    ws = web.WebSocketResponse(max_msg_size=ws_config["max_msg_size"])
    await ws.prepare(request)

    loop = asyncio.get_running_loop()
    last_activity = loop.time()
    missed_heartbeats = 0
    outbound: asyncio.Queue[Frame] = asyncio.Queue(maxsize=1000)
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

    def enqueue_frame(frame: Frame) -> None:
        try:
            outbound.put_nowait(frame)
        except asyncio.QueueFull:
            logger.warning("closing connection %s: outbound queue full", connection.connection_id)
            asyncio.create_task(close_with_error("backpressure"))

    connection = Connection(connection_id=f"c_{secrets.token_urlsafe(8)}", send=enqueue_frame)

    async def writer() -> None:
        try:
            while True:
                frame = await outbound.get()
                await ws.send_json(frame)
        except asyncio.CancelledError:
            return
        except ConnectionResetError:
            logger.debug("connection %s reset while writing", connection.connection_id)

    async def heartbeat() -> None:
        nonlocal missed_heartbeats
        try:
            while True:
                await asyncio.sleep(ws_config["ping_interval_s"])
                if ws.closed:
                    return
                if loop.time() - last_activity >= ws_config["ping_interval_s"]:
                    enqueue_frame({"v": 1, "t": "ping"})
                    missed_heartbeats += 1
                    if missed_heartbeats > ws_config["ping_miss_limit"]:
                        await ws.close(code=1001, message=b"heartbeat timeout")
                        return
        except asyncio.CancelledError:
            return

    writer_task = asyncio.create_task(writer())
    heartbeat_task = asyncio.create_task(heartbeat())
    logger.debug("connection %s opened", connection.connection_id)

    try:
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                try:
                    frame = msg.json()
                except ValueError:
                    enqueue_frame(_error_frame("invalid_request", "malformed json"))
                    continue

                mark_activity()
                if not isinstance(frame, dict):
                    enqueue_frame(_error_frame("invalid_request", "frame must be an object"))
                    continue
                version = frame.get("v")
                if type(version) is not int or version != 1:
                    enqueue_frame(_error_frame("invalid_request", "unsupported version", request_id=frame.get("id")))
                    continue
                try:
                    await handle_frame(runtime, connection, frame)
                except ChatError as exc:
                    logger.warning("frame %s rejected: %s", frame.get("t"), exc)
                    enqueue_frame(_error_frame(exc.code, str(exc), request_id=frame.get("id")))
                except Exception:
                    logger.exception("frame %s failed", frame.get("t"))
                    enqueue_frame(_error_frame("internal_error", "internal error", request_id=frame.get("id")))
            elif msg.type in {WSMsgType.CLOSE, WSMsgType.CLOSED, WSMsgType.ERROR}:
                break
            else:
                await ws.close(code=1003, message=b"unsupported frame type")
                break
    finally:
        runtime.connections.leave(connection)
        heartbeat_task.cancel()
        writer_task.cancel()
        await asyncio.gather(heartbeat_task, writer_task, return_exceptions=True)
        logger.debug("connection %s closed", connection.connection_id)

    return ws
