import asyncio
from typing import Any

from aiohttp import ClientWebSocketResponse, WSMsgType


async def _next_frame(ws: ClientWebSocketResponse, deadline: float) -> dict[str, Any]:
    """Next application frame before ``deadline``; server pings are answered and skipped."""

    loop = asyncio.get_running_loop()
    while True:
        remaining = deadline - loop.time()
        if remaining <= 0:
            raise asyncio.TimeoutError("no websocket frame before deadline")
        msg = await ws.receive(timeout=remaining)
        if msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED, WSMsgType.ERROR):
            raise AssertionError(f"websocket ended while waiting for a frame: {msg.type.name}")
        if msg.type != WSMsgType.TEXT:
            continue
        frame = msg.json()
        if frame.get("t") == "ping":
            await ws.send_json({"v": 1, "t": "pong"})
            continue
        return frame


async def recv_frame(ws: ClientWebSocketResponse, frame_type: str, *, timeout: float = 2.0) -> dict[str, Any]:
    """Skip frames until one of ``frame_type`` arrives."""

    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        frame = await _next_frame(ws, deadline)
        if frame.get("t") == frame_type:
            return frame


async def collect_frames(ws: ClientWebSocketResponse, *, timeout: float) -> list[dict[str, Any]]:
    frames = []
    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        try:
            frames.append(await _next_frame(ws, deadline))
        except asyncio.TimeoutError:
            return frames


async def assert_no_app_messages(ws: ClientWebSocketResponse, *, timeout: float) -> None:
    frames = await collect_frames(ws, timeout=timeout)
    if frames:
        raise AssertionError(f"unexpected websocket frames: {frames}")
