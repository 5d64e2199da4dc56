"""Two-party load tester: both participants send at once, then the history is counted.

Handles must already be registered with the gateway (``pairchat-gateway import-legacy``
or a shared ``--db``).
"""

import argparse
import asyncio
import json

import aiohttp


async def open_participant(session: aiohttp.ClientSession, my_handle: str, other_handle: str):
    ws = await session.ws_connect("/v1/ws")
    await ws.send_json(
        {"v": 1, "t": "join_chat", "id": f"join-{my_handle}", "body": {"my_handle": my_handle, "other_handle": other_handle}}
    )
    while True:
        frame = await ws.receive_json()
        if frame.get("t") == "load_history":
            return ws, len(frame["body"]["messages"])
        if frame.get("t") == "error":
            raise RuntimeError(f"join_chat failed for {my_handle}: {frame['body']}")


async def reader(ws: aiohttp.ClientWebSocketResponse, stats: dict):
    async for msg in ws:
        if msg.type == aiohttp.WSMsgType.TEXT:
            data = json.loads(msg.data)
            frame_type = data.get("t")
            if frame_type == "receive_message":
                msg_id = data["body"]["message"]["msg_id"]
                if msg_id in stats["seen_ids"]:
                    stats["dups"] += 1
                else:
                    stats["seen_ids"].add(msg_id)
            elif frame_type == "send_message.acked":
                stats["acked"] += 1
            elif frame_type == "error":
                stats["errors"] += 1
            elif frame_type == "ping":
                await ws.send_json({"v": 1, "t": "pong"})
        elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
            break


async def send_messages(ws: aiohttp.ClientWebSocketResponse, my_handle: str, other_handle: str, count: int):
    for i in range(count):
        await ws.send_json(
            {
                "v": 1,
                "t": "send_message",
                "id": f"load-{my_handle}-{i}",
                "body": {"my_handle": my_handle, "other_handle": other_handle, "text": f"load {my_handle} {i}"},
            }
        )


async def main():
    parser = argparse.ArgumentParser(description="Pairchat gateway load tester")
    parser.add_argument("--base-url", default="http://localhost:8080", help="Gateway base URL")
    parser.add_argument("--first", default="A1", help="Handle of the first participant")
    parser.add_argument("--second", default="B1", help="Handle of the second participant")
    parser.add_argument("--messages", type=int, default=100, help="Messages to send per participant")
    parser.add_argument("--drain-seconds", type=float, default=2.0, help="Time to wait for events")
    args = parser.parse_args()

    timeout = aiohttp.ClientTimeout(total=None)
    async with aiohttp.ClientSession(base_url=args.base_url, timeout=timeout) as session:
        first_ws, before = await open_participant(session, args.first, args.second)
        second_ws, _ = await open_participant(session, args.second, args.first)
        sockets = [first_ws, second_ws]
        stats = [{"acked": 0, "errors": 0, "dups": 0, "seen_ids": set()} for _ in sockets]

        readers = [asyncio.create_task(reader(ws, stat)) for ws, stat in zip(sockets, stats)]
        await asyncio.gather(
            send_messages(first_ws, args.first, args.second, args.messages),
            send_messages(second_ws, args.second, args.first, args.messages),
        )
        await asyncio.sleep(args.drain_seconds)

        for ws in sockets:
            await ws.close()
        for task in readers:
            task.cancel()
        await asyncio.gather(*readers, return_exceptions=True)

        checker_ws, after = await open_participant(session, args.first, args.second)
        await checker_ws.close()

    sent = 2 * args.messages
    stored = after - before
    print("Messages sent:", sent)
    print("Acknowledged:", sum(stat["acked"] for stat in stats))
    print("Errors:", sum(stat["errors"] for stat in stats))
    print("Duplicate msg_ids detected:", sum(stat["dups"] for stat in stats))
    print("Stored in history:", stored)
    print("Lost:", sent - stored)


if __name__ == "__main__":
    asyncio.run(main())
