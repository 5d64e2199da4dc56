from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Set

from .directory import IdentityDirectory
from .messages import Message
from .rooms import resolve_pair

logger = logging.getLogger(__name__)

Frame = Dict[str, Any]
Callback = Callable[[Frame], None]

HOME_PREFIX = "home:"
ROOM_PREFIX = "room:"


def home_channel(handle: str) -> str:
    return f"{HOME_PREFIX}{handle}"


def room_channel(room_id: str) -> str:
    return f"{ROOM_PREFIX}{room_id}"


def event_frame(frame_type: str, body: dict[str, Any] | None = None, *, request_id: str | None = None) -> Frame:
    frame: Frame = {"v": 1, "t": frame_type, "body": body or {}}
    if request_id is not None:
        frame["id"] = request_id
    return frame


@dataclass
class Connection:
    """One live session; ``send`` must not block (it enqueues for the writer)."""

    connection_id: str
    send: Callback
    channels: Set[str] = field(default_factory=set)

    def deliver(self, frame: Frame) -> None:
        self.send(frame)


@dataclass
class Subscription:
    connection_id: str
    channel: str
    callback: Callback

    def deliver(self, frame: Frame) -> None:
        self.callback(frame)


class ChannelHub:
    """Registers channel subscriptions and broadcasts frames to all listeners."""

    def __init__(self) -> None:
        self._subscriptions: Dict[str, Dict[str, Subscription]] = {}

    def subscribe(self, connection_id: str, channel: str, callback: Callback) -> Subscription:
        subscription = Subscription(connection_id=connection_id, channel=channel, callback=callback)
        self._subscriptions.setdefault(channel, {})[connection_id] = subscription
        return subscription

    def unsubscribe(self, connection_id: str, channel: str) -> None:
        subs = self._subscriptions.get(channel)
        if not subs:
            return
        subs.pop(connection_id, None)
        if not subs:
            self._subscriptions.pop(channel, None)

    def broadcast(self, channel: str, frame: Frame) -> int:
        targets = list(self._subscriptions.get(channel, {}).values())
        for subscription in targets:
            subscription.deliver(frame)
        return len(targets)

    def members(self, channel: str) -> List[str]:
        return sorted(self._subscriptions.get(channel, {}))


class ConnectionManager:
    """Tracks channel memberships of live connections."""

    def __init__(self, hub: ChannelHub, directory: IdentityDirectory, store) -> None:
        self.hub = hub
        self._directory = directory
        self._store = store

    async def join_home(self, connection: Connection, handle: str) -> str:
        identity = await self._directory.resolve(handle)
        channel = home_channel(identity.handle)
        if channel not in connection.channels:
            self.hub.subscribe(connection.connection_id, channel, connection.deliver)
            connection.channels.add(channel)
            logger.debug("connection %s joined %s", connection.connection_id, channel)
        return channel

    async def join_room(
        self,
        connection: Connection,
        my_handle: str,
        other_handle: str,
        *,
        request_id: str | None = None,
    ) -> List[Message]:
        """Subscribe to the pair's room and replay its history to this connection only.

        Frames broadcast while the history is being read are held back and
        released after ``load_history``, minus messages the history already
        contains.
        """

        pair = await resolve_pair(self._directory, my_handle, other_handle)
        channel = room_channel(pair.room_id)

        held: List[Frame] = []
        holding = True

        def holding_deliver(frame: Frame) -> None:
            if holding:
                held.append(frame)
                return
            connection.deliver(frame)

        self.hub.subscribe(connection.connection_id, channel, holding_deliver)
        try:
            history = await self._store.get(pair.room_id)
        except Exception:
            if channel not in connection.channels:
                self.hub.unsubscribe(connection.connection_id, channel)
            else:
                self.hub.subscribe(connection.connection_id, channel, connection.deliver)
            raise
        connection.channels.add(channel)

        connection.deliver(
            event_frame(
                "load_history",
                {"room_id": pair.room_id, "messages": [message.to_api_dict() for message in history]},
                request_id=request_id,
            )
        )
        replayed = {message.msg_id for message in history}
        holding = False
        for frame in held:
            if frame.get("t") == "receive_message" and frame["body"]["message"]["msg_id"] in replayed:
                continue
            connection.deliver(frame)
        logger.debug(
            "connection %s joined %s with %d messages of history",
            connection.connection_id,
            channel,
            len(history),
        )
        return history

    def leave(self, connection: Connection) -> None:
        for channel in list(connection.channels):
            self.hub.unsubscribe(connection.connection_id, channel)
        connection.channels.clear()
        logger.debug("connection %s left all channels", connection.connection_id)
