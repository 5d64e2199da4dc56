from __future__ import annotations

import logging

from .directory import IdentityDirectory
from .hub import ChannelHub, event_frame, home_channel, room_channel
from .messages import DEFAULT_MAX_TEXT_LEN, Message, build_message
from .rooms import resolve_pair

logger = logging.getLogger(__name__)


class MessageRouter:
    """Validates, persists and fans out messages between two identities."""

    def __init__(
        self,
        directory: IdentityDirectory,
        store,
        hub: ChannelHub,
        *,
        max_text_len: int = DEFAULT_MAX_TEXT_LEN,
    ) -> None:
        self._directory = directory
        self._store = store
        self._hub = hub
        self._max_text_len = max_text_len

    async def send(
        self,
        my_handle: str,
        other_handle: str,
        text: str | None = None,
        kind: str | None = None,
        attachment_url: str | None = None,
        attachment_name: str | None = None,
    ) -> Message:
        pair = await resolve_pair(self._directory, my_handle, other_handle)
        message = build_message(
            pair.me.handle,
            text,
            kind,
            attachment_url,
            attachment_name,
            max_text_len=self._max_text_len,
        )
        # Persisted before any broadcast: history must already contain it.
        stored = await self._store.append(pair.room_id, message)
        logger.info("message %s stored in room %s (%s)", stored.msg_id, pair.room_id, stored.kind)

        self._hub.broadcast(room_channel(pair.room_id), event_frame("receive_message", {"message": stored.to_api_dict()}))
        self._hub.broadcast(home_channel(pair.other.handle), event_frame("update_home_chats"))
        self._hub.broadcast(home_channel(pair.me.handle), event_frame("update_home_chats"))
        return stored
