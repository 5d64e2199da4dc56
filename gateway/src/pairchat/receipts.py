from __future__ import annotations

import logging

from .directory import IdentityDirectory
from .hub import ChannelHub, event_frame, room_channel
from .rooms import resolve_pair

logger = logging.getLogger(__name__)


class ReadReceiptProcessor:
    def __init__(self, directory: IdentityDirectory, store, hub: ChannelHub) -> None:
        self._directory = directory
        self._store = store
        self._hub = hub

    async def mark_read(self, my_handle: str, other_handle: str) -> int:
        """Mark everything the other participant sent as read.

        Returns the number of flags flipped; ``messages_read`` is broadcast to
        the room only when that number is non-zero.
        """

        pair = await resolve_pair(self._directory, my_handle, other_handle)
        flipped = await self._store.mark_read_from(pair.room_id, pair.other.handle)
        if flipped:
            logger.info("%d messages marked read in room %s", flipped, pair.room_id)
            self._hub.broadcast(room_channel(pair.room_id), event_frame("messages_read"))
        return flipped
