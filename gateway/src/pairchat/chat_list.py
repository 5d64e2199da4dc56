from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List

from .directory import Identity, IdentityDirectory
from .messages import KIND_FILE, KIND_IMAGE, KIND_TEXT, KIND_VIDEO, Message, parse_timestamp
from .rooms import counterpart_of

KIND_LABELS = {
    KIND_IMAGE: "📷 Image",
    KIND_VIDEO: "🎥 Video",
    KIND_FILE: "📁 File",
}
ATTACHMENT_MARKER = "📎 "


def preview_text(message: Message) -> str:
    if message.kind == KIND_TEXT:
        return message.text
    if not message.text:
        return KIND_LABELS.get(message.kind, "")
    return ATTACHMENT_MARKER + message.text


@dataclass(frozen=True)
class ChatSummary:
    counterpart: Identity
    preview_text: str
    timestamp: str
    unread_count: int

    def to_api_dict(self) -> dict[str, Any]:
        return {
            "counterpart": self.counterpart.public_summary(),
            "preview_text": self.preview_text,
            "timestamp": self.timestamp,
            "unread_count": self.unread_count,
        }


class ChatListAggregator:
    """Builds the newest-first conversation list shown on an identity's home view."""

    def __init__(self, directory: IdentityDirectory, store) -> None:
        self._directory = directory
        self._store = store

    async def list_for(self, handle: str) -> List[ChatSummary]:
        me = await self._directory.resolve(handle)
        summaries: List[ChatSummary] = []
        for room_id in await self._store.room_ids_for(me.internal_id):
            other_id = counterpart_of(room_id, me.internal_id)
            if other_id is None:
                continue
            counterpart = await self._directory.get(other_id)
            if counterpart is None:
                continue
            history = await self._store.get(room_id)
            if not history:
                continue
            last = history[-1]
            unread = sum(1 for message in history if message.sender == counterpart.handle and not message.read)
            summaries.append(
                ChatSummary(
                    counterpart=counterpart,
                    preview_text=preview_text(last),
                    timestamp=last.timestamp,
                    unread_count=unread,
                )
            )
        summaries.sort(key=lambda summary: parse_timestamp(summary.timestamp), reverse=True)
        return summaries
