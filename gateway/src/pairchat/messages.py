from __future__ import annotations

import secrets
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Mapping

from .errors import InvalidMessage, StoreCorrupted

KIND_TEXT = "text"
KIND_IMAGE = "image"
KIND_VIDEO = "video"
KIND_FILE = "file"
MESSAGE_KINDS = frozenset({KIND_TEXT, KIND_IMAGE, KIND_VIDEO, KIND_FILE})

DEFAULT_MAX_TEXT_LEN = 4096


def now_timestamp() -> str:
    """Current UTC time as ISO-8601 with milliseconds and a ``Z`` suffix."""

    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def parse_timestamp(value: str) -> datetime:
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def new_msg_id() -> str:
    return secrets.token_hex(12)


@dataclass(frozen=True)
class Message:
    """A chat message; only ``read`` ever changes after creation."""

    msg_id: str
    sender: str
    text: str
    kind: str
    attachment_url: str | None
    attachment_name: str | None
    timestamp: str
    read: bool = False

    def mark_read(self) -> "Message":
        return replace(self, read=True)

    def to_api_dict(self) -> dict[str, Any]:
        return {
            "msg_id": self.msg_id,
            "sender": self.sender,
            "text": self.text,
            "kind": self.kind,
            "attachment_url": self.attachment_url,
            "attachment_name": self.attachment_name,
            "timestamp": self.timestamp,
            "read": self.read,
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Message":
        """Rebuild a stored message, raising ``StoreCorrupted`` on anything undecodable."""

        try:
            kind = record["kind"]
            timestamp = record["timestamp"]
            sender = record["sender"]
            msg_id = record["msg_id"]
            text = record["text"]
            attachment_url = record["attachment_url"]
            attachment_name = record["attachment_name"]
            read = record["read"]
        except (KeyError, IndexError) as exc:
            raise StoreCorrupted(f"stored message missing field: {exc}") from exc
        if kind not in MESSAGE_KINDS:
            raise StoreCorrupted(f"stored message has unknown kind: {kind!r}")
        if not isinstance(timestamp, str) or not timestamp:
            raise StoreCorrupted("stored message has no timestamp")
        try:
            parsed = parse_timestamp(timestamp)
        except ValueError as exc:
            raise StoreCorrupted(f"stored message has unreadable timestamp: {timestamp!r}") from exc
        if parsed.tzinfo is None:
            raise StoreCorrupted(f"stored message timestamp has no timezone: {timestamp!r}")
        if not isinstance(sender, str) or not sender:
            raise StoreCorrupted("stored message has no sender")
        return cls(
            msg_id=str(msg_id),
            sender=sender,
            text=text or "",
            kind=kind,
            attachment_url=attachment_url,
            attachment_name=attachment_name,
            timestamp=timestamp,
            read=bool(read),
        )


def build_message(
    sender: str,
    text: str | None = None,
    kind: str | None = None,
    attachment_url: str | None = None,
    attachment_name: str | None = None,
    *,
    max_text_len: int = DEFAULT_MAX_TEXT_LEN,
) -> Message:
    """Build and validate a new unread message from a send request."""

    text = text or ""
    kind = kind or KIND_TEXT
    attachment_url = attachment_url or None
    attachment_name = attachment_name or None
    if not isinstance(text, str):
        raise InvalidMessage("text must be a string")
    if kind not in MESSAGE_KINDS:
        raise InvalidMessage(f"unsupported kind: {kind!r}")
    if attachment_url is not None and not isinstance(attachment_url, str):
        raise InvalidMessage("attachment_url must be a string")
    if attachment_name is not None and not isinstance(attachment_name, str):
        raise InvalidMessage("attachment_name must be a string")
    if len(text) > max_text_len:
        raise InvalidMessage(f"text exceeds {max_text_len} characters")
    if kind == KIND_TEXT:
        if attachment_url is not None:
            raise InvalidMessage("text messages cannot carry an attachment")
        if not text.strip():
            raise InvalidMessage("text message is empty")
    elif attachment_url is None:
        raise InvalidMessage(f"{kind} messages require attachment_url")

    return Message(
        msg_id=new_msg_id(),
        sender=sender,
        text=text,
        kind=kind,
        attachment_url=attachment_url,
        attachment_name=attachment_name,
        timestamp=now_timestamp(),
        read=False,
    )
