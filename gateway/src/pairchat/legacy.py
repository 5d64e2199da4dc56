"""Import of the JSON-file database (``users.json`` + ``chats.json``) into SQLite.

Unreadable input raises ``LegacyImportError`` before anything is written;
an empty file is an empty database. Rooms that already hold messages are
skipped rather than overwritten.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List

from .directory import Identity, SQLiteIdentityDirectory, check_internal_id
from .errors import ChatError, InvalidRequest, LegacyImportError, StoreCorrupted
from .messages import Message
from .rooms import room_id as make_room_id, split_room_id
from .store import SQLiteConversationStore

logger = logging.getLogger(__name__)


@dataclass
class ImportReport:
    identities_imported: int = 0
    identities_skipped: int = 0
    rooms_imported: int = 0
    rooms_skipped: int = 0
    messages_imported: int = 0


def load_legacy_json(path: str | Path, empty: Any) -> Any:
    try:
        content = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise LegacyImportError(f"cannot read {path}: {exc}") from exc
    if not content.strip():
        return empty
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError as exc:
        raise LegacyImportError(f"{path} is not valid JSON: {exc}") from exc
    if not isinstance(parsed, type(empty)):
        raise LegacyImportError(f"{path} must contain a JSON {type(empty).__name__}")
    return parsed


def _legacy_msg_id(room_id: str, index: int) -> str:
    return hashlib.sha256(f"{room_id}:{index}".encode("utf-8")).hexdigest()[:24]


def parse_legacy_users(raw: List[Any]) -> List[Identity]:
    identities = []
    for index, user in enumerate(raw):
        if not isinstance(user, dict) or not user.get("id") or not user.get("profileId"):
            raise LegacyImportError(f"user #{index} is missing id or profileId")
        try:
            check_internal_id(str(user["id"]))
        except ChatError as exc:
            raise LegacyImportError(f"user #{index}: {exc}") from exc
        identities.append(
            Identity(
                internal_id=str(user["id"]),
                handle=str(user["profileId"]),
                fullname=user.get("fullname") or "",
                username=user.get("username") or "",
                profile_image=user.get("profileImage"),
                verified=bool(user.get("VerifiedBarge", False)),
            )
        )
    return identities


def parse_legacy_chats(raw: Dict[str, Any]) -> Dict[str, List[Message]]:
    rooms: Dict[str, List[Message]] = {}
    for room_id, history in raw.items():
        try:
            canonical = make_room_id(*split_room_id(room_id))
        except ChatError as exc:
            raise LegacyImportError(f"room {room_id!r}: {exc}") from exc
        if canonical != room_id:
            raise LegacyImportError(f"room {room_id!r} is not in canonical order; expected {canonical!r}")
        if not isinstance(history, list):
            raise LegacyImportError(f"room {room_id} history is not a list")
        messages = []
        for index, entry in enumerate(history):
            if not isinstance(entry, dict):
                raise LegacyImportError(f"room {room_id} message #{index} is not an object")
            record = {
                "msg_id": _legacy_msg_id(room_id, index),
                "sender": entry.get("senderId"),
                "text": entry.get("text") or "",
                "kind": entry.get("type") or "text",
                "attachment_url": entry.get("fileUrl"),
                "attachment_name": entry.get("fileName"),
                "timestamp": entry.get("timestamp"),
                "read": entry.get("read", False),
            }
            try:
                messages.append(Message.from_record(record))
            except StoreCorrupted as exc:
                raise LegacyImportError(f"room {room_id} message #{index}: {exc}") from exc
        rooms[room_id] = messages
    return rooms


async def import_legacy(
    directory: SQLiteIdentityDirectory,
    store: SQLiteConversationStore,
    users_path: str | Path,
    chats_path: str | Path,
) -> ImportReport:
    identities = parse_legacy_users(load_legacy_json(users_path, []))
    rooms = parse_legacy_chats(load_legacy_json(chats_path, {}))
    report = ImportReport()

    for identity in identities:
        if await directory.get(identity.internal_id) is not None:
            report.identities_skipped += 1
            continue
        try:
            directory.register(
                identity.handle,
                internal_id=identity.internal_id,
                fullname=identity.fullname,
                username=identity.username,
                profile_image=identity.profile_image,
                verified=identity.verified,
            )
        except InvalidRequest as exc:
            logger.warning("skipping legacy user %s: %s", identity.internal_id, exc)
            report.identities_skipped += 1
            continue
        report.identities_imported += 1

    for room_id, messages in rooms.items():
        if not messages:
            continue
        if await store.get(room_id):
            logger.warning("room %s already has messages; not importing", room_id)
            report.rooms_skipped += 1
            continue
        for message in messages:
            await store.append(room_id, message)
        report.rooms_imported += 1
        report.messages_imported += len(messages)

    logger.info(
        "legacy import: %d identities, %d rooms, %d messages",
        report.identities_imported,
        report.rooms_imported,
        report.messages_imported,
    )
    return report
