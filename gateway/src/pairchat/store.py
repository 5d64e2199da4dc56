from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import AsyncIterator, Dict, List

from .errors import StoreCorrupted
from .messages import Message, now_timestamp
from .rooms import counterpart_of, split_room_id
from .sqlite_backend import SQLiteBackend

logger = logging.getLogger(__name__)


class KeyedLocks:
    """One ``asyncio.Lock`` per key, dropped once nobody holds or awaits it."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = {}

    @contextlib.asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._holders[key] - 1
            if remaining:
                self._holders[key] = remaining
            else:
                self._holders.pop(key, None)
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)


class InMemoryConversationStore:
    """Process-local conversation store.

    Mutations load the room, change the copy and save it back while holding
    the room's lock, so interleaved coroutines never drop each other's writes.
    """

    def __init__(self) -> None:
        self._rooms: Dict[str, List[Message]] = {}
        self.locks = KeyedLocks()

    async def _load(self, room_id: str) -> List[Message]:
        return list(self._rooms.get(room_id, []))

    async def _save(self, room_id: str, messages: List[Message]) -> None:
        self._rooms[room_id] = list(messages)

    async def get(self, room_id: str) -> List[Message]:
        async with self.locks.hold(room_id):
            return await self._load(room_id)

    async def append(self, room_id: str, message: Message) -> Message:
        split_room_id(room_id)
        async with self.locks.hold(room_id):
            messages = await self._load(room_id)
            for existing in messages:
                if existing.msg_id == message.msg_id:
                    return existing
            messages.append(message)
            await self._save(room_id, messages)
        return message

    async def mark_read_from(self, room_id: str, sender: str) -> int:
        async with self.locks.hold(room_id):
            messages = await self._load(room_id)
            flipped = 0
            updated: List[Message] = []
            for message in messages:
                if message.sender == sender and not message.read:
                    message = message.mark_read()
                    flipped += 1
                updated.append(message)
            if flipped:
                await self._save(room_id, updated)
        return flipped

    async def room_ids_for(self, internal_id: str) -> List[str]:
        return sorted(room for room in list(self._rooms) if counterpart_of(room, internal_id) is not None)


_MESSAGE_COLUMNS = "msg_id, sender, text, kind, attachment_url, attachment_name, timestamp, read"


class SQLiteConversationStore:
    """Durable conversation store backed by SQLite.

    Statements run in a worker thread so the event loop keeps serving other
    rooms while one room waits on the database.
    """

    def __init__(self, backend: SQLiteBackend) -> None:
        self._backend = backend
        self.locks = KeyedLocks()

    async def get(self, room_id: str) -> List[Message]:
        async with self.locks.hold(room_id):
            return await asyncio.to_thread(self._select_room, room_id)

    async def append(self, room_id: str, message: Message) -> Message:
        low_id, high_id = split_room_id(room_id)
        async with self.locks.hold(room_id):
            return await asyncio.to_thread(self._insert, room_id, low_id, high_id, message)

    async def mark_read_from(self, room_id: str, sender: str) -> int:
        async with self.locks.hold(room_id):
            return await asyncio.to_thread(self._flip_read, room_id, sender)

    async def room_ids_for(self, internal_id: str) -> List[str]:
        return await asyncio.to_thread(self._select_room_ids, internal_id)

    def _select_room(self, room_id: str) -> List[Message]:
        with self._backend.lock:
            rows = self._backend.connection.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE room_id=? ORDER BY seq ASC",
                (room_id,),
            ).fetchall()
        return [self._decode(room_id, row) for row in rows]

    def _insert(self, room_id: str, low_id: str, high_id: str, message: Message) -> Message:
        conn = self._backend.connection
        with self._backend.lock:
            cursor = conn.cursor()
            try:
                cursor.execute("BEGIN IMMEDIATE")
                row = cursor.execute(
                    f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE msg_id=?",
                    (message.msg_id,),
                ).fetchone()
                if row:
                    conn.commit()
                    return self._decode(room_id, row)

                cursor.execute(
                    "INSERT OR IGNORE INTO rooms (room_id, low_id, high_id, created_at) VALUES (?, ?, ?, ?)",
                    (room_id, low_id, high_id, now_timestamp()),
                )
                seq_row = cursor.execute(
                    "SELECT COALESCE(MAX(seq), 0) + 1 FROM messages WHERE room_id=?", (room_id,)
                ).fetchone()
                cursor.execute(
                    """
                    INSERT INTO messages (
                        room_id, seq, msg_id, sender, text, kind,
                        attachment_url, attachment_name, timestamp, read
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        room_id,
                        int(seq_row[0]),
                        message.msg_id,
                        message.sender,
                        message.text,
                        message.kind,
                        message.attachment_url,
                        message.attachment_name,
                        message.timestamp,
                        int(message.read),
                    ),
                )
                conn.commit()
                return message
            except Exception:
                conn.rollback()
                raise
            finally:
                cursor.close()

    def _flip_read(self, room_id: str, sender: str) -> int:
        conn = self._backend.connection
        with self._backend.lock:
            cursor = conn.cursor()
            try:
                cursor.execute("BEGIN IMMEDIATE")
                rows = cursor.execute(
                    f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE room_id=? AND sender=? AND read=0",
                    (room_id, sender),
                ).fetchall()
                if not rows:
                    conn.commit()
                    return 0
                for row in rows:
                    self._decode(room_id, row)
                cursor.execute(
                    "UPDATE messages SET read=1 WHERE room_id=? AND sender=? AND read=0",
                    (room_id, sender),
                )
                flipped = cursor.rowcount
                conn.commit()
                return flipped
            except Exception:
                conn.rollback()
                raise
            finally:
                cursor.close()

    def _select_room_ids(self, internal_id: str) -> List[str]:
        with self._backend.lock:
            rows = self._backend.connection.execute(
                "SELECT room_id FROM rooms WHERE low_id=? OR high_id=? ORDER BY room_id ASC",
                (internal_id, internal_id),
            ).fetchall()
        return [row[0] for row in rows]

    @staticmethod
    def _decode(room_id: str, row) -> Message:
        try:
            return Message.from_record(row)
        except StoreCorrupted:
            logger.error("undecodable message in room %s", room_id)
            raise
