"""Two-party chat gateway core interfaces and helpers."""

from .chat_list import ChatListAggregator, ChatSummary, preview_text
from .directory import Identity, InMemoryIdentityDirectory, SQLiteIdentityDirectory
from .hub import ChannelHub, Connection, ConnectionManager
from .messages import Message, build_message
from .receipts import ReadReceiptProcessor
from .rooms import resolve_pair, room_id
from .router import MessageRouter
from .server import main, simulate
from .store import InMemoryConversationStore, SQLiteConversationStore

__all__ = [
    "ChannelHub",
    "ChatListAggregator",
    "ChatSummary",
    "Connection",
    "ConnectionManager",
    "Identity",
    "InMemoryConversationStore",
    "InMemoryIdentityDirectory",
    "Message",
    "MessageRouter",
    "ReadReceiptProcessor",
    "SQLiteConversationStore",
    "SQLiteIdentityDirectory",
    "build_message",
    "main",
    "preview_text",
    "resolve_pair",
    "room_id",
    "simulate",
]
