from __future__ import annotations


class ChatError(Exception):
    """Base class for errors surfaced to clients as ``error`` frames."""

    code = "internal_error"


class InvalidRequest(ChatError):
    code = "invalid_request"


class UnknownIdentity(ChatError):
    code = "unknown_identity"

    def __init__(self, handle: str) -> None:
        super().__init__(f"unknown identity handle: {handle}")
        self.handle = handle


class InvalidIdentifier(ChatError):
    code = "invalid_request"


class SelfConversation(ChatError):
    code = "self_conversation"


class InvalidMessage(ChatError):
    code = "invalid_message"


class StoreCorrupted(ChatError):
    code = "store_corrupted"


class LegacyImportError(ChatError):
    code = "legacy_import_failed"
