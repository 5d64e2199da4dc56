from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Protocol

from .errors import InvalidIdentifier, InvalidRequest, UnknownIdentity
from .sqlite_backend import SQLiteBackend

# Room ids join two internal ids with this character.
ID_SEPARATOR = "_"


def check_internal_id(internal_id: str) -> None:
    if not isinstance(internal_id, str) or not internal_id:
        raise InvalidIdentifier("internal id must be a non-empty string")
    if ID_SEPARATOR in internal_id:
        raise InvalidIdentifier(f"internal id must not contain {ID_SEPARATOR!r}")


@dataclass(frozen=True)
class Identity:
    internal_id: str
    handle: str
    fullname: str = ""
    username: str = ""
    profile_image: str | None = None
    verified: bool = False

    def public_summary(self) -> dict[str, Any]:
        return {
            "handle": self.handle,
            "fullname": self.fullname,
            "username": self.username,
            "profile_image": self.profile_image,
            "verified": self.verified,
        }


class IdentityDirectory(Protocol):
    """Lookup contract the chat core consumes; identity management lives elsewhere."""

    async def resolve(self, handle: str) -> Identity:
        ...

    async def get(self, internal_id: str) -> Identity | None:
        ...


def _new_internal_id() -> str:
    return str(uuid.uuid4())


class InMemoryIdentityDirectory:
    def __init__(self) -> None:
        self._by_id: Dict[str, Identity] = {}
        self._by_handle: Dict[str, Identity] = {}

    def register(
        self,
        handle: str,
        *,
        internal_id: str | None = None,
        fullname: str = "",
        username: str = "",
        profile_image: str | None = None,
        verified: bool = False,
    ) -> Identity:
        if not handle:
            raise InvalidRequest("handle required")
        if handle in self._by_handle:
            raise InvalidRequest(f"handle already registered: {handle}")
        identity = Identity(
            internal_id=internal_id or _new_internal_id(),
            handle=handle,
            fullname=fullname,
            username=username,
            profile_image=profile_image,
            verified=verified,
        )
        check_internal_id(identity.internal_id)
        if identity.internal_id in self._by_id:
            raise InvalidRequest(f"internal id already registered: {identity.internal_id}")
        self._by_id[identity.internal_id] = identity
        self._by_handle[handle] = identity
        return identity

    async def resolve(self, handle: str) -> Identity:
        identity = self._by_handle.get(handle) if isinstance(handle, str) else None
        if identity is None:
            raise UnknownIdentity(str(handle))
        return identity

    async def get(self, internal_id: str) -> Identity | None:
        return self._by_id.get(internal_id)


class SQLiteIdentityDirectory:
    """Directory backed by the ``identities`` table of the gateway database."""

    def __init__(self, backend: SQLiteBackend) -> None:
        self._backend = backend

    def register(
        self,
        handle: str,
        *,
        internal_id: str | None = None,
        fullname: str = "",
        username: str = "",
        profile_image: str | None = None,
        verified: bool = False,
    ) -> Identity:
        if not handle:
            raise InvalidRequest("handle required")
        identity = Identity(
            internal_id=internal_id or _new_internal_id(),
            handle=handle,
            fullname=fullname,
            username=username,
            profile_image=profile_image,
            verified=verified,
        )
        check_internal_id(identity.internal_id)
        with self._backend.lock:
            conn = self._backend.connection
            existing = conn.execute(
                "SELECT 1 FROM identities WHERE handle=? OR internal_id=?",
                (identity.handle, identity.internal_id),
            ).fetchone()
            if existing:
                raise InvalidRequest(f"identity already registered: {handle}")
            conn.execute(
                """
                INSERT INTO identities (internal_id, handle, fullname, username, profile_image, verified)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    identity.internal_id,
                    identity.handle,
                    identity.fullname,
                    identity.username,
                    identity.profile_image,
                    int(identity.verified),
                ),
            )
        return identity

    async def resolve(self, handle: str) -> Identity:
        identity = await asyncio.to_thread(self._fetch_one, "handle", handle)
        if identity is None:
            raise UnknownIdentity(str(handle))
        return identity

    async def get(self, internal_id: str) -> Identity | None:
        return await asyncio.to_thread(self._fetch_one, "internal_id", internal_id)

    def _fetch_one(self, column: str, value: str) -> Identity | None:
        with self._backend.lock:
            row = self._backend.connection.execute(
                "SELECT internal_id, handle, fullname, username, profile_image, verified "
                f"FROM identities WHERE {column}=?",
                (value,),
            ).fetchone()
        if row is None:
            return None
        return Identity(
            internal_id=row[0],
            handle=row[1],
            fullname=row[2],
            username=row[3],
            profile_image=row[4],
            verified=bool(row[5]),
        )
