from __future__ import annotations

from dataclasses import dataclass

from .directory import ID_SEPARATOR, Identity, IdentityDirectory, check_internal_id
from .errors import InvalidIdentifier, SelfConversation

ROOM_SEPARATOR = ID_SEPARATOR


def room_id(first_id: str, second_id: str) -> str:
    """Return the conversation identifier for an unordered pair of internal ids.

    ``room_id(a, b) == room_id(b, a)`` and distinct pairs never collide, since
    neither id may contain the separator. A pair naming the same identity
    twice raises ``SelfConversation``.
    """

    check_internal_id(first_id)
    check_internal_id(second_id)
    if first_id == second_id:
        raise SelfConversation("cannot open a conversation with yourself")
    low, high = sorted((first_id, second_id))
    return f"{low}{ROOM_SEPARATOR}{high}"


def split_room_id(value: str) -> tuple[str, str]:
    parts = value.split(ROOM_SEPARATOR)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise InvalidIdentifier(f"malformed room id: {value!r}")
    return parts[0], parts[1]


def counterpart_of(value: str, internal_id: str) -> str | None:
    """Return the other participant of ``value``, or None if ``internal_id`` is not in it."""

    low, high = split_room_id(value)
    if internal_id == low:
        return high
    if internal_id == high:
        return low
    return None


@dataclass(frozen=True)
class ResolvedPair:
    me: Identity
    other: Identity
    room_id: str


async def resolve_pair(directory: IdentityDirectory, my_handle: str, other_handle: str) -> ResolvedPair:
    me = await directory.resolve(my_handle)
    other = await directory.resolve(other_handle)
    return ResolvedPair(me=me, other=other, room_id=room_id(me.internal_id, other.internal_id))
