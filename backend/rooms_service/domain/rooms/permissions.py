"""Per-room permission flags and the named grants built from them."""

from __future__ import annotations

from enum import Enum
from typing import FrozenSet, Iterable


class Right(str, Enum):
	"""One capability a user may hold within a room.

	Flags are independent: holding DELETE_ROOM does not imply CHANGE_ROOM.
	"""

	SEND_MESSAGES = "SEND_MESSAGES"
	SEND_ATTACHMENTS = "SEND_ATTACHMENTS"
	DELETE_MESSAGES = "DELETE_MESSAGES"
	ADD_USERS = "ADD_USERS"
	DELETE_USERS = "DELETE_USERS"
	CHANGE_USER_RIGHTS = "CHANGE_USER_RIGHTS"
	CHANGE_ROOM = "CHANGE_ROOM"
	DELETE_ROOM = "DELETE_ROOM"
	UPDATE_MESSAGE = "UPDATE_MESSAGE"
	LEAVE_ROOM = "LEAVE_ROOM"


RightSet = FrozenSet[Right]

FULL_RIGHTS: RightSet = frozenset(Right)
WELCOME_RIGHTS: RightSet = frozenset({Right.DELETE_ROOM})
PUBLIC_ENTRY_RIGHTS: RightSet = frozenset(
	{
		Right.SEND_MESSAGES,
		Right.SEND_ATTACHMENTS,
		Right.UPDATE_MESSAGE,
	}
)

# Flag each gated operation checks for.
UPDATE_ROOM_RIGHT = Right.CHANGE_ROOM
CHANGE_PHOTO_RIGHT = Right.CHANGE_ROOM
DELETE_ROOM_RIGHT = Right.DELETE_ROOM
ADD_USER_RIGHT = Right.ADD_USERS
DELETE_USER_RIGHT = Right.DELETE_USERS
CHANGE_RIGHTS_RIGHT = Right.CHANGE_USER_RIGHTS


def parse_rights(values: Iterable[str | Right]) -> RightSet:
	"""Convert wire strings into a right set, rejecting unknown flags."""
	parsed: set[Right] = set()
	for value in values:
		try:
			parsed.add(Right(value))
		except ValueError as exc:
			raise ValueError(f"unknown_right:{value}") from exc
	return frozenset(parsed)


def ordered(rights: Iterable[Right]) -> list[str]:
	"""Serialise a right set in declaration order."""
	held = set(rights)
	return [right.value for right in Right if right in held]
