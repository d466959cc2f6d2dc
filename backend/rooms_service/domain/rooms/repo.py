"""Entity stores for rooms, rights, notification settings, messages and accounts.

Each repository talks to PostgreSQL through the shared asyncpg pool and falls
back to a process-local memory store when no pool is available (tests, local
dev). Membership and message-reference changes are single atomic operations in
both backends.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

import asyncpg

from rooms_service.domain.rooms import models
from rooms_service.domain.rooms.permissions import Right, RightSet, ordered, parse_rights
from rooms_service.domain.rooms.policy import IdentifierKind
from rooms_service.infra.postgres import get_pool


class MembershipOutcome(str, Enum):
	ADDED = "added"
	ALREADY_MEMBER = "already_member"
	REMOVED = "removed"
	NOT_MEMBER = "not_member"
	ROOM_DELETED = "room_deleted"
	ROOM_MISSING = "room_missing"


def _now() -> datetime:
	return datetime.now(timezone.utc)


def _copy_room(room: models.Room) -> models.Room:
	return replace(room, users_id=list(room.users_id), messages_id=list(room.messages_id))


class _MemoryStore:
	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self.rooms: Dict[str, models.Room] = {}
		self.rights: Dict[Tuple[str, str], models.Rights] = {}
		self.notifications: Dict[Tuple[str, str], models.NotificationSetting] = {}
		self.messages: Dict[str, List[models.Message]] = {}
		self.users: Dict[str, models.UserProfile] = {}

	# rooms

	async def create_room(self, room: models.Room) -> models.Room:
		async with self._lock:
			self.rooms[room.id] = _copy_room(room)
			return _copy_room(room)

	async def create_room_if_absent(self, room: models.Room) -> bool:
		async with self._lock:
			if room.id in self.rooms:
				return False
			self.rooms[room.id] = _copy_room(room)
			return True

	async def get_room(self, room_id: str) -> Optional[models.Room]:
		async with self._lock:
			room = self.rooms.get(room_id)
			return _copy_room(room) if room else None

	async def find_room_by_name(self, name: str) -> Optional[models.Room]:
		async with self._lock:
			matches = [room for room in self.rooms.values() if room.name == name]
			if not matches:
				return None
			return _copy_room(min(matches, key=lambda room: room.created_at))

	async def list_rooms(self) -> List[models.Room]:
		async with self._lock:
			return [_copy_room(room) for room in self.rooms.values()]

	async def search_rooms(self, needle: str, *, member_id: Optional[str] = None) -> List[models.Room]:
		lowered = needle.lower()
		async with self._lock:
			result: List[models.Room] = []
			for room in self.rooms.values():
				if lowered not in room.name.lower():
					continue
				if member_id is None and room.is_private:
					continue
				if member_id is not None and member_id not in room.users_id:
					continue
				result.append(_copy_room(room))
			return result

	async def update_room(self, room_id: str, **changes) -> Optional[models.Room]:
		async with self._lock:
			room = self.rooms.get(room_id)
			if room is None:
				return None
			updated = replace(room, **changes)
			self.rooms[room_id] = updated
			return _copy_room(updated)

	async def delete_room(self, room_id: str) -> bool:
		async with self._lock:
			return self.rooms.pop(room_id, None) is not None

	async def add_member(self, room_id: str, user_id: str) -> MembershipOutcome:
		async with self._lock:
			room = self.rooms.get(room_id)
			if room is None:
				return MembershipOutcome.ROOM_MISSING
			if user_id in room.users_id:
				return MembershipOutcome.ALREADY_MEMBER
			room.users_id.append(user_id)
			room.members_count = len(room.users_id)
			room.updated_at = _now()
			return MembershipOutcome.ADDED

	async def remove_member(self, room_id: str, user_id: str, *, delete_if_last: bool) -> MembershipOutcome:
		async with self._lock:
			room = self.rooms.get(room_id)
			if room is None:
				return MembershipOutcome.ROOM_MISSING
			if delete_if_last and room.users_id == [user_id]:
				del self.rooms[room_id]
				return MembershipOutcome.ROOM_DELETED
			if user_id not in room.users_id:
				return MembershipOutcome.NOT_MEMBER
			room.users_id.remove(user_id)
			room.members_count = len(room.users_id)
			room.updated_at = _now()
			return MembershipOutcome.REMOVED

	async def append_message(self, room_id: str, message_id: str) -> bool:
		async with self._lock:
			room = self.rooms.get(room_id)
			if room is None:
				return False
			room.messages_id.append(message_id)
			return True

	async def remove_message(self, room_id: str, message_id: str) -> bool:
		async with self._lock:
			room = self.rooms.get(room_id)
			if room is None or message_id not in room.messages_id:
				return False
			room.messages_id.remove(message_id)
			return True

	# rights

	async def put_rights(self, rights: models.Rights) -> models.Rights:
		async with self._lock:
			self.rights[(rights.user_id, rights.room_id)] = rights
			return rights

	async def get_rights(self, user_id: str, room_id: str) -> Optional[models.Rights]:
		async with self._lock:
			return self.rights.get((user_id, room_id))

	async def replace_rights(self, user_id: str, room_id: str, rights: RightSet) -> bool:
		async with self._lock:
			key = (user_id, room_id)
			if key not in self.rights:
				return False
			self.rights[key] = models.Rights(user_id=user_id, room_id=room_id, rights=frozenset(rights))
			return True

	async def delete_rights(self, user_id: str, room_id: str) -> bool:
		async with self._lock:
			return self.rights.pop((user_id, room_id), None) is not None

	async def delete_room_rights(self, room_id: str) -> int:
		async with self._lock:
			keys = [key for key in self.rights if key[1] == room_id]
			for key in keys:
				del self.rights[key]
			return len(keys)

	# notifications

	async def put_notifications(self, setting: models.NotificationSetting) -> models.NotificationSetting:
		async with self._lock:
			self.notifications[(setting.user_id, setting.room_id)] = replace(setting)
			return setting

	async def set_notifications(self, user_id: str, room_id: str, enabled: bool) -> bool:
		async with self._lock:
			setting = self.notifications.get((user_id, room_id))
			if setting is None:
				return False
			setting.notifications = enabled
			return True

	async def list_notifications(self, user_id: str) -> List[models.NotificationSetting]:
		async with self._lock:
			return [replace(item) for (owner, _), item in self.notifications.items() if owner == user_id]

	async def delete_notifications(self, user_id: str, room_id: str) -> bool:
		async with self._lock:
			return self.notifications.pop((user_id, room_id), None) is not None

	async def delete_room_notifications(self, room_id: str) -> int:
		async with self._lock:
			keys = [key for key in self.notifications if key[1] == room_id]
			for key in keys:
				del self.notifications[key]
			return len(keys)

	# messages

	async def create_message(self, message: models.Message) -> models.Message:
		async with self._lock:
			self.messages.setdefault(message.room_id, []).append(message)
			return message

	async def latest_message(self, room_id: str) -> Optional[models.Message]:
		async with self._lock:
			messages = self.messages.get(room_id)
			return messages[-1] if messages else None

	# accounts

	async def create_user(self, user: models.UserProfile) -> models.UserProfile:
		async with self._lock:
			self.users[user.id] = user
			return user

	async def get_users(self, user_ids: Iterable[str]) -> List[models.UserProfile]:
		async with self._lock:
			return [self.users[user_id] for user_id in user_ids if user_id in self.users]

	async def find_user(self, kind: IdentifierKind, value: str) -> Optional[models.UserProfile]:
		async with self._lock:
			for user in self.users.values():
				if getattr(user, kind.value) == value:
					return user
			return None

	async def search_users(self, needle: str) -> List[models.UserProfile]:
		async with self._lock:
			return [user for user in self.users.values() if user.matches_name(needle)]


_MEMORY = _MemoryStore()


class _PoolBacked:
	def __init__(self, pool: Optional[asyncpg.Pool] = None) -> None:
		self._pool_checked = pool is not None
		self._pool_instance: Optional[asyncpg.Pool] = pool

	async def _get_pool(self) -> Optional[asyncpg.Pool]:
		if self._pool_checked:
			return self._pool_instance
		self._pool_checked = True
		try:
			pool = await get_pool()
		except AssertionError:
			pool = None
		except (OSError, asyncpg.PostgresError):
			pool = None
		self._pool_instance = pool
		return pool


def _like_pattern(needle: str) -> str:
	escaped = needle.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
	return f"%{escaped}%"


def _row_to_room(row: asyncpg.Record) -> models.Room:
	recent = row["recent_message"]
	if isinstance(recent, str):
		recent = json.loads(recent)
	return models.Room(
		id=str(row["id"]),
		name=row["name"],
		description=row["description"],
		photo=row["photo"] or "",
		is_user=bool(row["is_user"]),
		is_private=bool(row["is_private"]),
		users_id=list(row["users_id"] or []),
		messages_id=list(row["messages_id"] or []),
		recent_message=models.RecentMessage.from_dict(recent) if recent else None,
		members_count=int(row["members_count"]),
		created_at=row["created_at"],
		updated_at=row["updated_at"],
	)


def _row_to_rights(row: asyncpg.Record) -> models.Rights:
	return models.Rights(
		user_id=row["user_id"],
		room_id=row["room_id"],
		rights=parse_rights(row["rights"] or []),
	)


def _row_to_notifications(row: asyncpg.Record) -> models.NotificationSetting:
	return models.NotificationSetting(
		user_id=row["user_id"],
		room_id=row["room_id"],
		notifications=bool(row["notifications"]),
	)


def _row_to_message(row: asyncpg.Record) -> models.Message:
	return models.Message(
		id=row["id"],
		room_id=row["room_id"],
		author_id=row["author_id"],
		text=row["text"],
		attachments=list(row["attachments"] or []),
		timestamp=row["timestamp"],
	)


def _row_to_user(row: asyncpg.Record) -> models.UserProfile:
	return models.UserProfile(
		id=row["id"],
		username=row["username"],
		email=row["email"],
		phone_number=row["phone_number"],
		first_name=row["first_name"],
		last_name=row["last_name"],
		birthday=row["birthday"],
		photo=row["photo"],
	)


def _recent_json(recent: Optional[models.RecentMessage]) -> Optional[str]:
	return json.dumps(recent.to_dict()) if recent else None


_ROOM_INSERT = """
	INSERT INTO rooms (id, name, description, photo, is_user, is_private, users_id, messages_id,
		recent_message, members_count, created_at, updated_at)
	VALUES ($1,$2,$3,$4,$5,$6,$7,$8,$9::jsonb,$10,$11,$12)
"""

_ROOM_COLUMNS = {"name", "description", "photo", "is_private", "members_count", "recent_message", "updated_at"}


class RoomRepository(_PoolBacked):
	async def create(self, room: models.Room, *, if_absent: bool = False) -> bool:
		pool = await self._get_pool()
		if pool is None:
			if if_absent:
				return await _MEMORY.create_room_if_absent(room)
			await _MEMORY.create_room(room)
			return True
		query = _ROOM_INSERT + (" ON CONFLICT (id) DO NOTHING" if if_absent else "") + " RETURNING id"
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				query,
				room.id,
				room.name,
				room.description,
				room.photo,
				room.is_user,
				room.is_private,
				room.users_id,
				room.messages_id,
				_recent_json(room.recent_message),
				room.members_count,
				room.created_at,
				room.updated_at,
			)
			return row is not None

	async def get(self, room_id: str) -> Optional[models.Room]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.get_room(room_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow("SELECT * FROM rooms WHERE id=$1", room_id)
			return _row_to_room(row) if row else None

	async def find_by_name(self, name: str) -> Optional[models.Room]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.find_room_by_name(name)
		async with pool.acquire() as conn:
			row = await conn.fetchrow("SELECT * FROM rooms WHERE name=$1 ORDER BY created_at LIMIT 1", name)
			return _row_to_room(row) if row else None

	async def list_all(self) -> List[models.Room]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.list_rooms()
		async with pool.acquire() as conn:
			rows = await conn.fetch("SELECT * FROM rooms ORDER BY created_at")
			return [_row_to_room(row) for row in rows]

	async def search_public(self, needle: str) -> List[models.Room]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.search_rooms(needle)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"SELECT * FROM rooms WHERE name ILIKE $1 AND is_private = FALSE ORDER BY created_at",
				_like_pattern(needle),
			)
			return [_row_to_room(row) for row in rows]

	async def search_member_rooms(self, needle: str, user_id: str) -> List[models.Room]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.search_rooms(needle, member_id=user_id)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"SELECT * FROM rooms WHERE name ILIKE $1 AND $2 = ANY(users_id) ORDER BY created_at",
				_like_pattern(needle),
				user_id,
			)
			return [_row_to_room(row) for row in rows]

	async def update(self, room_id: str, **changes) -> Optional[models.Room]:
		unknown = set(changes) - _ROOM_COLUMNS
		if unknown:
			raise ValueError(f"unsupported room fields: {sorted(unknown)}")
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.update_room(room_id, **changes)
		assignments: List[str] = []
		values: List[object] = [room_id]
		for column, value in changes.items():
			values.append(_recent_json(value) if column == "recent_message" else value)
			cast = "::jsonb" if column == "recent_message" else ""
			assignments.append(f"{column}=${len(values)}{cast}")
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				f"UPDATE rooms SET {', '.join(assignments)} WHERE id=$1 RETURNING *",
				*values,
			)
			return _row_to_room(row) if row else None

	async def delete(self, room_id: str) -> bool:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.delete_room(room_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow("DELETE FROM rooms WHERE id=$1 RETURNING id", room_id)
			return row is not None

	async def add_member(self, room_id: str, user_id: str) -> MembershipOutcome:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.add_member(room_id, user_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				"""
				UPDATE rooms
				SET users_id = array_append(users_id, $2),
					members_count = cardinality(users_id) + 1,
					updated_at = NOW()
				WHERE id=$1 AND NOT ($2 = ANY(users_id))
				RETURNING id
				""",
				room_id,
				user_id,
			)
			if row is not None:
				return MembershipOutcome.ADDED
			exists = await conn.fetchval("SELECT 1 FROM rooms WHERE id=$1", room_id)
			return MembershipOutcome.ALREADY_MEMBER if exists else MembershipOutcome.ROOM_MISSING

	async def remove_member(self, room_id: str, user_id: str, *, delete_if_last: bool = False) -> MembershipOutcome:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.remove_member(room_id, user_id, delete_if_last=delete_if_last)
		async with pool.acquire() as conn:
			if delete_if_last:
				deleted = await conn.fetchval(
					"DELETE FROM rooms WHERE id=$1 AND users_id = ARRAY[$2]::text[] RETURNING id",
					room_id,
					user_id,
				)
				if deleted is not None:
					return MembershipOutcome.ROOM_DELETED
			row = await conn.fetchrow(
				"""
				UPDATE rooms
				SET users_id = array_remove(users_id, $2),
					members_count = cardinality(array_remove(users_id, $2)),
					updated_at = NOW()
				WHERE id=$1 AND $2 = ANY(users_id)
				RETURNING id
				""",
				room_id,
				user_id,
			)
			if row is not None:
				return MembershipOutcome.REMOVED
			exists = await conn.fetchval("SELECT 1 FROM rooms WHERE id=$1", room_id)
			return MembershipOutcome.NOT_MEMBER if exists else MembershipOutcome.ROOM_MISSING

	async def append_message(self, room_id: str, message_id: str) -> bool:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.append_message(room_id, message_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				"UPDATE rooms SET messages_id = array_append(messages_id, $2) WHERE id=$1 RETURNING id",
				room_id,
				message_id,
			)
			return row is not None

	async def remove_message(self, room_id: str, message_id: str) -> bool:
		"""Remove the first occurrence of ``message_id``; False when absent."""
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.remove_message(room_id, message_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				"""
				UPDATE rooms
				SET messages_id = messages_id[:array_position(messages_id, $2) - 1]
					|| messages_id[array_position(messages_id, $2) + 1:]
				WHERE id=$1 AND $2 = ANY(messages_id)
				RETURNING id
				""",
				room_id,
				message_id,
			)
			return row is not None


class RightsRepository(_PoolBacked):
	async def create(self, user_id: str, room_id: str, rights: Iterable[Right]) -> models.Rights:
		record = models.Rights(user_id=user_id, room_id=room_id, rights=frozenset(rights))
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.put_rights(record)
		async with pool.acquire() as conn:
			await conn.execute(
				"""
				INSERT INTO room_rights (user_id, room_id, rights)
				VALUES ($1,$2,$3)
				ON CONFLICT (user_id, room_id) DO UPDATE SET rights = EXCLUDED.rights
				""",
				user_id,
				room_id,
				ordered(record.rights),
			)
		return record

	async def get(self, user_id: str, room_id: str) -> Optional[models.Rights]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.get_rights(user_id, room_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				"SELECT * FROM room_rights WHERE user_id=$1 AND room_id=$2",
				user_id,
				room_id,
			)
			return _row_to_rights(row) if row else None

	async def has_right(self, user_id: str, room_id: str, right: Right) -> bool:
		pool = await self._get_pool()
		if pool is None:
			record = await _MEMORY.get_rights(user_id, room_id)
			return record is not None and record.allows(right)
		async with pool.acquire() as conn:
			found = await conn.fetchval(
				"SELECT 1 FROM room_rights WHERE user_id=$1 AND room_id=$2 AND $3 = ANY(rights)",
				user_id,
				room_id,
				right.value,
			)
			return found is not None

	async def replace(self, user_id: str, room_id: str, rights: Iterable[Right]) -> bool:
		new_rights = frozenset(rights)
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.replace_rights(user_id, room_id, new_rights)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				"UPDATE room_rights SET rights=$3 WHERE user_id=$1 AND room_id=$2 RETURNING user_id",
				user_id,
				room_id,
				ordered(new_rights),
			)
			return row is not None

	async def delete(self, user_id: str, room_id: str) -> bool:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.delete_rights(user_id, room_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				"DELETE FROM room_rights WHERE user_id=$1 AND room_id=$2 RETURNING user_id",
				user_id,
				room_id,
			)
			return row is not None

	async def delete_for_room(self, room_id: str) -> int:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.delete_room_rights(room_id)
		async with pool.acquire() as conn:
			rows = await conn.fetch("DELETE FROM room_rights WHERE room_id=$1 RETURNING user_id", room_id)
			return len(rows)


class NotificationsRepository(_PoolBacked):
	async def create(self, user_id: str, room_id: str, notifications: bool = True) -> models.NotificationSetting:
		setting = models.NotificationSetting(user_id=user_id, room_id=room_id, notifications=notifications)
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.put_notifications(setting)
		async with pool.acquire() as conn:
			await conn.execute(
				"""
				INSERT INTO room_notifications (user_id, room_id, notifications)
				VALUES ($1,$2,$3)
				ON CONFLICT (user_id, room_id) DO UPDATE SET notifications = EXCLUDED.notifications
				""",
				user_id,
				room_id,
				notifications,
			)
		return setting

	async def set_enabled(self, user_id: str, room_id: str, enabled: bool) -> bool:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.set_notifications(user_id, room_id, enabled)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				"UPDATE room_notifications SET notifications=$3 WHERE user_id=$1 AND room_id=$2 RETURNING user_id",
				user_id,
				room_id,
				enabled,
			)
			return row is not None

	async def list_for_user(self, user_id: str) -> List[models.NotificationSetting]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.list_notifications(user_id)
		async with pool.acquire() as conn:
			rows = await conn.fetch("SELECT * FROM room_notifications WHERE user_id=$1", user_id)
			return [_row_to_notifications(row) for row in rows]

	async def delete(self, user_id: str, room_id: str) -> bool:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.delete_notifications(user_id, room_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				"DELETE FROM room_notifications WHERE user_id=$1 AND room_id=$2 RETURNING user_id",
				user_id,
				room_id,
			)
			return row is not None

	async def delete_for_room(self, room_id: str) -> int:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.delete_room_notifications(room_id)
		async with pool.acquire() as conn:
			rows = await conn.fetch("DELETE FROM room_notifications WHERE room_id=$1 RETURNING user_id", room_id)
			return len(rows)


class MessageRepository(_PoolBacked):
	async def create(self, message: models.Message) -> models.Message:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.create_message(message)
		async with pool.acquire() as conn:
			await conn.execute(
				"""
				INSERT INTO messages (id, room_id, author_id, text, attachments, timestamp)
				VALUES ($1,$2,$3,$4,$5,$6)
				""",
				message.id,
				message.room_id,
				message.author_id,
				message.text,
				message.attachments,
				message.timestamp,
			)
		return message

	async def latest_for_room(self, room_id: str) -> Optional[models.Message]:
		"""Most recently inserted message, regardless of its timestamp."""
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.latest_message(room_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				"SELECT * FROM messages WHERE room_id=$1 ORDER BY seq DESC LIMIT 1",
				room_id,
			)
			return _row_to_message(row) if row else None


class UserRepository(_PoolBacked):
	async def create(self, user: models.UserProfile) -> models.UserProfile:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.create_user(user)
		async with pool.acquire() as conn:
			await conn.execute(
				"""
				INSERT INTO users (id, username, email, phone_number, first_name, last_name, birthday, photo)
				VALUES ($1,$2,$3,$4,$5,$6,$7,$8)
				""",
				user.id,
				user.username,
				user.email,
				user.phone_number,
				user.first_name,
				user.last_name,
				user.birthday,
				user.photo,
			)
		return user

	async def get_many(self, user_ids: Iterable[str]) -> List[models.UserProfile]:
		ids = list(user_ids)
		if not ids:
			return []
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.get_users(ids)
		async with pool.acquire() as conn:
			rows = await conn.fetch("SELECT * FROM users WHERE id = ANY($1::text[])", ids)
		by_id = {row["id"]: _row_to_user(row) for row in rows}
		return [by_id[user_id] for user_id in ids if user_id in by_id]

	async def find_by(self, kind: IdentifierKind, value: str) -> Optional[models.UserProfile]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.find_user(kind, value)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(f"SELECT * FROM users WHERE {kind.value}=$1 LIMIT 1", value)
			return _row_to_user(row) if row else None

	async def search_by_name(self, needle: str) -> List[models.UserProfile]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.search_users(needle)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT * FROM users
				WHERE username ILIKE $1 OR first_name ILIKE $1 OR last_name ILIKE $1
				ORDER BY username
				""",
				_like_pattern(needle),
			)
			return [_row_to_user(row) for row in rows]


@dataclass
class RoomStores:
	"""The repositories the room lifecycle operations compose."""

	rooms: RoomRepository = field(default_factory=RoomRepository)
	rights: RightsRepository = field(default_factory=RightsRepository)
	notifications: NotificationsRepository = field(default_factory=NotificationsRepository)
	messages: MessageRepository = field(default_factory=MessageRepository)
	users: UserRepository = field(default_factory=UserRepository)

	@classmethod
	def with_pool(cls, pool: asyncpg.Pool) -> "RoomStores":
		return cls(
			rooms=RoomRepository(pool),
			rights=RightsRepository(pool),
			notifications=NotificationsRepository(pool),
			messages=MessageRepository(pool),
			users=UserRepository(pool),
		)


async def reset_memory_state() -> None:
	"""Test helper to clear in-memory store state."""
	async with _MEMORY._lock:  # type: ignore[attr-defined]
		_MEMORY.rooms.clear()
		_MEMORY.rights.clear()
		_MEMORY.notifications.clear()
		_MEMORY.messages.clear()
		_MEMORY.users.clear()
