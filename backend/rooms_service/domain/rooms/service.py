"""Room lifecycle service layer."""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Iterable, List, Optional, Union

import ulid

from rooms_service.domain.rooms import models, permissions, policy, schemas
from rooms_service.domain.rooms.attachments import photo_destination
from rooms_service.domain.rooms.gate import AuthorizationGate
from rooms_service.domain.rooms.permissions import Right
from rooms_service.domain.rooms.policy import DeleteMode, internal_errors
from rooms_service.domain.rooms.repo import MembershipOutcome, RoomStores
from rooms_service.infra.media import MediaUploader, get_media_uploader
from rooms_service.obs import metrics as obs_metrics
from rooms_service.settings import settings

logger = logging.getLogger(__name__)

SearchHit = Union[models.Room, models.UserProfile]


def _now() -> datetime:
	return datetime.now(timezone.utc)


def welcome_room_id(template_id: str, user_id: str) -> str:
	"""Stable id of a user's personal copy of the welcome room."""
	digest = hashlib.sha256(f"{template_id}:{user_id}".encode("utf-8")).hexdigest()
	return digest[:24]


class RoomService:
	def __init__(
		self,
		stores: RoomStores | None = None,
		*,
		gate: AuthorizationGate | None = None,
		uploader: MediaUploader | None = None,
	) -> None:
		self._stores = stores or RoomStores()
		self._gate = gate or AuthorizationGate(self._stores.rights)
		self._uploader = uploader

	@property
	def stores(self) -> RoomStores:
		return self._stores

	@internal_errors
	async def create_room(self, owner_id: str, spec: schemas.RoomCreateRequest) -> models.Room:
		now = _now()
		room_id = ulid.new().str
		room = models.Room(
			id=room_id,
			name=spec.name,
			description=spec.description,
			photo=settings.default_room_photo,
			is_user=spec.is_user,
			is_private=spec.is_private,
			users_id=[owner_id],
			messages_id=[],
			recent_message=models.RecentMessage.placeholder(room_id),
			members_count=1,
			created_at=now,
			updated_at=now,
		)
		await self._stores.rooms.create(room)
		await self._grant_membership(owner_id, room_id, permissions.FULL_RIGHTS)
		obs_metrics.inc_room_created()
		logger.info("rooms.created", extra={"room_id": room_id, "owner_id": owner_id})
		return room

	@internal_errors
	async def add_welcome_chat(self, user_id: str) -> HTTPStatus:
		template = await self._stores.rooms.find_by_name(settings.welcome_room_name)
		if template is None:
			logger.warning("rooms.welcome_template_missing", extra={"room_name": settings.welcome_room_name})
			return HTTPStatus.NOT_FOUND
		now = _now()
		room = models.Room(
			id=welcome_room_id(template.id, user_id),
			name=template.name,
			description=template.description,
			photo=template.photo,
			is_user=template.is_user,
			is_private=True,
			users_id=[user_id],
			messages_id=list(template.messages_id),
			recent_message=template.recent_message,
			members_count=1,
			created_at=now,
			updated_at=now,
		)
		if not await self._stores.rooms.create(room, if_absent=True):
			return HTTPStatus.OK
		await self._grant_membership(user_id, room.id, permissions.WELCOME_RIGHTS)
		obs_metrics.inc_room_created()
		logger.info("rooms.welcome_created", extra={"room_id": room.id, "user_id": user_id})
		return HTTPStatus.CREATED

	@internal_errors
	async def get_all_rooms(self) -> List[models.Room]:
		return await self._stores.rooms.list_all()

	@internal_errors
	async def get_all_user_rooms(self, user_id: str) -> List[models.PopulatedRoom]:
		rooms = await self._stores.rooms.list_all()
		# Linear scan over every room's member list.
		member_rooms = [room for room in rooms if any(member == user_id for member in room.users_id)]
		member_ids = {member for room in member_rooms for member in room.users_id}
		profiles = {profile.id: profile for profile in await self._stores.users.get_many(sorted(member_ids))}
		return [
			models.PopulatedRoom(
				room=room,
				members=[profiles[member] for member in room.users_id if member in profiles],
			)
			for room in member_rooms
		]

	@internal_errors
	async def find_room_and_users_by_name(self, name: str, user_id: str) -> List[SearchHit]:
		public_rooms = await self._stores.rooms.search_public(name)
		users = await self._stores.users.search_by_name(name)
		own_rooms = await self._stores.rooms.search_member_rooms(name, user_id)
		seen: set[tuple[str, str]] = set()
		hits: List[SearchHit] = []
		for entity in (*public_rooms, *users, *own_rooms):
			key = ("user" if isinstance(entity, models.UserProfile) else "room", entity.id)
			if key in seen:
				continue
			seen.add(key)
			hits.append(entity)
		return hits

	@internal_errors
	async def update_room(
		self,
		rights: Iterable[Right],
		user_id: str,
		room_id: str,
		patch: schemas.RoomPatch,
	) -> Union[models.Room, HTTPStatus]:
		if not await self._gate.verify(rights, user_id, room_id, permissions.UPDATE_ROOM_RIGHT):
			return HTTPStatus.UNAUTHORIZED
		# Only truthy values overwrite; an explicit empty/false/zero is treated as "not supplied".
		changes: dict[str, object] = {"updated_at": _now()}
		if patch.name:
			changes["name"] = patch.name
		if patch.description:
			changes["description"] = patch.description
		if patch.is_private:
			changes["is_private"] = patch.is_private
		if patch.members_count:
			changes["members_count"] = patch.members_count
		updated = await self._stores.rooms.update(room_id, **changes)
		if updated is None:
			return HTTPStatus.NOT_FOUND
		return updated

	@internal_errors
	async def change_room_photo(
		self,
		rights: Iterable[Right],
		user_id: str,
		room_id: str,
		photo: bytes,
	) -> Union[models.Room, HTTPStatus]:
		if not await self._gate.verify(rights, user_id, room_id, permissions.CHANGE_PHOTO_RIGHT):
			return HTTPStatus.UNAUTHORIZED
		room = await self._stores.rooms.get(room_id)
		if room is None:
			return HTTPStatus.NOT_FOUND
		uploader = self._uploader or get_media_uploader()
		url = await uploader.upload(photo, photo_destination(settings.media_folder, room.id))
		updated = await self._stores.rooms.update(room_id, photo=url, updated_at=_now())
		if updated is None:
			return HTTPStatus.NOT_FOUND
		return updated

	@internal_errors
	async def delete_room(self, rights: Iterable[Right], user_id: str, room_id: str) -> HTTPStatus:
		if not await self._gate.verify(rights, user_id, room_id, permissions.DELETE_ROOM_RIGHT):
			return HTTPStatus.UNAUTHORIZED
		if not await self._stores.rooms.delete(room_id):
			return HTTPStatus.NOT_FOUND
		await self._cleanup_room(room_id)
		logger.info("rooms.deleted", extra={"room_id": room_id, "user_id": user_id})
		return HTTPStatus.OK

	@internal_errors
	async def add_message_reference(self, message_id: str, room_id: str) -> HTTPStatus:
		if not await self._stores.rooms.append_message(room_id, message_id):
			return HTTPStatus.NOT_FOUND
		return HTTPStatus.CREATED

	@internal_errors
	async def delete_message_reference(self, room_id: str, message_id: str) -> HTTPStatus:
		if not await self._stores.rooms.remove_message(room_id, message_id):
			return HTTPStatus.NOT_FOUND
		return HTTPStatus.CREATED

	@internal_errors
	async def enter_public_room(self, user_id: str, room_id: str) -> HTTPStatus:
		# Whether the room is actually public is checked by the caller.
		outcome = await self._stores.rooms.add_member(room_id, user_id)
		if outcome is not MembershipOutcome.ADDED:
			return HTTPStatus.BAD_REQUEST
		await self._grant_membership(user_id, room_id, permissions.PUBLIC_ENTRY_RIGHTS)
		logger.info("rooms.member_entered", extra={"room_id": room_id, "user_id": user_id})
		return HTTPStatus.OK

	@internal_errors
	async def add_user_to_room(
		self,
		rights: Iterable[Right],
		user_id: str,
		room_id: str,
		identifier: str,
		granted_rights: Iterable[Right],
	) -> HTTPStatus:
		if not await self._gate.verify(rights, user_id, room_id, permissions.ADD_USER_RIGHT):
			return HTTPStatus.UNAUTHORIZED
		kind = policy.identifier_kind(identifier)
		target = await self._stores.users.find_by(kind, identifier)
		if target is None:
			return HTTPStatus.BAD_REQUEST
		outcome = await self._stores.rooms.add_member(room_id, target.id)
		if outcome is not MembershipOutcome.ADDED:
			return HTTPStatus.BAD_REQUEST
		await self._grant_membership(target.id, room_id, granted_rights)
		logger.info(
			"rooms.member_added",
			extra={"room_id": room_id, "user_id": target.id, "added_by": user_id, "lookup": kind.value},
		)
		return HTTPStatus.CREATED

	@internal_errors
	async def delete_user_from_room(
		self,
		rights: Iterable[Right],
		user_id: str,
		target_id: str,
		room_id: str,
		mode: DeleteMode,
	) -> HTTPStatus:
		if mode is DeleteMode.DELETE_USER:
			if not await self._gate.verify(rights, user_id, room_id, permissions.DELETE_USER_RIGHT):
				return HTTPStatus.UNAUTHORIZED
		elif not policy.can_leave(user_id, target_id):
			return HTTPStatus.UNAUTHORIZED
		outcome = await self._stores.rooms.remove_member(
			room_id,
			target_id,
			delete_if_last=mode is DeleteMode.LEAVE_ROOM,
		)
		if outcome is MembershipOutcome.ROOM_MISSING:
			return HTTPStatus.BAD_REQUEST
		if outcome is MembershipOutcome.NOT_MEMBER:
			return HTTPStatus.NOT_FOUND
		if outcome is MembershipOutcome.ROOM_DELETED:
			await self._cleanup_room(room_id)
			logger.info("rooms.deleted_on_last_leave", extra={"room_id": room_id, "user_id": target_id})
			return HTTPStatus.OK
		await self._revoke_membership(target_id, room_id)
		logger.info(
			"rooms.member_removed",
			extra={"room_id": room_id, "user_id": target_id, "removed_by": user_id, "mode": mode.value},
		)
		return HTTPStatus.CREATED

	@internal_errors
	async def change_user_rights_in_room(
		self,
		rights: Iterable[Right],
		performer_id: str,
		target_id: str,
		room_id: str,
		new_rights: Iterable[Right],
	) -> HTTPStatus:
		if not await self._gate.verify(rights, performer_id, room_id, permissions.CHANGE_RIGHTS_RIGHT):
			return HTTPStatus.UNAUTHORIZED
		if not await self._stores.rights.replace(target_id, room_id, new_rights):
			return HTTPStatus.BAD_REQUEST
		return HTTPStatus.CREATED

	@internal_errors
	async def change_notification_settings(self, user_id: str, room_id: str, enabled: bool) -> HTTPStatus:
		if not await self._stores.notifications.set_enabled(user_id, room_id, enabled):
			return HTTPStatus.NOT_FOUND
		return HTTPStatus.CREATED

	@internal_errors
	async def get_user_notifications_settings(self, user_id: str) -> List[models.NotificationSetting]:
		return await self._stores.notifications.list_for_user(user_id)

	@internal_errors
	async def load_rights(self, user_id: str, room_id: str) -> Optional[models.Rights]:
		return await self._stores.rights.get(user_id, room_id)

	async def _grant_membership(self, user_id: str, room_id: str, rights: Iterable[Right]) -> None:
		await self._stores.rights.create(user_id, room_id, rights)
		await self._stores.notifications.create(user_id, room_id, True)

	async def _revoke_membership(self, user_id: str, room_id: str) -> None:
		await self._stores.rights.delete(user_id, room_id)
		await self._stores.notifications.delete(user_id, room_id)

	async def _cleanup_room(self, room_id: str) -> None:
		# No transaction spans the room delete and this cleanup; a fault here leaves orphans behind.
		rights_removed = await self._stores.rights.delete_for_room(room_id)
		settings_removed = await self._stores.notifications.delete_for_room(room_id)
		logger.debug(
			"rooms.cleanup",
			extra={"room_id": room_id, "rights": rights_removed, "notifications": settings_removed},
		)
