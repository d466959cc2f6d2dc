"""Command registry mapping stable command keys to room operations."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Type

from pydantic import BaseModel, ValidationError

from rooms_service.domain.rooms import models, schemas
from rooms_service.domain.rooms.attachments import AttachmentValidationError, decode_photo
from rooms_service.domain.rooms.policy import RoomPolicyError
from rooms_service.domain.rooms.projector import RecentMessageProjector
from rooms_service.domain.rooms.service import RoomService
from rooms_service.obs import logging as obs_logging
from rooms_service.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[Any]]


@dataclass(frozen=True, slots=True)
class CommandSpec:
	schema: Type[BaseModel]
	handler: Handler


def encode_result(result: Any) -> Any:
	"""Render an operation result as a JSON-safe value."""
	if result is None:
		return None
	if isinstance(result, HTTPStatus):
		return {"status": int(result)}
	if isinstance(result, list):
		return [encode_result(item) for item in result]
	if isinstance(result, models.PopulatedRoom):
		return schemas.populated_room_out(result).model_dump(mode="json", by_alias=True)
	if isinstance(result, models.Room):
		return schemas.room_out(result).model_dump(mode="json", by_alias=True)
	if isinstance(result, models.UserProfile):
		return schemas.user_out(result).model_dump(mode="json", by_alias=True)
	if isinstance(result, models.Rights):
		return schemas.rights_out(result).model_dump(mode="json", by_alias=True)
	if isinstance(result, models.NotificationSetting):
		return schemas.notification_out(result).model_dump(mode="json", by_alias=True)
	raise TypeError(f"unsupported result type: {type(result).__name__}")


def _outcome(result: Any) -> str:
	if isinstance(result, HTTPStatus):
		return str(int(result))
	return "ok"


class RoomCommandRouter:
	"""Validates command payloads and routes them to the room operations."""

	def __init__(
		self,
		service: RoomService | None = None,
		projector: RecentMessageProjector | None = None,
	) -> None:
		self._service = service or RoomService()
		self._projector = projector or RecentMessageProjector(self._service.stores)
		self._commands: Dict[str, CommandSpec] = {
			"add-welcome-chat": CommandSpec(schemas.UserPayload, self._add_welcome_chat),
			"create-room": CommandSpec(schemas.CreateRoomPayload, self._create_room),
			"get-all-rooms": CommandSpec(schemas.EmptyPayload, self._get_all_rooms),
			"get-all-user-rooms": CommandSpec(schemas.UserPayload, self._get_all_user_rooms),
			"find-room-and-users-by-name": CommandSpec(schemas.FindByNamePayload, self._find_by_name),
			"update-room": CommandSpec(schemas.UpdateRoomPayload, self._update_room),
			"change-room-photo": CommandSpec(schemas.ChangeRoomPhotoPayload, self._change_room_photo),
			"delete-room": CommandSpec(schemas.GatedRoomPayload, self._delete_room),
			"add-message-reference": CommandSpec(schemas.MessageReferencePayload, self._add_message_reference),
			"delete-message-reference": CommandSpec(schemas.MessageReferencePayload, self._delete_message_reference),
			"add-recent-message": CommandSpec(schemas.RoomPayload, self._add_recent_message),
			"enter-public-room": CommandSpec(schemas.UserRoomPayload, self._enter_public_room),
			"add-user": CommandSpec(schemas.AddUserPayload, self._add_user),
			"delete-user": CommandSpec(schemas.DeleteUserPayload, self._delete_user),
			"change-user-rights": CommandSpec(schemas.ChangeUserRightsPayload, self._change_user_rights),
			"get-notifications-settings": CommandSpec(schemas.UserPayload, self._get_notifications_settings),
			"change-notifications-settings": CommandSpec(schemas.ChangeNotificationsPayload, self._change_notifications_settings),
			"load-rights": CommandSpec(schemas.UserRoomPayload, self._load_rights),
		}

	@property
	def service(self) -> RoomService:
		return self._service

	@property
	def commands(self) -> list[str]:
		return sorted(self._commands)

	async def dispatch(self, command: str, payload: Optional[Mapping[str, Any]] = None) -> Any:
		spec = self._commands.get(command)
		if spec is None:
			obs_metrics.inc_command(command="unknown", outcome="unknown_command")
			raise RoomPolicyError("unknown_command", status_code=404, message=f"Unknown command {command}")
		try:
			parsed = spec.schema.model_validate(dict(payload or {}))
		except ValidationError as exc:
			obs_metrics.inc_command(command=command, outcome="invalid_payload")
			logger.debug("rooms.command.invalid", extra={"command": command, "errors": exc.error_count()})
			raise RoomPolicyError("invalid_payload", status_code=400, message="Invalid payload") from exc
		tokens = obs_logging.bind_context(command=command, user_id=getattr(parsed, "user_id", None))
		try:
			try:
				result = await spec.handler(parsed)
			except AttachmentValidationError as exc:
				obs_metrics.inc_command(command=command, outcome="invalid_payload")
				raise RoomPolicyError("invalid_payload", status_code=400, message=str(exc)) from exc
			except RoomPolicyError as exc:
				obs_metrics.inc_command(command=command, outcome=exc.code)
				raise
			obs_metrics.inc_command(command=command, outcome=_outcome(result))
			return encode_result(result)
		finally:
			obs_logging.reset_context(tokens)

	async def _add_welcome_chat(self, payload: schemas.UserPayload) -> Any:
		return await self._service.add_welcome_chat(payload.user_id)

	async def _create_room(self, payload: schemas.CreateRoomPayload) -> Any:
		await self._service.create_room(payload.user_id, payload.room_spec)
		return HTTPStatus.CREATED

	async def _get_all_rooms(self, payload: schemas.EmptyPayload) -> Any:
		return await self._service.get_all_rooms()

	async def _get_all_user_rooms(self, payload: schemas.UserPayload) -> Any:
		return await self._service.get_all_user_rooms(payload.user_id)

	async def _find_by_name(self, payload: schemas.FindByNamePayload) -> Any:
		return await self._service.find_room_and_users_by_name(payload.name, payload.user_id)

	async def _update_room(self, payload: schemas.UpdateRoomPayload) -> Any:
		return await self._service.update_room(payload.rights, payload.user_id, payload.room_id, payload.patch)

	async def _change_room_photo(self, payload: schemas.ChangeRoomPhotoPayload) -> Any:
		photo = decode_photo(payload.photo)
		return await self._service.change_room_photo(payload.rights, payload.user_id, payload.room_id, photo)

	async def _delete_room(self, payload: schemas.GatedRoomPayload) -> Any:
		return await self._service.delete_room(payload.rights, payload.user_id, payload.room_id)

	async def _add_message_reference(self, payload: schemas.MessageReferencePayload) -> Any:
		return await self._service.add_message_reference(payload.message_id, payload.room_id)

	async def _delete_message_reference(self, payload: schemas.MessageReferencePayload) -> Any:
		return await self._service.delete_message_reference(payload.room_id, payload.message_id)

	async def _add_recent_message(self, payload: schemas.RoomPayload) -> Any:
		return await self._projector.refresh(payload.room_id)

	async def _enter_public_room(self, payload: schemas.UserRoomPayload) -> Any:
		return await self._service.enter_public_room(payload.user_id, payload.room_id)

	async def _add_user(self, payload: schemas.AddUserPayload) -> Any:
		return await self._service.add_user_to_room(
			payload.rights,
			payload.user_id,
			payload.room_id,
			payload.identifier,
			payload.granted_rights,
		)

	async def _delete_user(self, payload: schemas.DeleteUserPayload) -> Any:
		return await self._service.delete_user_from_room(
			payload.rights,
			payload.user_id,
			payload.target_id,
			payload.room_id,
			payload.mode,
		)

	async def _change_user_rights(self, payload: schemas.ChangeUserRightsPayload) -> Any:
		return await self._service.change_user_rights_in_room(
			payload.rights,
			payload.performer_id,
			payload.target_id,
			payload.room_id,
			payload.new_rights,
		)

	async def _get_notifications_settings(self, payload: schemas.UserPayload) -> Any:
		return await self._service.get_user_notifications_settings(payload.user_id)

	async def _change_notifications_settings(self, payload: schemas.ChangeNotificationsPayload) -> Any:
		return await self._service.change_notification_settings(payload.user_id, payload.room_id, payload.enabled)

	async def _load_rights(self, payload: schemas.UserRoomPayload) -> Any:
		return await self._service.load_rights(payload.user_id, payload.room_id)


__all__ = ["CommandSpec", "RoomCommandRouter", "encode_result"]
