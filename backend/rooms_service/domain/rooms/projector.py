"""Recent-message projection cached on rooms."""

from __future__ import annotations

from http import HTTPStatus

from rooms_service.domain.rooms import models
from rooms_service.domain.rooms.policy import internal_errors
from rooms_service.domain.rooms.repo import RoomStores


class RecentMessageProjector:
	"""Rebuilds ``Room.recent_message`` from the latest inserted message.

	Callers run this explicitly after a message is stored; recording a
	message reference on the room does not trigger it.
	"""

	def __init__(self, stores: RoomStores | None = None) -> None:
		self._stores = stores or RoomStores()

	@internal_errors
	async def refresh(self, room_id: str) -> HTTPStatus:
		message = await self._stores.messages.latest_for_room(room_id)
		if message is None:
			return HTTPStatus.BAD_REQUEST
		authors = await self._stores.users.get_many([message.author_id])
		username = authors[0].username if authors else ""
		snapshot = models.RecentMessage(
			id=message.id,
			author=models.MessageAuthor(id=message.author_id, username=username),
			room_id=room_id,
			text=message.text,
			attachments=list(message.attachments),
			timestamp=message.timestamp,
		)
		updated = await self._stores.rooms.update(room_id, recent_message=snapshot)
		if updated is None:
			return HTTPStatus.NOT_FOUND
		return HTTPStatus.CREATED
