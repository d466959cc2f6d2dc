"""Policy helpers and error normalisation for the rooms domain."""

from __future__ import annotations

import functools
import logging
from enum import Enum
from typing import Awaitable, Callable, TypeVar

from rooms_service.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

T = TypeVar("T")

INTERNAL_ERROR_KEY = "INTERNAL_SERVER_ERROR"
INTERNAL_ERROR_MESSAGE = "Internal server error"


class RoomPolicyError(RuntimeError):
	def __init__(self, code: str, *, status_code: int = 400, message: str | None = None) -> None:
		super().__init__(message or code)
		self.code = code
		self.status_code = status_code
		self.detail = message or code

	def to_payload(self) -> dict:
		return {"key": self.code, "code": self.status_code, "message": self.detail}


class RoomInternalError(RoomPolicyError):
	"""Normalised fault surfaced to callers; carries no internal detail."""

	def __init__(self) -> None:
		super().__init__(INTERNAL_ERROR_KEY, status_code=500, message=INTERNAL_ERROR_MESSAGE)


class DeleteMode(str, Enum):
	DELETE_USER = "DELETE_USER"
	LEAVE_ROOM = "LEAVE_ROOM"


class IdentifierKind(str, Enum):
	EMAIL = "email"
	PHONE = "phone_number"
	USERNAME = "username"


def identifier_kind(identifier: str) -> IdentifierKind:
	"""Pick the single lookup strategy for an invite identifier."""
	if "@" in identifier:
		return IdentifierKind.EMAIL
	if "+" in identifier:
		return IdentifierKind.PHONE
	return IdentifierKind.USERNAME


def can_leave(user_id: str, target_id: str) -> bool:
	return user_id == target_id


def internal_errors(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
	"""Log unexpected faults with their trace and re-raise them as RoomInternalError."""
	operation = func.__name__

	@functools.wraps(func)
	async def wrapper(*args, **kwargs) -> T:
		try:
			return await func(*args, **kwargs)
		except RoomPolicyError:
			raise
		except Exception:
			logger.exception(f"rooms.{operation}.failed")
			obs_metrics.inc_internal_error(operation)
			raise RoomInternalError() from None

	return wrapper
