"""Authorization gate for privileged room operations."""

from __future__ import annotations

import logging
from typing import Iterable

from rooms_service.domain.rooms.permissions import Right
from rooms_service.domain.rooms.repo import RightsRepository
from rooms_service.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


def _known_rights(values: Iterable[Right | str]) -> set[Right]:
	known: set[Right] = set()
	for value in values:
		try:
			known.add(Right(value))
		except ValueError:
			continue
	return known


class AuthorizationGate:
	"""Checks a caller-claimed right against the stored rights record.

	The claimed set only pre-filters: the rights store is authoritative, so a
	claim without a matching stored record is always denied.
	"""

	def __init__(self, rights: RightsRepository | None = None) -> None:
		self._rights = rights or RightsRepository()

	async def verify(self, claimed_rights: Iterable[Right | str], user_id: str, room_id: str, required: Right) -> bool:
		if required not in _known_rights(claimed_rights):
			self._deny(required, user_id, room_id, "not_claimed")
			return False
		if not await self._rights.has_right(user_id, room_id, required):
			self._deny(required, user_id, room_id, "not_stored")
			return False
		return True

	@staticmethod
	def _deny(required: Right, user_id: str, room_id: str, reason: str) -> None:
		obs_metrics.inc_authorization_denied(required.value)
		logger.debug(
			"rooms.gate.denied",
			extra={"right": required.value, "user_id": user_id, "room_id": room_id, "reason": reason},
		)
