"""FastAPI routes exposing the room commands."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, HTTPException

from rooms_service.domain.rooms import RoomCommandRouter, policy

router = APIRouter(prefix="/rooms", tags=["rooms"])

_commands = RoomCommandRouter()


def _as_http_error(exc: policy.RoomPolicyError) -> HTTPException:
	return HTTPException(status_code=exc.status_code, detail=exc.to_payload())


def get_command_router() -> RoomCommandRouter:
	return _commands


def set_command_router(commands: RoomCommandRouter) -> None:
	global _commands
	_commands = commands


@router.get("/commands")
async def list_commands_endpoint() -> dict:
	return {"commands": _commands.commands}


@router.post("/commands/{command}")
async def dispatch_command_endpoint(
	command: str,
	payload: Optional[Dict[str, Any]] = Body(default=None),
) -> dict:
	try:
		result = await _commands.dispatch(command, payload)
	except policy.RoomPolicyError as exc:
		raise _as_http_error(exc) from exc
	return {"result": result}
