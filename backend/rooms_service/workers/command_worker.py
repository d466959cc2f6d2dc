"""Redis request/reply worker serving room commands."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict

from rooms_service.domain.rooms import RoomCommandRouter
from rooms_service.domain.rooms.policy import RoomInternalError, RoomPolicyError
from rooms_service.infra.redis import redis_client
from rooms_service.obs import logging as obs_logging
from rooms_service.settings import settings

_LOG = logging.getLogger(__name__)


class CommandWorker:
	"""Consumes command requests from a Redis stream and pushes replies to per-request lists.

	Stream entries carry ``id`` (the reply correlation id), ``cmd`` (command
	key) and ``payload`` (JSON object). Replies are JSON documents with either
	``response`` or ``err`` set, pushed onto ``<reply_prefix><id>`` with a TTL.
	Answered entries are removed from the stream.
	"""

	def __init__(
		self,
		*,
		commands: RoomCommandRouter | None = None,
		stream: str | None = None,
		poll_interval: float | None = None,
		batch_size: int = 50,
	) -> None:
		self._commands = commands or RoomCommandRouter()
		self.stream = stream or settings.rpc_request_stream
		self.poll_interval = poll_interval if poll_interval is not None else settings.rpc_poll_interval
		self.batch_size = batch_size
		self._last_id = "0-0"
		self._running = False

	async def run_forever(self) -> None:
		"""Continuously poll the request stream until :meth:`stop` is called."""
		self._running = True
		while self._running:
			try:
				processed = await self.process_once()
			except asyncio.CancelledError:
				raise
			except Exception:
				_LOG.exception("command_worker.poll_failed", extra={"stream": self.stream})
				processed = 0
			if processed == 0:
				await asyncio.sleep(self.poll_interval)

	def stop(self) -> None:
		"""Request the worker to stop after the current poll."""
		self._running = False

	async def process_once(self) -> int:
		messages = await redis_client.xread(streams={self.stream: self._last_id}, count=self.batch_size)
		if not messages:
			return 0
		processed = 0
		for _stream_name, entries in messages:
			for entry_id, fields in entries:
				await self._handle(entry_id, dict(fields))
				self._last_id = entry_id
				processed += 1
		return processed

	async def _handle(self, entry_id: str, fields: Dict[str, str]) -> None:
		reply_id = fields.get("id") or entry_id
		command = fields.get("cmd", "")
		tokens = obs_logging.bind_context(request_id=reply_id)
		try:
			reply = await self._execute(command, fields.get("payload"))
		finally:
			obs_logging.reset_context(tokens)
		await self._reply(reply_id, reply)
		await redis_client.xdel(self.stream, entry_id)

	async def _execute(self, command: str, raw_payload: str | None) -> Dict[str, Any]:
		try:
			payload = json.loads(raw_payload) if raw_payload else {}
		except ValueError:
			payload = None
		if not isinstance(payload, dict):
			return {"err": RoomPolicyError("invalid_payload", status_code=400, message="Invalid payload").to_payload()}
		try:
			return {"response": await self._commands.dispatch(command, payload)}
		except RoomPolicyError as exc:
			return {"err": exc.to_payload()}
		except Exception:
			_LOG.exception("command_worker.dispatch_failed", extra={"cmd": command})
			return {"err": RoomInternalError().to_payload()}

	async def _reply(self, reply_id: str, reply: Dict[str, Any]) -> None:
		key = f"{settings.rpc_reply_prefix}{reply_id}"
		await redis_client.rpush(key, json.dumps(reply))
		await redis_client.expire(key, settings.rpc_reply_ttl_seconds)


__all__ = ["CommandWorker"]
