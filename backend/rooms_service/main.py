"""FastAPI application entrypoint."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from rooms_service.api import rooms
from rooms_service.api.errors import install_error_handlers
from rooms_service.domain.rooms import RoomCommandRouter, RoomService
from rooms_service.domain.rooms.repo import RoomStores
from rooms_service.infra import postgres
from rooms_service.obs import init as obs_init
from rooms_service.settings import settings
from rooms_service.workers.command_worker import CommandWorker


@asynccontextmanager
async def lifespan(app: FastAPI):
	pool = await postgres.init_pool()
	default_commands = rooms.get_command_router()
	if pool is not None:
		rooms.set_command_router(RoomCommandRouter(RoomService(RoomStores.with_pool(pool))))
	worker_tasks: list[asyncio.Task] = []
	worker: CommandWorker | None = None
	if settings.rpc_worker_enabled:
		worker = CommandWorker(commands=rooms.get_command_router())
		worker_tasks.append(asyncio.create_task(worker.run_forever(), name="rooms-command-worker"))
	app.state.command_worker = worker
	try:
		yield
	finally:
		if worker is not None:
			worker.stop()
		for task in worker_tasks:
			task.cancel()
		if worker_tasks:
			await asyncio.gather(*worker_tasks, return_exceptions=True)
		await postgres.close_pool()
		rooms.set_command_router(default_commands)


app = FastAPI(title="Rooms Service", lifespan=lifespan)
install_error_handlers(app)
obs_init(app)
app.include_router(rooms.router)


@app.get("/health")
async def health() -> dict:
	return {"status": "ok"}


@app.get("/metrics")
async def prometheus_metrics() -> Response:
	payload = generate_latest()
	return Response(content=payload, media_type=CONTENT_TYPE_LATEST)
