import asyncio
import sys
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from rooms_service.domain.rooms.repo import reset_memory_state
from rooms_service.infra import media, postgres
from rooms_service.main import app
from rooms_service.settings import settings


# Ensure a selector-based event loop policy on Windows to avoid Proactor issues with async IO
if hasattr(asyncio, "WindowsSelectorEventLoopPolicy"):
	try:
		asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
	except Exception:
		# Non-fatal; proceed with default policy
		pass


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from rooms_service.infra.redis import redis_client, set_redis_client
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	postgres.set_pool(None)
	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest_asyncio.fixture(autouse=True)
async def memory_state():
	await reset_memory_state()
	yield
	await reset_memory_state()


@pytest.fixture(autouse=True)
def local_media(tmp_path):
	"""Route photo uploads to a per-test directory."""
	uploader = media.LocalMediaUploader(tmp_path / "uploads", "http://testserver/uploads")
	media.set_media_uploader(uploader)
	try:
		yield uploader
	finally:
		media.set_media_uploader(None)


@pytest.fixture(autouse=True)
def force_test_settings():
	original_env = settings.environment
	original_worker = settings.rpc_worker_enabled
	settings.environment = "dev"
	settings.rpc_worker_enabled = False
	try:
		yield
	finally:
		settings.environment = original_env
		settings.rpc_worker_enabled = original_worker


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
