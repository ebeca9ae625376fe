import asyncio
import sys
from pathlib import Path

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis
from httpx import ASGITransport, AsyncClient

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from crowd.infra import postgres
from crowd.main import app
from crowd.settings import settings

TEST_INTERNAL_SECRET = "test-internal-secret"
TEST_ADMIN_TOKEN = "test-admin-token"


if hasattr(asyncio, "WindowsSelectorEventLoopPolicy"):
	try:
		asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
	except Exception:
		pass


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from crowd.infra.redis import redis_client, set_redis_client

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
	async def _noop(*_args, **_kwargs):
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)
	monkeypatch.setattr("crowd.main.ensure_schema", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Pin the knobs tests depend on, whatever the local environment says."""
	overrides = {
		"environment": "dev",
		"internal_secret": TEST_INTERNAL_SECRET,
		"obs_admin_token": TEST_ADMIN_TOKEN,
		"obs_metrics_public": False,
		"workers_enabled": False,
		"match_radius_m": 400.0,
		"candidate_prefix_length": 5,
		"nearby_cooldown_seconds": 10800,
		"popular_event_threshold": 5,
		"event_grace_seconds": 3600,
		"event_default_ttl_seconds": 86400,
		"delete_batch_size": 500,
		"geocell_index_backend": "postgres",
		"push_batch_size": 500,
		"fcm_project_id": None,
		"fcm_access_token": None,
	}
	originals = {key: getattr(settings, key) for key in overrides}
	for key, value in overrides.items():
		setattr(settings, key, value)
	try:
		yield
	finally:
		for key, value in originals.items():
			setattr(settings, key, value)


@pytest.fixture
def internal_headers():
	return {"X-Internal-Secret": TEST_INTERNAL_SECRET}


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
	app.state.services = None
