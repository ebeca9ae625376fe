import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from crowd.domain.exceptions import InvalidGeocell, StoreUnavailable
from crowd.domain.geo import geocell
from crowd.infra import geocell_redis
from crowd.infra.geocell_redis import RedisGeoCellIndex
from crowd.infra.redis import redis_client


@pytest.mark.asyncio
async def test_prefix_scan_returns_matching_subscribers():
	index = RedisGeoCellIndex()
	await index.put("a", "9vgm0bcd")
	await index.put("b", "9vgm1xyz")
	await index.put("c", "9vgn0000")
	assert await index.candidates_by_prefix("9vgm") == {"a", "b"}
	assert await index.candidates_by_prefix("9vg") == {"a", "b", "c"}
	assert await index.candidates_by_prefix("dr5") == set()


@pytest.mark.asyncio
async def test_put_replaces_previous_cell():
	index = RedisGeoCellIndex()
	await index.put("a", "9vgm0bcd")
	await index.put("a", "dr5ru000")
	assert await index.candidates_by_prefix("9vgm") == set()
	assert await index.candidates_by_prefix("dr5ru") == {"a"}
	assert await redis_client.zcard(geocell_redis.INDEX_KEY) == 1


@pytest.mark.asyncio
async def test_remove_is_idempotent():
	index = RedisGeoCellIndex()
	cell = await index.put_coordinate("a", 33.2103, -97.1503)
	assert await index.candidates_by_prefix(cell[:5]) == {"a"}
	await index.remove("a")
	await index.remove("a")
	assert await index.candidates_by_prefix(cell[:5]) == set()


@pytest.mark.asyncio
async def test_subscriber_ids_with_colons_survive():
	index = RedisGeoCellIndex()
	await index.put("tenant:42", "9vgm0bcd")
	assert await index.candidates_by_prefix("9vgm") == {"tenant:42"}


@pytest.mark.asyncio
async def test_invalid_cell_rejected():
	with pytest.raises(InvalidGeocell):
		await RedisGeoCellIndex().put("a", "UPPER")


@pytest.mark.asyncio
async def test_connection_errors_surface_as_store_unavailable(monkeypatch):
	async def _boom(*_args, **_kwargs):
		raise RedisConnectionError("down")

	monkeypatch.setattr(redis_client.client, "zrangebylex", _boom)
	with pytest.raises(StoreUnavailable):
		await RedisGeoCellIndex().candidates_by_prefix(geocell.encode(33.21, -97.15, 5))


@pytest.mark.asyncio
async def test_rebuild_replaces_stale_entries():
	index = RedisGeoCellIndex()
	await index.put("gone", "9vgm0bcd")
	await index.put("moved", "9vgm1xyz")
	written = await index.rebuild([("moved", "dr5ru000"), ("fresh", "9vgm2bbb"), ("junk", "NOT-A-CELL")])
	assert written == 2
	assert await index.candidates_by_prefix("9vgm") == {"fresh"}
	assert await index.candidates_by_prefix("dr5ru") == {"moved"}
	assert await redis_client.hget(geocell_redis.CELLS_KEY, "gone") is None

	# later single updates still find the previous cell
	await index.put("moved", "9vgm3bbb")
	assert await index.candidates_by_prefix("dr5ru") == set()


@pytest.mark.asyncio
async def test_rebuild_with_nothing_empties_index():
	index = RedisGeoCellIndex()
	await index.put("a", "9vgm0bcd")
	assert await index.rebuild([]) == 0
	assert await redis_client.zcard(geocell_redis.INDEX_KEY) == 0
