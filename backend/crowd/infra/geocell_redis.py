"""Redis sorted-set geocell index.

Members are ``"<cell>:<subscriber_id>"`` with a constant score, so a prefix
scan is a ``ZRANGEBYLEX`` over ``[prefix, prefix + sentinel)``.
"""

from __future__ import annotations

from typing import Iterable, Optional, Tuple

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from crowd.domain.exceptions import InvalidGeocell, StoreUnavailable
from crowd.domain.geo.geocell import encode, is_valid_geocell, prefix_range
from crowd.infra.redis import redis_client
from crowd.settings import settings

INDEX_KEY = "crowd:geocell:subscribers"
CELLS_KEY = "crowd:geocell:cells"
_REBUILD_CHUNK = 1000


def _member(cell: str, subscriber_id: str) -> str:
	return f"{cell}:{subscriber_id}"


class RedisGeoCellIndex:
	def __init__(self, *, index_key: str = INDEX_KEY, cells_key: str = CELLS_KEY) -> None:
		self.index_key = index_key
		self.cells_key = cells_key

	async def put(self, subscriber_id: str, cell: str) -> None:
		if not is_valid_geocell(cell):
			raise InvalidGeocell()
		try:
			previous = await redis_client.hget(self.cells_key, subscriber_id)
			async with redis_client.pipeline(transaction=True) as pipe:
				if previous and previous != cell:
					pipe.zrem(self.index_key, _member(previous, subscriber_id))
				pipe.zadd(self.index_key, {_member(cell, subscriber_id): 0})
				pipe.hset(self.cells_key, subscriber_id, cell)
				await pipe.execute()
		except (RedisConnectionError, RedisTimeoutError) as exc:
			raise StoreUnavailable("redis_unavailable") from exc

	async def put_coordinate(self, subscriber_id: str, lat: float, lon: float, precision: Optional[int] = None) -> str:
		cell = encode(lat, lon, precision or settings.geocell_precision)
		await self.put(subscriber_id, cell)
		return cell

	async def remove(self, subscriber_id: str) -> None:
		try:
			previous: Optional[str] = await redis_client.hget(self.cells_key, subscriber_id)
			if not previous:
				return
			async with redis_client.pipeline(transaction=True) as pipe:
				pipe.zrem(self.index_key, _member(previous, subscriber_id))
				pipe.hdel(self.cells_key, subscriber_id)
				await pipe.execute()
		except (RedisConnectionError, RedisTimeoutError) as exc:
			raise StoreUnavailable("redis_unavailable") from exc

	async def rebuild(self, entries: Iterable[Tuple[str, str]]) -> int:
		"""Replace the whole index with ``(subscriber_id, cell)`` pairs.

		The new set is written under staging keys and renamed over the live ones,
		so readers never see a half-built index. Invalid cells are skipped.
		"""
		staging_index = f"{self.index_key}:rebuild"
		staging_cells = f"{self.cells_key}:rebuild"
		written = 0
		try:
			await redis_client.delete(staging_index, staging_cells)
			chunk: dict[str, str] = {}
			for subscriber_id, cell in entries:
				if not is_valid_geocell(cell):
					continue
				chunk[subscriber_id] = cell
				if len(chunk) >= _REBUILD_CHUNK:
					written += await self._stage(staging_index, staging_cells, chunk)
					chunk = {}
			if chunk:
				written += await self._stage(staging_index, staging_cells, chunk)
			async with redis_client.pipeline(transaction=True) as pipe:
				if written:
					pipe.rename(staging_index, self.index_key)
					pipe.rename(staging_cells, self.cells_key)
				else:
					pipe.delete(self.index_key, self.cells_key)
				await pipe.execute()
		except (RedisConnectionError, RedisTimeoutError) as exc:
			raise StoreUnavailable("redis_unavailable") from exc
		return written

	async def _stage(self, index_key: str, cells_key: str, chunk: dict[str, str]) -> int:
		async with redis_client.pipeline(transaction=False) as pipe:
			pipe.zadd(index_key, {_member(cell, subscriber_id): 0 for subscriber_id, cell in chunk.items()})
			pipe.hset(cells_key, mapping=chunk)
			await pipe.execute()
		return len(chunk)

	async def candidates_by_prefix(self, prefix: str) -> set[str]:
		low, high = prefix_range(prefix)
		try:
			members = await redis_client.zrangebylex(self.index_key, f"[{low}", f"({high}")
		except (RedisConnectionError, RedisTimeoutError) as exc:
			raise StoreUnavailable("redis_unavailable") from exc
		candidates: set[str] = set()
		for member in members:
			_, _, subscriber_id = str(member).partition(":")
			if subscriber_id:
				candidates.add(subscriber_id)
		return candidates


__all__ = ["CELLS_KEY", "INDEX_KEY", "RedisGeoCellIndex"]
