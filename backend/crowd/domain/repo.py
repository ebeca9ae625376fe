"""Asyncpg implementations of the engine's stores."""

from __future__ import annotations

import asyncio
import functools
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional, Tuple, TypeVar

import asyncpg

from crowd.domain.exceptions import StoreUnavailable
from crowd.domain.geo.geocell import prefix_range
from crowd.domain.models import Attendance, ChatMessage, Event, NotificationKind, Subscriber
from crowd.infra.postgres import get_pool

T = TypeVar("T")

SCHEMA = """
CREATE TABLE IF NOT EXISTS events (
	id TEXT PRIMARY KEY,
	host_id TEXT,
	title TEXT NOT NULL DEFAULT 'New Event',
	category TEXT NOT NULL DEFAULT 'hangout',
	tags TEXT[] NOT NULL DEFAULT '{}',
	location_name TEXT,
	latitude DOUBLE PRECISION,
	longitude DOUBLE PRECISION,
	geocell TEXT COLLATE "C",
	created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
	starts_at TIMESTAMPTZ,
	ends_at TIMESTAMPTZ,
	expires_at TIMESTAMPTZ,
	attendee_count INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_events_expires_at ON events(expires_at);

CREATE TABLE IF NOT EXISTS subscribers (
	id TEXT PRIMARY KEY,
	display_name TEXT,
	push_token TEXT,
	latitude DOUBLE PRECISION,
	longitude DOUBLE PRECISION,
	geocell TEXT COLLATE "C",
	interests TEXT[] NOT NULL DEFAULT '{}',
	updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_subscribers_geocell ON subscribers(geocell);

CREATE TABLE IF NOT EXISTS subscriber_cooldowns (
	subscriber_id TEXT NOT NULL,
	kind TEXT NOT NULL,
	last_sent_at TIMESTAMPTZ NOT NULL,
	PRIMARY KEY (subscriber_id, kind)
);

CREATE TABLE IF NOT EXISTS attendances (
	event_id TEXT NOT NULL,
	user_id TEXT NOT NULL,
	created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
	PRIMARY KEY (event_id, user_id)
);

CREATE TABLE IF NOT EXISTS chat_messages (
	id TEXT PRIMARY KEY,
	event_id TEXT NOT NULL,
	sender_id TEXT NOT NULL,
	body TEXT NOT NULL,
	created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_chat_messages_event ON chat_messages(event_id, created_at);
"""

_UNAVAILABLE = (
	OSError,
	asyncio.TimeoutError,
	asyncpg.exceptions.PostgresConnectionError,
	asyncpg.exceptions.InterfaceError,
	asyncpg.exceptions.TooManyConnectionsError,
	asyncpg.exceptions.CannotConnectNowError,
)


def _guarded(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
	"""Translate connection-level failures into StoreUnavailable."""

	@functools.wraps(func)
	async def wrapper(*args: Any, **kwargs: Any) -> T:
		try:
			return await func(*args, **kwargs)
		except _UNAVAILABLE as exc:
			raise StoreUnavailable(f"store_unavailable:{type(exc).__name__}") from exc

	return wrapper


async def ensure_schema(pool: Optional[asyncpg.pool.Pool] = None) -> None:
	pool = pool or await get_pool()
	async with pool.acquire() as conn:
		await conn.execute(SCHEMA)


def _event_from_row(row: asyncpg.Record) -> Event:
	return Event(
		id=str(row["id"]),
		host_id=row["host_id"],
		latitude=row["latitude"],
		longitude=row["longitude"],
		geocell=row["geocell"],
		created_at=row["created_at"],
		category=row["category"],
		tags=list(row["tags"] or []),
		title=row["title"],
		location_name=row["location_name"],
		starts_at=row["starts_at"],
		ends_at=row["ends_at"],
		expires_at=row["expires_at"],
		attendee_count=int(row["attendee_count"] or 0),
	)


class PostgresEventStore:
	"""Thin data-access layer around asyncpg for events."""

	@_guarded
	async def get_event(self, event_id: str) -> Optional[Event]:
		pool = await get_pool()
		row = await pool.fetchrow("SELECT * FROM events WHERE id = $1", event_id)
		return _event_from_row(row) if row else None

	@_guarded
	async def list_events(self) -> List[Event]:
		pool = await get_pool()
		rows = await pool.fetch("SELECT * FROM events ORDER BY created_at ASC")
		return [_event_from_row(row) for row in rows]

	@_guarded
	async def delete_event(self, event_id: str) -> bool:
		pool = await get_pool()
		rows = await pool.fetch("DELETE FROM events WHERE id = $1 RETURNING 1", event_id)
		return bool(rows)

	@_guarded
	async def create_event(self, event: Event) -> Event:
		pool = await get_pool()
		row = await pool.fetchrow(
			"""
			INSERT INTO events (
				id, host_id, title, category, tags, location_name, latitude, longitude,
				geocell, created_at, starts_at, ends_at, expires_at, attendee_count
			)
			VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14)
			ON CONFLICT (id) DO NOTHING
			RETURNING *
			""",
			event.id,
			event.host_id,
			event.title,
			event.category,
			list(event.tags),
			event.location_name,
			event.latitude,
			event.longitude,
			event.geocell,
			event.created_at,
			event.starts_at,
			event.ends_at,
			event.expires_at,
			event.attendee_count,
		)
		if row is None:
			row = await pool.fetchrow("SELECT * FROM events WHERE id = $1", event.id)
		return _event_from_row(row)

	@_guarded
	async def adjust_attendee_count(self, event_id: str, delta: int) -> int:
		pool = await get_pool()
		value = await pool.fetchval(
			"""
			UPDATE events SET attendee_count = GREATEST(0, attendee_count + $2)
			WHERE id = $1
			RETURNING attendee_count
			""",
			event_id,
			delta,
		)
		return int(value or 0)


class PostgresSubscriberStore:
	@_guarded
	async def candidates_by_geocell_prefix(self, prefix: str) -> set[str]:
		low, high = prefix_range(prefix)
		pool = await get_pool()
		rows = await pool.fetch(
			"""
			SELECT id FROM subscribers
			WHERE geocell >= $1 AND geocell < $2 AND push_token IS NOT NULL
			""",
			low,
			high,
		)
		return {str(row["id"]) for row in rows}

	@_guarded
	async def get_subscriber(self, subscriber_id: str) -> Optional[Subscriber]:
		pool = await get_pool()
		async with pool.acquire() as conn:
			row = await conn.fetchrow("SELECT * FROM subscribers WHERE id = $1", subscriber_id)
			if row is None:
				return None
			cooldown_rows = await conn.fetch(
				"SELECT kind, last_sent_at FROM subscriber_cooldowns WHERE subscriber_id = $1",
				subscriber_id,
			)
		cooldowns = {}
		for item in cooldown_rows:
			try:
				cooldowns[NotificationKind(item["kind"])] = item["last_sent_at"]
			except ValueError:
				continue
		return Subscriber(
			id=str(row["id"]),
			push_token=row["push_token"],
			latitude=row["latitude"],
			longitude=row["longitude"],
			geocell=row["geocell"],
			interests=list(row["interests"] or []),
			cooldowns=cooldowns,
			display_name=row["display_name"],
		)

	@_guarded
	async def clear_push_token(self, subscriber_id: str) -> None:
		pool = await get_pool()
		await pool.execute(
			"UPDATE subscribers SET push_token = NULL, updated_at = NOW() WHERE id = $1",
			subscriber_id,
		)

	@_guarded
	async def update_cooldown(self, subscriber_id: str, kind: NotificationKind, at: datetime) -> None:
		pool = await get_pool()
		await pool.execute(
			"""
			INSERT INTO subscriber_cooldowns (subscriber_id, kind, last_sent_at)
			VALUES ($1, $2, $3)
			ON CONFLICT (subscriber_id, kind) DO UPDATE SET last_sent_at = EXCLUDED.last_sent_at
			""",
			subscriber_id,
			kind.value,
			at,
		)

	@_guarded
	async def list_located(self) -> List[Tuple[str, str]]:
		pool = await get_pool()
		rows = await pool.fetch(
			"SELECT id, geocell FROM subscribers WHERE geocell IS NOT NULL AND push_token IS NOT NULL"
		)
		return [(str(row["id"]), row["geocell"]) for row in rows]

	@_guarded
	async def update_location(self, subscriber_id: str, latitude: float, longitude: float, cell: str) -> bool:
		pool = await get_pool()
		rows = await pool.fetch(
			"""
			UPDATE subscribers
			SET latitude = $2, longitude = $3, geocell = $4, updated_at = NOW()
			WHERE id = $1
			RETURNING 1
			""",
			subscriber_id,
			latitude,
			longitude,
			cell,
		)
		return bool(rows)


class PostgresAttendanceStore:
	@_guarded
	async def list_by_event(self, event_id: str) -> List[Attendance]:
		pool = await get_pool()
		rows = await pool.fetch(
			"SELECT event_id, user_id, created_at FROM attendances WHERE event_id = $1 ORDER BY created_at",
			event_id,
		)
		return [
			Attendance(event_id=str(row["event_id"]), user_id=str(row["user_id"]), created_at=row["created_at"])
			for row in rows
		]

	@_guarded
	async def delete_by_event(self, event_id: str, *, limit: int) -> int:
		pool = await get_pool()
		rows = await pool.fetch(
			"""
			WITH doomed AS (
				SELECT event_id, user_id FROM attendances WHERE event_id = $1 LIMIT $2
			)
			DELETE FROM attendances a USING doomed d
			WHERE a.event_id = d.event_id AND a.user_id = d.user_id
			RETURNING 1
			""",
			event_id,
			limit,
		)
		return len(rows)

	@_guarded
	async def count(self, event_id: str) -> int:
		pool = await get_pool()
		value = await pool.fetchval("SELECT COUNT(*) FROM attendances WHERE event_id = $1", event_id)
		return int(value or 0)

	@_guarded
	async def add(self, event_id: str, user_id: str, at: datetime) -> bool:
		pool = await get_pool()
		rows = await pool.fetch(
			"""
			INSERT INTO attendances (event_id, user_id, created_at)
			VALUES ($1, $2, $3)
			ON CONFLICT (event_id, user_id) DO NOTHING
			RETURNING 1
			""",
			event_id,
			user_id,
			at,
		)
		return bool(rows)

	@_guarded
	async def remove(self, event_id: str, user_id: str) -> bool:
		pool = await get_pool()
		rows = await pool.fetch(
			"DELETE FROM attendances WHERE event_id = $1 AND user_id = $2 RETURNING 1",
			event_id,
			user_id,
		)
		return bool(rows)


class PostgresChatStore:
	@_guarded
	async def list_transcript(self, event_id: str) -> List[ChatMessage]:
		pool = await get_pool()
		rows = await pool.fetch(
			"SELECT * FROM chat_messages WHERE event_id = $1 ORDER BY created_at ASC, id ASC",
			event_id,
		)
		return [
			ChatMessage(
				id=str(row["id"]),
				event_id=str(row["event_id"]),
				sender_id=str(row["sender_id"]),
				body=row["body"],
				created_at=row["created_at"],
			)
			for row in rows
		]

	@_guarded
	async def delete_transcript(self, event_id: str, *, limit: int) -> int:
		pool = await get_pool()
		rows = await pool.fetch(
			"""
			WITH doomed AS (
				SELECT id FROM chat_messages WHERE event_id = $1 LIMIT $2
			)
			DELETE FROM chat_messages m USING doomed d WHERE m.id = d.id
			RETURNING 1
			""",
			event_id,
			limit,
		)
		return len(rows)


__all__ = [
	"PostgresAttendanceStore",
	"PostgresChatStore",
	"PostgresEventStore",
	"PostgresSubscriberStore",
	"SCHEMA",
	"ensure_schema",
]
