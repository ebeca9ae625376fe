"""Redis stream helpers for notification triggers."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from crowd.infra.redis import redis_client
from crowd.settings import settings

TRIGGER_EVENT_CREATED = "event_created"
TRIGGER_ATTENDANCE = "attendance"


def _now_ts() -> str:
	return datetime.now(timezone.utc).isoformat()


async def publish_trigger(kind: str, *, event_id: str, count: Optional[int] = None) -> str:
	payload: dict[str, Any] = {
		"type": kind,
		"event_id": event_id,
		"ts": _now_ts(),
	}
	if count is not None:
		payload["count"] = str(count)
	return await redis_client.xadd(settings.trigger_stream, payload)


async def publish_event_created(event_id: str) -> str:
	return await publish_trigger(TRIGGER_EVENT_CREATED, event_id=event_id)


async def publish_attendance(event_id: str, count: int) -> str:
	return await publish_trigger(TRIGGER_ATTENDANCE, event_id=event_id, count=count)


class StreamTriggerPublisher:
	"""Publisher object handed to services that emit triggers."""

	async def event_created(self, event_id: str) -> None:
		await publish_event_created(event_id)

	async def attendance_changed(self, event_id: str, count: int) -> None:
		await publish_attendance(event_id, count)


__all__ = [
	"StreamTriggerPublisher",
	"TRIGGER_ATTENDANCE",
	"TRIGGER_EVENT_CREATED",
	"publish_attendance",
	"publish_event_created",
	"publish_trigger",
]
