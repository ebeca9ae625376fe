"""Joining and leaving events."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Protocol

from crowd.domain.stores import AttendanceStore, EventStore

logger = logging.getLogger(__name__)


class AttendancePublisher(Protocol):
    async def attendance_changed(self, event_id: str, count: int) -> None: ...


@dataclass(slots=True)
class AttendanceResult:
    event_id: str
    user_id: str
    created: bool
    count: int


class AttendanceService:
    def __init__(
        self,
        *,
        events: EventStore,
        attendance: AttendanceStore,
        publisher: Optional[AttendancePublisher] = None,
    ) -> None:
        self.events = events
        self.attendance = attendance
        self.publisher = publisher

    async def join(self, event_id: str, user_id: str, *, now: Optional[datetime] = None) -> AttendanceResult:
        """Record attendance; joining twice changes nothing and fires no trigger."""
        now = now or datetime.now(timezone.utc)
        created = await self.attendance.add(event_id, user_id, now)
        if created:
            await self.events.adjust_attendee_count(event_id, 1)
        count = await self.attendance.count(event_id)
        if created and self.publisher is not None:
            await self.publisher.attendance_changed(event_id, count)
        return AttendanceResult(event_id=event_id, user_id=user_id, created=created, count=count)

    async def leave(self, event_id: str, user_id: str) -> AttendanceResult:
        removed = await self.attendance.remove(event_id, user_id)
        if removed:
            await self.events.adjust_attendee_count(event_id, -1)
        count = await self.attendance.count(event_id)
        logger.info("attendance.leave", extra={"event": event_id, "removed": removed, "count": count})
        return AttendanceResult(event_id=event_id, user_id=user_id, created=False, count=count)


__all__ = ["AttendancePublisher", "AttendanceResult", "AttendanceService"]
