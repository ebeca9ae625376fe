"""Lifecycle reaper: removes expired events together with their dependents.

Each expired event is handled on its own. Attendance rows and the chat
transcript go first, in bounded chunks, and the event record last, so a sweep
interrupted half way leaves the parent in place for the next run to finish.
Deleting something already gone is a no-op, which makes overlapping sweeps
converge on the same end state.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, List, Optional

from crowd.domain.exceptions import CrowdError
from crowd.domain.models import Event
from crowd.domain.stores import AttendanceStore, ChatStore, EventStore
from crowd.obs import metrics as obs_metrics
from crowd.settings import settings

logger = logging.getLogger(__name__)

STAGE_SCAN = "scan"
STAGE_ATTENDANCE = "attendance"
STAGE_CHAT = "chat"
STAGE_EVENT = "event"


@dataclass(frozen=True, slots=True)
class SweepError:
    event_id: Optional[str]
    stage: str
    reason: str


@dataclass
class CleanupReport:
    scanned: int = 0
    expired: int = 0
    events_deleted: int = 0
    attendance_deleted: int = 0
    messages_deleted: int = 0
    errors: List[SweepError] = field(default_factory=list)

    @property
    def total_deleted(self) -> int:
        return self.events_deleted + self.attendance_deleted + self.messages_deleted

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {
            "scanned": self.scanned,
            "expired": self.expired,
            "events_deleted": self.events_deleted,
            "attendance_deleted": self.attendance_deleted,
            "messages_deleted": self.messages_deleted,
            "errors": [
                {"event_id": err.event_id, "stage": err.stage, "reason": err.reason} for err in self.errors
            ],
        }


class LifecycleReaper:
    def __init__(
        self,
        *,
        events: EventStore,
        attendance: AttendanceStore,
        chats: ChatStore,
        grace: Optional[timedelta] = None,
        default_ttl: Optional[timedelta] = None,
        batch_size: Optional[int] = None,
        max_concurrency: int = 4,
    ) -> None:
        self.events = events
        self.attendance = attendance
        self.chats = chats
        self.grace = grace if grace is not None else timedelta(seconds=settings.event_grace_seconds)
        self.default_ttl = default_ttl if default_ttl is not None else timedelta(seconds=settings.event_default_ttl_seconds)
        self.batch_size = max(1, int(batch_size or settings.delete_batch_size))
        self.max_concurrency = max(1, max_concurrency)

    def expires_at(self, event: Event) -> datetime:
        return event.effective_expires_at(self.grace, self.default_ttl)

    async def sweep(self, now: Optional[datetime] = None) -> CleanupReport:
        """Delete every event whose expiration instant is at or before ``now``."""
        now = now or datetime.now(timezone.utc)
        report = CleanupReport()
        events = await self._scan(report)
        if events is None:
            return report
        expired = [event for event in events if event.is_expired(now, self.grace, self.default_ttl)]
        report.expired = len(expired)
        await self._for_each(expired, lambda event: self._reap_event(event, report))
        obs_metrics.inc_reaper_deleted("event", report.events_deleted)
        obs_metrics.inc_reaper_deleted("attendance", report.attendance_deleted)
        obs_metrics.inc_reaper_deleted("chat_message", report.messages_deleted)
        logger.info("reaper.sweep_done", extra=report.to_dict())
        return report

    async def sweep_chats(self, now: Optional[datetime] = None) -> CleanupReport:
        """Drop chat transcripts of events that have ended, leaving the events alone."""
        now = now or datetime.now(timezone.utc)
        report = CleanupReport()
        events = await self._scan(report)
        if events is None:
            return report
        ended = [event for event in events if event.ends_at is not None and event.ends_at < now]
        report.expired = len(ended)
        await self._for_each(ended, lambda event: self._clear_chat(event, report))
        obs_metrics.inc_reaper_deleted("chat_message", report.messages_deleted)
        logger.info("reaper.chat_sweep_done", extra=report.to_dict())
        return report

    async def delete_event_now(self, event_id: str) -> Optional[CleanupReport]:
        """Cascade-delete one event regardless of its expiry; ``None`` when it does not exist.

        Dependents go first, like a sweep, so a failed call can simply be repeated.
        """
        event = await self.events.get_event(event_id)
        if event is None:
            return None
        report = CleanupReport(scanned=1, expired=1)
        await self._reap_event(event, report)
        obs_metrics.inc_reaper_deleted("event", report.events_deleted)
        obs_metrics.inc_reaper_deleted("attendance", report.attendance_deleted)
        obs_metrics.inc_reaper_deleted("chat_message", report.messages_deleted)
        logger.info("reaper.event_deleted", extra={"event": event_id, **report.to_dict()})
        return report

    async def _scan(self, report: CleanupReport) -> Optional[List[Event]]:
        try:
            events = await self.events.list_events()
        except CrowdError as exc:
            logger.warning("reaper.scan_failed", extra={"reason": exc.reason})
            report.errors.append(SweepError(event_id=None, stage=STAGE_SCAN, reason=exc.reason))
            obs_metrics.inc_reaper_error(STAGE_SCAN)
            return None
        report.scanned = len(events)
        return events

    async def _for_each(self, events: List[Event], func: Callable[[Event], Awaitable[None]]) -> None:
        limit = asyncio.Semaphore(self.max_concurrency)

        async def run(event: Event) -> None:
            async with limit:
                await func(event)

        await asyncio.gather(*(run(event) for event in events))

    async def _reap_event(self, event: Event, report: CleanupReport) -> None:
        stage = STAGE_ATTENDANCE
        try:
            attendance = await self._drain(self.attendance.delete_by_event, event.id)
            report.attendance_deleted += attendance
            stage = STAGE_CHAT
            messages = await self._drain(self.chats.delete_transcript, event.id)
            report.messages_deleted += messages
            stage = STAGE_EVENT
            if await self.events.delete_event(event.id):
                report.events_deleted += 1
        except Exception as exc:
            reason = exc.reason if isinstance(exc, CrowdError) else type(exc).__name__
            logger.exception("reaper.event_failed", extra={"event": event.id, "stage": stage})
            report.errors.append(SweepError(event_id=event.id, stage=stage, reason=reason))
            obs_metrics.inc_reaper_error(stage)

    async def _clear_chat(self, event: Event, report: CleanupReport) -> None:
        try:
            report.messages_deleted += await self._drain(self.chats.delete_transcript, event.id)
        except Exception as exc:
            reason = exc.reason if isinstance(exc, CrowdError) else type(exc).__name__
            logger.exception("reaper.chat_failed", extra={"event": event.id})
            report.errors.append(SweepError(event_id=event.id, stage=STAGE_CHAT, reason=reason))
            obs_metrics.inc_reaper_error(STAGE_CHAT)

    async def _drain(self, delete: Callable[..., Awaitable[int]], event_id: str) -> int:
        total = 0
        while True:
            deleted = await delete(event_id, limit=self.batch_size)
            total += deleted
            if deleted < self.batch_size:
                return total


__all__ = ["CleanupReport", "LifecycleReaper", "SweepError"]
