"""One notification pass per trigger: select targets, then deliver."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from crowd.domain.delivery.dispatcher import DeliveryDispatcher, DeliveryReport
from crowd.domain.delivery.messages import MessageBuilder, builder_for
from crowd.domain.exceptions import StoreUnavailable
from crowd.domain.models import AttendanceThresholdCrossed, EventCreated, Trigger
from crowd.domain.stores import AttendanceStore, EventStore
from crowd.domain.targeting.engine import TargetingEngine, TargetSelection
from crowd.obs import metrics as obs_metrics
from crowd.obs.logging import bind_context, reset_context

logger = logging.getLogger(__name__)


@dataclass
class TriggerResult:
    selection: TargetSelection
    delivery: DeliveryReport

    def to_dict(self) -> dict:
        return {"targeting": self.selection.stats.to_dict(), "delivery": self.delivery.to_dict()}


class NotificationPipeline:
    def __init__(
        self,
        *,
        engine: TargetingEngine,
        dispatcher: DeliveryDispatcher,
        events: EventStore,
        attendance: AttendanceStore,
        builder_factory: Callable[[Trigger], MessageBuilder] = builder_for,
    ) -> None:
        self.engine = engine
        self.dispatcher = dispatcher
        self.events = events
        self.attendance = attendance
        self.builder_factory = builder_factory

    async def handle(self, trigger: Trigger, *, now: Optional[datetime] = None) -> TriggerResult:
        kind = trigger.kind.value
        tokens = bind_context(trigger_id=uuid.uuid4().hex, event_id=trigger.event.id)
        try:
            try:
                selection = await self.engine.select(trigger, now=now)
            except StoreUnavailable:
                obs_metrics.inc_trigger(kind, "store_unavailable")
                logger.warning("pipeline.targeting_aborted", extra={"kind": kind})
                raise
            delivery = await self.dispatcher.deliver(
                selection.targets,
                trigger.kind,
                self.builder_factory(trigger),
                now=now,
            )
            obs_metrics.inc_trigger(kind, "sent" if delivery.attempted else "no_targets")
            return TriggerResult(selection=selection, delivery=delivery)
        finally:
            reset_context(tokens)

    async def handle_event_created(self, event_id: str, *, now: Optional[datetime] = None) -> Optional[TriggerResult]:
        event = await self.events.get_event(event_id)
        if event is None:
            logger.info("pipeline.event_missing", extra={"event": event_id})
            obs_metrics.inc_trigger(EventCreated.kind.value, "event_missing")
            return None
        return await self.handle(EventCreated(event=event), now=now)

    async def handle_attendance(
        self,
        event_id: str,
        count: Optional[int] = None,
        *,
        now: Optional[datetime] = None,
    ) -> Optional[TriggerResult]:
        """Attendance changed; ``count`` is re-read from the store when not given."""
        event = await self.events.get_event(event_id)
        if event is None:
            logger.info("pipeline.event_missing", extra={"event": event_id})
            obs_metrics.inc_trigger(AttendanceThresholdCrossed.kind.value, "event_missing")
            return None
        if count is None:
            count = await self.attendance.count(event_id)
        return await self.handle(AttendanceThresholdCrossed(event=event, count=count), now=now)


__all__ = ["NotificationPipeline", "TriggerResult"]
