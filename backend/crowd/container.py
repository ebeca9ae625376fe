"""Wires stores, engine, dispatcher and reaper into one service graph."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from crowd.domain.attendance.service import AttendanceService
from crowd.domain.delivery.dispatcher import DeliveryDispatcher
from crowd.domain.delivery.gateway import FcmPushGateway, PushGateway
from crowd.domain.events.service import EventService
from crowd.domain.geo.geocell import GeoCellIndex, SubscriberStoreGeoCellIndex
from crowd.domain.lifecycle.reaper import LifecycleReaper
from crowd.domain.pipeline import NotificationPipeline
from crowd.domain.repo import (
	PostgresAttendanceStore,
	PostgresChatStore,
	PostgresEventStore,
	PostgresSubscriberStore,
)
from crowd.domain.stores import AttendanceStore, ChatStore, EventStore, SubscriberStore
from crowd.domain.subscribers.service import LocationService
from crowd.domain.targeting.cooldown import CooldownLedger
from crowd.domain.targeting.engine import TargetingEngine
from crowd.infra.geocell_redis import RedisGeoCellIndex
from crowd.infra.streams import StreamTriggerPublisher
from crowd.settings import settings
from crowd.workers.geocell_sync import GeoCellSyncJob
from crowd.workers.reaper_job import ReaperJob


@dataclass
class Services:
	events: EventStore
	subscribers: SubscriberStore
	attendance: AttendanceStore
	chats: ChatStore
	index: GeoCellIndex
	gateway: PushGateway
	ledger: CooldownLedger
	engine: TargetingEngine
	dispatcher: DeliveryDispatcher
	pipeline: NotificationPipeline
	reaper: LifecycleReaper
	reaper_job: ReaperJob
	attendance_service: AttendanceService
	event_service: EventService
	location_service: LocationService
	geocell_sync: Optional[GeoCellSyncJob] = None

	async def close(self) -> None:
		close = getattr(self.gateway, "close", None)
		if callable(close):
			await close()


def _default_index(subscribers: SubscriberStore) -> GeoCellIndex:
	if settings.geocell_index_backend.lower() == "redis":
		return RedisGeoCellIndex()
	return SubscriberStoreGeoCellIndex(subscribers)


def build_services(
	*,
	events: Optional[EventStore] = None,
	subscribers: Optional[SubscriberStore] = None,
	attendance: Optional[AttendanceStore] = None,
	chats: Optional[ChatStore] = None,
	index: Optional[GeoCellIndex] = None,
	gateway: Optional[PushGateway] = None,
	publisher: Optional[Any] = None,
) -> Services:
	"""Build the default graph; any store or gateway can be swapped (tests do)."""
	events = events or PostgresEventStore()
	subscribers = subscribers or PostgresSubscriberStore()
	attendance = attendance or PostgresAttendanceStore()
	chats = chats or PostgresChatStore()
	index = index or _default_index(subscribers)
	gateway = gateway or FcmPushGateway()
	publisher = publisher or StreamTriggerPublisher()

	ledger = CooldownLedger(subscribers)
	engine = TargetingEngine(index=index, subscribers=subscribers, attendance=attendance, ledger=ledger)
	dispatcher = DeliveryDispatcher(gateway=gateway, subscribers=subscribers, ledger=ledger)
	pipeline = NotificationPipeline(engine=engine, dispatcher=dispatcher, events=events, attendance=attendance)
	reaper = LifecycleReaper(events=events, attendance=attendance, chats=chats)
	# only the Redis index keeps its own copy of subscriber cells
	redis_index = index if isinstance(index, RedisGeoCellIndex) else None
	return Services(
		events=events,
		subscribers=subscribers,
		attendance=attendance,
		chats=chats,
		index=index,
		gateway=gateway,
		ledger=ledger,
		engine=engine,
		dispatcher=dispatcher,
		pipeline=pipeline,
		reaper=reaper,
		reaper_job=ReaperJob(reaper),
		attendance_service=AttendanceService(events=events, attendance=attendance, publisher=publisher),
		event_service=EventService(events=events, publisher=publisher),
		location_service=LocationService(subscribers=subscribers, mirror=redis_index),
		geocell_sync=GeoCellSyncJob(subscribers, redis_index) if redis_index is not None else None,
	)


__all__ = ["Services", "build_services"]
