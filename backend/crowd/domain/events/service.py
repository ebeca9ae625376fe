"""Event creation: location cell, expiry and the creation trigger."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, Protocol

from crowd.domain.geo import geocell
from crowd.domain.models import Event
from crowd.domain.stores import EventStore
from crowd.settings import settings


class EventPublisher(Protocol):
    async def event_created(self, event_id: str) -> None: ...


def compute_expires_at(
    created_at: datetime,
    ends_at: Optional[datetime],
    *,
    grace: Optional[timedelta] = None,
    default_ttl: Optional[timedelta] = None,
) -> datetime:
    grace = grace if grace is not None else timedelta(seconds=settings.event_grace_seconds)
    default_ttl = default_ttl if default_ttl is not None else timedelta(seconds=settings.event_default_ttl_seconds)
    if ends_at is not None:
        return ends_at + grace
    return created_at + default_ttl


class EventService:
    def __init__(self, *, events: EventStore, publisher: Optional[EventPublisher] = None) -> None:
        self.events = events
        self.publisher = publisher

    async def create_event(
        self,
        *,
        host_id: str,
        latitude: float,
        longitude: float,
        title: str,
        category: str = "hangout",
        tags: Iterable[str] = (),
        location_name: Optional[str] = None,
        starts_at: Optional[datetime] = None,
        ends_at: Optional[datetime] = None,
        event_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Event:
        """Store a new event and announce it; raises InvalidCoordinate for bad locations."""
        now = now or datetime.now(timezone.utc)
        cell = geocell.encode(latitude, longitude, settings.event_geocell_precision)
        event = Event(
            id=event_id or str(uuid.uuid4()),
            host_id=host_id,
            latitude=float(latitude),
            longitude=float(longitude),
            geocell=cell,
            created_at=now,
            category=category or "hangout",
            tags=[tag.strip() for tag in tags if tag and tag.strip()],
            title=title or "New Event",
            location_name=location_name,
            starts_at=starts_at,
            ends_at=ends_at,
            expires_at=compute_expires_at(now, ends_at),
        )
        stored = await self.events.create_event(event)
        if self.publisher is not None:
            await self.publisher.event_created(stored.id)
        return stored


__all__ = ["EventPublisher", "EventService", "compute_expires_at"]
