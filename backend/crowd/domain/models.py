"""Domain models shared by targeting, delivery and lifecycle code."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Union

from crowd.domain.exceptions import InvalidCoordinate
from crowd.domain.geo.geocell import validate_coordinate


class NotificationKind(str, enum.Enum):
    NEARBY_EVENT = "nearby_event"
    POPULAR_EVENT = "popular_event"


@dataclass(slots=True)
class Event:
    id: str
    host_id: Optional[str]
    latitude: Optional[float]
    longitude: Optional[float]
    geocell: Optional[str]
    created_at: datetime
    category: str = "hangout"
    tags: List[str] = field(default_factory=list)
    title: str = "New Event"
    location_name: Optional[str] = None
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    attendee_count: int = 0

    def effective_expires_at(self, grace: timedelta, default_ttl: timedelta) -> datetime:
        """Instant after which the event and its dependents may be reaped.

        A known end time always decides, so changing the grace period applies to
        events already stored. A stored ``expires_at`` only covers open-ended events.
        """
        if self.ends_at is not None:
            return self.ends_at + grace
        if self.expires_at is not None:
            return self.expires_at
        return self.created_at + default_ttl

    def is_expired(self, now: datetime, grace: timedelta, default_ttl: timedelta) -> bool:
        return self.effective_expires_at(grace, default_ttl) <= now


@dataclass(slots=True)
class Subscriber:
    id: str
    push_token: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    geocell: Optional[str] = None
    interests: List[str] = field(default_factory=list)
    cooldowns: Dict[NotificationKind, datetime] = field(default_factory=dict)
    display_name: Optional[str] = None

    @property
    def has_location(self) -> bool:
        try:
            validate_coordinate(self.latitude, self.longitude)
        except InvalidCoordinate:
            return False
        return True


@dataclass(slots=True)
class Attendance:
    event_id: str
    user_id: str
    created_at: datetime


@dataclass(slots=True)
class ChatMessage:
    id: str
    event_id: str
    sender_id: str
    body: str
    created_at: datetime


@dataclass(frozen=True, slots=True)
class NotificationTarget:
    subscriber_id: str
    push_token: str
    distance_m: float


@dataclass(frozen=True, slots=True)
class EventCreated:
    event: Event

    kind = NotificationKind.NEARBY_EVENT


@dataclass(frozen=True, slots=True)
class AttendanceThresholdCrossed:
    event: Event
    count: int

    kind = NotificationKind.POPULAR_EVENT


Trigger = Union[EventCreated, AttendanceThresholdCrossed]
