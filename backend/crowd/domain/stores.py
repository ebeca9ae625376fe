"""Narrow store interfaces consumed by the engine.

Production implementations live in :mod:`crowd.domain.repo`; tests pass
in-memory fakes.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Protocol, Tuple

from crowd.domain.models import Attendance, ChatMessage, Event, NotificationKind, Subscriber


class EventStore(Protocol):
    async def get_event(self, event_id: str) -> Optional[Event]: ...

    async def list_events(self) -> List[Event]: ...

    async def delete_event(self, event_id: str) -> bool: ...

    async def create_event(self, event: Event) -> Event: ...

    async def adjust_attendee_count(self, event_id: str, delta: int) -> int: ...


class SubscriberStore(Protocol):
    async def candidates_by_geocell_prefix(self, prefix: str) -> set[str]: ...

    async def get_subscriber(self, subscriber_id: str) -> Optional[Subscriber]: ...

    async def clear_push_token(self, subscriber_id: str) -> None: ...

    async def update_cooldown(self, subscriber_id: str, kind: NotificationKind, at: datetime) -> None: ...

    async def list_located(self) -> List[Tuple[str, str]]:
        """(id, geocell) for every subscriber with a cell and a push token."""
        ...

    async def update_location(self, subscriber_id: str, latitude: float, longitude: float, cell: str) -> bool:
        """Store a new position; False when the subscriber is unknown."""
        ...


class AttendanceStore(Protocol):
    async def list_by_event(self, event_id: str) -> List[Attendance]: ...

    async def delete_by_event(self, event_id: str, *, limit: int) -> int:
        """Delete up to ``limit`` rows for the event and return how many went."""
        ...

    async def count(self, event_id: str) -> int: ...

    async def add(self, event_id: str, user_id: str, at: datetime) -> bool:
        """Insert the pair; False when it already existed."""
        ...

    async def remove(self, event_id: str, user_id: str) -> bool: ...


class ChatStore(Protocol):
    async def list_transcript(self, event_id: str) -> List[ChatMessage]: ...

    async def delete_transcript(self, event_id: str, *, limit: int) -> int:
        """Delete up to ``limit`` messages for the event and return how many went."""
        ...


__all__ = ["AttendanceStore", "ChatStore", "EventStore", "SubscriberStore"]
