"""Notification copy for each trigger kind."""

from __future__ import annotations

from typing import Callable, Dict

from crowd.domain.delivery.gateway import PushMessage
from crowd.domain.models import AttendanceThresholdCrossed, Event, NotificationKind, NotificationTarget, Trigger

MessageBuilder = Callable[[NotificationTarget], PushMessage]

_CATEGORY_EMOJI = (
    ("music", "🎵"),
    ("party", "🎉"),
    ("food", "🍕"),
    ("coffee", "☕"),
    ("sports", "⚽"),
    ("study", "📚"),
    ("academic", "📚"),
    ("art", "🎨"),
    ("culture", "🎭"),
    ("social", "🤝"),
    ("networking", "🤝"),
    ("wellness", "🧘"),
    ("health", "🏥"),
    ("outdoor", "🏔️"),
    ("gaming", "🎮"),
    ("lifestyle", "👗"),
    ("politics", "🏛️"),
    ("hangout", "🫂"),
)
_DEFAULT_EMOJI = "🎉"
_DEFAULT_LOCATION = "a nearby location"


def emoji_for_category(category: str) -> str:
    lowered = (category or "").lower()
    for keyword, emoji in _CATEGORY_EMOJI:
        if keyword in lowered:
            return emoji
    return _DEFAULT_EMOJI


def _base_data(event: Event, kind: NotificationKind) -> Dict[str, str]:
    return {
        "eventId": event.id,
        "type": kind.value,
        "category": event.category or "hangout",
        "locationName": event.location_name or _DEFAULT_LOCATION,
    }


def nearby_event_builder(event: Event) -> MessageBuilder:
    category = event.category or "hangout"
    title = f"{emoji_for_category(category)} {category} Crowd has spawned nearby 📍🎉"
    body = f"{event.title} at {event.location_name or _DEFAULT_LOCATION}"

    def build(target: NotificationTarget) -> PushMessage:
        data = _base_data(event, NotificationKind.NEARBY_EVENT)
        data["distance"] = str(round(target.distance_m))
        return PushMessage(title=title, body=body, data=data)

    return build


def popular_event_builder(event: Event, threshold: int) -> MessageBuilder:
    title = "This Crowd is poppin off! Drop everything and pull up 🔥"
    body = f"{event.title} > {threshold} ppl"

    def build(target: NotificationTarget) -> PushMessage:
        return PushMessage(title=title, body=body, data=_base_data(event, NotificationKind.POPULAR_EVENT))

    return build


def builder_for(trigger: Trigger) -> MessageBuilder:
    if isinstance(trigger, AttendanceThresholdCrossed):
        return popular_event_builder(trigger.event, trigger.count)
    return nearby_event_builder(trigger.event)


__all__ = [
    "MessageBuilder",
    "builder_for",
    "emoji_for_category",
    "nearby_event_builder",
    "popular_event_builder",
]
