"""Interest matching between an event and a subscriber.

The tag rule matches when an interest is contained in a tag *or* a tag is
contained in an interest, case-insensitively. That over-matches on short tags
(a one-letter tag matches almost everything) and is kept that way on purpose:
discovery alerts favour recall. Tightening it is a product call.
"""

from __future__ import annotations

from typing import Iterable, List

from crowd.domain.models import Event, Subscriber


def _normalise(values: Iterable[str]) -> List[str]:
    return [value.strip().lower() for value in values if value and value.strip()]


def category_matches(category: str, interests: Iterable[str]) -> bool:
    wanted = (category or "").strip().lower()
    if not wanted:
        return False
    return wanted in _normalise(interests)


def tags_match(tags: Iterable[str], interests: Iterable[str]) -> bool:
    lowered_interests = _normalise(interests)
    for tag in _normalise(tags):
        for interest in lowered_interests:
            if interest in tag or tag in interest:
                return True
    return False


def interests_overlap(event: Event, subscriber: Subscriber) -> bool:
    if category_matches(event.category, subscriber.interests):
        return True
    return tags_match(event.tags, subscriber.interests)


__all__ = ["category_matches", "interests_overlap", "tags_match"]
