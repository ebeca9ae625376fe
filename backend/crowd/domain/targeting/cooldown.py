"""Per-subscriber, per-kind notification cooldowns."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional

from crowd.domain.models import NotificationKind, Subscriber
from crowd.domain.stores import SubscriberStore
from crowd.settings import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CooldownKey:
    subscriber_id: str
    kind: NotificationKind


def default_windows() -> Dict[NotificationKind, timedelta]:
    # popular_event alerts are tied to a one-time threshold crossing and are not gated
    return {NotificationKind.NEARBY_EVENT: timedelta(seconds=settings.nearby_cooldown_seconds)}


class CooldownLedger:
    """Last-sent timestamps stored on the subscriber record.

    Writes are last-write-wins; a race between two sends to the same subscriber
    can at worst let one extra notification through.
    """

    def __init__(
        self,
        store: SubscriberStore,
        *,
        windows: Optional[Dict[NotificationKind, timedelta]] = None,
    ) -> None:
        self._store = store
        self._windows = dict(windows) if windows is not None else default_windows()

    def applies_to(self, kind: NotificationKind) -> bool:
        return kind in self._windows

    def last_sent(self, subscriber: Subscriber, kind: NotificationKind) -> Optional[datetime]:
        return subscriber.cooldowns.get(kind)

    def is_in_cooldown(
        self,
        subscriber: Subscriber,
        kind: NotificationKind,
        now: datetime,
        window: Optional[timedelta] = None,
    ) -> bool:
        window = window if window is not None else self._windows.get(kind)
        if window is None:
            return False
        last_sent_at = self.last_sent(subscriber, kind)
        if last_sent_at is None:
            return False
        return now - last_sent_at < window

    async def is_subscriber_in_cooldown(
        self,
        subscriber_id: str,
        kind: NotificationKind,
        now: datetime,
        window: Optional[timedelta] = None,
    ) -> bool:
        """Same check by id, loading the subscriber first; unknown ids are never gated."""
        subscriber = await self._store.get_subscriber(subscriber_id)
        if subscriber is None:
            return False
        return self.is_in_cooldown(subscriber, kind, now, window)

    async def record_sent(self, subscriber_id: str, kind: NotificationKind, at: datetime) -> CooldownKey:
        key = CooldownKey(subscriber_id=subscriber_id, kind=kind)
        await self._store.update_cooldown(subscriber_id, kind, at)
        return key


__all__ = ["CooldownKey", "CooldownLedger", "default_windows"]
