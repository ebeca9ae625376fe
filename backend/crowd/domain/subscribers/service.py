"""Subscriber position updates."""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from crowd.domain.geo import geocell
from crowd.domain.stores import SubscriberStore
from crowd.settings import settings

logger = logging.getLogger(__name__)


class LocationMirror(Protocol):
    async def put(self, subscriber_id: str, cell: str) -> None: ...


class LocationService:
    def __init__(self, *, subscribers: SubscriberStore, mirror: Optional[LocationMirror] = None) -> None:
        self.subscribers = subscribers
        self.mirror = mirror

    async def update_location(self, subscriber_id: str, latitude: float, longitude: float) -> Optional[str]:
        """Store the new position and return its cell, or None for an unknown subscriber.

        Raises InvalidCoordinate before anything is written. The mirror (the
        Redis candidate index, when enabled) is updated after the store.
        """
        cell = geocell.encode(latitude, longitude, settings.geocell_precision)
        if not await self.subscribers.update_location(subscriber_id, float(latitude), float(longitude), cell):
            return None
        if self.mirror is not None:
            await self.mirror.put(subscriber_id, cell)
        logger.info("subscriber.location_updated", extra={"subscriber": subscriber_id, "geocell": cell[:5]})
        return cell


__all__ = ["LocationMirror", "LocationService"]
