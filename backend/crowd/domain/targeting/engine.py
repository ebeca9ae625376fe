"""Targeting engine: decides which subscribers hear about an event.

Both trigger kinds share the same candidate pipeline (geocell prefix scan,
token/host/location checks, exact distance) and differ at the end: a newly
created event also requires an interest overlap and an expired nearby-event
cooldown, while a popular-event alert goes to everyone close by who is not
already attending.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set

from crowd.domain.exceptions import InvalidCoordinate, StoreUnavailable
from crowd.domain.geo.distance import haversine_meters
from crowd.domain.geo.geocell import GeoCellIndex, is_valid_geocell, validate_coordinate
from crowd.domain.models import (
	AttendanceThresholdCrossed,
	Event,
	EventCreated,
	NotificationKind,
	NotificationTarget,
	Subscriber,
	Trigger,
)
from crowd.domain.stores import AttendanceStore, SubscriberStore
from crowd.domain.targeting.cooldown import CooldownLedger
from crowd.domain.targeting.matching import interests_overlap
from crowd.obs import metrics as obs_metrics
from crowd.settings import settings

logger = logging.getLogger(__name__)

# Filter reasons, also used as metric labels.
SKIP_PROFILE_MISSING = "profile_missing"
SKIP_PROFILE_UNAVAILABLE = "profile_unavailable"
SKIP_NO_TOKEN = "no_token"
SKIP_HOST = "host"
SKIP_ATTENDEE = "attendee"
SKIP_NO_LOCATION = "no_location"
SKIP_TOO_FAR = "too_far"
SKIP_NO_INTEREST = "no_interest"
SKIP_COOLDOWN = "cooldown"


@dataclass
class TargetingStats:
	kind: NotificationKind
	event_id: str
	candidates: int = 0
	selected: int = 0
	filtered: Dict[str, int] = field(default_factory=dict)
	skipped_reason: Optional[str] = None

	def skip(self, reason: str) -> None:
		self.filtered[reason] = self.filtered.get(reason, 0) + 1

	def to_dict(self) -> dict:
		return {
			"kind": self.kind.value,
			"event_id": self.event_id,
			"candidates": self.candidates,
			"selected": self.selected,
			"filtered": dict(self.filtered),
			"skipped_reason": self.skipped_reason,
		}


@dataclass
class TargetSelection:
	targets: List[NotificationTarget]
	stats: TargetingStats

	@property
	def kind(self) -> NotificationKind:
		return self.stats.kind


class TargetingEngine:
	"""Selects notification targets for event triggers."""

	def __init__(
		self,
		*,
		index: GeoCellIndex,
		subscribers: SubscriberStore,
		attendance: AttendanceStore,
		ledger: CooldownLedger,
		radius_m: Optional[float] = None,
		prefix_length: Optional[int] = None,
		threshold: Optional[int] = None,
		profile_concurrency: int = 20,
	) -> None:
		self.index = index
		self.subscribers = subscribers
		self.attendance = attendance
		self.ledger = ledger
		self.radius_m = float(radius_m if radius_m is not None else settings.match_radius_m)
		self.prefix_length = int(prefix_length or settings.candidate_prefix_length)
		self.threshold = int(threshold if threshold is not None else settings.popular_event_threshold)
		self._profile_limit = asyncio.Semaphore(max(1, profile_concurrency))

	async def select_targets(self, trigger: Trigger, *, now: Optional[datetime] = None) -> List[NotificationTarget]:
		selection = await self.select(trigger, now=now)
		return selection.targets

	async def select(self, trigger: Trigger, *, now: Optional[datetime] = None) -> TargetSelection:
		now = now or datetime.now(timezone.utc)
		event = trigger.event
		kind = trigger.kind
		stats = TargetingStats(kind=kind, event_id=event.id)
		started = time.perf_counter()
		try:
			targets = await self._select(trigger, event, now, stats)
		finally:
			obs_metrics.observe_targeting(kind.value, time.perf_counter() - started)
		stats.selected = len(targets)
		obs_metrics.inc_candidates(kind.value, stats.candidates)
		for reason, count in stats.filtered.items():
			obs_metrics.inc_filtered(kind.value, reason, count)
		obs_metrics.inc_selected(kind.value, stats.selected)
		logger.info(
			"targeting.done",
			extra={
				"kind": kind.value,
				"candidates": stats.candidates,
				"selected": stats.selected,
				"filtered": dict(stats.filtered),
				"skipped_reason": stats.skipped_reason,
			},
		)
		return TargetSelection(targets=targets, stats=stats)

	async def _select(
		self,
		trigger: Trigger,
		event: Event,
		now: datetime,
		stats: TargetingStats,
	) -> List[NotificationTarget]:
		if isinstance(trigger, AttendanceThresholdCrossed) and trigger.count != self.threshold:
			# Fires on every join; only the exact crossing counts.
			stats.skipped_reason = "threshold_not_reached" if trigger.count < self.threshold else "threshold_passed"
			return []

		if not self._has_valid_location(event):
			logger.info("targeting.event_without_location", extra={"event": event.id})
			stats.skipped_reason = "invalid_event_location"
			return []

		prefix = event.geocell[: self.prefix_length]
		candidate_ids = await self.index.candidates_by_prefix(prefix)
		stats.candidates = len(candidate_ids)
		if not candidate_ids:
			return []

		attendees: Set[str] = set()
		if isinstance(trigger, AttendanceThresholdCrossed):
			attendees = {row.user_id for row in await self.attendance.list_by_event(event.id)}

		ordered_ids = sorted(candidate_ids)
		profiles = await asyncio.gather(*(self._load_profile(cid, stats) for cid in ordered_ids))

		targets: List[NotificationTarget] = []
		for subscriber in profiles:
			if subscriber is None:
				continue
			target = self._evaluate(trigger, event, subscriber, attendees, now, stats)
			if target is not None:
				targets.append(target)
		targets.sort(key=lambda item: (item.distance_m, item.subscriber_id))
		return targets

	def _has_valid_location(self, event: Event) -> bool:
		if not is_valid_geocell(event.geocell) or len(event.geocell or "") < self.prefix_length:
			return False
		try:
			validate_coordinate(event.latitude, event.longitude)
		except InvalidCoordinate:
			return False
		return True

	async def _load_profile(self, subscriber_id: str, stats: TargetingStats) -> Optional[Subscriber]:
		async with self._profile_limit:
			try:
				subscriber = await self.subscribers.get_subscriber(subscriber_id)
			except StoreUnavailable:
				logger.warning("targeting.profile_unavailable", extra={"subscriber_id": subscriber_id})
				stats.skip(SKIP_PROFILE_UNAVAILABLE)
				return None
		if subscriber is None:
			stats.skip(SKIP_PROFILE_MISSING)
		return subscriber

	def _evaluate(
		self,
		trigger: Trigger,
		event: Event,
		subscriber: Subscriber,
		attendees: Set[str],
		now: datetime,
		stats: TargetingStats,
	) -> Optional[NotificationTarget]:
		if not subscriber.push_token:
			stats.skip(SKIP_NO_TOKEN)
			return None
		if event.host_id is not None and subscriber.id == event.host_id:
			stats.skip(SKIP_HOST)
			return None
		if subscriber.id in attendees:
			stats.skip(SKIP_ATTENDEE)
			return None
		if not subscriber.has_location:
			stats.skip(SKIP_NO_LOCATION)
			return None
		distance = haversine_meters(event.latitude, event.longitude, subscriber.latitude, subscriber.longitude)
		if distance > self.radius_m:
			stats.skip(SKIP_TOO_FAR)
			return None
		if isinstance(trigger, EventCreated):
			if not interests_overlap(event, subscriber):
				stats.skip(SKIP_NO_INTEREST)
				return None
			if self.ledger.is_in_cooldown(subscriber, NotificationKind.NEARBY_EVENT, now):
				stats.skip(SKIP_COOLDOWN)
				return None
		return NotificationTarget(
			subscriber_id=subscriber.id,
			push_token=subscriber.push_token,
			distance_m=distance,
		)


__all__ = [
	"TargetSelection",
	"TargetingEngine",
	"TargetingStats",
]
