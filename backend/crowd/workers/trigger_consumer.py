"""Worker that turns Redis stream triggers into notification passes."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

from crowd.domain.exceptions import StoreUnavailable
from crowd.domain.pipeline import NotificationPipeline, TriggerResult
from crowd.infra import streams
from crowd.infra.redis import redis_client
from crowd.obs import metrics as obs_metrics
from crowd.settings import settings

_LOG = logging.getLogger(__name__)


class TriggerConsumer:
	"""Reads ``crowd:triggers`` and runs the pipeline once per entry."""

	def __init__(
		self,
		pipeline: NotificationPipeline,
		*,
		stream: Optional[str] = None,
		poll_interval: Optional[float] = None,
		batch_size: Optional[int] = None,
		max_concurrency: Optional[int] = None,
		last_id: str = "$",
	) -> None:
		self.pipeline = pipeline
		self.stream = stream or settings.trigger_stream
		self.poll_interval = poll_interval if poll_interval is not None else settings.trigger_poll_interval_seconds
		self.batch_size = batch_size or settings.trigger_batch_size
		self.max_concurrency = max(1, max_concurrency or settings.trigger_max_concurrency)
		self._running = False
		self._last_id = last_id

	@property
	def last_id(self) -> str:
		return self._last_id

	async def run_forever(self) -> None:
		self._running = True
		while self._running:
			try:
				processed = await self.process_once()
			except asyncio.CancelledError:
				raise
			except Exception:
				_LOG.exception("trigger_consumer.read_failed")
				processed = 0
			if processed == 0:
				await asyncio.sleep(self.poll_interval)

	def stop(self) -> None:
		self._running = False

	async def process_once(self, *, block: Optional[int] = 1000) -> int:
		messages = await redis_client.xread(
			streams={self.stream: self._last_id},
			count=self.batch_size,
			block=block,
		)
		entries = [(entry_id, dict(payload)) for _stream_name, batch in messages for entry_id, payload in batch]
		if not entries:
			return 0
		limit = asyncio.Semaphore(self.max_concurrency)

		async def run(payload: Dict[str, str]) -> None:
			async with limit:
				await self._handle(payload)

		# entries of one batch run side by side; _handle never raises
		await asyncio.gather(*(run(payload) for _entry_id, payload in entries))
		self._last_id = entries[-1][0]
		return len(entries)

	async def _handle(self, payload: Dict[str, str]) -> Optional[TriggerResult]:
		try:
			return await self._dispatch(payload)
		except Exception:
			kind = payload.get("type") or "unknown"
			_LOG.exception("trigger_consumer.failed", extra={"kind": kind, "event": payload.get("event_id")})
			obs_metrics.inc_trigger(kind, "error")
			return None

	async def _dispatch(self, payload: Dict[str, str]) -> Optional[TriggerResult]:
		kind = payload.get("type")
		event_id = payload.get("event_id")
		if not kind or not event_id:
			_LOG.warning("trigger_consumer.malformed", extra={"fields": sorted(payload)})
			obs_metrics.inc_trigger(kind or "unknown", "malformed")
			return None
		count: Optional[int] = None
		count_raw = payload.get("count")
		if count_raw not in (None, ""):
			try:
				count = int(count_raw)
			except ValueError:
				_LOG.warning("trigger_consumer.malformed", extra={"kind": kind, "event": event_id})
				obs_metrics.inc_trigger(kind, "malformed")
				return None
		try:
			if kind == streams.TRIGGER_EVENT_CREATED:
				return await self.pipeline.handle_event_created(event_id)
			if kind == streams.TRIGGER_ATTENDANCE:
				return await self.pipeline.handle_attendance(event_id, count)
		except StoreUnavailable as exc:
			# dropped; the next trigger for the same event retries naturally
			_LOG.warning("trigger_consumer.store_unavailable", extra={"kind": kind, "event": event_id, "reason": exc.reason})
			return None
		_LOG.warning("trigger_consumer.unknown_type", extra={"kind": kind})
		obs_metrics.inc_trigger(kind, "unknown_type")
		return None


__all__ = ["TriggerConsumer"]
