"""Periodic reload of the Redis candidate index from the subscribers table."""

from __future__ import annotations

import logging
import time
from typing import Iterable, Protocol, Tuple

from crowd.domain.stores import SubscriberStore
from crowd.obs import metrics as obs_metrics
from crowd.obs.logging import bind_context, reset_context

_LOG = logging.getLogger(__name__)

GEOCELL_SYNC_JOB = "geocell-sync"


class RebuildableIndex(Protocol):
	async def rebuild(self, entries: Iterable[Tuple[str, str]]) -> int: ...


class GeoCellSyncJob:
	"""Copies every located subscriber into the index; catches drift from out-of-band writes."""

	def __init__(self, subscribers: SubscriberStore, index: RebuildableIndex) -> None:
		self.subscribers = subscribers
		self.index = index

	async def run_once(self) -> int:
		tokens = bind_context(job=GEOCELL_SYNC_JOB)
		started = time.perf_counter()
		try:
			located = await self.subscribers.list_located()
			written = await self.index.rebuild(located)
		except Exception:
			obs_metrics.record_job_run(GEOCELL_SYNC_JOB, "error", time.perf_counter() - started)
			_LOG.exception("job.failed", extra={"job_name": GEOCELL_SYNC_JOB})
			raise
		finally:
			reset_context(tokens)
		obs_metrics.record_job_run(GEOCELL_SYNC_JOB, "ok", time.perf_counter() - started)
		_LOG.info("geocell_sync.done", extra={"subscribers": written})
		return written


__all__ = ["GEOCELL_SYNC_JOB", "GeoCellSyncJob", "RebuildableIndex"]
