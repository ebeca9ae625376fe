"""Scheduled wrappers around the lifecycle reaper."""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Optional

from crowd.domain.lifecycle.reaper import CleanupReport, LifecycleReaper
from crowd.obs import metrics as obs_metrics
from crowd.obs.logging import bind_context, reset_context

_LOG = logging.getLogger(__name__)

SWEEP_JOB = "lifecycle-sweep"
CHAT_SWEEP_JOB = "chat-sweep"


class ReaperJob:
	def __init__(self, reaper: LifecycleReaper) -> None:
		self.reaper = reaper

	async def run_once(self, now: Optional[datetime] = None) -> CleanupReport:
		return await self._run(SWEEP_JOB, self.reaper.sweep, now)

	async def run_chats_once(self, now: Optional[datetime] = None) -> CleanupReport:
		return await self._run(CHAT_SWEEP_JOB, self.reaper.sweep_chats, now)

	async def _run(self, name: str, sweep, now: Optional[datetime]) -> CleanupReport:
		tokens = bind_context(job=name)
		started = time.perf_counter()
		try:
			report = await sweep(now)
		except Exception:
			obs_metrics.record_job_run(name, "error", time.perf_counter() - started)
			_LOG.exception("job.failed", extra={"job_name": name})
			raise
		finally:
			reset_context(tokens)
		obs_metrics.record_job_run(name, "ok" if report.ok else "partial", time.perf_counter() - started)
		return report


__all__ = ["CHAT_SWEEP_JOB", "ReaperJob", "SWEEP_JOB"]
