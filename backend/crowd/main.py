"""FastAPI application entrypoint."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from crowd.api import internal_ops, ops
from crowd.container import Services, build_services
from crowd.domain.repo import ensure_schema
from crowd.infra import postgres
from crowd.infra.scheduler import JobScheduler
from crowd.obs import init as obs_init
from crowd.settings import settings
from crowd.workers.geocell_sync import GEOCELL_SYNC_JOB
from crowd.workers.reaper_job import CHAT_SWEEP_JOB, SWEEP_JOB
from crowd.workers.trigger_consumer import TriggerConsumer

_LOG = logging.getLogger(__name__)


def start_workers(app: FastAPI, services: Services) -> None:
	consumer = TriggerConsumer(services.pipeline)
	scheduler = JobScheduler()
	scheduler.start()
	scheduler.schedule_every(SWEEP_JOB, services.reaper_job.run_once, minutes=settings.reaper_interval_minutes)
	scheduler.schedule_every(CHAT_SWEEP_JOB, services.reaper_job.run_chats_once, minutes=settings.chat_sweep_interval_minutes)
	if services.geocell_sync is not None:
		scheduler.schedule_every(
			GEOCELL_SYNC_JOB,
			services.geocell_sync.run_once,
			minutes=settings.geocell_sync_interval_minutes,
			run_now=True,
		)
	app.state.trigger_consumer = consumer
	app.state.scheduler = scheduler
	app.state.worker_tasks = [asyncio.create_task(consumer.run_forever(), name="crowd-trigger-consumer")]


async def stop_workers(app: FastAPI) -> None:
	scheduler: Optional[JobScheduler] = getattr(app.state, "scheduler", None)
	if scheduler is not None:
		scheduler.shutdown()
	consumer: Optional[TriggerConsumer] = getattr(app.state, "trigger_consumer", None)
	if consumer is not None:
		consumer.stop()
	tasks = getattr(app.state, "worker_tasks", [])
	for task in tasks:
		task.cancel()
	if tasks:
		await asyncio.gather(*tasks, return_exceptions=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
	pool = await postgres.init_pool()
	await ensure_schema(pool)
	services = getattr(app.state, "services", None) or build_services()
	app.state.services = services
	if settings.workers_enabled:
		start_workers(app, services)
	_LOG.info("app.started", extra={"service": settings.service_name, "commit": settings.git_commit})
	try:
		yield
	finally:
		await stop_workers(app)
		await services.close()
		await postgres.close_pool()


def create_app() -> FastAPI:
	obs_init()
	app = FastAPI(title="Crowd Notify", lifespan=lifespan)
	app.include_router(ops.router)
	app.include_router(internal_ops.router)
	return app


app = create_app()
