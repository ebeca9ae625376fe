"""Central registry for Prometheus metrics used across the engine."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

TRIGGERS_HANDLED = Counter(
	"crowd_triggers_total",
	"Notification triggers handled",
	["kind", "result"],
)

TARGETING_CANDIDATES = Counter(
	"crowd_targeting_candidates_total",
	"Geocell candidates considered by the targeting engine",
	["kind"],
)

TARGETING_FILTERED = Counter(
	"crowd_targeting_filtered_total",
	"Candidates dropped by the targeting engine",
	["kind", "reason"],
)

TARGETING_SELECTED = Counter(
	"crowd_targeting_selected_total",
	"Candidates selected as notification targets",
	["kind"],
)

TARGETING_DURATION = Histogram(
	"crowd_targeting_duration_seconds",
	"Duration of a targeting pass",
	["kind"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

PUSH_SENT = Counter(
	"crowd_push_sent_total",
	"Push notifications accepted by the gateway",
	["kind"],
)

PUSH_FAILED = Counter(
	"crowd_push_failed_total",
	"Push notifications rejected by the gateway",
	["kind", "reason"],
)

PUSH_TOKENS_PRUNED = Counter(
	"crowd_push_tokens_pruned_total",
	"Dead push tokens cleared from subscribers",
)

COOLDOWN_UPDATES = Counter(
	"crowd_cooldown_updates_total",
	"Cooldown ledger writes",
	["kind", "result"],
)

REAPER_DELETED = Counter(
	"crowd_reaper_deleted_total",
	"Records removed by the lifecycle reaper",
	["entity"],
)

REAPER_ERRORS = Counter(
	"crowd_reaper_errors_total",
	"Expired events the reaper failed to clean up",
	["stage"],
)

REDIS_UP = Gauge("crowd_redis_up", "Redis availability (1=up,0=down)")
POSTGRES_UP = Gauge("crowd_postgres_up", "Postgres availability (1=up,0=down)")

BACKGROUND_RUNS = Counter(
	"crowd_jobs_runs_total",
	"Background job executions",
	["name", "result"],
)

BACKGROUND_DURATION = Histogram(
	"crowd_jobs_duration_seconds",
	"Background job duration",
	["name"],
	buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 15.0, 30.0, 60.0),
)


def inc_trigger(kind: str, result: str) -> None:
	TRIGGERS_HANDLED.labels(kind=kind, result=result).inc()


def inc_candidates(kind: str, count: int) -> None:
	if count > 0:
		TARGETING_CANDIDATES.labels(kind=kind).inc(count)


def inc_filtered(kind: str, reason: str, count: int = 1) -> None:
	if count > 0:
		TARGETING_FILTERED.labels(kind=kind, reason=reason).inc(count)


def inc_selected(kind: str, count: int) -> None:
	if count > 0:
		TARGETING_SELECTED.labels(kind=kind).inc(count)


def observe_targeting(kind: str, seconds: float) -> None:
	TARGETING_DURATION.labels(kind=kind).observe(seconds)


def inc_push_sent(kind: str, count: int = 1) -> None:
	if count > 0:
		PUSH_SENT.labels(kind=kind).inc(count)


def inc_push_failed(kind: str, reason: str) -> None:
	PUSH_FAILED.labels(kind=kind, reason=reason).inc()


def inc_tokens_pruned(count: int = 1) -> None:
	if count > 0:
		PUSH_TOKENS_PRUNED.inc(count)


def inc_cooldown_update(kind: str, result: str) -> None:
	COOLDOWN_UPDATES.labels(kind=kind, result=result).inc()


def inc_reaper_deleted(entity: str, count: int) -> None:
	if count > 0:
		REAPER_DELETED.labels(entity=entity).inc(count)


def inc_reaper_error(stage: str) -> None:
	REAPER_ERRORS.labels(stage=stage).inc()


def mark_redis(ok: bool) -> None:
	REDIS_UP.set(1 if ok else 0)


def mark_postgres(ok: bool) -> None:
	POSTGRES_UP.set(1 if ok else 0)


def record_job_run(name: str, result: str, duration_seconds: float) -> None:
	BACKGROUND_RUNS.labels(name=name, result=result).inc()
	BACKGROUND_DURATION.labels(name=name).observe(duration_seconds)
