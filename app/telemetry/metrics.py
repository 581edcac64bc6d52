"""
Prometheus metrics for scheduled jobs and ETL seeding.

Design principles:
- Low cardinality (controlled labels)
- Best-effort (never block main flow)

ALLOWED LABELS (bounded sets):
- job:     job keys from app.jobs.definitions (max ~10)
- status:  "success", "failed", "skipped" (job runs); "success", "failed", "skipped" (seed items)
- reason:  "not_acquired", "timeout", "in_process" (lock skips)
- entity:  "country", "league", "team", "season", "fixture", "bookmaker", "odd", "job"

FORBIDDEN AS LABELS: external ids, batch ids, run ids, error messages.
"""

import logging
import time

from prometheus_client import Counter, Gauge, Histogram

logger = logging.getLogger(__name__)


# =============================================================================
# JOB METRICS
# =============================================================================

job_runs_total = Counter(
    "job_runs_total",
    "Total job runs by job and status",
    ["job", "status"],
)

job_last_success_timestamp = Gauge(
    "job_last_success_timestamp",
    "Unix timestamp of last successful job run",
    ["job"],
)

job_duration_ms = Histogram(
    "job_duration_ms",
    "Job duration in milliseconds",
    ["job"],
    buckets=[100, 500, 1000, 5000, 10000, 30000, 60000, 120000, 300000, 600000],
)

job_lock_skips_total = Counter(
    "job_lock_skips_total",
    "Scheduler ticks that did not run the job body",
    ["job", "reason"],
)


# =============================================================================
# SEED METRICS
# =============================================================================

seed_items_total = Counter(
    "seed_items_total",
    "Seed items tracked by entity and status",
    ["entity", "status"],
)

seed_batch_duration_ms = Histogram(
    "seed_batch_duration_ms",
    "Seed batch duration in milliseconds",
    ["entity"],
    buckets=[50, 100, 500, 1000, 5000, 10000, 30000, 60000, 300000],
)


def record_job_run(job: str, status: str, duration_ms: float) -> None:
    """
    Record a finished job run.

    Args:
        job: Job key (e.g., "upsert-live-fixtures")
        status: Final run status (success, failed, skipped)
        duration_ms: Wall-clock duration
    """
    try:
        job_runs_total.labels(job=job, status=status).inc()
        if duration_ms and duration_ms > 0:
            job_duration_ms.labels(job=job).observe(duration_ms)
        if status == "success":
            job_last_success_timestamp.labels(job=job).set(time.time())
    except Exception as e:
        logger.warning(f"Failed to record job run metric: {e}")


def record_lock_skip(job: str, reason: str) -> None:
    try:
        job_lock_skips_total.labels(job=job, reason=reason).inc()
    except Exception as e:
        logger.warning(f"Failed to record lock skip metric: {e}")


def record_seed_items(entity: str, status: str, count: int = 1) -> None:
    if count <= 0:
        return
    try:
        seed_items_total.labels(entity=entity, status=status).inc(count)
    except Exception as e:
        logger.warning(f"Failed to record seed item metric: {e}")


def record_seed_batch_duration(entity: str, duration_ms: float) -> None:
    try:
        seed_batch_duration_ms.labels(entity=entity).observe(duration_ms)
    except Exception as e:
        logger.warning(f"Failed to record seed batch metric: {e}")


# =============================================================================
# PROVIDER METRICS
# =============================================================================

provider_requests_total = Counter(
    "provider_requests_total",
    "Upstream provider requests by endpoint and status code",
    ["provider", "endpoint", "status_code"],
)

provider_latency_ms = Histogram(
    "provider_latency_ms",
    "Upstream provider latency in milliseconds",
    ["provider", "endpoint"],
    buckets=[50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000],
)


def record_provider_request(provider: str, endpoint: str, status_code: int, latency_ms: float) -> None:
    try:
        provider_requests_total.labels(
            provider=provider, endpoint=endpoint, status_code=str(status_code)
        ).inc()
        provider_latency_ms.labels(provider=provider, endpoint=endpoint).observe(latency_ms)
    except Exception as e:
        logger.warning(f"Failed to record provider metric: {e}")
