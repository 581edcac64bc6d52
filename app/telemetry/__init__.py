"""
Telemetry Module

Provides Prometheus metrics for:
- Job runs (count, duration, last success, lock skips)
- Seed ledger (items by entity/status, batch duration)
- Provider ingestion (requests, latency)

and Sentry error tracking (see app.telemetry.sentry).
"""

from app.telemetry.metrics import (
    job_runs_total,
    job_duration_ms,
    job_last_success_timestamp,
    job_lock_skips_total,
    seed_items_total,
    provider_requests_total,
    # Helpers
    record_job_run,
    record_lock_skip,
    record_seed_items,
    record_seed_batch_duration,
    record_provider_request,
)

__all__ = [
    # Metrics
    "job_runs_total",
    "job_duration_ms",
    "job_last_success_timestamp",
    "job_lock_skips_total",
    "seed_items_total",
    "provider_requests_total",
    # Helpers
    "record_job_run",
    "record_lock_skip",
    "record_seed_items",
    "record_seed_batch_duration",
    "record_provider_request",
]
