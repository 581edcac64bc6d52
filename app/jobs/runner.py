"""
Job run orchestrator.

Every job body runs through ``run_job``: it loads the ``jobs`` row, writes a
JobRun BEFORE the body is invoked, honours ``enabled`` for automatic triggers
and finalizes the run as success / failed / skipped.

Locking is NOT done here; callers (scheduler tick, CLI) wrap the call in
``app.locks.with_advisory_lock`` via ``app.jobs.registry.run_locked_job``.
"""

import logging
import os
import socket
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.orm import sessionmaker

from app.etl import ledger
from app.etl.base import DataProvider
from app.etl.seeding import EntitySeeder, SeedResult
from app.jobs import definitions as defs
from app.jobs import tracking
from app.jobs.errors import JobNotFoundError
from app.jobs.meta import JobMeta, parse_job_meta
from app.models import Job, utcnow

logger = logging.getLogger(__name__)


def get_instance_id() -> str:
    """Identifies this worker process on job runs (HOSTNAME:pid)."""
    host = os.environ.get("HOSTNAME") or socket.gethostname()
    return f"{host}:{os.getpid()}"


@dataclass
class JobRunOpts:
    """Per-invocation options. Numeric overrides win over ``jobs.meta``."""

    dry_run: bool = False
    trigger: Optional[str] = None
    triggered_by: Optional[str] = None
    triggered_by_id: Optional[str] = None
    days_ahead: Optional[int] = None
    max_live_age_hours: Optional[int] = None
    grace_minutes: Optional[int] = None
    max_overdue_hours: Optional[int] = None

    def resolve_trigger(self) -> str:
        if self.trigger:
            return self.trigger
        if self.triggered_by == defs.TRIGGERED_BY_CRON:
            return defs.TRIGGER_AUTO
        return defs.TRIGGER_MANUAL


@dataclass
class JobDeps:
    """Collaborators injected into job bodies (overridable in tests)."""

    session_factory: Optional[sessionmaker] = None
    engine: Optional[AsyncEngine] = None
    provider_factory: Optional[Callable[[], DataProvider]] = None
    now: Callable[[], datetime] = utcnow

    def sessions(self) -> sessionmaker:
        if self.session_factory is not None:
            return self.session_factory
        from app.database import AsyncSessionLocal

        return AsyncSessionLocal

    def lock_engine(self) -> AsyncEngine:
        if self.engine is not None:
            return self.engine
        from app.database import async_engine

        return async_engine

    def provider(self) -> DataProvider:
        if self.provider_factory is not None:
            return self.provider_factory()
        from app.etl.sportmonks import get_provider

        return get_provider()


@dataclass
class JobOutcome:
    result: dict
    rows_affected: int = 0
    meta: dict = field(default_factory=dict)


async def load_job_row(job_key: str, session_factory: sessionmaker) -> Job:
    async with session_factory() as session:
        job = await session.get(Job, job_key)
    if job is None:
        raise JobNotFoundError(job_key)
    return job


async def load_job_config(job_key: str, deps: JobDeps) -> tuple[Job, JobMeta]:
    """Job row + its validated meta."""
    job = await load_job_row(job_key, deps.sessions())
    return job, parse_job_meta(job_key, job.meta)


async def run_job(
    job_key: str,
    opts: JobRunOpts,
    body: Callable[[int], Awaitable[JobOutcome]],
    skipped_result: Callable[[int], Any],
    meta: Optional[dict] = None,
    deps: Optional[JobDeps] = None,
    job_row: Optional[Job] = None,
) -> Any:
    """
    Run ``body(job_run_id)`` tracked by a JobRun row.

    Args:
        job_key: Job to run (must have a ``jobs`` row).
        opts: Trigger / dry-run options.
        body: Coroutine factory receiving the JobRun id, returning a JobOutcome.
        skipped_result: Builds the caller's result when the job is disabled.
        meta: Resolved config written on the JobRun at start.
        deps: Injected collaborators.
        job_row: Already-loaded ``jobs`` row (avoids a second read).

    Returns:
        ``outcome.result`` on success, ``skipped_result(run_id)`` when skipped.

    Raises:
        JobNotFoundError: no ``jobs`` row.
        Exception: whatever the body raised (after the run is marked failed).
    """
    deps = deps or JobDeps()
    session_factory = deps.sessions()
    job = job_row or await load_job_row(job_key, session_factory)
    trigger = opts.resolve_trigger()

    run_meta = {**(meta or {}), "dryRun": opts.dry_run, "instanceId": get_instance_id()}
    run = await tracking.start_job_run(
        job_key,
        trigger=trigger,
        triggered_by=opts.triggered_by,
        triggered_by_id=opts.triggered_by_id,
        meta=run_meta,
        session_factory=session_factory,
    )

    if not job.enabled and trigger == defs.TRIGGER_AUTO:
        logger.info(f"[JOBS] {job_key} is disabled, skipping run {run.id}")
        await tracking.finish_job_run(
            run.id,
            tracking.RUN_SKIPPED,
            rows_affected=0,
            meta={"reason": "disabled"},
            session_factory=session_factory,
        )
        return skipped_result(run.id)

    logger.info(f"[JOBS] {job_key} run {run.id} started ({trigger}, by={opts.triggered_by}, dry_run={opts.dry_run})")
    try:
        outcome = await body(run.id)
    except Exception as e:
        message = str(e) or e.__class__.__name__
        logger.error(f"[JOBS] {job_key} run {run.id} failed: {message}")
        try:
            await tracking.finish_job_run(
                run.id,
                tracking.RUN_FAILED,
                rows_affected=0,
                meta={"errorType": e.__class__.__name__},
                error_message=message,
                session_factory=session_factory,
            )
        except Exception as finish_err:
            logger.error(f"[JOBS] Could not record failure of {job_key} run {run.id}: {finish_err}")
        raise

    finished = await tracking.finish_job_run(
        run.id,
        tracking.RUN_SUCCESS,
        rows_affected=outcome.rows_affected,
        meta=outcome.meta,
        session_factory=session_factory,
    )
    logger.info(
        f"[JOBS] {job_key} run {run.id} succeeded: rows={outcome.rows_affected} in {finished.duration_ms}ms"
    )
    return outcome.result


async def seed_in_job_batch(
    seeder: EntitySeeder,
    records: list,
    job_key: str,
    job_run_id: int,
    opts: JobRunOpts,
    meta: Optional[dict] = None,
    batch_name: Optional[str] = None,
) -> SeedResult:
    """
    Seed ``records`` into one SeedBatch linked to the JobRun.

    The batch is finalized here: success with the seeder's counts, or failed
    with the error message before the exception propagates.
    """
    batch_meta = {**(meta or {}), "jobKey": job_key}
    batch_id = await ledger.start_seed_batch(
        batch_name or job_key,
        meta=batch_meta,
        trigger=opts.resolve_trigger(),
        triggered_by=opts.triggered_by,
        triggered_by_id=opts.triggered_by_id,
        job_run_id=job_run_id,
        session_factory=seeder.session_factory,
    )
    if not records:
        await ledger.finish_empty_batch(batch_id, session_factory=seeder.session_factory)
        return SeedResult(batch_id=batch_id)

    try:
        result = await seeder.seed(records, batch_id=batch_id, job_run_id=job_run_id)
    except Exception as e:
        # The seeder has tracked the records it never reached as failed;
        # whatever did not succeed or get skipped counts as failed.
        counts = await ledger.count_seed_items(batch_id, session_factory=seeder.session_factory)
        succeeded = counts.get(ledger.ITEM_SUCCESS, 0)
        skipped = counts.get(ledger.ITEM_SKIPPED, 0)
        message = str(e) or e.__class__.__name__
        await ledger.finish_seed_batch(
            batch_id,
            ledger.BATCH_FAILED,
            items_total=len(records),
            items_success=succeeded,
            items_failed=len(records) - succeeded - skipped,
            error_message=message,
            meta={"errorType": e.__class__.__name__},
            session_factory=seeder.session_factory,
        )
        raise

    await ledger.finish_seed_batch(
        batch_id,
        ledger.BATCH_SUCCESS,
        items_total=len(records),
        items_success=result.ok,
        items_failed=result.fail,
        meta=seeder.summary_meta(result),
        session_factory=seeder.session_factory,
    )
    return result
