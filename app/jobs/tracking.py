"""Job run tracking (job_runs ledger).

Every job execution attempt gets one row, written BEFORE the job body runs
and finalized exactly once. Finished rows are never modified again.

Usage:
    from app.jobs.tracking import start_job_run, finish_job_run

    run = await start_job_run("upsert-live-fixtures", trigger="auto", triggered_by="cron_scheduler")
    try:
        # ... job logic ...
        await finish_job_run(run.id, "success", rows_affected=12, meta={"fetched": 12})
    except Exception as e:
        await finish_job_run(run.id, "failed", error_message=str(e))
        raise
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.orm import sessionmaker

from app.models import JobRun, utcnow
from app.telemetry.metrics import record_job_run

logger = logging.getLogger(__name__)

RUN_QUEUED = "queued"
RUN_RUNNING = "running"
RUN_SUCCESS = "success"
RUN_FAILED = "failed"
RUN_SKIPPED = "skipped"

FINAL_STATUSES = frozenset({RUN_SUCCESS, RUN_FAILED, RUN_SKIPPED})

ERROR_MESSAGE_MAX = 2000


class JobRunAlreadyFinished(RuntimeError):
    def __init__(self, run_id: int, status: str):
        self.run_id = run_id
        super().__init__(f"Job run {run_id} already finished with status '{status}'")


def _factory(session_factory: Optional[sessionmaker]) -> sessionmaker:
    if session_factory is not None:
        return session_factory
    from app.database import AsyncSessionLocal

    return AsyncSessionLocal


async def start_job_run(
    job_key: str,
    trigger: str,
    triggered_by: Optional[str] = None,
    triggered_by_id: Optional[str] = None,
    meta: Optional[dict] = None,
    session_factory: Optional[sessionmaker] = None,
) -> JobRun:
    """
    Record a job run as running.

    Args:
        job_key: Job identifier (must exist in ``jobs``).
        trigger: "auto" or "manual".
        triggered_by: cron_scheduler, cli_command or admin_ui.
        triggered_by_id: Actor id (admin user, instance id).
        meta: Initial run meta (resolved job config).
    """
    run = JobRun(
        job_key=job_key,
        status=RUN_RUNNING,
        trigger=trigger,
        triggered_by=triggered_by,
        triggered_by_id=triggered_by_id,
        started_at=utcnow(),
        meta=dict(meta) if meta else None,
    )
    async with _factory(session_factory)() as session:
        session.add(run)
        await session.commit()
        await session.refresh(run)

    logger.debug(f"[JOB_RUNS] Started {job_key} run {run.id} ({trigger}/{triggered_by})")
    return run


async def finish_job_run(
    run_id: int,
    status: str,
    rows_affected: Optional[int] = None,
    meta: Optional[dict] = None,
    error_message: Optional[str] = None,
    session_factory: Optional[sessionmaker] = None,
) -> JobRun:
    """Finalize a run: duration from started_at, meta merged, status set once."""
    if status not in FINAL_STATUSES:
        raise ValueError(f"'{status}' is not a final job run status")

    async with _factory(session_factory)() as session:
        run = await session.get(JobRun, run_id)
        if run is None:
            raise LookupError(f"Job run {run_id} not found")
        if run.status in FINAL_STATUSES:
            raise JobRunAlreadyFinished(run_id, run.status)

        finished_at = utcnow()
        run.status = status
        run.finished_at = finished_at
        run.duration_ms = int((finished_at - run.started_at).total_seconds() * 1000)
        if rows_affected is not None:
            run.rows_affected = rows_affected
        if error_message is not None:
            run.error_message = error_message[:ERROR_MESSAGE_MAX]
        if meta:
            run.meta = {**(run.meta or {}), **meta}

        session.add(run)
        await session.commit()
        await session.refresh(run)

    record_job_run(run.job_key, status, run.duration_ms or 0)
    logger.debug(f"[JOB_RUNS] Recorded {run.job_key} run {run_id}: {status} in {run.duration_ms}ms")
    return run


async def get_job_run(run_id: int, session_factory: Optional[sessionmaker] = None) -> Optional[JobRun]:
    async with _factory(session_factory)() as session:
        return await session.get(JobRun, run_id)


async def get_recent_runs(
    job_key: str,
    limit: int = 20,
    session_factory: Optional[sessionmaker] = None,
) -> list[JobRun]:
    async with _factory(session_factory)() as session:
        result = await session.execute(
            select(JobRun)
            .where(JobRun.job_key == job_key)
            .order_by(JobRun.started_at.desc(), JobRun.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())


async def get_last_success_at(
    job_key: str,
    session_factory: Optional[sessionmaker] = None,
) -> Optional[datetime]:
    """
    Get the last successful run timestamp for a job from DB.

    Returns:
        Datetime of last successful run, or None if no successful runs.
    """
    async with _factory(session_factory)() as session:
        result = await session.execute(
            select(JobRun.finished_at)
            .where(JobRun.job_key == job_key)
            .where(JobRun.status == RUN_SUCCESS)
            .order_by(JobRun.finished_at.desc())
            .limit(1)
        )
        row = result.first()
        return row[0] if row else None


async def get_jobs_health_from_db(session_factory: Optional[sessionmaker] = None) -> dict:
    """
    Get jobs health data from DB for all tracked jobs.

    Returns dict mapping job_key -> {last_run_status, last_run_at, last_success_at, ...}.
    """
    async with _factory(session_factory)() as session:
        latest = (
            select(JobRun.job_key, func.max(JobRun.id).label("last_id"))
            .group_by(JobRun.job_key)
            .subquery()
        )
        result = await session.execute(select(JobRun).join(latest, JobRun.id == latest.c.last_id))
        last_runs = list(result.scalars().all())

        result_success = await session.execute(
            select(JobRun.job_key, func.max(JobRun.finished_at))
            .where(JobRun.status == RUN_SUCCESS)
            .group_by(JobRun.job_key)
        )
        success_map = {row[0]: row[1] for row in result_success.all()}

    jobs_data = {}
    for run in last_runs:
        last_success = success_map.get(run.job_key)
        jobs_data[run.job_key] = {
            "last_run_status": run.status,
            "last_run_at": run.started_at.isoformat() if run.started_at else None,
            "last_success_at": last_success.isoformat() if last_success else None,
            "duration_ms": run.duration_ms,
            "last_error": run.error_message if run.status == RUN_FAILED else None,
        }
    return jobs_data


async def cleanup_old_runs(days_to_keep: int = 30, session_factory: Optional[sessionmaker] = None) -> int:
    """
    Delete finished job runs older than specified days.

    Returns:
        Number of rows deleted.
    """
    cutoff = utcnow() - timedelta(days=days_to_keep)
    async with _factory(session_factory)() as session:
        result = await session.execute(
            delete(JobRun)
            .where(JobRun.started_at < cutoff)
            .where(JobRun.status.in_(FINAL_STATUSES))
        )
        await session.commit()
    deleted = result.rowcount or 0
    if deleted > 0:
        logger.info(f"[JOB_RUNS] Cleaned up {deleted} old job runs")
    return deleted
