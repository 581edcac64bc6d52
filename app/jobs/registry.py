"""
Static registry of runnable jobs.

The ``jobs`` table holds schedules and config; this module maps a job key to
the code that runs it and to the advisory lock key it must hold. Job keys
that touch the same tables share one lock key.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from app.config import get_settings
from app.jobs import definitions as defs
from app.jobs.errors import JobNotRunnableError
from app.jobs.fixtures_jobs import (
    run_finished_fixtures_job,
    run_live_fixtures_job,
    run_recovery_overdue_fixtures_job,
    run_upcoming_fixtures_job,
)
from app.jobs.odds_job import run_prematch_odds_job
from app.jobs.reference_job import run_reference_data_job
from app.jobs.runner import JobDeps, JobRunOpts
from app.locks import with_advisory_lock

logger = logging.getLogger(__name__)

settings = get_settings()

LOCK_FIXTURES = "sync:fixtures"
LOCK_ODDS = "sync:odds"
LOCK_REFERENCE_DATA = "sync:reference-data"

JobCallable = Callable[[Optional[JobRunOpts], Optional[JobDeps]], Awaitable[dict]]


@dataclass(frozen=True)
class RunnableJob:
    key: str
    description: str
    default_cron: Optional[str]
    lock_key: str
    run: JobCallable


def _runnable(key: str, lock_key: str, run: JobCallable) -> RunnableJob:
    definition = defs.JOB_DEFINITIONS[key]
    return RunnableJob(
        key=key,
        description=definition.description,
        default_cron=definition.schedule_cron,
        lock_key=lock_key,
        run=run,
    )


RUNNABLE_JOBS: dict[str, RunnableJob] = {
    job.key: job
    for job in (
        _runnable(defs.UPCOMING_FIXTURES, LOCK_FIXTURES, run_upcoming_fixtures_job),
        _runnable(defs.LIVE_FIXTURES, LOCK_FIXTURES, run_live_fixtures_job),
        _runnable(defs.FINISHED_FIXTURES, LOCK_FIXTURES, run_finished_fixtures_job),
        _runnable(defs.RECOVERY_OVERDUE_FIXTURES, LOCK_FIXTURES, run_recovery_overdue_fixtures_job),
        _runnable(defs.PREMATCH_ODDS, LOCK_ODDS, run_prematch_odds_job),
        _runnable(defs.REFERENCE_DATA, LOCK_REFERENCE_DATA, run_reference_data_job),
    )
}


def get_runnable_job(job_key: str) -> Optional[RunnableJob]:
    return RUNNABLE_JOBS.get(job_key)


def is_job_runnable(job_key: str) -> bool:
    return job_key in RUNNABLE_JOBS


def get_lock_key_for_job(job_key: str) -> str:
    job = RUNNABLE_JOBS.get(job_key)
    if job is None:
        raise JobNotRunnableError(job_key)
    return job.lock_key


async def run_job_by_key(
    job_key: str,
    opts: Optional[JobRunOpts] = None,
    deps: Optional[JobDeps] = None,
) -> dict:
    """Run a registered job WITHOUT taking its lock (callers hold it)."""
    job = RUNNABLE_JOBS.get(job_key)
    if job is None:
        raise JobNotRunnableError(job_key)
    return await job.run(opts or JobRunOpts(), deps or JobDeps())


async def run_locked_job(
    job_key: str,
    opts: Optional[JobRunOpts] = None,
    deps: Optional[JobDeps] = None,
    timeout: Optional[float] = None,
) -> dict:
    """
    Run a registered job under its advisory lock.

    Every trigger surface (scheduler tick, CLI, admin) goes through here.

    Raises:
        JobNotRunnableError: unknown key.
        AdvisoryLockNotAcquired: another holder is running a job with the same lock key.
        AdvisoryLockTimeout: the run outlived ``timeout`` (it keeps running).
    """
    deps = deps or JobDeps()
    lock_key = get_lock_key_for_job(job_key)
    if timeout is None:
        timeout = settings.JOB_LOCK_TIMEOUT_SECONDS
    return await with_advisory_lock(
        lock_key,
        lambda: run_job_by_key(job_key, opts, deps),
        timeout=timeout,
        engine=deps.lock_engine(),
    )
