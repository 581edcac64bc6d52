"""
Background scheduler for the sync jobs.

One APScheduler cron timer per job key, built from ``jobs.schedule_cron``
(the database is the source of truth). Each tick runs the job under its
advisory lock, so only one process in the fleet executes a given lock key at
a time. ``_running`` is a per-process guard that drops ticks while a previous
one is still in flight.
"""

import logging
from typing import Optional

from apscheduler.job import Job as SchedulerJob
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from app.config import get_settings
from app.jobs import definitions as defs
from app.jobs.registry import RUNNABLE_JOBS, run_locked_job
from app.jobs.runner import JobDeps, JobRunOpts, get_instance_id
from app.jobs.tracking import cleanup_old_runs
from app.locks import AdvisoryLockNotAcquired, AdvisoryLockTimeout
from app.models import Job
from app.telemetry.metrics import record_lock_skip
from app.telemetry.sentry import capture_exception as sentry_capture_exception
from app.telemetry.sentry import sentry_job_context

logger = logging.getLogger(__name__)

settings = get_settings()

HEARTBEAT_JOB_ID = "_scheduler_heartbeat"
RETENTION_JOB_ID = "_job_runs_retention"


class JobScheduler:
    """
    Owns the cron timers of this process.

    Constructed once by the worker and passed by reference to whatever needs
    to reschedule (admin updates call ``reschedule_one``).
    """

    def __init__(
        self,
        deps: Optional[JobDeps] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.deps = deps or JobDeps()
        self.scheduler = scheduler or AsyncIOScheduler(timezone="UTC")
        self.instance_id = get_instance_id()
        self._tasks: dict[str, SchedulerJob] = {}
        self._running: dict[str, bool] = {}
        self._started = False

    @property
    def session_factory(self) -> sessionmaker:
        return self.deps.sessions()

    # ═══════════════════════════════════════════════════════════════════════
    # LIFECYCLE
    # ═══════════════════════════════════════════════════════════════════════

    async def start(self) -> bool:
        """Start APScheduler and install every job's timer. False when disabled."""
        if self._started:
            logger.warning("Scheduler already started, skipping duplicate initialization")
            return True
        if not settings.JOBS_SCHEDULER_ENABLED:
            logger.info("[SCHEDULER] JOBS_SCHEDULER_ENABLED=false, cron ticks disabled in this process")
            return False

        if not self.scheduler.running:
            self.scheduler.start()
        self._started = True

        self.scheduler.add_job(
            self._log_heartbeat,
            trigger=IntervalTrigger(minutes=30),
            id=HEARTBEAT_JOB_ID,
            name="Scheduler heartbeat",
            replace_existing=True,
        )
        self.scheduler.add_job(
            self._cleanup_job_runs,
            trigger=CronTrigger(hour=4, minute=0, timezone="UTC"),
            id=RETENTION_JOB_ID,
            name="Job runs retention",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        await self.schedule_all()
        self._log_heartbeat()
        logger.info(f"[SCHEDULER] Started on {self.instance_id}: {len(self._tasks)} jobs scheduled")
        return True

    async def schedule_all(self) -> None:
        """(Re)install the timer of every runnable job from its jobs row."""
        for job_key in RUNNABLE_JOBS:
            try:
                await self.reschedule_one(job_key)
            except Exception as e:
                logger.error(f"[SCHEDULER] Could not schedule {job_key}: {e}")

    async def reschedule_one(self, job_key: str) -> Optional[str]:
        """
        Re-read ``schedule_cron`` for one job and replace its timer.

        Returns the installed cron expression, or None when the job ends up
        unscheduled (null cron, missing row, invalid expression). A failed read
        leaves the current timer in place.
        """
        async with self.session_factory() as session:
            result = await session.execute(select(Job.schedule_cron).where(Job.key == job_key))
            row = result.first()

        self._remove_timer(job_key)

        if row is None:
            logger.error(f"[SCHEDULER] Job {job_key} has no jobs row, not scheduled (run seed_jobs_defaults)")
            return None

        cron = row[0]
        if not cron:
            logger.info(f"[SCHEDULER] {job_key}: no schedule, timer removed")
            return None

        try:
            trigger = CronTrigger.from_crontab(cron, timezone="UTC")
        except ValueError as e:
            logger.error(f"[SCHEDULER] {job_key}: invalid cron '{cron}': {e}")
            return None

        self._tasks[job_key] = self.scheduler.add_job(
            self._tick,
            trigger=trigger,
            args=[job_key],
            id=job_key,
            name=job_key,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=settings.SCHEDULER_MISFIRE_GRACE_SECONDS,
        )
        logger.info(f"[SCHEDULER] {job_key} scheduled: '{cron}'")
        return cron

    def stop_all(self) -> None:
        """Cancel every job timer (in-flight ticks finish on their own)."""
        for job_key in list(self._tasks):
            self._remove_timer(job_key)

    def shutdown(self) -> None:
        self.stop_all()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self._started = False
        logger.info("Scheduler stopped")

    def _remove_timer(self, job_key: str) -> None:
        task = self._tasks.pop(job_key, None)
        if task is None:
            return
        try:
            task.remove()
        except LookupError:
            # Already gone from the job store (e.g. scheduler shut down)
            pass

    def is_scheduled(self, job_key: str) -> bool:
        return job_key in self._tasks

    # ═══════════════════════════════════════════════════════════════════════
    # TICK
    # ═══════════════════════════════════════════════════════════════════════

    async def _tick(self, job_key: str) -> None:
        """One cron firing. Never raises."""
        if self._running.get(job_key):
            logger.debug(f"[SCHEDULER] {job_key}: previous tick still running, dropping this one")
            record_lock_skip(job_key, "in_process")
            return

        self._running[job_key] = True
        opts = JobRunOpts(triggered_by=defs.TRIGGERED_BY_CRON, triggered_by_id=self.instance_id)
        try:
            with sentry_job_context(job_key, instance=self.instance_id):
                await run_locked_job(job_key, opts, self.deps)
        except AdvisoryLockNotAcquired:
            logger.info(f"[SCHEDULER] {job_key}: lock held elsewhere, skipping tick")
            record_lock_skip(job_key, "not_acquired")
        except AdvisoryLockTimeout as e:
            logger.warning(f"[SCHEDULER] {job_key}: {e}")
            record_lock_skip(job_key, "timeout")
        except Exception as e:
            logger.exception(f"[SCHEDULER] {job_key} tick failed: {e}")
            sentry_capture_exception(e, job_key=job_key, instance=self.instance_id)
        finally:
            self._running[job_key] = False

    # ═══════════════════════════════════════════════════════════════════════
    # HOUSEKEEPING
    # ═══════════════════════════════════════════════════════════════════════

    def _log_heartbeat(self) -> None:
        """Log all registered job timers and their next run times."""
        if not self._tasks:
            logger.warning("SCHEDULER HEARTBEAT: No jobs registered!")
            return

        job_info = []
        for job_key, task in self._tasks.items():
            next_run = getattr(task, "next_run_time", None)
            next_str = next_run.strftime("%Y-%m-%d %H:%M:%S UTC") if next_run else "None"
            job_info.append(f"  - {job_key}: next={next_str}")
        logger.info(f"SCHEDULER HEARTBEAT: {len(self._tasks)} jobs registered:\n" + "\n".join(job_info))

    async def _cleanup_job_runs(self) -> None:
        try:
            await cleanup_old_runs(settings.JOB_RUNS_RETENTION_DAYS, session_factory=self.session_factory)
        except Exception as e:
            logger.error(f"[SCHEDULER] job_runs retention failed: {e}")
