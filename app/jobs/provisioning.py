"""
Job rows: create-only provisioning and administrative updates.

``seed_jobs_defaults`` inserts missing ``jobs`` rows from JOB_DEFINITIONS and
never touches existing ones (admin edits win). ``update_job_config`` is the
one write path for admins; it validates, persists and reschedules.
"""

import logging
from typing import Any, Optional

from apscheduler.triggers.cron import CronTrigger
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from app.etl import ledger
from app.jobs.definitions import JOB_DEFINITIONS, TRIGGER_MANUAL, TRIGGERED_BY_CLI
from app.jobs.errors import InvalidCronError, JobNotFoundError
from app.jobs.meta import parse_job_meta
from app.models import Job, utcnow

logger = logging.getLogger(__name__)

JOBS_BATCH_NAME = "seed-jobs-defaults"


def _factory(session_factory: Optional[sessionmaker]) -> sessionmaker:
    if session_factory is not None:
        return session_factory
    from app.database import AsyncSessionLocal

    return AsyncSessionLocal


def validate_cron(expression: Optional[str]) -> Optional[str]:
    """Normalize a 5-field crontab expression; None/blank means unscheduled."""
    if expression is None:
        return None
    expression = " ".join(expression.split())
    if not expression:
        return None
    try:
        CronTrigger.from_crontab(expression, timezone="UTC")
    except ValueError as e:
        raise InvalidCronError(expression, str(e)) from e
    return expression


async def seed_jobs_defaults(
    dry_run: bool = False,
    triggered_by: str = TRIGGERED_BY_CLI,
    session_factory: Optional[sessionmaker] = None,
) -> dict:
    """
    Create missing job rows from JOB_DEFINITIONS.

    Returns:
        {"batch_id", "created", "existing", "total"}
    """
    factory = _factory(session_factory)
    definitions = list(JOB_DEFINITIONS.values())
    batch_id = await ledger.start_seed_batch(
        JOBS_BATCH_NAME,
        meta={"totalInput": len(definitions), "dryRun": dry_run},
        trigger=TRIGGER_MANUAL,
        triggered_by=triggered_by,
        session_factory=factory,
    )

    async with factory() as session:
        result = await session.execute(select(Job.key))
        existing_keys = {row[0] for row in result.all()}

    created = 0
    items = []
    for definition in definitions:
        if definition.key in existing_keys:
            items.append({
                "item_key": definition.key,
                "status": ledger.ITEM_SKIPPED,
                "meta": {"action": "skip", "reason": "exists"},
            })
            continue
        if dry_run:
            items.append({
                "item_key": definition.key,
                "status": ledger.ITEM_SKIPPED,
                "meta": {"action": "skip", "reason": "dryRun"},
            })
            continue

        async with factory() as session:
            session.add(
                Job(
                    key=definition.key,
                    description=definition.description,
                    schedule_cron=definition.schedule_cron,
                    enabled=definition.enabled,
                    meta=dict(definition.meta) or None,
                )
            )
            await session.commit()
        created += 1
        items.append({
            "item_key": definition.key,
            "status": ledger.ITEM_SUCCESS,
            "meta": {"action": "inserted", "scheduleCron": definition.schedule_cron},
        })
        logger.info(f"[JOBS] Provisioned job {definition.key} ({definition.schedule_cron or 'unscheduled'})")

    await ledger.track_seed_items(batch_id, items, session_factory=factory)
    await ledger.finish_seed_batch(
        batch_id,
        ledger.BATCH_SUCCESS,
        items_total=len(definitions),
        items_success=created,
        items_failed=0,
        meta={"created": created, "existing": len(existing_keys & JOB_DEFINITIONS.keys())},
        session_factory=factory,
    )
    return {
        "batch_id": batch_id,
        "created": created,
        "existing": len(existing_keys & JOB_DEFINITIONS.keys()),
        "total": len(definitions),
    }


class JobConfigPatch(BaseModel):
    """Admin patch. Only fields explicitly present are applied."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    description: Optional[str] = None
    schedule_cron: Optional[str] = None
    enabled: Optional[bool] = None
    meta: Optional[dict[str, Any]] = None


async def update_job_config(
    job_key: str,
    patch: dict | JobConfigPatch,
    scheduler=None,
    session_factory: Optional[sessionmaker] = None,
) -> Job:
    """
    Apply an administrative update to a job row and reschedule it.

    ``meta`` is shallow-merged into the stored meta and the result validated
    against the job's meta model. ``scheduleCron: null`` unschedules the job.

    Raises:
        JobNotFoundError, InvalidCronError, InvalidJobMetaError
    """
    if not isinstance(patch, JobConfigPatch):
        patch = JobConfigPatch.model_validate(patch)
    fields = patch.model_fields_set

    async with _factory(session_factory)() as session:
        job = await session.get(Job, job_key)
        if job is None:
            raise JobNotFoundError(job_key)

        if "schedule_cron" in fields:
            job.schedule_cron = validate_cron(patch.schedule_cron)
        if "enabled" in fields and patch.enabled is not None:
            job.enabled = patch.enabled
        if "description" in fields:
            job.description = patch.description
        if "meta" in fields:
            merged = {**(job.meta or {}), **(patch.meta or {})}
            job.meta = parse_job_meta(job_key, merged).to_storage()

        job.updated_at = utcnow()
        session.add(job)
        await session.commit()
        await session.refresh(job)

    logger.info(
        f"[JOBS] Updated {job_key}: fields={sorted(fields)} cron={job.schedule_cron} enabled={job.enabled}"
    )
    if scheduler is not None:
        await scheduler.reschedule_one(job_key)
    return job
