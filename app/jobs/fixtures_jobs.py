"""
Fixture sync jobs.

- upsert-upcoming-fixtures: fixtures kicking off in [today, today+daysAhead]
  that are not started or cancelled (so NS -> POSTPONED is picked up).
- upsert-live-fixtures: fixtures the provider reports in play.
- finished-fixtures: fixtures we still hold as live long after kickoff,
  re-fetched by id to record the final state and result.
- recovery-overdue-fixtures: fixtures still not started after kickoff
  (missed live transition), re-fetched by id.

All writes go through the fixtures seeder, so the state machine guards every
state change. Dry runs fetch and count but write nothing beyond the JobRun.
"""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import select

from app.etl.base import FixtureData
from app.etl.seeding import chunk
from app.etl.seeds.fixtures import FixtureSeeder
from app.etl.transform import (
    CANCELLED_STATES,
    LIVE_STATES,
    NOT_STARTED_STATES,
    StateClass,
    state_class,
)
from app.jobs import definitions as defs
from app.jobs.meta import clamp_int
from app.jobs.runner import (
    JobDeps,
    JobOutcome,
    JobRunOpts,
    load_job_config,
    run_job,
    seed_in_job_batch,
)
from app.models import Fixture

logger = logging.getLogger(__name__)

FETCH_BY_IDS_CHUNK = 50

_UPCOMING_CLASSES = {StateClass.NOT_STARTED, StateClass.CANCELLED}


def _seed_counts(result) -> dict:
    return {
        "batchId": result.batch_id,
        "ok": result.ok,
        "fail": result.fail,
        "total": result.total,
        "inserted": result.inserted,
        "updated": result.updated,
        "skipped": result.skipped,
    }


async def _fetch_by_ids(deps: JobDeps, external_ids: list[int]) -> list[FixtureData]:
    provider = deps.provider()
    fetched: list[FixtureData] = []
    try:
        for group in chunk(external_ids, FETCH_BY_IDS_CHUNK):
            fetched.extend(await provider.fetch_fixtures_by_ids(group))
    finally:
        await provider.close()
    return fetched


# ═══════════════════════════════════════════════════════════════════════════
# UPCOMING
# ═══════════════════════════════════════════════════════════════════════════


async def run_upcoming_fixtures_job(
    opts: Optional[JobRunOpts] = None, deps: Optional[JobDeps] = None
) -> dict:
    opts = opts or JobRunOpts()
    deps = deps or JobDeps()
    job_key = defs.UPCOMING_FIXTURES

    job, meta = await load_job_config(job_key, deps)
    days_ahead = clamp_int(
        opts.days_ahead if opts.days_ahead is not None else meta.days_ahead, 1, 30, default=3
    )
    today = deps.now().date()
    window = {"from": today.isoformat(), "to": (today + timedelta(days=days_ahead)).isoformat()}

    def skipped_result(job_run_id: int) -> dict:
        return {
            "job_run_id": job_run_id, "batch_id": None, "fetched": 0, "scheduled": 0,
            "total": 0, "ok": 0, "fail": 0, "window": window, "skipped": True,
        }

    async def body(job_run_id: int) -> JobOutcome:
        provider = deps.provider()
        try:
            fetched = await provider.fetch_fixtures_between(today, today + timedelta(days=days_ahead))
        finally:
            await provider.close()

        scheduled = [f for f in fetched if state_class(f.state) in _UPCOMING_CLASSES]
        base_meta = {
            "window": window,
            "daysAhead": days_ahead,
            "countFetched": len(fetched),
            "countScheduled": len(scheduled),
        }
        result = {
            "job_run_id": job_run_id, "batch_id": None, "fetched": len(fetched),
            "scheduled": len(scheduled), "total": 0, "ok": 0, "fail": 0,
            "window": window, "skipped": False,
        }

        if not scheduled:
            return JobOutcome(result, 0, {**base_meta, "reason": "no-fixtures-in-window"})
        if opts.dry_run:
            return JobOutcome(result, 0, base_meta)

        seeded = await seed_in_job_batch(
            FixtureSeeder(session_factory=deps.sessions()),
            scheduled, job_key, job_run_id, opts, meta={"window": window},
        )
        result.update(batch_id=seeded.batch_id, total=seeded.total, ok=seeded.ok, fail=seeded.fail)
        return JobOutcome(result, seeded.total, {**base_meta, **_seed_counts(seeded)})

    return await run_job(
        job_key, opts, body, skipped_result,
        meta={"daysAhead": days_ahead, "window": window}, deps=deps, job_row=job,
    )


# ═══════════════════════════════════════════════════════════════════════════
# LIVE
# ═══════════════════════════════════════════════════════════════════════════


async def run_live_fixtures_job(
    opts: Optional[JobRunOpts] = None, deps: Optional[JobDeps] = None
) -> dict:
    opts = opts or JobRunOpts()
    deps = deps or JobDeps()
    job_key = defs.LIVE_FIXTURES
    job, _ = await load_job_config(job_key, deps)

    def skipped_result(job_run_id: int) -> dict:
        return {"job_run_id": job_run_id, "batch_id": None, "fetched": 0, "total": 0, "ok": 0, "fail": 0, "skipped": True}

    async def body(job_run_id: int) -> JobOutcome:
        provider = deps.provider()
        try:
            fetched = await provider.fetch_live_fixtures()
        finally:
            await provider.close()

        result = {
            "job_run_id": job_run_id, "batch_id": None, "fetched": len(fetched),
            "total": 0, "ok": 0, "fail": 0, "skipped": False,
        }
        if not fetched:
            return JobOutcome(result, 0, {"countFetched": 0, "reason": "no-live-fixtures"})
        if opts.dry_run:
            return JobOutcome(result, 0, {"countFetched": len(fetched)})

        seeded = await seed_in_job_batch(
            FixtureSeeder(session_factory=deps.sessions()), fetched, job_key, job_run_id, opts,
        )
        result.update(batch_id=seeded.batch_id, total=seeded.total, ok=seeded.ok, fail=seeded.fail)
        return JobOutcome(result, seeded.total, {"countFetched": len(fetched), **_seed_counts(seeded)})

    return await run_job(job_key, opts, body, skipped_result, deps=deps, job_row=job)


# ═══════════════════════════════════════════════════════════════════════════
# FINISHED (stuck live)
# ═══════════════════════════════════════════════════════════════════════════


async def find_stale_live_fixtures(deps: JobDeps, max_live_age_hours: int) -> list[tuple[int, int]]:
    """(id, external_id) of fixtures still live whose kickoff is older than the cutoff."""
    cutoff = deps.now() - timedelta(hours=max_live_age_hours)
    async with deps.sessions()() as session:
        result = await session.execute(
            select(Fixture.id, Fixture.external_id)
            .where(Fixture.state.in_(LIVE_STATES))
            .where(Fixture.starting_at < cutoff)
            .order_by(Fixture.starting_at)
        )
        return [(row[0], row[1]) for row in result.all()]


async def run_finished_fixtures_job(
    opts: Optional[JobRunOpts] = None, deps: Optional[JobDeps] = None
) -> dict:
    opts = opts or JobRunOpts()
    deps = deps or JobDeps()
    job_key = defs.FINISHED_FIXTURES

    job, meta = await load_job_config(job_key, deps)
    max_live_age_hours = clamp_int(
        opts.max_live_age_hours if opts.max_live_age_hours is not None else meta.max_live_age_hours,
        1, 168, default=2,
    )

    def skipped_result(job_run_id: int) -> dict:
        return {"job_run_id": job_run_id, "candidates": 0, "fetched": 0, "updated": 0, "failed": 0, "skipped": True}

    async def body(job_run_id: int) -> JobOutcome:
        candidates = await find_stale_live_fixtures(deps, max_live_age_hours)
        result = {
            "job_run_id": job_run_id, "candidates": len(candidates), "fetched": 0,
            "updated": 0, "failed": 0, "skipped": False,
        }
        base_meta = {"maxLiveAgeHours": max_live_age_hours, "candidates": len(candidates)}
        if not candidates:
            return JobOutcome(result, 0, {**base_meta, "reason": "no-candidates"})

        fetched = await _fetch_by_ids(deps, [ext_id for _, ext_id in candidates])
        result["fetched"] = len(fetched)
        base_meta["fetched"] = len(fetched)
        if not fetched:
            return JobOutcome(result, 0, {**base_meta, "reason": "no-finished-fixtures"})
        if opts.dry_run:
            return JobOutcome(result, 0, base_meta)

        seeded = await seed_in_job_batch(
            FixtureSeeder(session_factory=deps.sessions()), fetched, job_key, job_run_id, opts,
            meta={"maxLiveAgeHours": max_live_age_hours},
        )
        result.update(updated=seeded.updated, failed=seeded.fail)
        return JobOutcome(result, seeded.total, {**base_meta, **_seed_counts(seeded)})

    return await run_job(
        job_key, opts, body, skipped_result,
        meta={"maxLiveAgeHours": max_live_age_hours}, deps=deps, job_row=job,
    )


# ═══════════════════════════════════════════════════════════════════════════
# RECOVERY (stuck not-started)
# ═══════════════════════════════════════════════════════════════════════════


async def find_overdue_fixtures(
    deps: JobDeps, grace_minutes: int, max_overdue_hours: int
) -> list[tuple[int, int]]:
    """(id, external_id) of not-started fixtures kicked off between the two cutoffs."""
    now = deps.now()
    newest = now - timedelta(minutes=grace_minutes)
    oldest = now - timedelta(hours=max_overdue_hours)
    async with deps.sessions()() as session:
        result = await session.execute(
            select(Fixture.id, Fixture.external_id)
            .where(Fixture.state.in_(NOT_STARTED_STATES))
            .where(Fixture.starting_at < newest)
            .where(Fixture.starting_at > oldest)
            .order_by(Fixture.starting_at)
        )
        return [(row[0], row[1]) for row in result.all()]


async def run_recovery_overdue_fixtures_job(
    opts: Optional[JobRunOpts] = None, deps: Optional[JobDeps] = None
) -> dict:
    opts = opts or JobRunOpts()
    deps = deps or JobDeps()
    job_key = defs.RECOVERY_OVERDUE_FIXTURES

    job, meta = await load_job_config(job_key, deps)
    grace_minutes = clamp_int(
        opts.grace_minutes if opts.grace_minutes is not None else meta.grace_minutes,
        0, 24 * 60, default=30,
    )
    max_overdue_hours = clamp_int(
        opts.max_overdue_hours if opts.max_overdue_hours is not None else meta.max_overdue_hours,
        1, 24 * 14, default=48,
    )
    bypass = bool(meta.bypass_state_validation)
    config = {
        "graceMinutes": grace_minutes,
        "maxOverdueHours": max_overdue_hours,
        "bypassStateValidation": bypass,
    }

    def skipped_result(job_run_id: int) -> dict:
        return {"job_run_id": job_run_id, "candidates": 0, "fetched": 0, "updated": 0, "skipped": True}

    async def body(job_run_id: int) -> JobOutcome:
        candidates = await find_overdue_fixtures(deps, grace_minutes, max_overdue_hours)
        result = {
            "job_run_id": job_run_id, "candidates": len(candidates), "fetched": 0,
            "updated": 0, "skipped": False,
        }
        base_meta = {**config, "candidates": len(candidates)}
        if not candidates:
            return JobOutcome(result, 0, {**base_meta, "reason": "no-candidates"})

        fetched = await _fetch_by_ids(deps, [ext_id for _, ext_id in candidates])
        result["fetched"] = len(fetched)
        base_meta["fetched"] = len(fetched)
        if not fetched:
            return JobOutcome(result, 0, {**base_meta, "reason": "no-fixtures-from-provider"})
        if opts.dry_run:
            return JobOutcome(result, 0, base_meta)

        seeder = FixtureSeeder(session_factory=deps.sessions(), bypass_state_validation=bypass)
        seeded = await seed_in_job_batch(seeder, fetched, job_key, job_run_id, opts, meta=config)

        moved = await _count_moved(deps, [fid for fid, _ in candidates])
        result["updated"] = seeded.updated
        return JobOutcome(result, seeded.total, {**base_meta, **_seed_counts(seeded), **moved})

    return await run_job(job_key, opts, body, skipped_result, meta=config, deps=deps, job_row=job)


async def _count_moved(deps: JobDeps, fixture_ids: list[int]) -> dict:
    """How many recovered fixtures are now live / finished / cancelled."""
    async with deps.sessions()() as session:
        result = await session.execute(select(Fixture.state).where(Fixture.id.in_(fixture_ids)))
        states = [row[0] for row in result.all()]
    return {
        "nowLive": sum(1 for s in states if s in LIVE_STATES),
        "nowFinished": sum(1 for s in states if state_class(s) == StateClass.FINISHED),
        "nowCancelled": sum(1 for s in states if s in CANCELLED_STATES),
    }
