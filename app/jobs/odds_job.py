"""
update-prematch-odds job.

Fetches prematch odds for [today, today+daysAhead] restricted to the
bookmakers and markets in ``jobs.meta.odds`` and upserts them through the
odds seeder. Odds for fixtures we don't hold are rejected per item.
"""

import logging
from datetime import timedelta
from typing import Optional

from app.etl.base import OddsFilter
from app.etl.seeds.odds import OddSeeder
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

logger = logging.getLogger(__name__)


async def run_prematch_odds_job(
    opts: Optional[JobRunOpts] = None, deps: Optional[JobDeps] = None
) -> dict:
    opts = opts or JobRunOpts()
    deps = deps or JobDeps()
    job_key = defs.PREMATCH_ODDS

    job, meta = await load_job_config(job_key, deps)
    days_ahead = clamp_int(
        opts.days_ahead if opts.days_ahead is not None else meta.days_ahead, 1, 30, default=7
    )
    odds_filter = OddsFilter(
        bookmaker_external_ids=list(meta.odds.bookmaker_external_ids),
        market_external_ids=list(meta.odds.market_external_ids),
    )
    today = deps.now().date()
    window = {"from": today.isoformat(), "to": (today + timedelta(days=days_ahead)).isoformat()}
    config = {
        "daysAhead": days_ahead,
        "window": window,
        "bookmakerExternalIds": odds_filter.bookmaker_external_ids,
        "marketExternalIds": odds_filter.market_external_ids,
    }

    def skipped_result(job_run_id: int) -> dict:
        return {
            "job_run_id": job_run_id, "batch_id": None, "fetched": 0, "total": 0,
            "ok": 0, "fail": 0, "window": window, "skipped": True,
        }

    async def body(job_run_id: int) -> JobOutcome:
        provider = deps.provider()
        try:
            odds = await provider.fetch_odds_between(
                today, today + timedelta(days=days_ahead), odds_filter=odds_filter
            )
        except Exception as e:
            logger.error(f"[ODDS] fetch_odds_between {window['from']}..{window['to']} failed: {e}")
            raise
        finally:
            await provider.close()

        result = {
            "job_run_id": job_run_id, "batch_id": None, "fetched": len(odds), "total": 0,
            "ok": 0, "fail": 0, "window": window, "skipped": False,
        }
        if not odds:
            return JobOutcome(result, 0, {**config, "countFetched": 0, "reason": "no-odds"})
        if opts.dry_run:
            return JobOutcome(result, 0, {**config, "countFetched": len(odds)})

        seeded = await seed_in_job_batch(
            OddSeeder(session_factory=deps.sessions()), odds, job_key, job_run_id, opts,
            meta={"window": window},
        )
        result.update(
            batch_id=seeded.batch_id, total=seeded.total, ok=seeded.ok, fail=seeded.fail,
            inserted=seeded.inserted, updated=seeded.updated,
        )
        return JobOutcome(
            result,
            seeded.total,
            {
                **config,
                "countFetched": len(odds),
                "batchId": seeded.batch_id,
                "ok": seeded.ok,
                "fail": seeded.fail,
                "inserted": seeded.inserted,
                "updated": seeded.updated,
                "skipped": seeded.skipped,
            },
        )

    return await run_job(job_key, opts, body, skipped_result, meta=config, deps=deps, job_row=job)
