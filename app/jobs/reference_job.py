"""
sync-reference-data job.

Countries -> leagues -> seasons -> teams -> bookmakers, in dependency order, one seed
batch per entity. Not scheduled by default (null cron); run from the CLI or
the admin UI after onboarding a provider or a new competition.
"""

import logging
from typing import Awaitable, Callable, Optional

from app.etl.base import DataProvider
from app.etl.seeding import EntitySeeder
from app.etl.seeds import BookmakerSeeder, CountrySeeder, LeagueSeeder, SeasonSeeder, TeamSeeder
from app.jobs import definitions as defs
from app.jobs.runner import (
    JobDeps,
    JobOutcome,
    JobRunOpts,
    load_job_config,
    run_job,
    seed_in_job_batch,
)

logger = logging.getLogger(__name__)

ENTITY_ORDER = ("countries", "leagues", "seasons", "teams", "bookmakers")

_FETCHERS: dict[str, Callable[[DataProvider], Awaitable[list]]] = {
    "countries": lambda p: p.fetch_countries(),
    "leagues": lambda p: p.fetch_leagues(),
    "seasons": lambda p: p.fetch_seasons(),
    "teams": lambda p: p.fetch_teams(),
    "bookmakers": lambda p: p.fetch_bookmakers(),
}

_SEEDERS: dict[str, type[EntitySeeder]] = {
    "countries": CountrySeeder,
    "leagues": LeagueSeeder,
    "seasons": SeasonSeeder,
    "teams": TeamSeeder,
    "bookmakers": BookmakerSeeder,
}


async def run_reference_data_job(
    opts: Optional[JobRunOpts] = None, deps: Optional[JobDeps] = None
) -> dict:
    opts = opts or JobRunOpts()
    deps = deps or JobDeps()
    job_key = defs.REFERENCE_DATA

    job, meta = await load_job_config(job_key, deps)
    entities = [e for e in ENTITY_ORDER if e in set(meta.entities)]

    def skipped_result(job_run_id: int) -> dict:
        return {"job_run_id": job_run_id, "entities": {}, "skipped": True}

    async def body(job_run_id: int) -> JobOutcome:
        per_entity: dict[str, dict] = {}
        rows = 0
        provider = deps.provider()
        try:
            for entity in entities:
                records = await _FETCHERS[entity](provider)
                if opts.dry_run:
                    per_entity[entity] = {"fetched": len(records)}
                    continue

                seeder = _SEEDERS[entity](session_factory=deps.sessions())
                seeded = await seed_in_job_batch(
                    seeder, records, job_key, job_run_id, opts,
                    meta={"entity": entity}, batch_name=seeder.batch_name,
                )
                rows += seeded.total
                per_entity[entity] = {
                    "fetched": len(records),
                    "batchId": seeded.batch_id,
                    "ok": seeded.ok,
                    "fail": seeded.fail,
                    "inserted": seeded.inserted,
                    "updated": seeded.updated,
                }
                logger.info(f"[REFERENCE] {entity}: fetched={len(records)} ok={seeded.ok} fail={seeded.fail}")
        finally:
            await provider.close()

        result = {"job_run_id": job_run_id, "entities": per_entity, "skipped": False}
        return JobOutcome(result, rows, {"entities": per_entity})

    return await run_job(job_key, opts, body, skipped_result, meta={"entities": entities}, deps=deps, job_row=job)
