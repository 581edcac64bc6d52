#!/usr/bin/env python3
"""
Bootstrap seeding.

Usage:
    python -m app.etl.seeds.cli                   # everything, in dependency order
    python -m app.etl.seeds.cli --jobs            # provision jobs rows only
    python -m app.etl.seeds.cli --countries --leagues --dry-run

Order: jobs -> countries -> leagues -> seasons -> teams -> bookmakers. Each entity is one
seed batch; a failing entity is reported and the remaining ones still run.
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

from app.config import get_settings  # noqa: E402
from app.etl.seeds import seed_bookmakers, seed_countries, seed_leagues, seed_seasons, seed_teams  # noqa: E402
from app.jobs.definitions import TRIGGER_MANUAL, TRIGGERED_BY_CLI  # noqa: E402

logger = logging.getLogger("app.etl.seeds.cli")

STEPS = ("jobs", "countries", "leagues", "seasons", "teams", "bookmakers")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="matchday-seed",
        description="Provision job rows and seed reference data (no flags = all).",
    )
    for step in STEPS:
        parser.add_argument(f"--{step}", action="store_true", help=f"Seed {step}")
    parser.add_argument("--dry-run", action="store_true", help="Track items as skipped, write no entities")
    return parser


async def _seed_entity(step: str, provider, dry_run: bool) -> dict:
    opts = {"dry_run": dry_run, "trigger": TRIGGER_MANUAL, "triggered_by": TRIGGERED_BY_CLI}
    if step == "countries":
        result = await seed_countries(await provider.fetch_countries(), **opts)
    elif step == "leagues":
        result = await seed_leagues(await provider.fetch_leagues(), **opts)
    elif step == "seasons":
        result = await seed_seasons(await provider.fetch_seasons(), **opts)
    elif step == "teams":
        result = await seed_teams(await provider.fetch_teams(), **opts)
    else:
        result = await seed_bookmakers(await provider.fetch_bookmakers(), **opts)
    return result.as_dict()


async def run_seeds(steps: list[str], dry_run: bool) -> int:
    from app.database import close_db, init_db
    from app.jobs.provisioning import seed_jobs_defaults

    failures = 0
    provider = None
    try:
        await init_db()
        for step in steps:
            try:
                if step == "jobs":
                    summary = await seed_jobs_defaults(dry_run=dry_run)
                else:
                    if provider is None:
                        from app.etl.sportmonks import get_provider

                        provider = get_provider()
                    summary = await _seed_entity(step, provider, dry_run)
                logger.info(f"[SEED] {step}: {summary}")
                if summary.get("fail"):
                    failures += 1
            except Exception as e:
                failures += 1
                logger.exception(f"[SEED] {step} failed: {e}")
    finally:
        if provider is not None:
            await provider.close()
        await close_db()

    return 1 if failures else 0


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=get_settings().LOG_LEVEL,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    selected = [step for step in STEPS if getattr(args, step)]
    return asyncio.run(run_seeds(selected or list(STEPS), args.dry_run))


if __name__ == "__main__":
    sys.exit(main())
