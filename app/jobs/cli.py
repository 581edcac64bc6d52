#!/usr/bin/env python3
"""
Run a sync job once from the command line.

Usage:
    python -m app.jobs.cli --job=upsert-upcoming-fixtures --daysAhead=5
    python -m app.jobs.cli upsert-live-fixtures --dry-run
    python -m app.jobs.cli --list

The run takes the job's advisory lock (same as the scheduler) and is recorded
as triggered_by=cli_command. Exit code 0 on success, 1 on failure, unknown
job, lock held elsewhere or lock timeout.
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

from app.config import get_settings  # noqa: E402
from app.jobs import definitions as defs  # noqa: E402
from app.jobs.registry import RUNNABLE_JOBS, run_locked_job  # noqa: E402
from app.jobs.runner import JobRunOpts  # noqa: E402
from app.locks import AdvisoryLockNotAcquired, AdvisoryLockTimeout  # noqa: E402

logger = logging.getLogger("app.jobs.cli")

EXIT_OK = 0
EXIT_FAILED = 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="matchday-jobs",
        description="Run one sync job under its advisory lock.",
    )
    parser.add_argument("job_key", nargs="?", help="Job key (same as --job)")
    parser.add_argument("--job", "-j", dest="job", help="Job key to run")
    parser.add_argument("--list", "--ls", dest="list_jobs", action="store_true", help="List runnable jobs")
    parser.add_argument("--dry-run", action="store_true", help="Fetch and count, write nothing but the job run")
    parser.add_argument("--daysAhead", dest="days_ahead", type=int, help="Window size in days")
    parser.add_argument("--maxLiveAgeHours", dest="max_live_age_hours", type=int)
    parser.add_argument("--graceMinutes", dest="grace_minutes", type=int)
    parser.add_argument("--maxOverdueHours", dest="max_overdue_hours", type=int)
    return parser


def print_job_list() -> None:
    print("Runnable jobs:")
    for job in RUNNABLE_JOBS.values():
        cron = job.default_cron or "(manual)"
        print(f"  {job.key:<28} {cron:<16} lock={job.lock_key}")
        print(f"      {job.description}")


async def run_cli(args: argparse.Namespace) -> int:
    job_key = args.job or args.job_key
    if job_key not in RUNNABLE_JOBS:
        logger.error(f"Unknown job '{job_key}'. Use --list to see runnable jobs.")
        return EXIT_FAILED

    opts = JobRunOpts(
        dry_run=args.dry_run,
        triggered_by=defs.TRIGGERED_BY_CLI,
        days_ahead=args.days_ahead,
        max_live_age_hours=args.max_live_age_hours,
        grace_minutes=args.grace_minutes,
        max_overdue_hours=args.max_overdue_hours,
    )

    from app.database import close_db

    try:
        result = await run_locked_job(job_key, opts)
    except AdvisoryLockNotAcquired:
        logger.error(f"{job_key}: lock held by another process, not run")
        return EXIT_FAILED
    except AdvisoryLockTimeout as e:
        logger.error(f"{job_key}: {e}")
        return EXIT_FAILED
    except Exception as e:
        logger.exception(f"{job_key} failed: {e}")
        return EXIT_FAILED
    finally:
        await close_db()

    print(json.dumps(result, indent=2, default=str))
    return EXIT_OK


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=get_settings().LOG_LEVEL,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.list_jobs:
        print_job_list()
        return EXIT_OK
    if not (args.job or args.job_key):
        parser.print_help()
        return EXIT_OK

    return asyncio.run(run_cli(args))


if __name__ == "__main__":
    sys.exit(main())
