"""
Job definitions: keys, default schedules and default meta.

These are the provisioning defaults only. Once a ``jobs`` row exists the
database is the source of truth (schedule_cron, enabled, meta) and admin
edits are never overwritten.
"""

from dataclasses import dataclass, field
from typing import Optional

# Trigger sources recorded on job runs / seed batches
TRIGGERED_BY_CRON = "cron_scheduler"
TRIGGERED_BY_CLI = "cli_command"
TRIGGERED_BY_ADMIN = "admin_ui"

TRIGGER_AUTO = "auto"
TRIGGER_MANUAL = "manual"

# Job keys
UPCOMING_FIXTURES = "upsert-upcoming-fixtures"
LIVE_FIXTURES = "upsert-live-fixtures"
FINISHED_FIXTURES = "finished-fixtures"
PREMATCH_ODDS = "update-prematch-odds"
RECOVERY_OVERDUE_FIXTURES = "recovery-overdue-fixtures"
REFERENCE_DATA = "sync-reference-data"


@dataclass(frozen=True)
class JobDefinition:
    key: str
    description: str
    schedule_cron: Optional[str]
    enabled: bool = True
    meta: dict = field(default_factory=dict)


JOB_DEFINITIONS: dict[str, JobDefinition] = {
    UPCOMING_FIXTURES: JobDefinition(
        key=UPCOMING_FIXTURES,
        description="Upsert fixtures kicking off in the next N days (not-started and cancelled states)",
        schedule_cron="10 */6 * * *",
        meta={"daysAhead": 3},
    ),
    LIVE_FIXTURES: JobDefinition(
        key=LIVE_FIXTURES,
        description="Upsert fixtures currently in play (state, minute, score)",
        schedule_cron="*/5 * * * *",
    ),
    FINISHED_FIXTURES: JobDefinition(
        key=FINISHED_FIXTURES,
        description="Re-fetch fixtures stuck live longer than maxLiveAgeHours and record the final result",
        schedule_cron="0 * * * *",
        meta={"maxLiveAgeHours": 2},
    ),
    PREMATCH_ODDS: JobDefinition(
        key=PREMATCH_ODDS,
        description="Upsert pre-match odds for fixtures in the next N days",
        schedule_cron="15 * * * *",
        meta={
            "daysAhead": 7,
            "odds": {"bookmakerExternalIds": [2], "marketExternalIds": [1, 57]},
        },
    ),
    RECOVERY_OVERDUE_FIXTURES: JobDefinition(
        key=RECOVERY_OVERDUE_FIXTURES,
        description="Re-fetch fixtures still not started after their kickoff (missed live transition)",
        schedule_cron="45 * * * *",
        meta={"graceMinutes": 30, "maxOverdueHours": 48, "bypassStateValidation": False},
    ),
    REFERENCE_DATA: JobDefinition(
        key=REFERENCE_DATA,
        description="Sync countries, leagues, seasons, teams and bookmakers (manual or admin triggered)",
        schedule_cron=None,
        meta={"entities": ["countries", "leagues", "seasons", "teams", "bookmakers"]},
    ),
}


def get_definition(job_key: str) -> Optional[JobDefinition]:
    return JOB_DEFINITIONS.get(job_key)
