"""
Typed job meta.

``jobs.meta`` is a free-form JSON column edited from the admin UI. Each job
key has its own pydantic model (a tagged union keyed by job key) and the
raw JSON is validated here, at the DB boundary, before a job body sees it.
Keys are camelCase in storage.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from app.jobs import definitions as defs
from app.jobs.errors import InvalidJobMetaError


class JobMeta(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    def to_storage(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class UpcomingFixturesMeta(JobMeta):
    days_ahead: int = Field(default=3, description="Window size in days (clamped 1..30)")


class LiveFixturesMeta(JobMeta):
    pass


class FinishedFixturesMeta(JobMeta):
    max_live_age_hours: int = Field(default=2, description="Live longer than this = candidate (clamped 1..168)")


class OddsSelection(JobMeta):
    bookmaker_external_ids: list[int] = Field(default_factory=lambda: [2])
    market_external_ids: list[int] = Field(default_factory=lambda: [1, 57])


class PrematchOddsMeta(JobMeta):
    days_ahead: int = Field(default=7, description="Window size in days (clamped 1..30)")
    odds: OddsSelection = Field(default_factory=OddsSelection)


class RecoveryOverdueFixturesMeta(JobMeta):
    grace_minutes: int = Field(default=30, description="Minutes after kickoff before a fixture counts as overdue")
    max_overdue_hours: int = Field(default=48, description="Ignore fixtures older than this")
    bypass_state_validation: bool = False


ReferenceEntity = Literal["countries", "leagues", "seasons", "teams", "bookmakers"]


class ReferenceDataMeta(JobMeta):
    entities: list[ReferenceEntity] = Field(
        default_factory=lambda: ["countries", "leagues", "seasons", "teams", "bookmakers"]
    )


JOB_META_MODELS: dict[str, type[JobMeta]] = {
    defs.UPCOMING_FIXTURES: UpcomingFixturesMeta,
    defs.LIVE_FIXTURES: LiveFixturesMeta,
    defs.FINISHED_FIXTURES: FinishedFixturesMeta,
    defs.PREMATCH_ODDS: PrematchOddsMeta,
    defs.RECOVERY_OVERDUE_FIXTURES: RecoveryOverdueFixturesMeta,
    defs.REFERENCE_DATA: ReferenceDataMeta,
}


def parse_job_meta(job_key: str, raw: Optional[Any]) -> JobMeta:
    """Validate raw ``jobs.meta`` JSON for ``job_key``; raise InvalidJobMetaError."""
    model = JOB_META_MODELS.get(job_key, JobMeta)
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise InvalidJobMetaError(job_key, f"expected an object, got {type(raw).__name__}")
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        raise InvalidJobMetaError(job_key, str(e)) from e


def clamp_int(value: Any, lo: int, hi: int, default: Optional[int] = None) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        if default is None:
            raise
        number = default
    return max(lo, min(hi, number))
