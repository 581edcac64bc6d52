"""Database models using SQLModel."""

from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import JSON, BigInteger, Column, Text
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Naive UTC now (columns are stored without tzinfo)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _external_id_column() -> Column:
    return Column(BigInteger, unique=True, index=True, nullable=False)


# ═══════════════════════════════════════════════════════════════════════════
# SPORT ENTITIES
# ═══════════════════════════════════════════════════════════════════════════


class Country(SQLModel, table=True):
    """Country reference data."""

    __tablename__ = "countries"

    id: Optional[int] = Field(default=None, primary_key=True)
    external_id: int = Field(sa_column=_external_id_column(), description="Provider country ID")
    name: str = Field(max_length=255)
    image_path: Optional[str] = Field(default=None, max_length=500)
    iso2: Optional[str] = Field(default=None, max_length=2)
    iso3: Optional[str] = Field(default=None, max_length=3)
    updated_at: datetime = Field(default_factory=utcnow)


class League(SQLModel, table=True):
    """Competition. Always belongs to a country."""

    __tablename__ = "leagues"

    id: Optional[int] = Field(default=None, primary_key=True)
    external_id: int = Field(sa_column=_external_id_column(), description="Provider league ID")
    name: str = Field(max_length=255)
    country_id: int = Field(foreign_key="countries.id", index=True)
    short_code: Optional[str] = Field(default=None, max_length=20)
    image_path: Optional[str] = Field(default=None, max_length=500)
    type: str = Field(max_length=50, description="'league', 'cup', ...")
    sub_type: Optional[str] = Field(default=None, max_length=50)
    updated_at: datetime = Field(default_factory=utcnow)


class Team(SQLModel, table=True):
    """Team model for both national teams and clubs."""

    __tablename__ = "teams"

    id: Optional[int] = Field(default=None, primary_key=True)
    external_id: int = Field(sa_column=_external_id_column(), description="Provider team ID")
    name: str = Field(max_length=255)
    country_id: Optional[int] = Field(
        default=None, foreign_key="countries.id", index=True, description="NULL when unknown upstream"
    )
    short_code: Optional[str] = Field(default=None, max_length=20)
    image_path: Optional[str] = Field(default=None, max_length=500)
    founded: Optional[int] = Field(default=None)
    type: Optional[str] = Field(default=None, max_length=50, description="'domestic' or 'national'")
    updated_at: datetime = Field(default_factory=utcnow)


class Season(SQLModel, table=True):
    """League season. Always belongs to a league."""

    __tablename__ = "seasons"

    id: Optional[int] = Field(default=None, primary_key=True)
    external_id: int = Field(sa_column=_external_id_column(), description="Provider season ID")
    name: str = Field(max_length=100)
    league_id: int = Field(foreign_key="leagues.id", index=True)
    start_date: Optional[date] = Field(default=None)
    end_date: Optional[date] = Field(default=None)
    is_current: bool = Field(default=False)
    is_finished: bool = Field(default=False)
    is_pending: bool = Field(default=False)
    updated_at: datetime = Field(default_factory=utcnow)


class Fixture(SQLModel, table=True):
    """Match fixture with a lifecycle state guarded by app.etl.transform."""

    __tablename__ = "fixtures"

    id: Optional[int] = Field(default=None, primary_key=True)
    external_id: int = Field(sa_column=_external_id_column(), description="Provider fixture ID")
    name: str = Field(max_length=255)
    league_id: Optional[int] = Field(default=None, foreign_key="leagues.id", index=True)
    season_id: Optional[int] = Field(default=None, foreign_key="seasons.id", index=True)
    home_team_id: int = Field(foreign_key="teams.id", index=True)
    away_team_id: int = Field(foreign_key="teams.id", index=True)

    starting_at: datetime = Field(index=True, description="Kickoff (naive UTC)")
    starting_at_ts: int = Field(sa_column=Column(BigInteger, index=True, nullable=False))
    state: str = Field(default="NS", max_length=20, index=True)
    live_minute: Optional[int] = Field(default=None)

    result: Optional[str] = Field(default=None, max_length=20, description="'2-1' style")
    home_score: Optional[int] = Field(default=None)
    away_score: Optional[int] = Field(default=None)
    home_score_90: Optional[int] = Field(default=None)
    away_score_90: Optional[int] = Field(default=None)
    home_score_et: Optional[int] = Field(default=None)
    away_score_et: Optional[int] = Field(default=None)
    pen_home: Optional[int] = Field(default=None)
    pen_away: Optional[int] = Field(default=None)

    stage: Optional[str] = Field(default=None, max_length=100)
    round: Optional[str] = Field(default=None, max_length=100)
    leg: Optional[str] = Field(default=None, max_length=20)
    aggregate_id: Optional[int] = Field(default=None, sa_column=Column(BigInteger))
    updated_at: datetime = Field(default_factory=utcnow)


class Bookmaker(SQLModel, table=True):
    __tablename__ = "bookmakers"

    id: Optional[int] = Field(default=None, primary_key=True)
    external_id: int = Field(sa_column=_external_id_column(), description="Provider bookmaker ID")
    name: str = Field(max_length=255)
    updated_at: datetime = Field(default_factory=utcnow)


class Odd(SQLModel, table=True):
    """Single pre-match odds line (one selection of one market at one bookmaker)."""

    __tablename__ = "odds"

    id: Optional[int] = Field(default=None, primary_key=True)
    external_id: int = Field(sa_column=_external_id_column(), description="Provider odd ID")
    fixture_id: int = Field(foreign_key="fixtures.id", index=True)
    bookmaker_id: Optional[int] = Field(default=None, foreign_key="bookmakers.id", index=True)
    market_external_id: int = Field(sa_column=Column(BigInteger, index=True, nullable=False))
    market_name: Optional[str] = Field(default=None, max_length=255)
    name: Optional[str] = Field(default=None, max_length=255)
    label: str = Field(max_length=100)
    value: float
    probability: Optional[str] = Field(default=None, max_length=20)
    total: Optional[str] = Field(default=None, max_length=20)
    handicap: Optional[str] = Field(default=None, max_length=20)
    winning: Optional[bool] = Field(default=None)
    sort_order: Optional[int] = Field(default=None)
    starting_at: Optional[datetime] = Field(default=None)
    updated_at: datetime = Field(default_factory=utcnow)


# ═══════════════════════════════════════════════════════════════════════════
# JOBS
# ═══════════════════════════════════════════════════════════════════════════


class Job(SQLModel, table=True):
    """
    Job definition. Source of truth for schedules.

    Rows are created by provisioning (create-only) and mutated only by
    administrative updates; the scheduler re-reads schedule_cron on reschedule.
    """

    __tablename__ = "jobs"

    key: str = Field(primary_key=True, max_length=100)
    description: Optional[str] = Field(default=None, sa_column=Column(Text))
    schedule_cron: Optional[str] = Field(default=None, max_length=100, description="NULL = not scheduled")
    enabled: bool = Field(default=True)
    meta: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class JobRun(SQLModel, table=True):
    """One execution attempt of a job. Append-only; immutable once finished."""

    __tablename__ = "job_runs"

    id: Optional[int] = Field(default=None, primary_key=True)
    job_key: str = Field(foreign_key="jobs.key", index=True, max_length=100)
    status: str = Field(max_length=20, index=True, description="queued|running|success|failed|skipped")
    trigger: str = Field(max_length=20, description="manual|auto")
    triggered_by: Optional[str] = Field(default=None, max_length=50)
    triggered_by_id: Optional[str] = Field(default=None, max_length=100)
    started_at: datetime = Field(default_factory=utcnow, index=True)
    finished_at: Optional[datetime] = Field(default=None)
    duration_ms: Optional[int] = Field(default=None)
    rows_affected: Optional[int] = Field(default=None)
    error_message: Optional[str] = Field(default=None, sa_column=Column(Text))
    meta: Optional[dict] = Field(default=None, sa_column=Column(JSON))


# ═══════════════════════════════════════════════════════════════════════════
# SEED LEDGER
# ═══════════════════════════════════════════════════════════════════════════


class SeedBatch(SQLModel, table=True):
    """One invocation of an entity seeder."""

    __tablename__ = "seed_batches"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=100, index=True)
    version: Optional[str] = Field(default=None, max_length=50)
    status: str = Field(max_length=20, description="running|success|failed")
    trigger: Optional[str] = Field(default=None, max_length=20)
    triggered_by: Optional[str] = Field(default=None, max_length=50)
    triggered_by_id: Optional[str] = Field(default=None, max_length=100)
    job_run_id: Optional[int] = Field(default=None, foreign_key="job_runs.id", index=True)
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = Field(default=None)
    duration_ms: Optional[int] = Field(default=None)
    items_total: int = Field(default=0)
    items_success: int = Field(default=0)
    items_failed: int = Field(default=0)
    error_message: Optional[str] = Field(default=None, sa_column=Column(Text))
    meta: Optional[dict] = Field(default=None, sa_column=Column(JSON))


class SeedItem(SQLModel, table=True):
    """Per-record outcome within a seed batch."""

    __tablename__ = "seed_items"

    id: Optional[int] = Field(default=None, primary_key=True)
    batch_id: int = Field(foreign_key="seed_batches.id", index=True)
    item_key: str = Field(max_length=100, index=True)
    status: str = Field(max_length=20, description="success|failed|skipped")
    error_message: Optional[str] = Field(default=None, sa_column=Column(Text))
    meta: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow)
