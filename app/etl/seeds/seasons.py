"""Seasons seeder. Every season must resolve to a stored league."""

from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from app.etl.base import SeasonData
from app.etl.seeding import EntitySeeder, SeedError, SeedResult, lookup_ids
from app.etl.transform import normalize_date, require_field
from app.models import League, Season


class SeasonSeeder(EntitySeeder):
    entity = "season"
    batch_name = "seed-seasons"
    model = Season
    tracked_fields = (
        "name", "league_id", "start_date", "end_date", "is_current", "is_finished", "is_pending",
    )

    async def resolve_dependencies(self, session: AsyncSession, records: list) -> dict:
        return {
            "leagues": await lookup_ids(session, League, (r.league_external_id for r in records)),
        }

    def build_values(self, record: SeasonData, deps: dict) -> dict:
        name = require_field(record.name, "name", record.external_id)

        league_id = None
        if record.league_external_id is not None:
            league_id = deps["leagues"].get(int(record.league_external_id))
        if league_id is None:
            raise SeedError(
                "PARENT_NOT_FOUND",
                f"League not found for season {name} (leagueExternalId: {record.league_external_id})",
            )

        return {
            "external_id": int(record.external_id),
            "name": name,
            "league_id": league_id,
            "start_date": normalize_date(record.start_date),
            "end_date": normalize_date(record.end_date),
            "is_current": bool(record.is_current),
            "is_finished": bool(record.is_finished),
            "is_pending": bool(record.is_pending),
        }

    def describe(self, record: SeasonData) -> dict:
        return {"name": record.name, "leagueExternalId": record.league_external_id}


async def seed_seasons(
    seasons: Optional[Sequence[SeasonData]],
    session_factory=None,
    **opts,
) -> SeedResult:
    return await SeasonSeeder(session_factory=session_factory).seed(seasons, **opts)
