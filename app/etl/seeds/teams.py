"""Teams seeder. Country is optional: unknown countries store NULL."""

from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from app.etl.base import TeamData
from app.etl.seeding import EntitySeeder, SeedResult, lookup_ids
from app.etl.transform import clean_str, norm_short_code, require_field, validate_founded
from app.models import Country, Team


class TeamSeeder(EntitySeeder):
    entity = "team"
    batch_name = "seed-teams"
    model = Team
    tracked_fields = ("name", "country_id", "short_code", "image_path", "founded", "type")
    keep_on_null = ("country_id", "short_code", "image_path", "founded", "type")

    async def resolve_dependencies(self, session: AsyncSession, records: list) -> dict:
        return {
            "countries": await lookup_ids(session, Country, (r.country_external_id for r in records)),
        }

    def build_values(self, record: TeamData, deps: dict) -> dict:
        country_id = None
        if record.country_external_id is not None:
            country_id = deps["countries"].get(int(record.country_external_id))

        return {
            "external_id": int(record.external_id),
            "name": require_field(record.name, "name", record.external_id),
            "country_id": country_id,
            "short_code": norm_short_code(record.short_code),
            "image_path": clean_str(record.image_path),
            "founded": validate_founded(record.founded),
            "type": clean_str(record.type),
        }


async def seed_teams(
    teams: Optional[Sequence[TeamData]],
    session_factory=None,
    **opts,
) -> SeedResult:
    return await TeamSeeder(session_factory=session_factory).seed(teams, **opts)
