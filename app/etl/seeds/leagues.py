"""Leagues seeder. Every league must resolve to a stored country."""

from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from app.etl.base import LeagueData
from app.etl.seeding import EntitySeeder, SeedError, SeedResult, lookup_ids
from app.etl.transform import clean_str, norm_short_code, require_field
from app.models import Country, League


class LeagueSeeder(EntitySeeder):
    entity = "league"
    batch_name = "seed-leagues"
    model = League
    tracked_fields = ("name", "country_id", "short_code", "image_path", "type", "sub_type")
    keep_on_null = ("short_code", "image_path", "sub_type")

    async def resolve_dependencies(self, session: AsyncSession, records: list) -> dict:
        return {
            "countries": await lookup_ids(session, Country, (r.country_external_id for r in records)),
        }

    def build_values(self, record: LeagueData, deps: dict) -> dict:
        key = record.external_id
        name = require_field(record.name, "name", key)
        league_type = require_field(record.type, "type", key)

        country_id = None
        if record.country_external_id is not None:
            country_id = deps["countries"].get(int(record.country_external_id))
        if country_id is None:
            raise SeedError(
                "PARENT_NOT_FOUND",
                f"Country not found for league {name} (countryExternalId: {record.country_external_id})",
            )

        return {
            "external_id": int(key),
            "name": name,
            "country_id": country_id,
            "short_code": norm_short_code(record.short_code),
            "image_path": clean_str(record.image_path),
            "type": league_type,
            "sub_type": clean_str(record.sub_type),
        }


async def seed_leagues(
    leagues: Optional[Sequence[LeagueData]],
    session_factory=None,
    **opts,
) -> SeedResult:
    return await LeagueSeeder(session_factory=session_factory).seed(leagues, **opts)
