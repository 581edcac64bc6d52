"""
Odds seeder.

The fixture must already be stored. A bookmaker is optional, but when the
record names one it must resolve (bookmakers are synced first).
"""

from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from app.etl.base import OddData
from app.etl.seeding import EntitySeeder, SeedError, SeedResult, lookup_ids
from app.etl.transform import transform_odd
from app.models import Bookmaker, Fixture, Odd


class OddSeeder(EntitySeeder):
    entity = "odd"
    batch_name = "seed-odds"
    model = Odd
    tracked_fields = (
        "fixture_id", "bookmaker_id", "market_external_id", "market_name", "name", "label",
        "value", "probability", "total", "handicap", "winning", "sort_order",
    )
    keep_on_null = ("bookmaker_id", "name", "probability", "total", "handicap")

    async def resolve_dependencies(self, session: AsyncSession, records: list) -> dict:
        return {
            "fixtures": await lookup_ids(session, Fixture, (r.fixture_external_id for r in records)),
            "bookmakers": await lookup_ids(session, Bookmaker, (r.bookmaker_external_id for r in records)),
        }

    def build_values(self, record: OddData, deps: dict) -> dict:
        payload = transform_odd(record)

        fixture_ext = payload.pop("fixture_external_id")
        fixture_id = deps["fixtures"].get(int(fixture_ext))
        if fixture_id is None:
            raise SeedError(
                "PARENT_NOT_FOUND",
                f"No valid fixture ID found for odd {record.external_id} (fixtureExternalId: {fixture_ext})",
            )

        bookmaker_ext = payload.pop("bookmaker_external_id")
        bookmaker_id = None
        if bookmaker_ext is not None:
            bookmaker_id = deps["bookmakers"].get(int(bookmaker_ext))
            if bookmaker_id is None:
                raise SeedError(
                    "PARENT_NOT_FOUND",
                    f"Bookmaker not found (externalId: {bookmaker_ext}). Sync bookmakers first.",
                )

        return {
            "external_id": int(record.external_id),
            "fixture_id": fixture_id,
            "bookmaker_id": bookmaker_id,
            **payload,
        }

    def describe(self, record: OddData) -> dict:
        return {
            "name": record.name or record.label,
            "fixtureExternalId": record.fixture_external_id,
            "marketExternalId": record.market_external_id,
        }


async def seed_odds(
    odds: Optional[Sequence[OddData]],
    session_factory=None,
    **opts,
) -> SeedResult:
    return await OddSeeder(session_factory=session_factory).seed(odds, **opts)
