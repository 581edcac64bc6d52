"""Bookmakers seeder (no parents)."""

from typing import Optional, Sequence

from app.etl.base import BookmakerData
from app.etl.seeding import EntitySeeder, SeedResult
from app.etl.transform import require_field
from app.models import Bookmaker


class BookmakerSeeder(EntitySeeder):
    entity = "bookmaker"
    batch_name = "seed-bookmakers"
    model = Bookmaker
    tracked_fields = ("name",)

    def build_values(self, record: BookmakerData, deps: dict) -> dict:
        return {
            "external_id": int(record.external_id),
            "name": require_field(record.name, "name", record.external_id),
        }


async def seed_bookmakers(
    bookmakers: Optional[Sequence[BookmakerData]],
    session_factory=None,
    **opts,
) -> SeedResult:
    return await BookmakerSeeder(session_factory=session_factory).seed(bookmakers, **opts)
