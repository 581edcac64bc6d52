"""Countries seeder (no parents)."""

from typing import Optional, Sequence

from app.etl.base import CountryData
from app.etl.seeding import EntitySeeder, SeedResult
from app.etl.transform import clean_str, norm_iso, require_field
from app.models import Country


class CountrySeeder(EntitySeeder):
    entity = "country"
    batch_name = "seed-countries"
    model = Country
    tracked_fields = ("name", "image_path", "iso2", "iso3")
    keep_on_null = ("image_path", "iso2", "iso3")

    def build_values(self, record: CountryData, deps: dict) -> dict:
        name = require_field(record.name, "name", record.external_id)
        return {
            "external_id": int(record.external_id),
            "name": name,
            "image_path": clean_str(record.image_path),
            "iso2": norm_iso(record.iso2, 2),
            "iso3": norm_iso(record.iso3, 3),
        }


async def seed_countries(
    countries: Optional[Sequence[CountryData]],
    session_factory=None,
    **opts,
) -> SeedResult:
    return await CountrySeeder(session_factory=session_factory).seed(countries, **opts)
