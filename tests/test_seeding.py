"""Tests for the generic seeding pipeline and the entity seeders (SQLite)."""

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select

from app.etl import ledger
from app.etl.base import CountryData, FixtureData, LeagueData, OddData, SeasonData, TeamData
from app.etl.seeding import (
    SeedError,
    chunk,
    compute_changes,
    dedupe_by_external_id,
    error_code_of,
    format_value,
)
from app.etl.seeds import (
    CountrySeeder,
    FixtureSeeder,
    LeagueSeeder,
    OddSeeder,
    SeasonSeeder,
    TeamSeeder,
)
from app.etl.seeds.fixtures import INVALID_STATE_TRANSITION
from app.models import Country, Fixture, Odd, Season, Team


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestHelpers:
    def test_chunk(self):
        assert chunk([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
        assert chunk([], 8) == []
        with pytest.raises(ValueError):
            chunk([1], 0)

    def test_dedupe_first_occurrence_wins(self):
        a1 = CountryData(external_id=1, name="First")
        a2 = CountryData(external_id=1, name="Second")
        b = CountryData(external_id=2, name="Other")
        unique, duplicates = dedupe_by_external_id([a1, b, a2])
        assert unique == [a1, b]
        assert duplicates == [a2]

    def test_compute_changes(self):
        old = {"name": "Spain", "iso2": None, "iso3": None}
        new = {"name": "España", "iso2": "ES", "iso3": None}
        changes = compute_changes(old, new, ["name", "iso2", "iso3"])
        assert changes == {"name": "Spain → España", "iso2": "null → ES"}

    def test_compute_changes_none_when_identical(self):
        assert compute_changes({"a": 1}, {"a": 1}, ["a"]) is None

    def test_format_value(self):
        assert format_value(None) == "null"
        assert format_value(True) == "true"

    def test_error_codes(self):
        assert error_code_of(SeedError("PARENT_NOT_FOUND", "x")) == "PARENT_NOT_FOUND"
        assert error_code_of(ValueError("bad")) == "VALIDATION_ERROR"
        assert error_code_of(RuntimeError("boom")) == "UNKNOWN_ERROR"


# ---------------------------------------------------------------------------
# Seeders against a real (SQLite) store
# ---------------------------------------------------------------------------

async def _count(session_factory, model) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


async def _seed_parents(session_factory):
    await CountrySeeder(session_factory).seed([CountryData(external_id=462, name="England", iso2="gb")])
    await LeagueSeeder(session_factory).seed(
        [LeagueData(external_id=8, name="Premier League", country_external_id=462, type="league")]
    )
    await TeamSeeder(session_factory).seed([
        TeamData(external_id=1, name="Arsenal", country_external_id=462),
        TeamData(external_id=2, name="Chelsea", country_external_id=462),
    ])


class TestCountrySeeder:
    @pytest.mark.asyncio
    async def test_one_bad_record_does_not_abort_the_others(self, session_factory):
        records = [
            CountryData(external_id=1, name="Spain"),
            CountryData(external_id=2, name=""),
            CountryData(external_id=3, name="Italy"),
        ]
        result = await CountrySeeder(session_factory).seed(records)

        assert result.ok == 2
        assert result.fail == 1
        assert result.inserted == 2
        assert await _count(session_factory, Country) == 2

        failed = await ledger.get_seed_items(result.batch_id, status=ledger.ITEM_FAILED, session_factory=session_factory)
        assert len(failed) == 1
        assert failed[0].item_key == "2"
        assert "externalId: 2" in failed[0].error_message
        assert failed[0].meta["errorCode"] == "VALIDATION_ERROR"
        assert failed[0].meta["action"] == "insert_failed"

        batch = await ledger.get_seed_batch(result.batch_id, session_factory=session_factory)
        assert batch.status == ledger.BATCH_SUCCESS
        assert (batch.items_total, batch.items_success, batch.items_failed) == (3, 2, 1)

    @pytest.mark.asyncio
    async def test_reseed_is_idempotent_with_empty_diff(self, session_factory):
        records = [CountryData(external_id=1, name="Spain", iso2="ES"), CountryData(external_id=2, name="Italy")]
        seeder = CountrySeeder(session_factory)
        await seeder.seed(records)
        second = await seeder.seed(records)

        assert second.updated == 2
        assert second.inserted == 0
        assert await _count(session_factory, Country) == 2

        items = await ledger.get_seed_items(second.batch_id, session_factory=session_factory)
        assert {i.meta["action"] for i in items} == {"updated"}
        assert all(i.meta["changes"] == {} for i in items)

    @pytest.mark.asyncio
    async def test_update_records_field_diff(self, session_factory):
        seeder = CountrySeeder(session_factory)
        await seeder.seed([CountryData(external_id=1, name="Spain")])
        result = await seeder.seed([CountryData(external_id=1, name="España", iso2="es")])

        items = await ledger.get_seed_items(result.batch_id, session_factory=session_factory)
        assert items[0].meta["changes"] == {"name": "Spain → España", "iso2": "null → ES"}

    @pytest.mark.asyncio
    async def test_reseed_without_optional_fields_keeps_stored_values(self, session_factory):
        seeder = CountrySeeder(session_factory)
        await seeder.seed([CountryData(external_id=1, name="Spain", iso2="ES", iso3="ESP", image_path="x.png")])
        result = await seeder.seed([CountryData(external_id=1, name="Spain")])

        assert result.updated == 1
        async with session_factory() as session:
            country = (await session.execute(select(Country))).scalar_one()
        assert (country.iso2, country.iso3, country.image_path) == ("ES", "ESP", "x.png")

        items = await ledger.get_seed_items(result.batch_id, session_factory=session_factory)
        assert items[0].meta["changes"] == {}

    @pytest.mark.asyncio
    async def test_duplicates_processed_once(self, session_factory):
        records = [
            CountryData(external_id=1, name="Spain"),
            CountryData(external_id=1, name="Spain (dup)"),
        ]
        result = await CountrySeeder(session_factory).seed(records)

        assert result.duplicates == 1
        assert result.ok == 1
        async with session_factory() as session:
            name = (await session.execute(select(Country.name))).scalar_one()
        assert name == "Spain"

        skipped = await ledger.get_seed_items(result.batch_id, status=ledger.ITEM_SKIPPED, session_factory=session_factory)
        assert [i.meta["reason"] for i in skipped] == ["duplicate"]

    @pytest.mark.asyncio
    async def test_dry_run_writes_no_entities(self, session_factory):
        records = [CountryData(external_id=1, name="Spain"), CountryData(external_id=2, name="Italy")]
        result = await CountrySeeder(session_factory).seed(records, dry_run=True)

        assert result.skipped == 2
        assert await _count(session_factory, Country) == 0
        items = await ledger.get_seed_items(result.batch_id, session_factory=session_factory)
        assert {i.meta["reason"] for i in items} == {"dryRun"}
        assert {i.status for i in items} == {ledger.ITEM_SKIPPED}

    @pytest.mark.asyncio
    async def test_dry_run_tracks_duplicates_as_dry_run(self, session_factory):
        records = [
            CountryData(external_id=1, name="Spain"),
            CountryData(external_id=1, name="Spain (dup)"),
            CountryData(external_id=2, name="Italy"),
        ]
        result = await CountrySeeder(session_factory).seed(records, dry_run=True)

        assert result.skipped == 3
        assert result.duplicates == 0
        items = await ledger.get_seed_items(result.batch_id, session_factory=session_factory)
        assert len(items) == 3
        assert [i.meta["reason"] for i in items] == ["dryRun"] * 3

    @pytest.mark.asyncio
    async def test_batch_level_error_fails_every_unreached_record(self, session_factory):
        records = [CountryData(external_id=i, name=f"Country {i}") for i in (1, 2, 3)]
        with patch.object(
            CountrySeeder, "resolve_dependencies", new=AsyncMock(side_effect=RuntimeError("store unavailable"))
        ):
            result = await CountrySeeder(session_factory).seed(records)

        assert (result.ok, result.fail, result.total) == (0, 3, 3)
        assert result.first_error == "store unavailable"
        assert await _count(session_factory, Country) == 0

        batch = await ledger.get_seed_batch(result.batch_id, session_factory=session_factory)
        assert batch.status == ledger.BATCH_FAILED
        assert (batch.items_total, batch.items_success, batch.items_failed) == (3, 0, 3)
        assert batch.error_message == "store unavailable"

        failed = await ledger.get_seed_items(result.batch_id, status=ledger.ITEM_FAILED, session_factory=session_factory)
        assert sorted(i.item_key for i in failed) == ["1", "2", "3"]
        assert {i.meta["action"] for i in failed} == {"batch_failed"}
        assert all(i.error_message == "store unavailable" for i in failed)

    @pytest.mark.asyncio
    async def test_batch_level_error_reraised_for_caller_owned_batch(self, session_factory):
        batch_id = await ledger.start_seed_batch("caller-owned", session_factory=session_factory)
        records = [CountryData(external_id=1, name="Spain"), CountryData(external_id=2, name="Italy")]
        with patch.object(
            CountrySeeder, "resolve_dependencies", new=AsyncMock(side_effect=RuntimeError("store unavailable"))
        ):
            with pytest.raises(RuntimeError, match="store unavailable"):
                await CountrySeeder(session_factory).seed(records, batch_id=batch_id)

        counts = await ledger.count_seed_items(batch_id, session_factory=session_factory)
        assert counts == {ledger.ITEM_FAILED: 2}
        batch = await ledger.get_seed_batch(batch_id, session_factory=session_factory)
        assert batch.status != ledger.BATCH_FAILED

    @pytest.mark.asyncio
    async def test_empty_input_finishes_batch(self, session_factory):
        result = await CountrySeeder(session_factory).seed([])
        batch = await ledger.get_seed_batch(result.batch_id, session_factory=session_factory)
        assert batch.status == ledger.BATCH_SUCCESS
        assert batch.meta["reason"] == "no-input"

    @pytest.mark.asyncio
    async def test_invalid_iso_rejected(self, session_factory):
        result = await CountrySeeder(session_factory).seed([CountryData(external_id=1, name="Spain", iso2="ESP")])
        assert result.fail == 1
        assert "expected 2 letters" in result.first_error


class TestParentResolution:
    @pytest.mark.asyncio
    async def test_season_with_unknown_league_fails(self, session_factory):
        result = await SeasonSeeder(session_factory).seed(
            [SeasonData(external_id=10, name="2025/2026", league_external_id=999)]
        )

        assert result.fail == 1
        assert "leagueExternalId: 999" in result.first_error
        assert await _count(session_factory, Season) == 0

        failed = await ledger.get_seed_items(result.batch_id, status=ledger.ITEM_FAILED, session_factory=session_factory)
        assert failed[0].meta["errorCode"] == "PARENT_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_team_with_unknown_country_stored_without_country(self, session_factory):
        result = await TeamSeeder(session_factory).seed(
            [TeamData(external_id=5, name="Nowhere FC", country_external_id=12345)]
        )

        assert result.ok == 1
        async with session_factory() as session:
            team = (await session.execute(select(Team))).scalar_one()
        assert team.country_id is None

    @pytest.mark.asyncio
    async def test_league_requires_country(self, session_factory):
        result = await LeagueSeeder(session_factory).seed(
            [LeagueData(external_id=8, name="Premier League", country_external_id=1, type="league")]
        )
        assert result.fail == 1
        assert "Country not found" in result.first_error

    @pytest.mark.asyncio
    async def test_season_dates_normalised(self, session_factory):
        await _seed_parents(session_factory)
        result = await SeasonSeeder(session_factory).seed([
            SeasonData(external_id=10, name="2025/2026", league_external_id=8,
                       start_date="2025-08-15 00:00:00", end_date="2026-05-24"),
        ])
        assert result.ok == 1
        async with session_factory() as session:
            season = (await session.execute(select(Season))).scalar_one()
        assert season.start_date.isoformat() == "2025-08-15"


class TestFixtureSeeder:
    def _fixture(self, state: str, **overrides) -> FixtureData:
        data = dict(
            external_id=500, name="Arsenal vs Chelsea", home_team_external_id=1,
            away_team_external_id=2, start_ts=1_760_000_000, state=state, league_external_id=8,
        )
        data.update(overrides)
        return FixtureData(**data)

    @pytest.mark.asyncio
    async def test_missing_home_team_fails(self, session_factory):
        await _seed_parents(session_factory)
        result = await FixtureSeeder(session_factory).seed([self._fixture("NS", home_team_external_id=77)])
        assert result.fail == 1
        assert "Home team not found (externalId: 77)" in result.first_error
        assert await _count(session_factory, Fixture) == 0

    @pytest.mark.asyncio
    async def test_unknown_state_fails_validation(self, session_factory):
        await _seed_parents(session_factory)
        result = await FixtureSeeder(session_factory).seed([self._fixture("GARBAGE")])

        assert result.fail == 1
        assert "Unknown fixture state 'GARBAGE'" in result.first_error
        assert await _count(session_factory, Fixture) == 0
        failed = await ledger.get_seed_items(result.batch_id, status=ledger.ITEM_FAILED, session_factory=session_factory)
        assert failed[0].meta["errorCode"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_valid_transition_updates(self, session_factory):
        await _seed_parents(session_factory)
        seeder = FixtureSeeder(session_factory)
        await seeder.seed([self._fixture("NS")])
        result = await seeder.seed([self._fixture("INPLAY_1ST_HALF", live_minute=12)])

        assert result.updated == 1
        async with session_factory() as session:
            fixture = (await session.execute(select(Fixture))).scalar_one()
        assert fixture.state == "INPLAY_1ST_HALF"
        assert fixture.live_minute == 12

    @pytest.mark.asyncio
    async def test_invalid_transition_skipped_and_row_untouched(self, session_factory):
        await _seed_parents(session_factory)
        seeder = FixtureSeeder(session_factory)
        await seeder.seed([self._fixture("FT", result="2-1")])
        result = await seeder.seed([self._fixture("NS")])

        assert result.skipped == 1
        assert result.updated == 0
        async with session_factory() as session:
            fixture = (await session.execute(select(Fixture))).scalar_one()
        assert fixture.state == "FT"
        assert fixture.home_score == 2

        items = await ledger.get_seed_items(result.batch_id, session_factory=session_factory)
        assert items[0].status == ledger.ITEM_SKIPPED
        assert items[0].meta["reason"] == INVALID_STATE_TRANSITION

    @pytest.mark.asyncio
    async def test_bypass_forces_transition_and_is_audited(self, session_factory):
        await _seed_parents(session_factory)
        await FixtureSeeder(session_factory).seed([self._fixture("NS")])
        result = await FixtureSeeder(session_factory, bypass_state_validation=True).seed(
            [self._fixture("FT", result="1-0")]
        )

        assert result.updated == 1
        items = await ledger.get_seed_items(result.batch_id, session_factory=session_factory)
        assert items[0].meta["changes"]["_bypassedValidation"] == "false → true"
        assert items[0].meta["changes"]["state"] == "NS → FT"


class TestOddSeeder:
    @pytest.mark.asyncio
    async def test_unknown_bookmaker_rejected(self, session_factory):
        await _seed_parents(session_factory)
        await FixtureSeeder(session_factory).seed([
            FixtureData(external_id=500, name="Arsenal vs Chelsea", home_team_external_id=1,
                        away_team_external_id=2, start_ts=1_760_000_000),
        ])
        odds = [
            OddData(external_id=1, fixture_external_id=500, market_external_id=1, label="1", value=1.9),
            OddData(external_id=2, fixture_external_id=500, market_external_id=1, label="X", value=3.4,
                    bookmaker_external_id=2),
        ]
        result = await OddSeeder(session_factory).seed(odds)

        assert result.ok == 1
        assert result.fail == 1
        assert "Sync bookmakers first" in result.first_error
        assert await _count(session_factory, Odd) == 1
