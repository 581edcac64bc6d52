"""
Fixtures seeder.

Home and away teams must already be stored; league and season are optional.
State changes go through the fixture state machine: an illegal transition
leaves the stored row untouched and the item is tracked as skipped.
"""

import logging
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from app.etl.base import FixtureData
from app.etl.seeding import EntitySeeder, SeedError, SeedResult, lookup_ids
from app.etl.transform import is_valid_transition, transform_fixture
from app.models import Fixture, League, Season, Team

logger = logging.getLogger(__name__)

INVALID_STATE_TRANSITION = "invalid-state-transition"


class FixtureSeeder(EntitySeeder):
    entity = "fixture"
    batch_name = "seed-fixtures"
    model = Fixture
    tracked_fields = (
        "name", "league_id", "season_id", "home_team_id", "away_team_id",
        "starting_at_ts", "state", "live_minute", "result",
        "home_score", "away_score", "home_score_90", "away_score_90",
        "home_score_et", "away_score_et", "pen_home", "pen_away",
        "stage", "round", "leg", "aggregate_id",
    )

    def __init__(self, session_factory=None, chunk_size=None, bypass_state_validation: bool = False):
        super().__init__(session_factory=session_factory, chunk_size=chunk_size)
        self.bypass_state_validation = bypass_state_validation

    async def resolve_dependencies(self, session: AsyncSession, records: list) -> dict:
        team_ids = [r.home_team_external_id for r in records] + [r.away_team_external_id for r in records]
        return {
            "leagues": await lookup_ids(session, League, (r.league_external_id for r in records)),
            "seasons": await lookup_ids(session, Season, (r.season_external_id for r in records)),
            "teams": await lookup_ids(session, Team, team_ids),
        }

    def build_values(self, record: FixtureData, deps: dict) -> dict:
        payload = transform_fixture(record)

        home_team_id = deps["teams"].get(int(payload["home_team_external_id"]))
        if home_team_id is None:
            raise SeedError(
                "PARENT_NOT_FOUND",
                f"Home team not found (externalId: {payload['home_team_external_id']})",
            )
        away_team_id = deps["teams"].get(int(payload["away_team_external_id"]))
        if away_team_id is None:
            raise SeedError(
                "PARENT_NOT_FOUND",
                f"Away team not found (externalId: {payload['away_team_external_id']})",
            )

        league_ext = payload.pop("league_external_id")
        season_ext = payload.pop("season_external_id")
        payload.pop("home_team_external_id")
        payload.pop("away_team_external_id")

        return {
            "external_id": int(record.external_id),
            "league_id": deps["leagues"].get(int(league_ext)) if league_ext is not None else None,
            "season_id": deps["seasons"].get(int(season_ext)) if season_ext is not None else None,
            "home_team_id": home_team_id,
            "away_team_id": away_team_id,
            **payload,
        }

    def skip_reason(self, existing: dict, values: dict) -> Optional[str]:
        if is_valid_transition(existing.get("state"), values["state"]):
            return None
        if self.bypass_state_validation:
            logger.warning(
                f"[SEED] fixture {values['external_id']}: forcing state "
                f"{existing.get('state')} -> {values['state']} (validation bypassed)"
            )
            return None
        logger.warning(
            f"[SEED] fixture {values['external_id']}: invalid state transition "
            f"{existing.get('state')} -> {values['state']}, skipping update"
        )
        return INVALID_STATE_TRANSITION

    def annotate_changes(self, existing: dict, values: dict, changes: dict) -> dict:
        if self.bypass_state_validation and not is_valid_transition(existing.get("state"), values["state"]):
            changes["_bypassedValidation"] = "false → true"
        return changes

    def describe(self, record: FixtureData) -> dict:
        return {"name": record.name, "state": record.state}


async def seed_fixtures(
    fixtures: Optional[Sequence[FixtureData]],
    session_factory=None,
    bypass_state_validation: bool = False,
    **opts,
) -> SeedResult:
    seeder = FixtureSeeder(session_factory=session_factory, bypass_state_validation=bypass_state_validation)
    return await seeder.seed(fixtures, **opts)
