"""Entity seeders, listed in dependency order."""

from app.etl.seeds.bookmakers import BookmakerSeeder, seed_bookmakers
from app.etl.seeds.countries import CountrySeeder, seed_countries
from app.etl.seeds.fixtures import FixtureSeeder, seed_fixtures
from app.etl.seeds.leagues import LeagueSeeder, seed_leagues
from app.etl.seeds.odds import OddSeeder, seed_odds
from app.etl.seeds.seasons import SeasonSeeder, seed_seasons
from app.etl.seeds.teams import TeamSeeder, seed_teams

__all__ = [
    "BookmakerSeeder",
    "CountrySeeder",
    "LeagueSeeder",
    "TeamSeeder",
    "SeasonSeeder",
    "FixtureSeeder",
    "OddSeeder",
    "seed_bookmakers",
    "seed_countries",
    "seed_leagues",
    "seed_teams",
    "seed_seasons",
    "seed_fixtures",
    "seed_odds",
]
