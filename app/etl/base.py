"""Abstract base class for data providers."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from typing import Optional


@dataclass
class CountryData:
    """Data transfer object for country information."""

    external_id: int
    name: Optional[str]
    image_path: Optional[str] = None
    iso2: Optional[str] = None
    iso3: Optional[str] = None


@dataclass
class LeagueData:
    """Data transfer object for league information."""

    external_id: int
    name: Optional[str]
    country_external_id: Optional[int]
    type: Optional[str]  # "league", "cup", ...
    image_path: Optional[str] = None
    short_code: Optional[str] = None
    sub_type: Optional[str] = None


@dataclass
class TeamData:
    """Data transfer object for team information."""

    external_id: int
    name: Optional[str]
    country_external_id: Optional[int] = None
    short_code: Optional[str] = None
    image_path: Optional[str] = None
    founded: Optional[int] = None
    type: Optional[str] = None  # "domestic" or "national"


@dataclass
class SeasonData:
    """Data transfer object for season information."""

    external_id: int
    name: Optional[str]
    league_external_id: Optional[int]
    start_date: Optional[str] = None  # "YYYY-MM-DD"
    end_date: Optional[str] = None
    is_current: bool = False
    is_finished: bool = False
    is_pending: bool = False


@dataclass
class FixtureData:
    """Data transfer object for fixture information."""

    external_id: int
    name: Optional[str]
    home_team_external_id: Optional[int]
    away_team_external_id: Optional[int]
    start_ts: Optional[int]  # Unix seconds (UTC)
    state: str = "NS"
    league_external_id: Optional[int] = None
    season_external_id: Optional[int] = None
    live_minute: Optional[int] = None
    result: Optional[str] = None  # "2-1"
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    # --- Score breakdown (only present once the phase has been played) ---
    home_score_90: Optional[int] = None
    away_score_90: Optional[int] = None
    home_score_et: Optional[int] = None
    away_score_et: Optional[int] = None
    pen_home: Optional[int] = None
    pen_away: Optional[int] = None
    stage: Optional[str] = None
    round: Optional[str] = None
    leg: Optional[str] = None
    aggregate_id: Optional[int] = None


@dataclass
class BookmakerData:
    external_id: int
    name: Optional[str]


@dataclass
class OddData:
    """Data transfer object for a single pre-match odds line."""

    external_id: int
    fixture_external_id: Optional[int]
    market_external_id: Optional[int]
    label: Optional[str]
    value: Optional[float]
    bookmaker_external_id: Optional[int] = None
    name: Optional[str] = None
    market_name: Optional[str] = None
    probability: Optional[str] = None
    total: Optional[str] = None
    handicap: Optional[str] = None
    winning: Optional[bool] = None
    sort_order: Optional[int] = None
    starting_at_ts: Optional[int] = None


@dataclass
class OddsFilter:
    """Which bookmakers/markets to fetch odds for."""

    bookmaker_external_ids: list[int] = field(default_factory=list)
    market_external_ids: list[int] = field(default_factory=list)


class DataProvider(ABC):
    """Abstract base class for sports data providers."""

    name: str = "base"

    @abstractmethod
    async def fetch_countries(self) -> list[CountryData]:
        pass

    @abstractmethod
    async def fetch_leagues(self) -> list[LeagueData]:
        pass

    @abstractmethod
    async def fetch_teams(self, country_external_ids: Optional[list[int]] = None) -> list[TeamData]:
        """
        Fetch teams, optionally restricted to some countries.

        Args:
            country_external_ids: Restrict to these countries (None = all).
        """
        pass

    @abstractmethod
    async def fetch_seasons(self, league_external_ids: Optional[list[int]] = None) -> list[SeasonData]:
        pass

    @abstractmethod
    async def fetch_bookmakers(self) -> list[BookmakerData]:
        pass

    @abstractmethod
    async def fetch_fixtures_between(
        self,
        start: date,
        end: date,
        league_external_ids: Optional[list[int]] = None,
    ) -> list[FixtureData]:
        """
        Fetch fixtures kicking off within [start, end] (inclusive dates, UTC).

        Args:
            start: First day of the window.
            end: Last day of the window.
            league_external_ids: Optional league filter.

        Returns:
            List of FixtureData objects.
        """
        pass

    @abstractmethod
    async def fetch_fixtures_by_ids(self, external_ids: list[int]) -> list[FixtureData]:
        """Fetch specific fixtures (callers chunk the id list)."""
        pass

    @abstractmethod
    async def fetch_live_fixtures(self) -> list[FixtureData]:
        """Fetch fixtures currently in play."""
        pass

    @abstractmethod
    async def fetch_odds_between(
        self,
        start: date,
        end: date,
        odds_filter: Optional[OddsFilter] = None,
    ) -> list[OddData]:
        """Fetch pre-match odds for fixtures kicking off within [start, end]."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close any open connections."""
        pass
