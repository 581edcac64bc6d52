"""SportMonks v3 data provider implementation."""

import asyncio
import logging
import time
from datetime import date, datetime
from typing import Optional

import httpx

from app.config import get_settings
from app.etl.base import (
    BookmakerData,
    CountryData,
    DataProvider,
    FixtureData,
    LeagueData,
    OddData,
    OddsFilter,
    SeasonData,
    TeamData,
)
from app.etl.transform import safe_int
from app.telemetry.metrics import record_provider_request

logger = logging.getLogger(__name__)

settings = get_settings()

# SportMonks score type ids
SCORE_CURRENT = 1525
SCORE_ET = 3
SCORE_PENALTIES = 5

_FIXTURE_INCLUDE = "participants;state;stage:name;round:name;scores"
_PLACEHOLDER_IMG_FRAGMENT = "placeholder"


class ProviderNotConfigured(RuntimeError):
    """Raised when the provider token is missing."""


class ProviderError(RuntimeError):
    def __init__(self, status_code: int, endpoint: str, message: str = ""):
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(f"Provider error {status_code} on {endpoint}: {message}".rstrip(": "))


def _score_pair(scores: list, type_id: int) -> tuple[Optional[int], Optional[int]]:
    home = away = None
    for s in scores or []:
        if s.get("type_id") != type_id:
            continue
        score = s.get("score") or {}
        participant = str(score.get("participant", "")).lower()
        if participant == "home":
            home = safe_int(score.get("goals"))
        elif participant == "away":
            away = safe_int(score.get("goals"))
    return home, away


def _epoch_seconds(ts, iso: Optional[str]) -> Optional[int]:
    value = safe_int(ts)
    if value is not None:
        return value
    if not iso:
        return None
    try:
        parsed = datetime.fromisoformat(str(iso).replace("Z", "+00:00").replace(" ", "T"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return int((parsed - datetime(1970, 1, 1)).total_seconds())
    return int(parsed.timestamp())


def parse_fixture(f: dict) -> Optional[FixtureData]:
    """Map a raw SportMonks fixture payload to FixtureData (None when teams are missing)."""
    home_id = away_id = None
    for p in f.get("participants") or []:
        location = str((p.get("meta") or {}).get("location", "")).lower()
        if location == "home":
            home_id = p.get("id")
        elif location == "away":
            away_id = p.get("id")
    if not home_id or not away_id:
        return None

    state = f.get("state") or {}
    scores = f.get("scores") or []
    home, away = _score_pair(scores, SCORE_CURRENT)
    result = f"{home}-{away}" if home is not None and away is not None else None
    home_et, away_et = _score_pair(scores, SCORE_ET)
    pen_home, pen_away = _score_pair(scores, SCORE_PENALTIES)

    return FixtureData(
        external_id=int(f["id"]),
        name=f.get("name"),
        home_team_external_id=int(home_id),
        away_team_external_id=int(away_id),
        start_ts=_epoch_seconds(f.get("starting_at_timestamp"), f.get("starting_at")),
        state=str(state.get("developer_name") or state.get("short_name") or "").upper(),
        league_external_id=safe_int(f.get("league_id")),
        season_external_id=safe_int(f.get("season_id")),
        live_minute=safe_int(f.get("minute")),
        result=result,
        home_score=home,
        away_score=away,
        home_score_et=home_et,
        away_score_et=away_et,
        pen_home=pen_home,
        pen_away=pen_away,
        stage=(f.get("stage") or {}).get("name"),
        round=(f.get("round") or {}).get("name"),
        leg=f.get("leg"),
        aggregate_id=safe_int(f.get("aggregate_id")),
    )


def parse_odds(f: dict) -> list[OddData]:
    out = []
    for o in f.get("odds") or []:
        out.append(
            OddData(
                external_id=int(o["id"]),
                fixture_external_id=safe_int(f.get("id")),
                market_external_id=safe_int(o.get("market_id")),
                label=o.get("label"),
                value=o.get("value"),
                bookmaker_external_id=safe_int(o.get("bookmaker_id")),
                name=o.get("name"),
                market_name=(o.get("market") or {}).get("name") or o.get("market_description"),
                probability=o.get("probability"),
                total=o.get("total"),
                handicap=o.get("handicap"),
                winning=o.get("winning"),
                sort_order=safe_int(o.get("sort_order")),
                starting_at_ts=_epoch_seconds(f.get("starting_at_timestamp"), f.get("starting_at")),
            )
        )
    return out


class SportMonksProvider(DataProvider):
    """SportMonks Football/Core API provider with retry on 429 and 5xx."""

    name = "sportmonks"

    def __init__(self, token: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
        self.token = token or settings.SPORTMONKS_API_TOKEN
        if not self.token:
            raise ProviderNotConfigured("SPORTMONKS_API_TOKEN is not set")

        headers = {"Accept": "application/json"}
        if settings.SPORTMONKS_AUTH_MODE == "header":
            headers["Authorization"] = self.token

        self.client = client or httpx.AsyncClient(
            headers=headers,
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
        )
        self.max_retries = settings.PROVIDER_MAX_RETRIES
        self.per_page = settings.PROVIDER_PER_PAGE

    async def _request(self, base_url: str, endpoint: str, params: Optional[dict] = None) -> dict:
        """
        GET one page.

        Implements exponential backoff on 429 and 5xx. Instruments requests
        for telemetry (best-effort).
        """
        url = f"{base_url.rstrip('/')}/{endpoint.lstrip('/')}"
        params = dict(params or {})
        if settings.SPORTMONKS_AUTH_MODE != "header":
            params["api_token"] = self.token
        retry_delay = 2

        for attempt in range(self.max_retries):
            start_time = time.time()
            try:
                response = await self.client.get(url, params=params)
            except httpx.RequestError as e:
                logger.error(f"[PROVIDER] Request error on {endpoint}: {e.__class__.__name__}")
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(retry_delay * (2 ** attempt))
                    continue
                raise

            latency_ms = (time.time() - start_time) * 1000
            record_provider_request(self.name, endpoint.split("/")[0], response.status_code, latency_ms)

            if response.status_code == 429 or response.status_code >= 500:
                wait_time = retry_delay * (2 ** attempt)
                logger.warning(
                    f"[PROVIDER] {response.status_code} on {endpoint}. Waiting {wait_time}s before retry..."
                )
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(wait_time)
                    continue
                raise ProviderError(response.status_code, endpoint, "retries exhausted")

            if response.status_code == 404:
                return {"data": []}
            if response.status_code >= 400:
                raise ProviderError(response.status_code, endpoint, response.text[:200])
            return response.json()

        return {"data": []}

    async def _get_all(self, base_url: str, endpoint: str, params: Optional[dict] = None, paginate: bool = True) -> list[dict]:
        rows: list[dict] = []
        page = 1
        while True:
            query = {"per_page": self.per_page, "page": page, **(params or {})}
            payload = await self._request(base_url, endpoint, query)
            data = payload.get("data") or []
            if isinstance(data, dict):
                data = [data]
            rows.extend(data)
            pagination = payload.get("pagination") or {}
            if not paginate or not pagination.get("has_more"):
                break
            page += 1
        return rows

    # --- reference data ----------------------------------------------------

    async def fetch_countries(self) -> list[CountryData]:
        rows = await self._get_all(settings.SPORTMONKS_CORE_BASE_URL, "countries")
        out = [
            CountryData(
                external_id=int(c["id"]),
                name=c.get("name"),
                image_path=c.get("image_path"),
                iso2=c.get("iso2"),
                iso3=c.get("iso3"),
            )
            for c in rows
        ]
        logger.info(f"[PROVIDER] fetch_countries: {len(out)}")
        return out

    async def fetch_leagues(self) -> list[LeagueData]:
        rows = await self._get_all(settings.SPORTMONKS_FOOTBALL_BASE_URL, "leagues")
        out = [
            LeagueData(
                external_id=int(lg["id"]),
                name=lg.get("name"),
                country_external_id=safe_int(lg.get("country_id")),
                type=lg.get("type"),
                image_path=lg.get("image_path"),
                short_code=lg.get("short_code"),
                sub_type=lg.get("sub_type"),
            )
            for lg in rows
        ]
        logger.info(f"[PROVIDER] fetch_leagues: {len(out)}")
        return out

    async def fetch_teams(self, country_external_ids: Optional[list[int]] = None) -> list[TeamData]:
        params = {}
        if country_external_ids:
            params["filters"] = f"teamCountries:{','.join(str(i) for i in country_external_ids)}"
        rows = await self._get_all(settings.SPORTMONKS_FOOTBALL_BASE_URL, "teams", params)
        out = []
        for t in rows:
            name = t.get("name") or ""
            image = t.get("image_path")
            # Provider placeholders ("TBC" teams) are not real teams
            if not name or (image and _PLACEHOLDER_IMG_FRAGMENT in image and name.upper().startswith("TBC")):
                continue
            out.append(
                TeamData(
                    external_id=int(t["id"]),
                    name=name,
                    country_external_id=safe_int(t.get("country_id")),
                    short_code=t.get("short_code"),
                    image_path=image,
                    founded=safe_int(t.get("founded")),
                    type=str(t["type"]).lower() if t.get("type") else None,
                )
            )
        logger.info(f"[PROVIDER] fetch_teams: {len(out)}")
        return out

    async def fetch_seasons(self, league_external_ids: Optional[list[int]] = None) -> list[SeasonData]:
        params = {}
        if league_external_ids:
            params["filters"] = f"seasonLeagues:{','.join(str(i) for i in league_external_ids)}"
        rows = await self._get_all(settings.SPORTMONKS_FOOTBALL_BASE_URL, "seasons", params)
        out = [
            SeasonData(
                external_id=int(s["id"]),
                name=s.get("name"),
                league_external_id=safe_int(s.get("league_id")),
                start_date=s.get("starting_at"),
                end_date=s.get("ending_at"),
                is_current=bool(s.get("is_current")),
                is_finished=bool(s.get("finished")),
                is_pending=bool(s.get("pending")),
            )
            for s in rows
        ]
        logger.info(f"[PROVIDER] fetch_seasons: {len(out)}")
        return out

    async def fetch_bookmakers(self) -> list[BookmakerData]:
        rows = await self._get_all(settings.SPORTMONKS_ODDS_BASE_URL, "bookmakers")
        return [BookmakerData(external_id=int(b["id"]), name=b.get("name")) for b in rows]

    # --- fixtures ----------------------------------------------------------

    def _parse_fixture_rows(self, rows: list[dict]) -> list[FixtureData]:
        out = []
        for row in rows:
            fixture = parse_fixture(row)
            if fixture is not None:
                out.append(fixture)
        return out

    async def fetch_fixtures_between(
        self,
        start: date,
        end: date,
        league_external_ids: Optional[list[int]] = None,
    ) -> list[FixtureData]:
        params = {"include": _FIXTURE_INCLUDE, "sortBy": "starting_at", "order": "asc"}
        if league_external_ids:
            params["filters"] = f"fixtureLeagues:{','.join(str(i) for i in league_external_ids)}"
        rows = await self._get_all(
            settings.SPORTMONKS_FOOTBALL_BASE_URL,
            f"fixtures/between/{start.isoformat()}/{end.isoformat()}",
            params,
        )
        out = self._parse_fixture_rows(rows)
        logger.info(f"[PROVIDER] fetch_fixtures_between {start}..{end}: {len(out)}")
        return out

    async def fetch_fixtures_by_ids(self, external_ids: list[int]) -> list[FixtureData]:
        if not external_ids:
            return []
        rows = await self._get_all(
            settings.SPORTMONKS_FOOTBALL_BASE_URL,
            f"fixtures/multi/{','.join(str(i) for i in external_ids)}",
            {"include": _FIXTURE_INCLUDE},
            paginate=False,
        )
        return self._parse_fixture_rows(rows)

    async def fetch_live_fixtures(self) -> list[FixtureData]:
        rows = await self._get_all(
            settings.SPORTMONKS_FOOTBALL_BASE_URL,
            "livescores/inplay",
            {"include": _FIXTURE_INCLUDE},
        )
        out = self._parse_fixture_rows(rows)
        logger.info(f"[PROVIDER] fetch_live_fixtures: {len(out)}")
        return out

    async def fetch_odds_between(
        self,
        start: date,
        end: date,
        odds_filter: Optional[OddsFilter] = None,
    ) -> list[OddData]:
        filters = []
        if odds_filter and odds_filter.bookmaker_external_ids:
            filters.append(f"bookmakers:{','.join(str(i) for i in odds_filter.bookmaker_external_ids)}")
        if odds_filter and odds_filter.market_external_ids:
            filters.append(f"markets:{','.join(str(i) for i in odds_filter.market_external_ids)}")
        params = {"include": "odds.market", "sortBy": "starting_at", "order": "asc"}
        if filters:
            params["filters"] = ";".join(filters)

        rows = await self._get_all(
            settings.SPORTMONKS_FOOTBALL_BASE_URL,
            f"fixtures/between/{start.isoformat()}/{end.isoformat()}",
            params,
        )
        out: list[OddData] = []
        for row in rows:
            out.extend(parse_odds(row))
        logger.info(f"[PROVIDER] fetch_odds_between {start}..{end}: {len(out)}")
        return out

    async def close(self) -> None:
        await self.client.aclose()


def get_provider() -> DataProvider:
    """Build the configured provider (raises ProviderNotConfigured without a token)."""
    return SportMonksProvider()
