"""SportMonks payload parsing and HTTP behaviour (pagination, 404, retries)."""

from datetime import date
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from app.etl.base import OddsFilter
from app.etl.sportmonks import ProviderError, SportMonksProvider, parse_fixture, parse_odds

FIXTURE_PAYLOAD = {
    "id": 19134480,
    "name": "Arsenal vs Chelsea",
    "league_id": 8,
    "season_id": 23614,
    "starting_at": "2025-08-16 14:00:00",
    "starting_at_timestamp": 1755352800,
    "leg": "1/1",
    "participants": [
        {"id": 19, "name": "Arsenal", "meta": {"location": "home"}},
        {"id": 18, "name": "Chelsea", "meta": {"location": "away"}},
    ],
    "state": {"id": 5, "developer_name": "FT", "short_name": "FT"},
    "scores": [
        {"type_id": 1, "score": {"goals": 1, "participant": "home"}},
        {"type_id": 1525, "score": {"goals": 2, "participant": "home"}},
        {"type_id": 1525, "score": {"goals": 1, "participant": "away"}},
    ],
    "round": {"name": "1"},
}


class TestParseFixture:
    def test_full_payload(self):
        fixture = parse_fixture(FIXTURE_PAYLOAD)

        assert fixture.external_id == 19134480
        assert fixture.home_team_external_id == 19
        assert fixture.away_team_external_id == 18
        assert fixture.state == "FT"
        assert fixture.result == "2-1"
        assert (fixture.home_score, fixture.away_score) == (2, 1)
        assert fixture.start_ts == 1755352800
        assert fixture.round == "1"
        assert fixture.stage is None

    def test_start_from_iso_when_no_timestamp(self):
        payload = {**FIXTURE_PAYLOAD, "starting_at_timestamp": None}
        assert parse_fixture(payload).start_ts == 1755352800

    def test_missing_participant(self):
        payload = {**FIXTURE_PAYLOAD, "participants": FIXTURE_PAYLOAD["participants"][:1]}
        assert parse_fixture(payload) is None

    def test_unknown_state_passed_through_for_validation(self):
        payload = {**FIXTURE_PAYLOAD, "state": {"developer_name": "something_new"}, "scores": []}
        fixture = parse_fixture(payload)
        assert fixture.state == "SOMETHING_NEW"
        assert fixture.result is None


class TestParseOdds:
    def test_lines_carry_fixture_and_market(self):
        payload = {
            "id": 100,
            "starting_at_timestamp": 1755352800,
            "odds": [
                {"id": 1, "market_id": 1, "bookmaker_id": 2, "label": "Home", "value": "2.10",
                 "market": {"name": "Fulltime Result"}},
                {"id": 2, "market_id": 1, "bookmaker_id": 2, "label": "Draw", "value": "3.40",
                 "market_description": "Match Winner"},
            ],
        }
        odds = parse_odds(payload)

        assert [o.external_id for o in odds] == [1, 2]
        assert odds[0].fixture_external_id == 100
        assert odds[0].market_name == "Fulltime Result"
        assert odds[1].market_name == "Match Winner"
        assert odds[0].starting_at_ts == 1755352800

    def test_no_odds(self):
        assert parse_odds({"id": 1}) == []


def _provider(handler) -> SportMonksProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SportMonksProvider(token="test-token", client=client)


class TestSportMonksProvider:
    @pytest.mark.asyncio
    async def test_pagination_follows_has_more(self):
        pages = []

        def handler(request: httpx.Request) -> httpx.Response:
            page = int(request.url.params["page"])
            pages.append(page)
            assert request.url.params["api_token"] == "test-token"
            return httpx.Response(200, json={
                "data": [{"id": page, "name": f"Country {page}"}],
                "pagination": {"has_more": page < 3},
            })

        provider = _provider(handler)
        countries = await provider.fetch_countries()
        await provider.close()

        assert pages == [1, 2, 3]
        assert [c.external_id for c in countries] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_not_found_is_empty(self):
        provider = _provider(lambda request: httpx.Response(404, json={"message": "not found"}))
        assert await provider.fetch_fixtures_by_ids([1, 2]) == []
        await provider.close()

    @pytest.mark.asyncio
    async def test_multi_endpoint_and_single_page(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.path)
            return httpx.Response(200, json={"data": [FIXTURE_PAYLOAD], "pagination": {"has_more": True}})

        provider = _provider(handler)
        fixtures = await provider.fetch_fixtures_by_ids([19134480, 19134481])
        await provider.close()

        assert seen == ["/v3/football/fixtures/multi/19134480,19134481"]
        assert len(fixtures) == 1

    @pytest.mark.asyncio
    async def test_retries_server_errors(self):
        statuses = iter([503, 429, 200])

        def handler(request: httpx.Request) -> httpx.Response:
            status = next(statuses)
            if status != 200:
                return httpx.Response(status)
            return httpx.Response(200, json={"data": [{"id": 2, "name": "bet365"}]})

        provider = _provider(handler)
        with patch("app.etl.sportmonks.asyncio.sleep", new=AsyncMock()) as sleep:
            bookmakers = await provider.fetch_bookmakers()
        await provider.close()

        assert [b.name for b in bookmakers] == ["bet365"]
        assert [c.args[0] for c in sleep.await_args_list] == [2, 4]

    @pytest.mark.asyncio
    async def test_retries_exhausted(self):
        provider = _provider(lambda request: httpx.Response(500))
        with patch("app.etl.sportmonks.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(ProviderError) as exc_info:
                await provider.fetch_countries()
        await provider.close()
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_client_error_raises(self):
        provider = _provider(lambda request: httpx.Response(401, text="unauthorized"))
        with pytest.raises(ProviderError, match="401"):
            await provider.fetch_leagues()
        await provider.close()

    @pytest.mark.asyncio
    async def test_odds_filter_query(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured.update(request.url.params)
            captured["path"] = request.url.path
            return httpx.Response(200, json={"data": []})

        provider = _provider(handler)
        await provider.fetch_odds_between(
            date(2025, 8, 1), date(2025, 8, 8),
            odds_filter=OddsFilter(bookmaker_external_ids=[2], market_external_ids=[1, 57]),
        )
        await provider.close()

        assert captured["path"].endswith("/fixtures/between/2025-08-01/2025-08-08")
        assert captured["filters"] == "bookmakers:2;markets:1,57"
