"""Shared fixtures: a throwaway SQLite database per test."""

import os

# Settings are read at import time by app.config / app.database
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SENTRY_DSN", "")
os.environ.setdefault("SPORTMONKS_API_TOKEN", "test-token")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from app.database import build_engine, build_session_factory, init_db  # noqa: E402
from app.etl.base import DataProvider  # noqa: E402
from app.jobs.runner import JobDeps  # noqa: E402


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'sync.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def make_deps(engine, session_factory):
    """JobDeps bound to the test database; pass a provider and optional clock."""

    def _make(provider=None, now=None) -> JobDeps:
        deps = JobDeps(session_factory=session_factory, engine=engine)
        if provider is not None:
            deps.provider_factory = lambda: provider
        if now is not None:
            deps.now = lambda: now
        return deps

    return _make


class FakeProvider(DataProvider):
    """In-memory provider; tests fill the lists and inspect ``calls``."""

    name = "fake"

    def __init__(self):
        self.countries, self.leagues, self.teams, self.seasons = [], [], [], []
        self.bookmakers, self.fixtures, self.live, self.odds = [], [], [], []
        self.calls: list[tuple] = []
        self.closed = 0

    async def fetch_countries(self):
        self.calls.append(("countries",))
        return list(self.countries)

    async def fetch_leagues(self):
        self.calls.append(("leagues",))
        return list(self.leagues)

    async def fetch_teams(self, country_external_ids=None):
        self.calls.append(("teams",))
        return list(self.teams)

    async def fetch_seasons(self, league_external_ids=None):
        self.calls.append(("seasons",))
        return list(self.seasons)

    async def fetch_bookmakers(self):
        self.calls.append(("bookmakers",))
        return list(self.bookmakers)

    async def fetch_fixtures_between(self, start, end, league_external_ids=None):
        self.calls.append(("between", start, end))
        return list(self.fixtures)

    async def fetch_fixtures_by_ids(self, external_ids):
        self.calls.append(("by_ids", list(external_ids)))
        wanted = set(external_ids)
        return [f for f in self.fixtures if f.external_id in wanted]

    async def fetch_live_fixtures(self):
        self.calls.append(("live",))
        return list(self.live)

    async def fetch_odds_between(self, start, end, odds_filter=None):
        self.calls.append(("odds", start, end, odds_filter))
        return list(self.odds)

    async def close(self):
        self.closed += 1


@pytest.fixture
def fake_provider():
    return FakeProvider()
