"""Command line entry points: job runner and bootstrap seeding."""

import json
from unittest.mock import AsyncMock, patch

import pytest

from app.jobs import cli as jobs_cli
from app.jobs import definitions as defs
from app.etl.seeding import SeedResult
from app.etl.seeds import cli as seeds_cli
from app.locks import AdvisoryLockNotAcquired, AdvisoryLockTimeout


@pytest.fixture(autouse=True)
def no_db_teardown():
    with patch("app.database.close_db", new=AsyncMock()) as close_db:
        yield close_db


class TestJobsCli:
    def test_list(self, capsys):
        assert jobs_cli.main(["--list"]) == 0
        out = capsys.readouterr().out
        assert defs.UPCOMING_FIXTURES in out
        assert "lock=sync:fixtures" in out

    def test_no_job_prints_help(self, capsys):
        assert jobs_cli.main([]) == 0
        assert "usage" in capsys.readouterr().out.lower()

    def test_unknown_job(self):
        assert jobs_cli.main(["--job", "not-a-job"]) == 1

    def test_success_prints_result(self, capsys, no_db_teardown):
        run = AsyncMock(return_value={"job_run_id": 7, "ok": 3})
        with patch("app.jobs.cli.run_locked_job", new=run):
            code = jobs_cli.main(["--job=upsert-upcoming-fixtures", "--daysAhead=5", "--dry-run"])

        assert code == 0
        assert json.loads(capsys.readouterr().out) == {"job_run_id": 7, "ok": 3}
        job_key, opts = run.await_args.args
        assert job_key == defs.UPCOMING_FIXTURES
        assert opts.days_ahead == 5
        assert opts.dry_run is True
        assert opts.triggered_by == defs.TRIGGERED_BY_CLI
        assert opts.resolve_trigger() == defs.TRIGGER_MANUAL
        no_db_teardown.assert_awaited_once()

    def test_positional_job_key(self):
        run = AsyncMock(return_value={})
        with patch("app.jobs.cli.run_locked_job", new=run):
            assert jobs_cli.main(["finished-fixtures", "--maxLiveAgeHours", "6"]) == 0
        assert run.await_args.args[1].max_live_age_hours == 6

    @pytest.mark.parametrize("error", [
        AdvisoryLockNotAcquired("sync:fixtures"),
        AdvisoryLockTimeout("sync:fixtures", 1),
        RuntimeError("boom"),
    ])
    def test_failures_exit_nonzero(self, error, no_db_teardown):
        with patch("app.jobs.cli.run_locked_job", new=AsyncMock(side_effect=error)):
            assert jobs_cli.main(["upsert-live-fixtures"]) == 1
        no_db_teardown.assert_awaited_once()


class TestSeedsCli:
    def test_parser_flags(self):
        args = seeds_cli.build_parser().parse_args(["--countries", "--dry-run"])
        assert args.countries is True
        assert args.leagues is False
        assert args.dry_run is True

    def test_steps_in_dependency_order(self):
        assert seeds_cli.STEPS == ("jobs", "countries", "leagues", "seasons", "teams", "bookmakers")
        assert seeds_cli.build_parser().parse_args(["--seasons"]).seasons is True

    @pytest.mark.asyncio
    async def test_seasons_step_fetches_and_seeds(self, fake_provider):
        seed = AsyncMock(return_value=SeedResult(batch_id=7, ok=1, total=1))
        with patch("app.etl.seeds.cli.seed_seasons", new=seed):
            summary = await seeds_cli._seed_entity("seasons", fake_provider, dry_run=False)

        assert fake_provider.calls == [("seasons",)]
        seed.assert_awaited_once()
        assert seed.await_args.kwargs["triggered_by"] == defs.TRIGGERED_BY_CLI
        assert summary["ok"] == 1

    @pytest.mark.asyncio
    async def test_jobs_step_only(self):
        seed = AsyncMock(return_value={"created": 6})
        with patch("app.database.init_db", new=AsyncMock()), \
                patch("app.jobs.provisioning.seed_jobs_defaults", new=seed):
            assert await seeds_cli.run_seeds(["jobs"], dry_run=True) == 0
        seed.assert_awaited_once_with(dry_run=True)

    @pytest.mark.asyncio
    async def test_failing_step_reported(self, fake_provider):
        with patch("app.database.init_db", new=AsyncMock()), \
                patch("app.etl.sportmonks.get_provider", return_value=fake_provider), \
                patch("app.etl.seeds.cli._seed_entity", new=AsyncMock(side_effect=RuntimeError("down"))):
            code = await seeds_cli.run_seeds(["countries", "leagues"], dry_run=False)

        assert code == 1
        assert fake_provider.closed == 1
