"""Seed batch / item ledger and job run ledger."""

import pytest

from app.etl import ledger
from app.jobs import tracking
from app.models import Job


async def _add_job(session_factory, key="upsert-live-fixtures", **fields):
    async with session_factory() as session:
        session.add(Job(key=key, description="test", schedule_cron=fields.pop("schedule_cron", "*/5 * * * *"), **fields))
        await session.commit()


class TestSeedLedger:
    @pytest.mark.asyncio
    async def test_finish_merges_meta_and_sets_duration(self, session_factory):
        batch_id = await ledger.start_seed_batch(
            "seed-countries", meta={"totalInput": 3}, session_factory=session_factory
        )
        batch = await ledger.finish_seed_batch(
            batch_id, ledger.BATCH_SUCCESS,
            items_total=3, items_success=3, items_failed=0,
            meta={"ok": 3}, session_factory=session_factory,
        )

        assert batch.meta == {"totalInput": 3, "ok": 3}
        assert batch.duration_ms is not None and batch.duration_ms >= 0
        assert batch.finished_at is not None
        assert batch.version == "v1"

    @pytest.mark.asyncio
    async def test_error_message_truncated(self, session_factory):
        batch_id = await ledger.start_seed_batch("seed-teams", session_factory=session_factory)
        await ledger.track_seed_item(
            batch_id, "1", ledger.ITEM_FAILED, error_message="x" * 2000, session_factory=session_factory
        )
        items = await ledger.get_seed_items(batch_id, session_factory=session_factory)
        assert len(items[0].error_message) == 500

    @pytest.mark.asyncio
    async def test_missing_batch(self, session_factory):
        with pytest.raises(LookupError):
            await ledger.finish_seed_batch(999, ledger.BATCH_FAILED, session_factory=session_factory)


class TestJobRunLedger:
    @pytest.mark.asyncio
    async def test_start_and_finish(self, session_factory):
        await _add_job(session_factory)
        run = await tracking.start_job_run(
            "upsert-live-fixtures", trigger="auto", triggered_by="cron_scheduler",
            meta={"dryRun": False}, session_factory=session_factory,
        )
        assert run.status == tracking.RUN_RUNNING

        finished = await tracking.finish_job_run(
            run.id, tracking.RUN_SUCCESS, rows_affected=7, meta={"fetched": 7},
            session_factory=session_factory,
        )
        assert finished.status == tracking.RUN_SUCCESS
        assert finished.rows_affected == 7
        assert finished.meta == {"dryRun": False, "fetched": 7}
        assert finished.duration_ms >= 0

    @pytest.mark.asyncio
    async def test_finished_run_is_immutable(self, session_factory):
        await _add_job(session_factory)
        run = await tracking.start_job_run("upsert-live-fixtures", trigger="manual", session_factory=session_factory)
        await tracking.finish_job_run(run.id, tracking.RUN_FAILED, error_message="boom", session_factory=session_factory)

        with pytest.raises(tracking.JobRunAlreadyFinished):
            await tracking.finish_job_run(run.id, tracking.RUN_SUCCESS, session_factory=session_factory)

    @pytest.mark.asyncio
    async def test_rejects_non_final_status(self, session_factory):
        with pytest.raises(ValueError):
            await tracking.finish_job_run(1, tracking.RUN_RUNNING, session_factory=session_factory)

    @pytest.mark.asyncio
    async def test_health_and_last_success(self, session_factory):
        await _add_job(session_factory)
        ok = await tracking.start_job_run("upsert-live-fixtures", trigger="auto", session_factory=session_factory)
        await tracking.finish_job_run(ok.id, tracking.RUN_SUCCESS, session_factory=session_factory)
        bad = await tracking.start_job_run("upsert-live-fixtures", trigger="auto", session_factory=session_factory)
        await tracking.finish_job_run(bad.id, tracking.RUN_FAILED, error_message="provider down", session_factory=session_factory)

        last_success = await tracking.get_last_success_at("upsert-live-fixtures", session_factory=session_factory)
        assert last_success is not None

        health = await tracking.get_jobs_health_from_db(session_factory=session_factory)
        entry = health["upsert-live-fixtures"]
        assert entry["last_run_status"] == tracking.RUN_FAILED
        assert entry["last_error"] == "provider down"
        assert entry["last_success_at"] == last_success.isoformat()

        recent = await tracking.get_recent_runs("upsert-live-fixtures", session_factory=session_factory)
        assert [r.id for r in recent] == [bad.id, ok.id]

    @pytest.mark.asyncio
    async def test_cleanup_keeps_recent_runs(self, session_factory):
        await _add_job(session_factory)
        run = await tracking.start_job_run("upsert-live-fixtures", trigger="auto", session_factory=session_factory)
        await tracking.finish_job_run(run.id, tracking.RUN_SUCCESS, session_factory=session_factory)

        assert await tracking.cleanup_old_runs(30, session_factory=session_factory) == 0
        assert await tracking.get_job_run(run.id, session_factory=session_factory) is not None
