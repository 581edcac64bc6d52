"""Advisory lock semantics (process-local backend used with SQLite)."""

import asyncio

import pytest

from app.locks import (
    AdvisoryLockNotAcquired,
    AdvisoryLockTimeout,
    is_held_locally,
    lock_id_for_key,
    with_advisory_lock,
)


class TestLockId:
    def test_stable_and_signed_64bit(self):
        a = lock_id_for_key("sync:fixtures")
        assert a == lock_id_for_key("sync:fixtures")
        assert -(2 ** 63) <= a < 2 ** 63

    def test_distinct_keys(self):
        assert lock_id_for_key("sync:fixtures") != lock_id_for_key("sync:odds")


class TestWithAdvisoryLock:
    @pytest.mark.asyncio
    async def test_returns_body_result_and_releases(self, engine):
        async def body():
            assert is_held_locally("k1")
            return 42

        assert await with_advisory_lock("k1", body, engine=engine) == 42
        assert not is_held_locally("k1")

    @pytest.mark.asyncio
    async def test_released_when_body_raises(self, engine):
        async def body():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await with_advisory_lock("k2", body, engine=engine)
        assert not is_held_locally("k2")

    @pytest.mark.asyncio
    async def test_concurrent_callers_exactly_one_runs(self, engine):
        started = asyncio.Event()
        release = asyncio.Event()
        calls = []

        async def slow_body():
            calls.append("slow")
            started.set()
            await release.wait()
            return "done"

        first = asyncio.create_task(with_advisory_lock("k3", slow_body, engine=engine))
        await started.wait()

        async def second_body():
            calls.append("second")

        with pytest.raises(AdvisoryLockNotAcquired):
            await with_advisory_lock("k3", second_body, engine=engine)

        release.set()
        assert await first == "done"
        assert calls == ["slow"]

    @pytest.mark.asyncio
    async def test_timeout_detaches_and_keeps_lock_until_done(self, engine):
        release = asyncio.Event()
        finished = asyncio.Event()

        async def body():
            await release.wait()
            finished.set()

        with pytest.raises(AdvisoryLockTimeout):
            await with_advisory_lock("k4", body, timeout=0.05, engine=engine)

        # Body still running: the lock is still held
        assert is_held_locally("k4")
        with pytest.raises(AdvisoryLockNotAcquired):
            await with_advisory_lock("k4", body, engine=engine)

        release.set()
        await asyncio.wait_for(finished.wait(), 1)
        await asyncio.sleep(0)
        assert not is_held_locally("k4")
