"""
Distributed advisory locks.

One logical operation (e.g. "sync:fixtures") must never run concurrently
across worker processes or trigger sources (cron, CLI, admin). PostgreSQL
session-level advisory locks give us that without a lock table:

    SELECT pg_try_advisory_lock(:lock_id)   -- never blocks
    SELECT pg_advisory_unlock(:lock_id)

The lock is session-scoped, so acquire, body and release all happen while
one dedicated connection is checked out. The connection runs in AUTOCOMMIT
so it is not left "idle in transaction" while a long body runs.

SQLite (local dev / tests) has no advisory locks; a process-local registry
gives the same semantics inside one process.
"""

import asyncio
import hashlib
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AdvisoryLockNotAcquired(Exception):
    """Another holder (any process) owns the lock for this key."""

    def __init__(self, job_key: str):
        self.job_key = job_key
        super().__init__(f"Advisory lock not acquired for '{job_key}' (already running elsewhere)")


class AdvisoryLockTimeout(Exception):
    """
    The caller stopped waiting for the guarded operation.

    The operation itself keeps running and releases the lock when it
    finishes; only the caller's wait was bounded.
    """

    def __init__(self, job_key: str, timeout: float):
        self.job_key = job_key
        self.timeout = timeout
        super().__init__(f"Advisory lock operation for '{job_key}' exceeded {timeout}s")


# Keys held by this process when the backend has no advisory locks
_local_locks: set[int] = set()

# Guarded operations the caller stopped waiting for (keep a strong ref until done)
_detached: set[asyncio.Task] = set()


def lock_id_for_key(key: str) -> int:
    """Stable signed 64-bit lock id for a lock key (same value in every process)."""
    digest = hashlib.blake2b(key.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


async def _run_pg_locked(engine: AsyncEngine, key: str, lock_id: int, body: Callable[[], Awaitable[T]]) -> T:
    conn = await engine.connect()
    try:
        conn = await conn.execution_options(isolation_level="AUTOCOMMIT")
        result = await conn.execute(
            text("SELECT pg_try_advisory_lock(:lock_id)"),
            {"lock_id": lock_id},
        )
        if not result.scalar():
            raise AdvisoryLockNotAcquired(key)

        logger.debug(f"[LOCK] Acquired '{key}' (id={lock_id})")
        try:
            return await body()
        finally:
            try:
                await conn.execute(
                    text("SELECT pg_advisory_unlock(:lock_id)"),
                    {"lock_id": lock_id},
                )
                logger.debug(f"[LOCK] Released '{key}'")
            except Exception as e:
                # Dropping the connection is what frees a session lock server-side
                logger.warning(f"[LOCK] Unlock failed for '{key}', invalidating connection: {e}")
                await conn.invalidate()
    finally:
        await conn.close()


async def _run_local_locked(key: str, lock_id: int, body: Callable[[], Awaitable[T]]) -> T:
    if lock_id in _local_locks:
        raise AdvisoryLockNotAcquired(key)
    _local_locks.add(lock_id)
    logger.debug(f"[LOCK] Acquired '{key}' (process-local)")
    try:
        return await body()
    finally:
        _local_locks.discard(lock_id)
        logger.debug(f"[LOCK] Released '{key}' (process-local)")


def _on_detached_done(task: asyncio.Task) -> None:
    _detached.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"[LOCK] Detached operation finished with error: {exc!r}")


async def with_advisory_lock(
    key: str,
    body: Callable[[], Awaitable[T]],
    timeout: Optional[float] = None,
    engine: Optional[AsyncEngine] = None,
) -> T:
    """
    Run ``body()`` while holding the advisory lock for ``key``.

    Args:
        key: Logical lock key (several job keys may share one).
        body: Zero-arg coroutine factory executed under the lock.
        timeout: Seconds the caller is willing to wait. None = unbounded.
        engine: Engine to take the dedicated connection from.

    Raises:
        AdvisoryLockNotAcquired: lock is held elsewhere (raised immediately).
        AdvisoryLockTimeout: caller's wait exceeded ``timeout``. The body is
            not cancelled; the lock is released when it completes.
    """
    if engine is None:
        from app.database import async_engine

        engine = async_engine

    lock_id = lock_id_for_key(key)
    if engine.dialect.name == "postgresql":
        operation = _run_pg_locked(engine, key, lock_id, body)
    else:
        operation = _run_local_locked(key, lock_id, body)

    if timeout is None:
        return await operation

    task = asyncio.ensure_future(operation)
    try:
        return await asyncio.wait_for(asyncio.shield(task), timeout)
    except asyncio.TimeoutError:
        _detached.add(task)
        task.add_done_callback(_on_detached_done)
        logger.warning(f"[LOCK] '{key}' still running after {timeout}s; lock stays held until it finishes")
        raise AdvisoryLockTimeout(key, timeout) from None


def is_held_locally(key: str) -> bool:
    """True if this process holds the process-local lock for ``key``."""
    return lock_id_for_key(key) in _local_locks
