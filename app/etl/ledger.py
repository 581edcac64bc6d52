"""Seed batch / item ledger.

Every seeder invocation is one ``SeedBatch``; every record it touched is one
``SeedItem`` (success, failed or skipped) so an operator can see exactly what
a run did and why a record was rejected.

Usage:
    batch_id = await start_seed_batch("seed-countries", version="v1")
    await track_seed_item(batch_id, "462", "success", meta={"action": "inserted"})
    await finish_seed_batch(batch_id, "success", items_total=1, items_success=1)
"""

import logging
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from app.config import get_settings
from app.models import SeedBatch, SeedItem, utcnow

logger = logging.getLogger(__name__)

settings = get_settings()

BATCH_RUNNING = "running"
BATCH_SUCCESS = "success"
BATCH_FAILED = "failed"

ITEM_SUCCESS = "success"
ITEM_FAILED = "failed"
ITEM_SKIPPED = "skipped"


def _factory(session_factory: Optional[sessionmaker]) -> sessionmaker:
    if session_factory is not None:
        return session_factory
    from app.database import AsyncSessionLocal

    return AsyncSessionLocal


def truncate(message: Optional[str], limit: int) -> Optional[str]:
    if message is None:
        return None
    return message[:limit]


async def start_seed_batch(
    name: str,
    version: Optional[str] = None,
    meta: Optional[dict] = None,
    trigger: Optional[str] = None,
    triggered_by: Optional[str] = None,
    triggered_by_id: Optional[str] = None,
    job_run_id: Optional[int] = None,
    session_factory: Optional[sessionmaker] = None,
) -> int:
    """Create a running batch and return its id."""
    batch = SeedBatch(
        name=name,
        version=version or settings.SEED_VERSION,
        status=BATCH_RUNNING,
        trigger=trigger,
        triggered_by=triggered_by,
        triggered_by_id=triggered_by_id,
        job_run_id=job_run_id,
        started_at=utcnow(),
        meta=dict(meta) if meta else None,
    )
    async with _factory(session_factory)() as session:
        session.add(batch)
        await session.commit()
        await session.refresh(batch)

    logger.debug(f"[SEED] Started batch {batch.id} ({name})")
    return batch.id


async def track_seed_item(
    batch_id: int,
    item_key: str,
    status: str,
    error_message: Optional[str] = None,
    meta: Optional[dict] = None,
    session_factory: Optional[sessionmaker] = None,
) -> None:
    async with _factory(session_factory)() as session:
        session.add(
            SeedItem(
                batch_id=batch_id,
                item_key=str(item_key),
                status=status,
                error_message=truncate(error_message, settings.SEED_ERROR_MESSAGE_MAX),
                meta=meta,
            )
        )
        await session.commit()


async def track_seed_items(
    batch_id: int,
    items: list[dict],
    session_factory: Optional[sessionmaker] = None,
) -> None:
    """
    Bulk variant of track_seed_item (one transaction).

    Each item is a dict with item_key, status and optional error_message/meta.
    """
    if not items:
        return
    async with _factory(session_factory)() as session:
        for item in items:
            session.add(
                SeedItem(
                    batch_id=batch_id,
                    item_key=str(item["item_key"]),
                    status=item["status"],
                    error_message=truncate(item.get("error_message"), settings.SEED_ERROR_MESSAGE_MAX),
                    meta=item.get("meta"),
                )
            )
        await session.commit()


async def finish_seed_batch(
    batch_id: int,
    status: str,
    items_total: Optional[int] = None,
    items_success: Optional[int] = None,
    items_failed: Optional[int] = None,
    error_message: Optional[str] = None,
    meta: Optional[dict] = None,
    session_factory: Optional[sessionmaker] = None,
) -> SeedBatch:
    """
    Finalize a batch.

    Duration is recomputed from the stored start time, and ``meta`` is merged
    into whatever the batch already carries (callers add keys, never drop them).
    """
    async with _factory(session_factory)() as session:
        batch = await session.get(SeedBatch, batch_id)
        if batch is None:
            raise LookupError(f"Seed batch {batch_id} not found")

        finished_at = utcnow()
        batch.status = status
        batch.finished_at = finished_at
        batch.duration_ms = int((finished_at - batch.started_at).total_seconds() * 1000)
        if items_total is not None:
            batch.items_total = items_total
        if items_success is not None:
            batch.items_success = items_success
        if items_failed is not None:
            batch.items_failed = items_failed
        if error_message is not None:
            batch.error_message = truncate(error_message, settings.SEED_ERROR_MESSAGE_MAX)
        if meta:
            batch.meta = {**(batch.meta or {}), **meta}

        session.add(batch)
        await session.commit()
        await session.refresh(batch)

    logger.info(
        f"[SEED] Batch {batch_id} ({batch.name}) {status}: "
        f"total={batch.items_total} ok={batch.items_success} failed={batch.items_failed} "
        f"in {batch.duration_ms}ms"
    )
    return batch


async def finish_empty_batch(batch_id: int, session_factory: Optional[sessionmaker] = None) -> SeedBatch:
    """A batch that received no input finishes immediately as success."""
    return await finish_seed_batch(
        batch_id,
        BATCH_SUCCESS,
        items_total=0,
        items_success=0,
        items_failed=0,
        meta={"reason": "no-input"},
        session_factory=session_factory,
    )


async def get_seed_batch(batch_id: int, session_factory: Optional[sessionmaker] = None) -> Optional[SeedBatch]:
    async with _factory(session_factory)() as session:
        return await session.get(SeedBatch, batch_id)


async def get_seed_items(
    batch_id: int,
    status: Optional[str] = None,
    session_factory: Optional[sessionmaker] = None,
) -> list[SeedItem]:
    async with _factory(session_factory)() as session:
        query = select(SeedItem).where(SeedItem.batch_id == batch_id)
        if status:
            query = query.where(SeedItem.status == status)
        result = await session.execute(query.order_by(SeedItem.id))
        return list(result.scalars().all())


async def count_seed_items(batch_id: int, session_factory: Optional[sessionmaker] = None) -> dict[str, int]:
    """Item counts of a batch by status."""
    async with _factory(session_factory)() as session:
        result = await session.execute(
            select(SeedItem.status, func.count())
            .where(SeedItem.batch_id == batch_id)
            .group_by(SeedItem.status)
        )
        return {row[0]: row[1] for row in result.all()}
