"""
Generic entity seeding framework.

Every entity seeder (countries, leagues, teams, seasons, fixtures, bookmakers,
odds) runs the same pipeline and only declares what differs:

1. Dry run       -> every record tracked skipped/dryRun, no entity writes
2. De-dupe       -> first occurrence of an external id wins, later ones are
                    tracked skipped/duplicate and never upserted
3. Parents       -> ONE query per parent type builds an external_id -> id map
4. Chunks        -> fixed-size groups, records of a chunk run concurrently with
                    their own session; one failure never aborts the others
5. Existence     -> ONE query per chunk decides inserted vs updated and feeds
                    the field-level change diff
6. Finalize      -> batch counts + meta (only when the batch was created here)

Idempotency comes from INSERT ... ON CONFLICT (external_id) DO UPDATE, so
re-seeding identical records leaves the store unchanged and each item is
tracked "updated" with an empty diff.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from app.config import get_settings
from app.etl import ledger
from app.models import utcnow
from app.telemetry.metrics import record_seed_batch_duration, record_seed_items

logger = logging.getLogger(__name__)

settings = get_settings()

NULL_MARK = "null"


class SeedError(Exception):
    """Per-record rejection with a stable error code (stored on the seed item)."""

    def __init__(self, code: str, message: str):
        self.code = code
        super().__init__(message)


@dataclass
class SeedResult:
    batch_id: Optional[int]
    ok: int = 0
    fail: int = 0
    total: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    duplicates: int = 0
    first_error: Optional[str] = None

    def as_dict(self) -> dict:
        return asdict(self)


# ═══════════════════════════════════════════════════════════════════════════
# HELPERS
# ═══════════════════════════════════════════════════════════════════════════


def chunk(items: Sequence, size: int) -> list[list]:
    if size <= 0:
        raise ValueError("chunk size must be positive")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def dedupe_by_external_id(records: Iterable) -> tuple[list, list]:
    """Split records into (unique, duplicates); the first occurrence wins."""
    seen: set[str] = set()
    unique, duplicates = [], []
    for record in records:
        key = str(getattr(record, "external_id", None))
        if key in seen:
            duplicates.append(record)
        else:
            seen.add(key)
            unique.append(record)
    return unique, duplicates


def format_value(value: Any) -> str:
    if value is None:
        return NULL_MARK
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _comparable(value: Any) -> Any:
    # Numeric columns may come back as int where we computed float (or vice versa)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return value


def compute_changes(old: dict, new: dict, fields: Iterable[str]) -> Optional[dict]:
    """
    Field-level diff ``{"field": "old → new"}``.

    Fields absent on both sides are ignored. Returns None when nothing changed.
    """
    changes = {}
    for field_name in fields:
        before = old.get(field_name)
        after = new.get(field_name)
        if before is None and after is None:
            continue
        if _comparable(before) != _comparable(after):
            changes[field_name] = f"{format_value(before)} → {format_value(after)}"
    return changes or None


def error_code_of(exc: BaseException) -> str:
    if isinstance(exc, SeedError):
        return exc.code
    if isinstance(exc, DBAPIError):
        orig = getattr(exc, "orig", None)
        code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
        return str(code) if code else exc.__class__.__name__
    if isinstance(exc, ValueError):
        return "VALIDATION_ERROR"
    return "UNKNOWN_ERROR"


def build_upsert(session: AsyncSession, model, values: dict, keep_on_null: Iterable[str] = ()):
    """
    INSERT ... ON CONFLICT (external_id) DO UPDATE for the session's dialect.

    Columns in ``keep_on_null`` keep their stored value when the incoming one
    is NULL.
    """
    if session.bind.dialect.name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    else:
        from sqlalchemy.dialects.sqlite import insert

    keep = set(keep_on_null)
    table = model.__table__
    stmt = insert(model).values(**values)
    set_ = {}
    for key in values:
        if key == "external_id":
            continue
        if key in keep:
            set_[key] = func.coalesce(stmt.excluded[key], table.c[key])
        else:
            set_[key] = stmt.excluded[key]
    return stmt.on_conflict_do_update(index_elements=["external_id"], set_=set_)


async def lookup_ids(session: AsyncSession, model, external_ids: Iterable) -> dict[int, int]:
    """external_id -> id for one parent type (single query)."""
    wanted = {int(e) for e in external_ids if e is not None}
    if not wanted:
        return {}
    result = await session.execute(
        select(model.external_id, model.id).where(model.external_id.in_(wanted))
    )
    return {int(row[0]): row[1] for row in result.all()}


# ═══════════════════════════════════════════════════════════════════════════
# BASE SEEDER
# ═══════════════════════════════════════════════════════════════════════════


class EntitySeeder:
    """
    Base class for entity seeders.

    Subclasses set ``entity``, ``batch_name``, ``model`` and ``tracked_fields``
    and implement ``build_values``; parents are resolved in
    ``resolve_dependencies``. Optional columns listed in ``keep_on_null`` are
    never overwritten with NULL by a re-seed that omits them.
    """

    entity: str = ""
    batch_name: str = ""
    model = None
    tracked_fields: tuple[str, ...] = ()
    keep_on_null: tuple[str, ...] = ()

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        chunk_size: Optional[int] = None,
    ):
        if session_factory is None:
            from app.database import AsyncSessionLocal

            session_factory = AsyncSessionLocal
        self.session_factory = session_factory
        self.chunk_size = chunk_size or settings.SEED_CHUNK_SIZE

    # --- hooks -------------------------------------------------------------

    async def resolve_dependencies(self, session: AsyncSession, records: list) -> dict:
        return {}

    def build_values(self, record, deps: dict) -> dict:
        """Column values for the upsert (must include external_id)."""
        raise NotImplementedError

    def skip_reason(self, existing: dict, values: dict) -> Optional[str]:
        """Return a reason to leave an existing row untouched, or None."""
        return None

    def annotate_changes(self, existing: dict, values: dict, changes: dict) -> dict:
        return changes

    def describe(self, record) -> dict:
        return {"name": getattr(record, "name", None)}

    # --- pipeline ----------------------------------------------------------

    def _item_meta(self, record, **extra) -> dict:
        meta = {"entityType": self.entity, "externalId": getattr(record, "external_id", None)}
        meta.update(self.describe(record))
        meta.update(extra)
        return meta

    async def _load_existing(self, external_ids: list[int]) -> dict[int, dict]:
        if not external_ids:
            return {}
        columns = [self.model.external_id] + [getattr(self.model, f) for f in self.tracked_fields]
        async with self.session_factory() as session:
            result = await session.execute(select(*columns).where(self.model.external_id.in_(external_ids)))
            rows = result.all()
        return {
            int(row[0]): dict(zip(self.tracked_fields, row[1:]))
            for row in rows
        }

    async def _upsert(self, values: dict) -> None:
        async with self.session_factory() as session:
            stmt = build_upsert(session, self.model, {**values, "updated_at": utcnow()}, self.keep_on_null)
            await session.execute(stmt)
            await session.commit()

    async def _process_record(self, record, deps: dict, existing: Optional[dict], batch_id: int) -> str:
        key = getattr(record, "external_id", None)
        try:
            if key is None:
                raise SeedError("MISSING_EXTERNAL_ID", f"Missing externalId for {self.entity}")
            values = self.build_values(record, deps)

            if existing is not None:
                reason = self.skip_reason(existing, values)
                if reason:
                    await ledger.track_seed_item(
                        batch_id, str(key), ledger.ITEM_SKIPPED,
                        meta=self._item_meta(record, action="skip", reason=reason),
                        session_factory=self.session_factory,
                    )
                    return "skipped"

            action = "updated" if existing is not None else "inserted"
            await self._upsert(values)

            meta = self._item_meta(record, action=action)
            if existing is not None:
                stored = {**values, **{k: existing.get(k) for k in self.keep_on_null if values.get(k) is None}}
                changes = compute_changes(existing, stored, self.tracked_fields) or {}
                meta["changes"] = self.annotate_changes(existing, values, changes)
            await ledger.track_seed_item(
                batch_id, str(key), ledger.ITEM_SUCCESS, meta=meta,
                session_factory=self.session_factory,
            )
            return action

        except Exception as e:
            message = str(e) or e.__class__.__name__
            await ledger.track_seed_item(
                batch_id, str(key), ledger.ITEM_FAILED,
                error_message=message,
                meta=self._item_meta(
                    record,
                    action="update_failed" if existing is not None else "insert_failed",
                    errorCode=error_code_of(e),
                    errorMessage=message[:settings.SEED_META_ERROR_MESSAGE_MAX],
                ),
                session_factory=self.session_factory,
            )
            logger.warning(f"[SEED] [{batch_id}] {self.entity} {key} failed: {message}")
            raise

    async def _fail_remaining(self, batch_id: int, records: list, error: BaseException) -> None:
        """Track every record a batch-level error kept from running as failed."""
        message = str(error) or error.__class__.__name__
        await ledger.track_seed_items(
            batch_id,
            [
                {
                    "item_key": str(r.external_id),
                    "status": ledger.ITEM_FAILED,
                    "error_message": message,
                    "meta": self._item_meta(
                        r,
                        action="batch_failed",
                        errorCode=error_code_of(error),
                        errorMessage=message[:settings.SEED_META_ERROR_MESSAGE_MAX],
                    ),
                }
                for r in records
            ],
            session_factory=self.session_factory,
        )

    async def seed(
        self,
        records: Optional[Sequence],
        batch_id: Optional[int] = None,
        dry_run: bool = False,
        trigger: str = "manual",
        triggered_by: Optional[str] = None,
        triggered_by_id: Optional[str] = None,
        job_run_id: Optional[int] = None,
        version: Optional[str] = None,
    ) -> SeedResult:
        """
        Seed ``records`` into the store.

        When ``batch_id`` is given the caller owns the batch: items are tracked
        on it but the caller finalizes it. Otherwise a batch is created and
        finalized here.
        """
        records = list(records or [])
        created_here = batch_id is None
        if created_here:
            batch_id = await ledger.start_seed_batch(
                self.batch_name,
                version=version,
                meta={"totalInput": len(records), "dryRun": dry_run},
                trigger=trigger,
                triggered_by=triggered_by,
                triggered_by_id=triggered_by_id,
                job_run_id=job_run_id,
                session_factory=self.session_factory,
            )

        result = SeedResult(batch_id=batch_id)
        if not records:
            if created_here:
                await ledger.finish_empty_batch(batch_id, session_factory=self.session_factory)
            return result

        if dry_run:
            # Dry run wins over de-dupe: every input record is one dryRun item
            await ledger.track_seed_items(
                batch_id,
                [
                    {
                        "item_key": str(r.external_id),
                        "status": ledger.ITEM_SKIPPED,
                        "meta": self._item_meta(r, action="skip", reason="dryRun"),
                    }
                    for r in records
                ],
                session_factory=self.session_factory,
            )
            result.skipped = len(records)
            result.total = len(records)
            if created_here:
                await ledger.finish_seed_batch(
                    batch_id, ledger.BATCH_SUCCESS,
                    items_total=len(records), items_success=0, items_failed=0,
                    meta={"dryRun": True, "skipped": result.skipped},
                    session_factory=self.session_factory,
                )
            return result

        unique, duplicates = dedupe_by_external_id(records)
        result.duplicates = len(duplicates)
        if duplicates:
            logger.info(
                f"[SEED] [{batch_id}] {len(duplicates)} duplicate {self.entity} records in input, "
                f"processing {len(unique)} unique"
            )
            await ledger.track_seed_items(
                batch_id,
                [
                    {
                        "item_key": str(r.external_id),
                        "status": ledger.ITEM_SKIPPED,
                        "meta": self._item_meta(r, action="skip", reason="duplicate"),
                    }
                    for r in duplicates
                ],
                session_factory=self.session_factory,
            )

        started = utcnow()
        done = 0
        try:
            async with self.session_factory() as session:
                deps = await self.resolve_dependencies(session, unique)

            for group in chunk(unique, self.chunk_size):
                existing = await self._load_existing(
                    [int(r.external_id) for r in group if r.external_id is not None]
                )
                outcomes = await asyncio.gather(
                    *[
                        self._process_record(
                            r,
                            deps,
                            existing.get(int(r.external_id)) if r.external_id is not None else None,
                            batch_id,
                        )
                        for r in group
                    ],
                    return_exceptions=True,
                )
                done += len(group)
                for outcome in outcomes:
                    if isinstance(outcome, BaseException):
                        result.fail += 1
                        if result.first_error is None:
                            result.first_error = str(outcome) or outcome.__class__.__name__
                    elif outcome == "skipped":
                        result.skipped += 1
                    else:
                        result.ok += 1
                        if outcome == "inserted":
                            result.inserted += 1
                        else:
                            result.updated += 1

        except Exception as e:
            logger.exception(f"[SEED] [{batch_id}] Unexpected error during {self.entity} seeding: {e}")
            await self._fail_remaining(batch_id, unique[done:], e)
            result.fail += len(unique) - done
            result.total = len(unique)
            if result.first_error is None:
                result.first_error = str(e) or e.__class__.__name__
            record_seed_items(self.entity, ledger.ITEM_FAILED, result.fail)
            if not created_here:
                raise
            await ledger.finish_seed_batch(
                batch_id, ledger.BATCH_FAILED,
                items_total=len(records), items_success=result.ok, items_failed=result.fail,
                error_message=str(e),
                meta=self.summary_meta(result),
                session_factory=self.session_factory,
            )
            return result

        result.total = len(unique)
        record_seed_items(self.entity, ledger.ITEM_SUCCESS, result.ok)
        record_seed_items(self.entity, ledger.ITEM_FAILED, result.fail)
        record_seed_items(self.entity, ledger.ITEM_SKIPPED, result.skipped + result.duplicates)
        record_seed_batch_duration(self.entity, (utcnow() - started).total_seconds() * 1000)

        if created_here:
            await ledger.finish_seed_batch(
                batch_id, ledger.BATCH_SUCCESS,
                items_total=len(records), items_success=result.ok, items_failed=result.fail,
                meta=self.summary_meta(result),
                session_factory=self.session_factory,
            )

        logger.info(
            f"[SEED] [{batch_id}] {self.entity}: ok={result.ok} (inserted={result.inserted}, "
            f"updated={result.updated}) failed={result.fail} skipped={result.skipped} "
            f"duplicates={result.duplicates}"
        )
        return result

    @staticmethod
    def summary_meta(result: SeedResult) -> dict:
        meta = {
            "ok": result.ok,
            "fail": result.fail,
            "inserted": result.inserted,
            "updated": result.updated,
            "skipped": result.skipped,
            "duplicates": result.duplicates,
        }
        if result.first_error:
            meta["firstError"] = result.first_error[:settings.SEED_META_ERROR_MESSAGE_MAX]
        return meta
