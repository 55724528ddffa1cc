"""
Session manager: persistence of import sessions and their items.

Owns the resumable cursor, the session state machine, per-item terminal
outcomes, and the on-demand tallies used for reporting.

Key rules:
  1. At most one ACTIVE/PAUSED session per (owner, source kind)
  2. The cursor only moves forward (conditional UPDATE, stale calls no-op)
  3. COMPLETED and CANCELED are final
  4. An item leaves PENDING once per pass; only reopen puts it back
  5. Counts are aggregated from item rows, never kept as running totals
"""

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ConflictError, InvalidTransitionError, NotFoundError
from app.models.enums import (
    OPEN_SESSION_STATUSES,
    ItemStatus,
    MatchConfidence,
    ResultReason,
    SessionStatus,
    SourceKind,
)
from app.models.imports import ImportItem, ImportSession
from app.schemas.imports import ImportCounts, RawRow, SourceDescriptor

logger = logging.getLogger(__name__)


# ─── Session State Machine ────────────────────────────────────

ALLOWED_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.ACTIVE: frozenset({
        SessionStatus.PAUSED,
        SessionStatus.COMPLETED,
        SessionStatus.CANCELED,
    }),
    SessionStatus.PAUSED: frozenset({
        SessionStatus.ACTIVE,
        SessionStatus.CANCELED,
    }),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.CANCELED: frozenset(),
}

TERMINAL_ITEM_STATUSES = (
    ItemStatus.ADDED,
    ItemStatus.UPDATED,
    ItemStatus.SKIPPED,
    ItemStatus.FAILED,
)

REOPENABLE_ITEM_STATUSES = (ItemStatus.FAILED, ItemStatus.SKIPPED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _raw_fields_of(row: RawRow) -> dict:
    fields = row.model_dump(mode="json", include={"raw_fields"})["raw_fields"]
    if row.validation_error:
        fields["validation_error"] = row.validation_error
    return fields


# ─── Sessions ─────────────────────────────────────────────────

async def create_session(
    db: AsyncSession,
    owner_id: str,
    source: SourceDescriptor,
    rows: list[RawRow],
) -> ImportSession:
    """
    Stage a new session with every row as a PENDING item.

    Row indices follow input order starting at 0. The session and its
    items go out in one flush, so the caller's transaction commits or
    rolls back all of them together.
    """
    existing = await get_active_session(db, owner_id, source.kind)
    if existing is not None:
        raise ConflictError(
            f"An import from {source.kind.value} is already {existing.status.value.lower()} "
            f"for this user (session {existing.id})."
        )

    session = ImportSession(
        id=uuid.uuid4(),
        owner_id=owner_id,
        source_kind=source.kind,
        status=SessionStatus.ACTIVE,
        cursor=0,
        total_count=len(rows),
        source_meta=dict(source.meta),
    )
    db.add(session)
    await db.flush()

    db.add_all([
        ImportItem(
            session_id=session.id,
            row_index=idx,
            external_id=row.external_id or "",
            title=row.title,
            platform_hint=row.platform_hint,
            region_hint=row.region_hint,
            category_hint=row.category_hint,
            playtime_minutes=row.playtime_minutes,
            completed_at=row.completed_at,
            last_played_at=row.last_played_at,
            note=row.note,
            explicit_game_id=row.explicit_game_id,
            explicit_metadata_id=row.explicit_metadata_id,
            raw_fields=_raw_fields_of(row),
            status=ItemStatus.PENDING,
        )
        for idx, row in enumerate(rows)
    ])
    await db.flush()

    logger.info(
        "Created %s import session %s for %s with %d items",
        source.kind.value, session.id, owner_id, len(rows),
    )
    return session


async def get_session(db: AsyncSession, session_id: uuid.UUID) -> ImportSession:
    result = await db.execute(select(ImportSession).where(ImportSession.id == session_id))
    session = result.scalar_one_or_none()
    if session is None:
        raise NotFoundError(f"Import session {session_id} not found.")
    return session


async def get_active_session(
    db: AsyncSession,
    owner_id: str,
    source_kind: SourceKind | None = None,
) -> ImportSession | None:
    """The owner's open (ACTIVE or PAUSED) session, optionally for one source."""
    query = select(ImportSession).where(
        ImportSession.owner_id == owner_id,
        ImportSession.status.in_(OPEN_SESSION_STATUSES),
    )
    if source_kind is not None:
        query = query.where(ImportSession.source_kind == source_kind)
    query = query.order_by(ImportSession.created_at.desc()).limit(1)
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def set_status(
    db: AsyncSession,
    session_id: uuid.UUID,
    status: SessionStatus,
) -> ImportSession:
    """
    Move a session along the state machine.

    Same-status calls are no-ops. Illegal transitions raise
    InvalidTransitionError and leave the row untouched.
    """
    session = await get_session(db, session_id)
    if session.status == status:
        return session
    if status not in ALLOWED_TRANSITIONS[session.status]:
        raise InvalidTransitionError(session.status.value, status.value)

    previous = session.status
    session.status = status
    session.updated_at = _utcnow()
    await db.flush()
    logger.info("Import session %s: %s → %s", session_id, previous.value, status.value)
    return session


async def advance_cursor(db: AsyncSession, session_id: uuid.UUID, row_index: int) -> int:
    """
    Move the cursor forward to `row_index`.

    The UPDATE only matches while the stored cursor is behind, so
    duplicate or out-of-order calls leave it unchanged. Returns the
    stored cursor after the call.
    """
    await db.execute(
        update(ImportSession)
        .where(ImportSession.id == session_id, ImportSession.cursor < row_index)
        .values(cursor=row_index, updated_at=_utcnow())
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(select(ImportSession.cursor).where(ImportSession.id == session_id))
    cursor = result.scalar_one_or_none()
    if cursor is None:
        raise NotFoundError(f"Import session {session_id} not found.")

    # Keep an already-loaded instance in step with the row.
    session = await db.get(ImportSession, session_id)
    if session is not None:
        await db.refresh(session, attribute_names=["cursor", "updated_at"])
    return cursor


# ─── Items ────────────────────────────────────────────────────

async def get_item(db: AsyncSession, item_id: uuid.UUID) -> ImportItem:
    result = await db.execute(select(ImportItem).where(ImportItem.id == item_id))
    item = result.scalar_one_or_none()
    if item is None:
        raise NotFoundError(f"Import item {item_id} not found.")
    return item


async def first_pending_item(db: AsyncSession, session_id: uuid.UUID) -> ImportItem | None:
    """The PENDING item with the lowest row index, or None."""
    result = await db.execute(
        select(ImportItem)
        .where(ImportItem.session_id == session_id, ImportItem.status == ItemStatus.PENDING)
        .order_by(ImportItem.row_index)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_items(
    db: AsyncSession,
    session_id: uuid.UUID,
    status: ItemStatus | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[ImportItem]:
    query = select(ImportItem).where(ImportItem.session_id == session_id)
    if status is not None:
        query = query.where(ImportItem.status == status)
    query = query.order_by(ImportItem.row_index).offset(offset).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


def clear_draft(item: ImportItem) -> None:
    """Forget any half-finished decision on the item."""
    item.prompt_kind = None
    item.draft_completion_type = None
    item.draft_date_choice = None
    item.draft_custom_date = None
    item.draft_platform_id = None
    item.draft_other_platform = False
    item.draft_same_record = None


async def record_outcome(
    db: AsyncSession,
    item: ImportItem,
    status: ItemStatus,
    reason: ResultReason,
    *,
    game_id: int | None = None,
    record_id: int | None = None,
    confidence: MatchConfidence | None = None,
    error_text: str | None = None,
) -> ImportItem:
    """
    Give a PENDING item its terminal status and move the cursor past it.

    Refuses to overwrite an item that already has an outcome.
    """
    if status == ItemStatus.PENDING:
        raise ValueError("record_outcome needs a terminal status")
    if item.status != ItemStatus.PENDING:
        raise ConflictError(
            f"Item #{item.row_index} already finished as {item.status.value}; reopen it first."
        )

    item.status = status
    item.result_reason = reason
    if game_id is not None:
        item.resolved_game_id = game_id
    item.resolved_record_id = record_id
    if confidence is not None:
        item.match_confidence = confidence
    item.error_text = error_text
    clear_draft(item)
    item.updated_at = _utcnow()
    await db.flush()

    await advance_cursor(db, item.session_id, item.row_index + 1)
    logger.info(
        "Import item #%d %r → %s (%s)",
        item.row_index, item.title, status.value, reason.value,
    )
    return item


async def reopen_item(db: AsyncSession, item_id: uuid.UUID) -> ImportItem:
    """
    Operator override: put a FAILED or SKIPPED item back to PENDING.

    The outcome and draft are cleared. The cursor is not moved back; the
    orchestrator always serves the lowest PENDING row, so the reopened
    item is picked up on the next advance.
    """
    item = await get_item(db, item_id)
    if item.status not in REOPENABLE_ITEM_STATUSES:
        raise ConflictError(
            f"Only FAILED or SKIPPED items can be reopened (item is {item.status.value})."
        )
    session = await get_session(db, item.session_id)
    if session.status not in OPEN_SESSION_STATUSES:
        raise ConflictError(f"Cannot reopen items of a {session.status.value} session.")

    item.status = ItemStatus.PENDING
    item.result_reason = None
    item.resolved_game_id = None
    item.resolved_record_id = None
    item.match_confidence = None
    item.candidate_snapshot = None
    item.error_text = None
    clear_draft(item)
    item.updated_at = _utcnow()
    await db.flush()
    logger.info("Reopened import item #%d of session %s", item.row_index, item.session_id)
    return item


# ─── Tallies ──────────────────────────────────────────────────

async def tally_counts(db: AsyncSession, session_id: uuid.UUID) -> ImportCounts:
    result = await db.execute(
        select(ImportItem.status, func.count())
        .where(ImportItem.session_id == session_id)
        .group_by(ImportItem.status)
    )
    counts = {status.value.lower(): count for status, count in result.all()}
    return ImportCounts(**counts)


async def tally_reasons(db: AsyncSession, session_id: uuid.UUID) -> dict[str, int]:
    result = await db.execute(
        select(ImportItem.result_reason, func.count())
        .where(
            ImportItem.session_id == session_id,
            ImportItem.result_reason.is_not(None),
        )
        .group_by(ImportItem.result_reason)
    )
    return {reason.value: count for reason, count in result.all()}
