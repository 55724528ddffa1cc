"""
Domain record stores: the completions and collection entries an import
produces, plus the member's in-progress (now playing) list.

The item processor sees both record kinds through one RecordStore shape,
where `category` is the completion type or the ownership type. Store
rejections (uniqueness, validation) surface as CollaboratorError so the
processor can fail the item without aborting the request transaction.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Protocol

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import CollaboratorError, NotFoundError
from app.models.enums import RecordKind, UpdateField
from app.models.membership import CollectionEntry, Completion, NowPlayingEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordSnapshot:
    """The comparable fields of an existing domain record."""
    record_id: int
    game_id: int
    platform_id: int | None
    category: str | None
    completed_at: date | None
    playtime_minutes: int | None


@dataclass
class NewRecord:
    user_id: str
    game_id: int
    platform_id: int | None
    category: str | None
    completed_at: date | None = None
    playtime_minutes: int | None = None
    note: str | None = None
    last_played_at: datetime | None = None


class RecordStore(Protocol):
    record_kind: RecordKind
    updatable_fields: tuple[UpdateField, ...]

    async def find_by_user_and_game(self, user_id: str, game_id: int) -> RecordSnapshot | None:
        ...

    async def create(self, record: NewRecord) -> int:
        ...

    async def update(self, record_id: int, fields: dict[UpdateField, Any]) -> None:
        ...


async def _insert_guarded(db: AsyncSession, obj: Any, what: str) -> Any:
    """Insert inside a SAVEPOINT so a constraint violation only undoes this row."""
    try:
        async with db.begin_nested():
            db.add(obj)
            await db.flush()
    except IntegrityError as e:
        logger.warning("Rejected %s: %s", what, e.orig)
        raise CollaboratorError(f"Could not save {what}: {e.orig}")
    return obj


# ─── Completions ──────────────────────────────────────────────

class CompletionStore:
    record_kind = RecordKind.COMPLETION
    updatable_fields = (UpdateField.CATEGORY, UpdateField.COMPLETED_AT, UpdateField.PLAYTIME)

    _columns = {
        UpdateField.CATEGORY: "completion_type",
        UpdateField.COMPLETED_AT: "completed_at",
        UpdateField.PLAYTIME: "playtime_minutes",
    }

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_user_and_game(self, user_id: str, game_id: int) -> RecordSnapshot | None:
        """Most recent completion of the game by the user."""
        result = await self.db.execute(
            select(Completion)
            .where(Completion.user_id == user_id, Completion.game_id == game_id)
            .order_by(Completion.completed_at.desc().nulls_last(), Completion.id.desc())
            .limit(1)
        )
        c = result.scalar_one_or_none()
        if c is None:
            return None
        return RecordSnapshot(c.id, c.game_id, c.platform_id, c.completion_type, c.completed_at, c.playtime_minutes)

    async def create(self, record: NewRecord) -> int:
        completion = Completion(
            user_id=record.user_id,
            game_id=record.game_id,
            platform_id=record.platform_id,
            completion_type=record.category or "Main Story",
            completed_at=record.completed_at,
            playtime_minutes=record.playtime_minutes,
            note=record.note,
        )
        await _insert_guarded(self.db, completion, "completion")
        return completion.id

    async def update(self, record_id: int, fields: dict[UpdateField, Any]) -> None:
        completion = await self.db.get(Completion, record_id)
        if completion is None:
            raise CollaboratorError(f"Completion {record_id} no longer exists.")
        try:
            async with self.db.begin_nested():
                for field, value in fields.items():
                    setattr(completion, self._columns[field], value)
                await self.db.flush()
        except IntegrityError as e:
            raise CollaboratorError(f"Could not update completion: {e.orig}")


# ─── Collection ───────────────────────────────────────────────

class CollectionStore:
    record_kind = RecordKind.COLLECTION
    updatable_fields = (UpdateField.CATEGORY, UpdateField.PLAYTIME)

    _columns = {
        UpdateField.CATEGORY: "ownership_type",
        UpdateField.PLAYTIME: "playtime_minutes",
    }

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_user_and_game(self, user_id: str, game_id: int) -> RecordSnapshot | None:
        result = await self.db.execute(
            select(CollectionEntry)
            .where(CollectionEntry.user_id == user_id, CollectionEntry.game_id == game_id)
            .order_by(CollectionEntry.id.desc())
            .limit(1)
        )
        e = result.scalar_one_or_none()
        if e is None:
            return None
        return RecordSnapshot(e.id, e.game_id, e.platform_id, e.ownership_type, None, e.playtime_minutes)

    async def create(self, record: NewRecord) -> int:
        entry = CollectionEntry(
            user_id=record.user_id,
            game_id=record.game_id,
            platform_id=record.platform_id,
            ownership_type=record.category or "Digital",
            note=record.note,
            playtime_minutes=record.playtime_minutes,
            last_played_at=record.last_played_at,
        )
        await _insert_guarded(self.db, entry, "collection entry")
        return entry.id

    async def update(self, record_id: int, fields: dict[UpdateField, Any]) -> None:
        entry = await self.db.get(CollectionEntry, record_id)
        if entry is None:
            raise CollaboratorError(f"Collection entry {record_id} no longer exists.")
        unknown = [f for f in fields if f not in self._columns]
        if unknown:
            raise CollaboratorError(f"Collection entries have no {unknown[0].value} field.")
        try:
            async with self.db.begin_nested():
                for field, value in fields.items():
                    setattr(entry, self._columns[field], value)
                await self.db.flush()
        except IntegrityError as e:
            raise CollaboratorError(f"Could not update collection entry: {e.orig}")


def record_store_for(kind: RecordKind, db: AsyncSession) -> RecordStore:
    if kind == RecordKind.COMPLETION:
        return CompletionStore(db)
    if kind == RecordKind.COLLECTION:
        return CollectionStore(db)
    raise NotFoundError(f"No record store for {kind}")


# ─── Now Playing ──────────────────────────────────────────────

class MembershipService:
    """The member's in-progress list."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_in_progress_entry(self, user_id: str, game_id: int) -> NowPlayingEntry | None:
        result = await self.db.execute(
            select(NowPlayingEntry).where(
                NowPlayingEntry.user_id == user_id,
                NowPlayingEntry.game_id == game_id,
            )
        )
        return result.scalar_one_or_none()

    async def remove_in_progress_entry(self, user_id: str, game_id: int) -> bool:
        result = await self.db.execute(
            delete(NowPlayingEntry).where(
                NowPlayingEntry.user_id == user_id,
                NowPlayingEntry.game_id == game_id,
            )
        )
        return bool(result.rowcount)
