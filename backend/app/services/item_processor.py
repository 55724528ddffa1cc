"""
Item processor: apply a resolved catalog game to the member's records.

Key flow:
  1. Unknown catalog id → Failed(INVALID_REMAP)
  2. Existing record for (user, game)?
       - no material difference → SKIPPED / DUPLICATE
       - maybe ask "is this the same one?" (CONFIRM_SAME_POLICY)
       - "no" → create a new record (step 3)
       - otherwise offer the materially changed fields; write the chosen
         ones (UPDATED) or skip on an empty choice (MANUAL_SKIP)
  3. Create: resolve the platform (draft, hint via the platform
     dictionary, single release platform, else ask), build the record
     from row + draft, ADDED.
Store rejections become Failed(ADD_FAILED) and never abort the session.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import CollaboratorError
from app.core.platforms import resolve_platform_id
from app.models.enums import (
    DateChoice,
    ItemStatus,
    PromptKind,
    RecordKind,
    ResultReason,
    UpdateField,
)
from app.models.imports import ImportItem
from app.schemas.imports import FieldDiff, PlatformOption
from app.services.catalog import CatalogService
from app.services.normalization import categories_match, playtime_is_material, same_calendar_date
from app.services.records import MembershipService, NewRecord, RecordSnapshot, RecordStore

logger = logging.getLogger(__name__)

CONFIRM_DATES_DISAGREE = "DATES_DISAGREE"
CONFIRM_ANY_MATERIAL = "ANY_MATERIAL"

DEFAULT_COMPLETION_TYPE = "Main Story"


# ─── Results ──────────────────────────────────────────────────

@dataclass(frozen=True)
class Committed:
    status: ItemStatus
    reason: ResultReason
    record_id: int | None = None


@dataclass(frozen=True)
class Failed:
    reason: ResultReason
    error_text: str


@dataclass(frozen=True)
class NeedsInput:
    prompt_kind: PromptKind
    platforms: list[PlatformOption] = field(default_factory=list)
    update_fields: list[FieldDiff] = field(default_factory=list)
    message: str | None = None


ProcessingResult = Committed | Failed | NeedsInput


# ─── Material Diff ────────────────────────────────────────────

def _text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def incoming_category(item: ImportItem, record_kind: RecordKind) -> str | None:
    if item.draft_completion_type and record_kind == RecordKind.COMPLETION:
        return item.draft_completion_type
    return item.category_hint


def incoming_completed_at(item: ImportItem) -> date | None:
    """The completion date the row (and any draft date choice) asks for."""
    choice = item.draft_date_choice or DateChoice.ROW
    if choice == DateChoice.TODAY:
        return datetime.now(timezone.utc).date()
    if choice == DateChoice.UNKNOWN:
        return None
    if choice == DateChoice.CUSTOM:
        return item.draft_custom_date
    return item.completed_at


def material_diff(
    existing: RecordSnapshot,
    item: ImportItem,
    store: RecordStore,
    threshold_minutes: int | None = None,
) -> list[FieldDiff]:
    """
    Fields where the row differs materially from the existing record.

    Categorical: any difference. Date: calendar date differs. Play-time:
    difference of at least the threshold. Values the row does not carry
    are never material.
    """
    threshold = threshold_minutes if threshold_minutes is not None else settings.PLAYTIME_MATERIAL_MINUTES
    diffs: list[FieldDiff] = []

    category = incoming_category(item, store.record_kind)
    if (
        UpdateField.CATEGORY in store.updatable_fields
        and category is not None
        and not categories_match(existing.category, category)
    ):
        diffs.append(FieldDiff(field=UpdateField.CATEGORY, existing=existing.category, incoming=category))

    completed_at = incoming_completed_at(item)
    if (
        UpdateField.COMPLETED_AT in store.updatable_fields
        and completed_at is not None
        and not same_calendar_date(existing.completed_at, completed_at)
    ):
        diffs.append(FieldDiff(
            field=UpdateField.COMPLETED_AT,
            existing=_text(existing.completed_at),
            incoming=_text(completed_at),
        ))

    if (
        UpdateField.PLAYTIME in store.updatable_fields
        and playtime_is_material(existing.playtime_minutes, item.playtime_minutes, threshold)
    ):
        diffs.append(FieldDiff(
            field=UpdateField.PLAYTIME,
            existing=_text(existing.playtime_minutes),
            incoming=_text(item.playtime_minutes),
        ))
    return diffs


def should_confirm_same(
    existing: RecordSnapshot,
    item: ImportItem,
    policy: str | None = None,
) -> bool:
    """
    Whether to ask "is this the same record?" before offering an update.

    DATES_DISAGREE asks only when both sides carry a completion date and
    the calendar dates differ. ANY_MATERIAL asks for every material diff.
    """
    policy = policy or settings.CONFIRM_SAME_POLICY
    if policy == CONFIRM_ANY_MATERIAL:
        return True
    incoming = incoming_completed_at(item)
    if existing.completed_at is None or incoming is None:
        return False
    return not same_calendar_date(existing.completed_at, incoming)


# ─── Processor ────────────────────────────────────────────────

class ItemProcessor:
    def __init__(
        self,
        db: AsyncSession,
        store: RecordStore,
        catalog: CatalogService,
        membership: MembershipService | None = None,
    ):
        self.db = db
        self.store = store
        self.catalog = catalog
        self.membership = membership

    async def apply(
        self,
        item: ImportItem,
        game_id: int,
        owner_id: str,
        reason: ResultReason,
        chosen_fields: list[UpdateField] | None = None,
    ) -> ProcessingResult:
        """
        Apply `game_id` to the owner's records for this item.

        `reason` is what a successful create or update is recorded with.
        `chosen_fields` is the owner's answer to SELECT_UPDATE_FIELDS.
        """
        game = await self.catalog.find_by_id(game_id)
        if game is None:
            return Failed(ResultReason.INVALID_REMAP, f"Catalog game {game_id} does not exist.")

        existing = await self.store.find_by_user_and_game(owner_id, game_id)
        if existing is not None and item.draft_same_record is not False:
            return await self._reconcile(item, existing, reason, chosen_fields)

        return await self._create(item, game_id, owner_id, reason)

    async def _reconcile(
        self,
        item: ImportItem,
        existing: RecordSnapshot,
        reason: ResultReason,
        chosen_fields: list[UpdateField] | None,
    ) -> ProcessingResult:
        diffs = material_diff(existing, item, self.store)
        if not diffs:
            return Committed(ItemStatus.SKIPPED, ResultReason.DUPLICATE, existing.record_id)

        if item.draft_same_record is None and should_confirm_same(existing, item):
            return NeedsInput(
                PromptKind.CONFIRM_SAME_RECORD,
                update_fields=diffs,
                message="You already have a record for this game. Is this the same one?",
            )

        if chosen_fields is None:
            return NeedsInput(
                PromptKind.SELECT_UPDATE_FIELDS,
                update_fields=diffs,
                message="Choose which fields to update.",
            )

        wanted = {d.field: d for d in diffs if d.field in set(chosen_fields)}
        if not wanted:
            return Committed(ItemStatus.SKIPPED, ResultReason.MANUAL_SKIP, existing.record_id)

        values: dict[UpdateField, Any] = {}
        for update_field in wanted:
            if update_field == UpdateField.CATEGORY:
                values[update_field] = incoming_category(item, self.store.record_kind)
            elif update_field == UpdateField.COMPLETED_AT:
                values[update_field] = incoming_completed_at(item)
            elif update_field == UpdateField.PLAYTIME:
                values[update_field] = item.playtime_minutes

        try:
            await self.store.update(existing.record_id, values)
        except CollaboratorError as e:
            return Failed(ResultReason.ADD_FAILED, str(e))
        return Committed(ItemStatus.UPDATED, reason, existing.record_id)

    async def _create(
        self,
        item: ImportItem,
        game_id: int,
        owner_id: str,
        reason: ResultReason,
    ) -> ProcessingResult:
        platforms = await self.catalog.list_release_platforms(game_id)
        platform_id: int | None

        if item.draft_other_platform:
            platform_id = None
        elif item.draft_platform_id is not None:
            platform_id = item.draft_platform_id
        else:
            if not platforms:
                return Failed(
                    ResultReason.PLATFORM_UNRESOLVED,
                    f"Catalog game {game_id} lists no release platforms.",
                )
            names = [(p.id, p.name) for p in platforms]
            names += [(p.id, p.abbreviation) for p in platforms if p.abbreviation]
            platform_id = resolve_platform_id(item.platform_hint, names)
            if platform_id is None and len(platforms) == 1:
                platform_id = platforms[0].id
            if platform_id is None:
                return NeedsInput(
                    PromptKind.SELECT_PLATFORM,
                    platforms=[PlatformOption(platform_id=p.id, name=p.name) for p in platforms],
                    message=f"Which platform for {item.title}?",
                )

        category = incoming_category(item, self.store.record_kind)
        completed_at = None
        if self.store.record_kind == RecordKind.COMPLETION:
            category = category or DEFAULT_COMPLETION_TYPE
            completed_at = incoming_completed_at(item)

        record = NewRecord(
            user_id=owner_id,
            game_id=game_id,
            platform_id=platform_id,
            category=category,
            completed_at=completed_at,
            playtime_minutes=item.playtime_minutes,
            note=item.note,
            last_played_at=item.last_played_at,
        )
        try:
            record_id = await self.store.create(record)
        except CollaboratorError as e:
            return Failed(ResultReason.ADD_FAILED, str(e))

        if self.store.record_kind == RecordKind.COMPLETION and completed_at is not None:
            await self._clear_now_playing(owner_id, game_id, completed_at)
        return Committed(ItemStatus.ADDED, reason, record_id)

    async def _clear_now_playing(self, owner_id: str, game_id: int, completed_at: date) -> None:
        """
        Best-effort: drop a finished game from the in-progress list, but
        only when it was completed on or after it was added there.
        """
        if self.membership is None:
            return
        try:
            async with self.db.begin_nested():
                entry = await self.membership.get_in_progress_entry(owner_id, game_id)
                if entry is None or completed_at < entry.added_at.date():
                    return
                await self.membership.remove_in_progress_entry(owner_id, game_id)
            logger.info("Removed game %d from %s's now playing list", game_id, owner_id)
        except SQLAlchemyError:
            logger.warning(
                "Could not update now playing for %s (game %d)", owner_id, game_id, exc_info=True,
            )
