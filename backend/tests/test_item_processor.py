"""
Tests for the item processor.

Covers:
  - Create: platform from hint, single release, owner choice, "other"
  - Duplicate detection and the play-time materiality threshold
  - Confirm-same-record policy for completions
  - Field-selective updates
  - Store rejections become ADD_FAILED without breaking the transaction
  - Now playing cleanup after a completion
"""

import uuid
from datetime import date, datetime, timezone

import pytest
from sqlalchemy import select

from app.models.enums import (
    DateChoice,
    ItemStatus,
    PromptKind,
    ResultReason,
    SourceKind,
    UpdateField,
)
from app.models.membership import CollectionEntry, Completion, NowPlayingEntry
from app.schemas.imports import RawRow
from app.services import session_manager
from app.services.catalog import SqlCatalogService
from app.services.item_processor import (
    CONFIRM_ANY_MATERIAL,
    Committed,
    Failed,
    ItemProcessor,
    NeedsInput,
    incoming_completed_at,
    should_confirm_same,
)
from app.services.records import CollectionStore, CompletionStore, MembershipService, RecordSnapshot

MEMBER = "member-1"


@pytest.fixture
def stage_item(db_session, make_session):
    """Stage a one-row session and return its item."""
    async def _stage(kind: SourceKind = SourceKind.STEAM, **row):
        row.setdefault("title", "Some Game")
        row.setdefault("external_id", f"ext:{uuid.uuid4().hex[:8]}")
        session = await make_session([RawRow(**row)], owner_id=uuid.uuid4().hex, kind=kind)
        return await session_manager.first_pending_item(db_session, session.id)
    return _stage


@pytest.fixture
def collection_processor(db_session):
    return ItemProcessor(db_session, CollectionStore(db_session), SqlCatalogService(db_session))


@pytest.fixture
def completion_processor(db_session):
    return ItemProcessor(
        db_session,
        CompletionStore(db_session),
        SqlCatalogService(db_session),
        MembershipService(db_session),
    )


# ─── Create ───────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_with_platform_hint(db_session, collection_processor, make_game, stage_item):
    """'PC' resolves through the platform dictionary to the catalog name."""
    game = await make_game("Portal 2", 2011, ("PC (Microsoft Windows)", "PlayStation 3"))
    item = await stage_item(title="Portal 2", platform_hint="PC", category_hint="Digital", playtime_minutes=713)

    result = await collection_processor.apply(item, game.id, MEMBER, ResultReason.AUTO_MATCH)

    assert isinstance(result, Committed)
    assert result.status == ItemStatus.ADDED
    entry = await db_session.get(CollectionEntry, result.record_id)
    platforms = {p.id: p.name for p in await SqlCatalogService(db_session).list_release_platforms(game.id)}
    assert platforms[entry.platform_id] == "PC (Microsoft Windows)"
    assert entry.ownership_type == "Digital"
    assert entry.playtime_minutes == 713


@pytest.mark.asyncio
async def test_single_release_platform_used(db_session, collection_processor, make_game, stage_item):
    game = await make_game("Zelda", 2017, ("Nintendo Switch",))
    item = await stage_item(title="Zelda")

    result = await collection_processor.apply(item, game.id, MEMBER, ResultReason.AUTO_MATCH)

    assert result.status == ItemStatus.ADDED


@pytest.mark.asyncio
async def test_ambiguous_platform_asks(db_session, collection_processor, make_game, stage_item):
    game = await make_game("Hades", 2020, ("Nintendo Switch", "PlayStation 5"))
    item = await stage_item(title="Hades", platform_hint="Dreamcast")

    result = await collection_processor.apply(item, game.id, MEMBER, ResultReason.AUTO_MATCH)

    assert isinstance(result, NeedsInput)
    assert result.prompt_kind == PromptKind.SELECT_PLATFORM
    assert sorted(p.name for p in result.platforms) == ["Nintendo Switch", "PlayStation 5"]

    item.draft_platform_id = result.platforms[0].platform_id
    result = await collection_processor.apply(item, game.id, MEMBER, ResultReason.AUTO_MATCH)
    assert result.status == ItemStatus.ADDED


@pytest.mark.asyncio
async def test_other_platform(db_session, collection_processor, make_game, stage_item):
    game = await make_game("Hades", 2020, ("Nintendo Switch", "PlayStation 5"))
    item = await stage_item(title="Hades")
    item.draft_other_platform = True

    result = await collection_processor.apply(item, game.id, MEMBER, ResultReason.MANUAL_REMAP)

    entry = await db_session.get(CollectionEntry, result.record_id)
    assert entry.platform_id is None
    assert result.reason == ResultReason.MANUAL_REMAP


@pytest.mark.asyncio
async def test_no_release_platforms(collection_processor, make_game, stage_item):
    game = await make_game("Mystery", None, ())
    item = await stage_item(title="Mystery")

    result = await collection_processor.apply(item, game.id, MEMBER, ResultReason.AUTO_MATCH)

    assert result == Failed(ResultReason.PLATFORM_UNRESOLVED, f"Catalog game {game.id} lists no release platforms.")


@pytest.mark.asyncio
async def test_unknown_game(collection_processor, stage_item):
    item = await stage_item(title="Ghost")
    result = await collection_processor.apply(item, 4242, MEMBER, ResultReason.MANUAL_REMAP)
    assert isinstance(result, Failed)
    assert result.reason == ResultReason.INVALID_REMAP


@pytest.mark.asyncio
async def test_completion_defaults_to_main_story(db_session, completion_processor, make_game, stage_item):
    game = await make_game("Chrono Trigger", 1995, ("Super Nintendo Entertainment System",))
    item = await stage_item(SourceKind.COMPLETIONATOR, title="Chrono Trigger", completed_at=date(2021, 3, 14))

    result = await completion_processor.apply(item, game.id, MEMBER, ResultReason.AUTO_MATCH)

    completion = await db_session.get(Completion, result.record_id)
    assert completion.completion_type == "Main Story"
    assert completion.completed_at == date(2021, 3, 14)


# ─── Duplicates and Threshold ─────────────────────────────────

async def _own(db_session, game, playtime: int | None, ownership: str = "Digital") -> CollectionEntry:
    entry = CollectionEntry(
        user_id=MEMBER, game_id=game.id, platform_id=None,
        ownership_type=ownership, playtime_minutes=playtime,
    )
    db_session.add(entry)
    await db_session.flush()
    return entry


@pytest.mark.asyncio
async def test_playtime_59_minutes_is_duplicate(db_session, collection_processor, make_game, stage_item):
    game = await make_game("Portal 2", 2011)
    entry = await _own(db_session, game, playtime=100)
    item = await stage_item(title="Portal 2", category_hint="Digital", playtime_minutes=159)

    result = await collection_processor.apply(item, game.id, MEMBER, ResultReason.AUTO_MATCH)

    assert result == Committed(ItemStatus.SKIPPED, ResultReason.DUPLICATE, entry.id)


@pytest.mark.asyncio
async def test_playtime_60_minutes_offers_update(db_session, collection_processor, make_game, stage_item):
    game = await make_game("Portal 2", 2011)
    entry = await _own(db_session, game, playtime=100)
    item = await stage_item(title="Portal 2", category_hint="Digital", playtime_minutes=160)

    result = await collection_processor.apply(item, game.id, MEMBER, ResultReason.AUTO_MATCH)

    assert isinstance(result, NeedsInput)
    assert result.prompt_kind == PromptKind.SELECT_UPDATE_FIELDS
    assert [(d.field, d.existing, d.incoming) for d in result.update_fields] == [
        (UpdateField.PLAYTIME, "100", "160"),
    ]

    result = await collection_processor.apply(
        item, game.id, MEMBER, ResultReason.AUTO_MATCH, chosen_fields=[UpdateField.PLAYTIME],
    )
    assert result == Committed(ItemStatus.UPDATED, ResultReason.AUTO_MATCH, entry.id)
    await db_session.refresh(entry)
    assert entry.playtime_minutes == 160


@pytest.mark.asyncio
async def test_empty_field_choice_skips(db_session, collection_processor, make_game, stage_item):
    game = await make_game("Portal 2", 2011)
    entry = await _own(db_session, game, playtime=100, ownership="Physical")
    item = await stage_item(title="Portal 2", category_hint="Digital")

    result = await collection_processor.apply(item, game.id, MEMBER, ResultReason.AUTO_MATCH, chosen_fields=[])

    assert result == Committed(ItemStatus.SKIPPED, ResultReason.MANUAL_SKIP, entry.id)
    await db_session.refresh(entry)
    assert entry.ownership_type == "Physical"


@pytest.mark.asyncio
async def test_store_rejection_is_add_failed(db_session, collection_processor, make_game, stage_item):
    """A uniqueness violation fails the item but leaves the transaction usable."""
    game = await make_game("Portal 2", 2011, ("PC (Microsoft Windows)",))
    platform_id = (await SqlCatalogService(db_session).list_release_platforms(game.id))[0].id
    db_session.add(CollectionEntry(
        user_id=MEMBER, game_id=game.id, platform_id=platform_id, ownership_type="Digital",
    ))
    await db_session.flush()

    item = await stage_item(title="Portal 2", platform_hint="PC", category_hint="Digital")
    item.draft_same_record = False

    result = await collection_processor.apply(item, game.id, MEMBER, ResultReason.AUTO_MATCH)

    assert isinstance(result, Failed)
    assert result.reason == ResultReason.ADD_FAILED
    rows = (await db_session.execute(select(CollectionEntry))).scalars().all()
    assert len(rows) == 1


# ─── Completions: Confirm Same ────────────────────────────────

async def _completed(db_session, game, when: date | None, completion_type: str = "Main Story") -> Completion:
    completion = Completion(
        user_id=MEMBER, game_id=game.id, completion_type=completion_type, completed_at=when,
    )
    db_session.add(completion)
    await db_session.flush()
    return completion


@pytest.mark.asyncio
async def test_dates_disagree_asks_same_record(db_session, completion_processor, make_game, stage_item):
    game = await make_game("Chrono Trigger", 1995)
    await _completed(db_session, game, date(2020, 1, 1))
    item = await stage_item(SourceKind.COMPLETIONATOR, title="Chrono Trigger", completed_at=date(2021, 3, 14))

    result = await completion_processor.apply(item, game.id, MEMBER, ResultReason.AUTO_MATCH)

    assert isinstance(result, NeedsInput)
    assert result.prompt_kind == PromptKind.CONFIRM_SAME_RECORD


@pytest.mark.asyncio
async def test_not_same_record_adds_second_completion(db_session, completion_processor, make_game, stage_item):
    game = await make_game("Chrono Trigger", 1995)
    first = await _completed(db_session, game, date(2020, 1, 1))
    item = await stage_item(SourceKind.COMPLETIONATOR, title="Chrono Trigger", completed_at=date(2021, 3, 14))
    item.draft_same_record = False

    result = await completion_processor.apply(item, game.id, MEMBER, ResultReason.AUTO_MATCH)

    assert result.status == ItemStatus.ADDED
    assert result.record_id != first.id


@pytest.mark.asyncio
async def test_same_record_offers_update(db_session, completion_processor, make_game, stage_item):
    game = await make_game("Chrono Trigger", 1995)
    first = await _completed(db_session, game, date(2020, 1, 1))
    item = await stage_item(SourceKind.COMPLETIONATOR, title="Chrono Trigger", completed_at=date(2021, 3, 14))
    item.draft_same_record = True

    result = await completion_processor.apply(item, game.id, MEMBER, ResultReason.AUTO_MATCH)
    assert result.prompt_kind == PromptKind.SELECT_UPDATE_FIELDS

    result = await completion_processor.apply(
        item, game.id, MEMBER, ResultReason.AUTO_MATCH, chosen_fields=[UpdateField.COMPLETED_AT],
    )
    assert result == Committed(ItemStatus.UPDATED, ResultReason.AUTO_MATCH, first.id)
    await db_session.refresh(first)
    assert first.completed_at == date(2021, 3, 14)


@pytest.mark.asyncio
async def test_same_date_skips_confirmation(db_session, completion_processor, make_game, stage_item):
    """Dates agree but the completion type differs: straight to field selection."""
    game = await make_game("Chrono Trigger", 1995)
    await _completed(db_session, game, date(2021, 3, 14))
    item = await stage_item(
        SourceKind.COMPLETIONATOR, title="Chrono Trigger",
        completed_at=date(2021, 3, 14), category_hint="Completionist",
    )

    result = await completion_processor.apply(item, game.id, MEMBER, ResultReason.AUTO_MATCH)

    assert result.prompt_kind == PromptKind.SELECT_UPDATE_FIELDS
    assert [d.field for d in result.update_fields] == [UpdateField.CATEGORY]


def test_any_material_policy_always_confirms():
    existing = RecordSnapshot(1, 1, None, "Main Story", None, None)

    class Row:
        draft_date_choice = None
        completed_at = None

    assert should_confirm_same(existing, Row(), policy=CONFIRM_ANY_MATERIAL)
    assert not should_confirm_same(existing, Row(), policy="DATES_DISAGREE")


def test_date_choice_draft():
    class Row:
        completed_at = date(2021, 3, 14)
        draft_custom_date = date(2019, 6, 1)
        draft_date_choice = None

    row = Row()
    assert incoming_completed_at(row) == date(2021, 3, 14)
    row.draft_date_choice = DateChoice.UNKNOWN
    assert incoming_completed_at(row) is None
    row.draft_date_choice = DateChoice.CUSTOM
    assert incoming_completed_at(row) == date(2019, 6, 1)
    row.draft_date_choice = DateChoice.TODAY
    assert incoming_completed_at(row) == datetime.now(timezone.utc).date()


# ─── Now Playing ──────────────────────────────────────────────

@pytest.mark.asyncio
async def test_completion_clears_now_playing(db_session, completion_processor, make_game, stage_item):
    game = await make_game("Hades", 2020, ("Nintendo Switch",))
    db_session.add(NowPlayingEntry(
        user_id=MEMBER, game_id=game.id, added_at=datetime(2021, 1, 1, tzinfo=timezone.utc),
    ))
    await db_session.flush()
    item = await stage_item(SourceKind.COMPLETIONATOR, title="Hades", completed_at=date(2021, 3, 14))

    result = await completion_processor.apply(item, game.id, MEMBER, ResultReason.AUTO_MATCH)

    assert result.status == ItemStatus.ADDED
    assert await MembershipService(db_session).get_in_progress_entry(MEMBER, game.id) is None


@pytest.mark.asyncio
async def test_older_completion_keeps_now_playing(db_session, completion_processor, make_game, stage_item):
    """A replayed game finished before it was re-added stays on the list."""
    game = await make_game("Hades", 2020, ("Nintendo Switch",))
    db_session.add(NowPlayingEntry(
        user_id=MEMBER, game_id=game.id, added_at=datetime(2022, 1, 1, tzinfo=timezone.utc),
    ))
    await db_session.flush()
    item = await stage_item(SourceKind.COMPLETIONATOR, title="Hades", completed_at=date(2021, 3, 14))

    await completion_processor.apply(item, game.id, MEMBER, ResultReason.AUTO_MATCH)

    assert await MembershipService(db_session).get_in_progress_entry(MEMBER, game.id) is not None
