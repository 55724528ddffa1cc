"""
Tests for the mapping cache.

Covers:
  - Upsert inserts, then overwrites (last write wins)
  - SKIPPED entries carry no catalog id
  - Historical manual picks: ranking, owner exclusion, limit
"""

import pytest
from sqlalchemy import func, select

from app.models.enums import ItemStatus, MapStatus, ResultReason, SessionStatus, SourceKind
from app.models.imports import ExternalCatalogMap
from app.schemas.imports import RawRow
from app.services import mapping_cache, session_manager


# ─── Upsert ───────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_upsert_then_lookup(db_session):
    await mapping_cache.upsert(db_session, SourceKind.STEAM, "620", 12, MapStatus.MAPPED, "owner-1")

    entry = await mapping_cache.lookup(db_session, SourceKind.STEAM, "620")
    assert entry.catalog_game_id == 12
    assert entry.status == MapStatus.MAPPED
    assert entry.created_by == "owner-1"


@pytest.mark.asyncio
async def test_upsert_overwrites(db_session):
    """Writing the same key twice leaves one row holding the latest value."""
    await mapping_cache.upsert(db_session, SourceKind.STEAM, "620", 12, MapStatus.MAPPED, "owner-1")
    entry = await mapping_cache.upsert(db_session, SourceKind.STEAM, "620", 13, MapStatus.MAPPED, "owner-2")

    assert entry.catalog_game_id == 13
    assert entry.created_by == "owner-2"
    count = await db_session.scalar(select(func.count()).select_from(ExternalCatalogMap))
    assert count == 1


@pytest.mark.asyncio
async def test_skip_entry_has_no_game(db_session):
    entry = await mapping_cache.upsert(db_session, SourceKind.XBOX, "name:netflix", 5, MapStatus.SKIPPED)
    assert entry.status == MapStatus.SKIPPED
    assert entry.catalog_game_id is None


@pytest.mark.asyncio
async def test_mapped_requires_game(db_session):
    with pytest.raises(ValueError):
        await mapping_cache.upsert(db_session, SourceKind.STEAM, "620", None, MapStatus.MAPPED)


@pytest.mark.asyncio
async def test_keys_are_per_source(db_session):
    await mapping_cache.upsert(db_session, SourceKind.STEAM, "620", 12, MapStatus.MAPPED)
    assert await mapping_cache.lookup(db_session, SourceKind.XBOX, "620") is None


# ─── Historical Matches ───────────────────────────────────────

async def _manual_pick(db, make_session, owner_id: str, external_id: str, game_id: int):
    session = await make_session(
        [RawRow(title="Doom", external_id=external_id)], owner_id=owner_id, kind=SourceKind.STEAM,
    )
    item = await session_manager.first_pending_item(db, session.id)
    await session_manager.record_outcome(
        db, item, ItemStatus.ADDED, ResultReason.MANUAL_REMAP, game_id=game_id,
    )
    await session_manager.set_status(db, session.id, SessionStatus.COMPLETED)


@pytest.mark.asyncio
async def test_historical_ranked_by_frequency(db_session, make_session):
    await _manual_pick(db_session, make_session, "owner-a", "2280", game_id=2)
    await _manual_pick(db_session, make_session, "owner-b", "2280", game_id=3)
    await _manual_pick(db_session, make_session, "owner-c", "2280", game_id=3)

    matches = await mapping_cache.historical_matches(db_session, SourceKind.STEAM, "2280")
    assert matches == [3, 2]


@pytest.mark.asyncio
async def test_historical_excludes_owner(db_session, make_session):
    await _manual_pick(db_session, make_session, "owner-a", "2280", game_id=2)
    await _manual_pick(db_session, make_session, "owner-b", "2280", game_id=3)

    matches = await mapping_cache.historical_matches(
        db_session, SourceKind.STEAM, "2280", exclude_owner="owner-b",
    )
    assert matches == [2]


@pytest.mark.asyncio
async def test_historical_ignores_automatic_matches(db_session, make_session):
    session = await make_session([RawRow(title="Doom", external_id="2280")], owner_id="owner-a")
    item = await session_manager.first_pending_item(db_session, session.id)
    await session_manager.record_outcome(
        db_session, item, ItemStatus.ADDED, ResultReason.AUTO_MATCH, game_id=2,
    )

    assert await mapping_cache.historical_matches(db_session, SourceKind.STEAM, "2280") == []


@pytest.mark.asyncio
async def test_historical_limit(db_session, make_session):
    for n in range(4):
        await _manual_pick(db_session, make_session, f"owner-{n}", "2280", game_id=10 + n)

    matches = await mapping_cache.historical_matches(db_session, SourceKind.STEAM, "2280", limit=2)
    assert len(matches) == 2
