"""
Tests for the matching engine.

Covers:
  - Row-supplied catalog and metadata ids
  - Mapping cache hits (match and skip) short-circuit everything else
  - Exact normalized title: single and ambiguous
  - Historical manual picks by other members
  - Catalog search fallbacks ranked with rapidfuzz
  - External search and on-demand import
"""

import pytest
from sqlalchemy import select

from app.core.errors import ImportValidationError
from app.models.catalog import Game
from app.models.enums import ItemStatus, MapStatus, MatchConfidence, ResultReason, SourceKind
from app.models.imports import ImportItem
from app.schemas.imports import RawRow
from app.services import mapping_cache, session_manager
from app.services.catalog import SqlCatalogService
from app.services.matching import (
    CachedMatch,
    CachedSkip,
    MatchingEngine,
    MatchOrigin,
    MultipleCandidates,
    NoCandidate,
    SingleCandidate,
    reason_for_origin,
)


@pytest.fixture
def matcher(db_session, metadata):
    return MatchingEngine(db_session, SqlCatalogService(db_session, metadata), metadata)


def _item(title: str, external_id: str = "", **kw) -> ImportItem:
    return ImportItem(title=title, external_id=external_id or f"ext:{title.lower()}", **kw)


# ─── Row-supplied Ids ─────────────────────────────────────────

@pytest.mark.asyncio
async def test_row_game_id(matcher, make_game):
    game = await make_game("Hades", 2020)

    outcome = await matcher.resolve(_item("whatever", explicit_game_id=game.id), SourceKind.COLLECTION_FILE, "o")

    assert outcome == SingleCandidate(game.id, MatchOrigin.ROW_GAME_ID, MatchConfidence.EXACT)


@pytest.mark.asyncio
async def test_row_game_id_unknown(matcher):
    with pytest.raises(ImportValidationError) as exc:
        await matcher.resolve(_item("whatever", explicit_game_id=999), SourceKind.COLLECTION_FILE, "o")
    assert exc.value.reason == ResultReason.INVALID_REMAP.value


@pytest.mark.asyncio
async def test_row_metadata_id_imports_game(db_session, matcher, metadata):
    """A metadata id not in the catalog is imported with its platforms."""
    outcome = await matcher.resolve(_item("Outer Wilds", explicit_metadata_id=1001), SourceKind.COLLECTION_FILE, "o")

    assert isinstance(outcome, SingleCandidate)
    assert outcome.origin == MatchOrigin.ROW_METADATA_ID
    game = await db_session.get(Game, outcome.game_id)
    assert game.igdb_id == 1001
    assert game.title_key == "outer wilds"
    platforms = await SqlCatalogService(db_session).list_release_platforms(game.id)
    assert sorted(p.name for p in platforms) == ["PC (Microsoft Windows)", "PlayStation 4"]
    assert metadata.detail_calls == [1001]


@pytest.mark.asyncio
async def test_row_metadata_id_reuses_catalog_game(db_session, matcher, make_game, metadata):
    game = await make_game("Celeste", 2018, igdb_id=1002)

    outcome = await matcher.resolve(_item("Celeste", explicit_metadata_id=1002), SourceKind.COLLECTION_FILE, "o")

    assert outcome.game_id == game.id
    assert metadata.detail_calls == []


# ─── Mapping Cache ────────────────────────────────────────────

@pytest.mark.asyncio
async def test_cache_hit_skips_search(db_session, matcher, make_game, metadata):
    """Once anyone maps an external id, other members resolve it from the cache."""
    await make_game("Doom", 1993)
    doom_2016 = await make_game("Doom", 2016)
    await matcher.remember(SourceKind.STEAM, "379720", doom_2016.id, "owner-a")

    outcome = await matcher.resolve(_item("DOOM", "379720"), SourceKind.STEAM, "owner-b")

    assert outcome == CachedMatch(doom_2016.id)
    assert metadata.search_calls == []


@pytest.mark.asyncio
async def test_cache_skip(matcher, make_game):
    await make_game("Netflix", None)
    await matcher.remember(SourceKind.XBOX, "name:netflix", None, "owner-a")

    outcome = await matcher.resolve(_item("Netflix", "name:netflix"), SourceKind.XBOX, "owner-b")

    assert outcome == CachedSkip()


@pytest.mark.asyncio
async def test_remember_skip_writes_skipped_entry(db_session, matcher):
    await matcher.remember(SourceKind.STEAM, "123", None, "owner-a")
    entry = await mapping_cache.lookup(db_session, SourceKind.STEAM, "123")
    assert entry.status == MapStatus.SKIPPED


# ─── Exact Title ──────────────────────────────────────────────

@pytest.mark.asyncio
async def test_exact_title(matcher, make_game):
    game = await make_game("Chrono Trigger", 1995, ("Super Nintendo Entertainment System",))

    outcome = await matcher.resolve(_item("Chrono Trigger (1995)"), SourceKind.COMPLETIONATOR, "o")

    assert outcome == SingleCandidate(game.id, MatchOrigin.TITLE, MatchConfidence.EXACT)


@pytest.mark.asyncio
async def test_ambiguous_title(matcher, make_game):
    """Two catalog games share a normalized title: the owner must choose."""
    first = await make_game("Doom", 1993)
    second = await make_game("Doom", 2016)

    outcome = await matcher.resolve(_item("DOOM"), SourceKind.STEAM, "o")

    assert isinstance(outcome, MultipleCandidates)
    assert outcome.origin == MatchOrigin.TITLE
    assert [c.game_id for c in outcome.candidates] == [first.id, second.id]
    assert [c.release_year for c in outcome.candidates] == [1993, 2016]


# ─── Historical ───────────────────────────────────────────────

@pytest.mark.asyncio
async def test_historical_pick_by_other_member(db_session, matcher, make_game, make_session):
    game = await make_game("Doom", 2016)
    earlier = await make_session(
        [RawRow(title="DOOM (2016 reboot)", external_id="379720")], owner_id="owner-a",
    )
    item = await session_manager.first_pending_item(db_session, earlier.id)
    await session_manager.record_outcome(
        db_session, item, ItemStatus.ADDED, ResultReason.MANUAL_REMAP, game_id=game.id,
    )

    outcome = await matcher.resolve(_item("Id Software Shooter", "379720"), SourceKind.STEAM, "owner-b")

    assert outcome == SingleCandidate(game.id, MatchOrigin.HISTORICAL, MatchConfidence.MANUAL)


# ─── Catalog Search ───────────────────────────────────────────

@pytest.mark.asyncio
async def test_fuzzy_single_hit(matcher, make_game):
    game = await make_game("The Legend of Zelda: Breath of the Wild", 2017, ("Nintendo Switch",))

    outcome = await matcher.resolve(_item("Zelda Breath of the Wild"), SourceKind.XBOX, "o")

    assert outcome == SingleCandidate(game.id, MatchOrigin.SEARCH, MatchConfidence.FUZZY)


@pytest.mark.asyncio
async def test_token_fallback_offers_candidates(matcher, make_game):
    await make_game("Hades", 2020)
    await make_game("Hades II", 2024)

    outcome = await matcher.resolve(_item("Hades Deluxe"), SourceKind.STEAM, "o")

    assert isinstance(outcome, MultipleCandidates)
    assert outcome.origin == MatchOrigin.SEARCH
    assert [c.title for c in outcome.candidates] == ["Hades", "Hades II"]
    assert outcome.candidates[0].score == 100.0


@pytest.mark.asyncio
async def test_no_candidate(matcher, make_game):
    await make_game("Hades", 2020)

    outcome = await matcher.resolve(_item("Nonexistent Thing Xyz"), SourceKind.STEAM, "o")

    assert outcome == NoCandidate()


# ─── External ─────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_search_external(matcher, metadata):
    options = await matcher.search_external("Outer Wilds (2019)")

    assert [(o.metadata_id, o.title) for o in options] == [(1001, "Outer Wilds")]
    assert options[0].game_id is None
    assert metadata.search_calls == ["Outer Wilds"]


@pytest.mark.asyncio
async def test_search_external_without_source(db_session):
    matcher = MatchingEngine(db_session, SqlCatalogService(db_session))
    assert await matcher.search_external("Outer Wilds") == []


@pytest.mark.asyncio
async def test_import_from_external_is_idempotent(db_session, matcher):
    first = await matcher.import_from_external(1002)
    second = await matcher.import_from_external(1002)

    assert first.id == second.id
    result = await db_session.execute(select(Game).where(Game.igdb_id == 1002))
    assert len(result.scalars().all()) == 1


def test_reason_for_origin():
    assert reason_for_origin(MatchOrigin.ROW_GAME_ID, MatchConfidence.EXACT) == ResultReason.CSV_GAMEDB_ID
    assert reason_for_origin(MatchOrigin.ROW_METADATA_ID, MatchConfidence.EXACT) == ResultReason.CSV_IGDB_ID
    assert reason_for_origin(MatchOrigin.HISTORICAL, MatchConfidence.MANUAL) == ResultReason.MANUAL_REMAP
    assert reason_for_origin(MatchOrigin.SEARCH, MatchConfidence.FUZZY) == ResultReason.AUTO_MATCH
