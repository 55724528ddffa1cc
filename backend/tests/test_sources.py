"""
Tests for the source adapters.

Covers:
  - Steam owned-games JSON (drops unusable entries, private library)
  - Xbox title history (shapes, de-duplication, non-game titles)
  - Completionator CSV (positional columns, type mapping, bad lines)
  - Collection template as CSV and XLSX (aliases, per-row validation)
  - Adapter registry
"""

from datetime import date

import pytest

from app.core.errors import ImportValidationError
from app.models.enums import RecordKind, SourceKind
from app.services.sources import get_adapter
from app.services.sources.base import parse_positive_int
from app.services.sources.completionator import map_completion_type
from tests.fixtures.library_factory import (
    make_collection_csv,
    make_collection_excel,
    make_completionator_csv,
    make_steam_library,
    make_steam_library_bytes,
    make_xbox_history,
)


# ─── Registry ─────────────────────────────────────────────────

def test_registry_has_every_source():
    for kind in SourceKind:
        assert get_adapter(kind).kind == kind


def test_unknown_source_rejected():
    with pytest.raises(ImportValidationError):
        get_adapter("NOPE")


def test_record_kinds():
    assert get_adapter(SourceKind.COMPLETIONATOR).record_kind == RecordKind.COMPLETION
    assert get_adapter(SourceKind.STEAM).record_kind == RecordKind.COLLECTION


def test_parse_positive_int():
    assert parse_positive_int("42") == 42
    assert parse_positive_int(" 7 ") == 7
    assert parse_positive_int("0") is None
    assert parse_positive_int("-3") is None
    assert parse_positive_int("1.5") is None
    assert parse_positive_int("1e400") is None
    assert parse_positive_int("abc") is None


# ─── Steam ────────────────────────────────────────────────────

def test_steam_rows():
    adapter = get_adapter(SourceKind.STEAM)
    rows = adapter.parse_rows(make_steam_library_bytes([(620, "Portal 2", 713), (0, "Bad Tool", 0)]))

    assert len(rows) == 1
    row = rows[0]
    assert row.title == "Portal 2"
    assert adapter.external_id_of(row) == "620"
    assert row.playtime_minutes == 713
    assert row.platform_hint == "PC"
    assert row.category_hint == "Digital"
    assert row.last_played_at.year == 2023


def test_steam_accepts_decoded_payload():
    rows = get_adapter(SourceKind.STEAM).parse_rows(make_steam_library([(70, "Half-Life", 0)]))
    assert [r.title for r in rows] == ["Half-Life"]
    assert rows[0].last_played_at is None


def test_steam_private_library():
    with pytest.raises(ImportValidationError, match="private"):
        get_adapter(SourceKind.STEAM).parse_rows(b'{"response": {}}')


def test_steam_invalid_json():
    with pytest.raises(ImportValidationError):
        get_adapter(SourceKind.STEAM).parse_rows(b"<html>")


# ─── Xbox ─────────────────────────────────────────────────────

def test_xbox_rows():
    adapter = get_adapter(SourceKind.XBOX)
    payload = make_xbox_history([
        {"titleId": "123", "name": "Halo Infinite", "devices": ["XboxSeries"]},
        {"titleId": "123", "name": "Halo Infinite"},
        {"titleId": "9", "name": "Netflix"},
        {"name": "Celeste", "titleHistory": {"lastTimePlayed": "2023-05-01T10:00:00Z"}},
    ])
    rows = adapter.parse_rows(payload)

    assert [r.title for r in rows] == ["Halo Infinite", "Celeste"]
    assert adapter.external_id_of(rows[0]) == "123"
    assert rows[0].platform_hint == "XboxSeries"
    assert adapter.external_id_of(rows[1]) == "name:celeste"
    assert rows[1].last_played_at.month == 5


def test_xbox_bare_list():
    rows = get_adapter(SourceKind.XBOX).parse_rows([{"id": "5", "title": "Forza Horizon 5"}])
    assert rows[0].title == "Forza Horizon 5"
    assert rows[0].external_id == "5"


def test_xbox_without_titles():
    with pytest.raises(ImportValidationError):
        get_adapter(SourceKind.XBOX).parse_rows(b"{}")


# ─── Completionator ───────────────────────────────────────────

def test_completionator_rows():
    adapter = get_adapter(SourceKind.COMPLETIONATOR)
    payload = make_completionator_csv([
        ("Chrono Trigger (1995)", "SNES", "NA", "Core Game", "25h:3m:0s", "3/14/2021"),
        ("Broken", "SNES"),
    ])
    rows = adapter.parse_rows(payload)

    assert len(rows) == 2
    good, bad = rows
    assert good.title == "Chrono Trigger (1995)"
    assert adapter.external_id_of(good) == "title:chrono trigger"
    assert good.platform_hint == "SNES"
    assert good.category_hint == "Main Story"
    assert good.playtime_minutes == 1503
    assert good.completed_at == date(2021, 3, 14)
    assert good.validation_error is None

    assert bad.validation_error is not None
    assert bad.external_id == "line:3"


def test_completion_type_mapping():
    assert map_completion_type("Core Game (+ Lots of Extras)") == "Main Story + Side Content"
    assert map_completion_type("Completionated") == "Completionist"
    assert map_completion_type("weird") is None
    assert map_completion_type("") is None


def test_completionator_empty_file():
    with pytest.raises(ImportValidationError):
        get_adapter(SourceKind.COMPLETIONATOR).parse_rows(b"")


# ─── Collection file ──────────────────────────────────────────

def test_collection_csv_rows():
    adapter = get_adapter(SourceKind.COLLECTION_FILE)
    payload = make_collection_csv([
        {"title": "Hades", "platform": "Switch", "ownership_type": "physical"},
        {"title": "", "platform": "PC"},
        {"title": "Doom", "gamedb_id": "2"},
        {"title": "Celeste", "gamedb_id": "3", "igdb_id": "1002"},
        {"title": "Borrowed Game", "ownership_type": "Borrowed"},
        {"title": "Example", "note": "Example row - delete me"},
    ])
    rows = adapter.parse_rows(payload, "collection.csv")

    assert [r.title for r in rows] == ["Hades", "Line 3", "Doom", "Celeste", "Borrowed Game"]
    hades, untitled, doom, both_ids, borrowed = rows

    assert hades.category_hint == "Physical"
    assert hades.platform_hint == "Switch"
    assert adapter.external_id_of(hades) == "title:hades"

    assert "title is required" in untitled.validation_error

    assert doom.explicit_game_id == 2
    assert adapter.external_id_of(doom) == "gamedb:2"

    assert "only one of" in both_ids.validation_error
    assert "ownership_type" in borrowed.validation_error


def test_collection_default_ownership():
    rows = get_adapter(SourceKind.COLLECTION_FILE).parse_rows(make_collection_csv([{"title": "Hades"}]))
    assert rows[0].category_hint == "Digital"


def test_collection_note_too_long():
    rows = get_adapter(SourceKind.COLLECTION_FILE).parse_rows(
        make_collection_csv([{"title": "Hades", "note": "x" * 501}])
    )
    assert "500" in rows[0].validation_error


def test_collection_missing_title_column():
    payload = make_collection_csv([{"title": "Hades"}], headers=["Name", "Platform"])
    with pytest.raises(ImportValidationError, match="title"):
        get_adapter(SourceKind.COLLECTION_FILE).parse_rows(payload)


def test_collection_xlsx():
    adapter = get_adapter(SourceKind.COLLECTION_FILE)
    rows = adapter.parse_rows(make_collection_excel([
        {"title": "Hades", "gamedb_id": 5},
        {"title": "Celeste", "igdb_id": 1002, "ownership_type": "Subscription"},
    ]))

    assert [r.title for r in rows] == ["Hades", "Celeste"]
    assert rows[0].explicit_game_id == 5
    assert rows[1].explicit_metadata_id == 1002
    assert adapter.external_id_of(rows[1]) == "igdb:1002"
    assert rows[1].category_hint == "Subscription"


def test_collection_corrupt_xlsx():
    with pytest.raises(ImportValidationError):
        get_adapter(SourceKind.COLLECTION_FILE).parse_rows(b"PK\x03\x04garbage", "broken.xlsx")
