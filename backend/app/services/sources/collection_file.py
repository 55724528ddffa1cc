"""
Collection template adapter (CSV or XLSX).

Columns are matched by header name through an alias table, so
"Game Title", "game_name" and "title" all land in `title`. Only `title`
is required. A row may name a catalog id (`gamedb_id`) or an external
metadata id (`igdb_id`) to bypass title matching.

Invalid rows are not dropped: they are staged with a validation error
and reported as INVALID_ROW, so the owner sees every line they uploaded.
"""

import csv
import io
import zipfile
from typing import Any

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException

from app.core.errors import ImportValidationError
from app.models.enums import RecordKind, SourceKind
from app.schemas.imports import RawRow
from app.services.normalization import normalize_whitespace, title_key
from app.services.sources.base import clean_text, parse_positive_int

HEADER_ALIASES: dict[str, str] = {
    "title": "title",
    "game": "title",
    "game_title": "title",
    "game title": "title",
    "game_name": "title",
    "game name": "title",
    "platform": "platform",
    "platform_name": "platform",
    "platform_id": "platform",
    "ownership": "ownership_type",
    "ownership_type": "ownership_type",
    "ownershiptype": "ownership_type",
    "ownership type": "ownership_type",
    "note": "note",
    "notes": "note",
    "gamedb_id": "gamedb_id",
    "gamedb": "gamedb_id",
    "gamedb id": "gamedb_id",
    "igdb_id": "igdb_id",
    "igdb": "igdb_id",
    "igdb id": "igdb_id",
}

REQUIRED_COLUMNS = ("title",)

OWNERSHIP_TYPES = ("Digital", "Physical", "Subscription", "Other")
DEFAULT_OWNERSHIP_TYPE = "Digital"

NOTE_MAX_LENGTH = 500

# The downloadable template ships with one example row.
EXAMPLE_ROW_MARKER = "EXAMPLE ROW"

_XLSX_MAGIC = b"PK\x03\x04"


def _is_xlsx(payload: bytes, filename: str | None) -> bool:
    if filename and filename.lower().endswith((".xlsx", ".xlsm")):
        return True
    return payload[:4] == _XLSX_MAGIC


def _read_xlsx(payload: bytes) -> list[list[Any]]:
    try:
        wb = openpyxl.load_workbook(io.BytesIO(payload), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise ImportValidationError(f"Could not read spreadsheet: {e}")
    try:
        ws = wb.active
        return [list(r) for r in ws.iter_rows(values_only=True)]
    finally:
        wb.close()


def _read_csv(payload: bytes) -> list[list[Any]]:
    try:
        text_content = payload.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise ImportValidationError("Collection file must be UTF-8 CSV or XLSX.")
    return [list(r) for r in csv.reader(io.StringIO(text_content))]


def build_header_map(headers: list[Any]) -> dict[str, int]:
    """Canonical column name → column index (first occurrence wins)."""
    mapping: dict[str, int] = {}
    for idx, header in enumerate(headers):
        text = clean_text(header)
        if text is None:
            continue
        canonical = HEADER_ALIASES.get(normalize_whitespace(text).lower())
        if canonical and canonical not in mapping:
            mapping[canonical] = idx
    return mapping


def normalize_ownership_type(value: str | None) -> str | None:
    """Case-insensitive match to a known ownership type; blank → default."""
    if value is None:
        return DEFAULT_OWNERSHIP_TYPE
    for known in OWNERSHIP_TYPES:
        if known.lower() == value.strip().lower():
            return known
    return None


class CollectionFileAdapter:
    kind = SourceKind.COLLECTION_FILE
    record_kind = RecordKind.COLLECTION
    default_platform_hint = None

    def parse_rows(self, payload: bytes, filename: str | None = None) -> list[RawRow]:
        if not payload:
            raise ImportValidationError("Collection file is empty.")
        table = _read_xlsx(payload) if _is_xlsx(payload, filename) else _read_csv(payload)
        if not table:
            raise ImportValidationError("Collection file is empty.")

        header_map = build_header_map(table[0])
        missing = [c for c in REQUIRED_COLUMNS if c not in header_map]
        if missing:
            raise ImportValidationError(f"Missing required column(s): {', '.join(missing)}.")

        rows: list[RawRow] = []
        for line_number, values in enumerate(table[1:], start=2):
            if all(clean_text(v) is None for v in values):
                continue
            row = self._to_row(values, header_map, line_number)
            if row is not None:
                rows.append(row)
        return rows

    def external_id_of(self, row: RawRow) -> str:
        return row.external_id or f"title:{title_key(row.title)}"

    def display_name_of(self, row: RawRow) -> str:
        return row.title

    def _to_row(
        self,
        values: list[Any],
        header_map: dict[str, int],
        line_number: int,
    ) -> RawRow | None:
        def column(name: str) -> str | None:
            idx = header_map.get(name)
            if idx is None or idx >= len(values):
                return None
            return clean_text(values[idx])

        title = column("title")
        platform = column("platform")
        ownership_raw = column("ownership_type")
        note = column("note")
        gamedb_raw = column("gamedb_id")
        igdb_raw = column("igdb_id")

        if note and EXAMPLE_ROW_MARKER in note.upper():
            return None

        fields = {
            "line": line_number,
            "title": title,
            "platform": platform,
            "ownership_type": ownership_raw,
            "note": note,
            "gamedb_id": gamedb_raw,
            "igdb_id": igdb_raw,
        }

        errors: list[str] = []
        if title is None:
            errors.append("title is required")

        gamedb_id = parse_positive_int(gamedb_raw)
        if gamedb_raw and gamedb_id is None:
            errors.append("gamedb_id must be a positive number")
        igdb_id = parse_positive_int(igdb_raw)
        if igdb_raw and igdb_id is None:
            errors.append("igdb_id must be a positive number")
        if gamedb_id and igdb_id:
            errors.append("provide only one of gamedb_id or igdb_id")

        ownership_type = normalize_ownership_type(ownership_raw)
        if ownership_type is None:
            errors.append(f"ownership_type must be one of {', '.join(OWNERSHIP_TYPES)}")

        if note and len(note) > NOTE_MAX_LENGTH:
            errors.append(f"note must be {NOTE_MAX_LENGTH} characters or fewer")

        if errors:
            return RawRow(
                title=title or f"Line {line_number}",
                external_id=f"line:{line_number}",
                raw_fields=fields,
                validation_error=f"Line {line_number}: " + "; ".join(errors) + ".",
            )

        if gamedb_id:
            external_id = f"gamedb:{gamedb_id}"
        elif igdb_id:
            external_id = f"igdb:{igdb_id}"
        else:
            external_id = f"title:{title_key(title)}"

        return RawRow(
            title=title,
            external_id=external_id,
            platform_hint=platform,
            category_hint=ownership_type,
            note=note,
            explicit_game_id=gamedb_id,
            explicit_metadata_id=igdb_id,
            raw_fields=fields,
        )
