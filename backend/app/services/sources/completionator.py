"""
Completionator CSV adapter.

Completionator exports completions as a positional CSV:

    name, platform, region, type, time, date
    "Chrono Trigger (1995)", "SNES", "NA", "Core Game", "25h:3m:0s", "3/14/2021"

The header row is skipped. The export carries no stable id, so the
external id is derived from the normalized title.
"""

import csv
import io

from app.core.errors import ImportValidationError
from app.models.enums import RecordKind, SourceKind
from app.schemas.imports import RawRow
from app.services.normalization import parse_playtime_minutes, parse_us_date, title_key
from app.services.sources.base import clean_text

_COLUMNS = ("name", "platform", "region", "type", "time", "date")

COMPLETION_TYPE_MAP = {
    "core game": "Main Story",
    "core game (+ a few extras)": "Main Story + Side Content",
    "core game (+ lots of extras)": "Main Story + Side Content",
    "completionated": "Completionist",
}


def map_completion_type(value: str | None) -> str | None:
    """Completionator type label → completion type, None when unknown."""
    if not value:
        return None
    return COMPLETION_TYPE_MAP.get(value.strip().lower())


class CompletionatorAdapter:
    kind = SourceKind.COMPLETIONATOR
    record_kind = RecordKind.COMPLETION
    default_platform_hint = None

    def parse_rows(self, payload: bytes, filename: str | None = None) -> list[RawRow]:
        try:
            text_content = payload.decode("utf-8-sig")
        except UnicodeDecodeError:
            raise ImportValidationError("Completionator export must be UTF-8 CSV.")

        reader = csv.reader(io.StringIO(text_content))
        header = next(reader, None)
        if not header:
            raise ImportValidationError("Completionator CSV is empty.")

        rows: list[RawRow] = []
        for line_number, values in enumerate(reader, start=2):
            if not values or all(not v.strip() for v in values):
                continue
            rows.append(self._to_row(values, line_number))
        return rows

    def external_id_of(self, row: RawRow) -> str:
        return row.external_id or f"title:{title_key(row.title)}"

    def display_name_of(self, row: RawRow) -> str:
        return row.title

    def _to_row(self, values: list[str], line_number: int) -> RawRow:
        fields = dict(zip(_COLUMNS, (v.strip() for v in values)))
        fields["line"] = line_number
        name = clean_text(fields.get("name"))

        if len(values) < len(_COLUMNS) or name is None:
            return RawRow(
                title=name or f"Line {line_number}",
                external_id=f"line:{line_number}",
                raw_fields=fields,
                validation_error=f"Line {line_number}: expected {len(_COLUMNS)} columns with a game name.",
            )

        return RawRow(
            title=name,
            external_id=f"title:{title_key(name)}",
            platform_hint=clean_text(fields["platform"]),
            region_hint=clean_text(fields["region"]),
            category_hint=map_completion_type(fields["type"]),
            playtime_minutes=parse_playtime_minutes(fields["time"]),
            completed_at=parse_us_date(fields["date"]),
            raw_fields=fields,
        )
