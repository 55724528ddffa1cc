"""
Xbox title-history adapter.

Accepts the title-history JSON returned by Xbox profile APIs in any of
its common shapes (a bare list, `{"titles": [...]}` or
`{"games": [...]}`). Field names vary between providers, so ids and
names are read from the first populated alias.
"""

from datetime import datetime
from typing import Any

from app.core.errors import ImportValidationError
from app.models.enums import RecordKind, SourceKind
from app.schemas.imports import RawRow
from app.services.sources.base import clean_text, load_json_payload

_TITLE_ID_KEYS = ("titleId", "titleID", "title_id", "id", "titleid")
_NAME_KEYS = ("name", "title", "titleName", "displayName", "productName")

# Non-game titles that show up in title history.
_EXCLUDED_NAME_TOKENS = ("xbox app", "xbox console companion", "netflix", "youtube", "spotify")


def _first_present(raw: dict[str, Any], keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = clean_text(raw.get(key))
        if value is not None:
            return value
    return None


def _platform_label(raw: dict[str, Any]) -> str | None:
    devices = raw.get("devices")
    if isinstance(devices, list) and devices:
        return clean_text(devices[0])
    return clean_text(raw.get("platform"))


def _last_played(raw: dict[str, Any]) -> datetime | None:
    history = raw.get("titleHistory")
    value = history.get("lastTimePlayed") if isinstance(history, dict) else raw.get("lastTimePlayed")
    text = clean_text(value)
    if text is None:
        return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None


class XboxLibraryAdapter:
    kind = SourceKind.XBOX
    record_kind = RecordKind.COLLECTION
    default_platform_hint = None

    def parse_rows(self, payload: bytes | dict | list, filename: str | None = None) -> list[RawRow]:
        data = load_json_payload(payload, "Xbox")
        if isinstance(data, dict):
            candidates = data.get("titles", data.get("games"))
        else:
            candidates = data
        if not isinstance(candidates, list):
            raise ImportValidationError("Xbox export has no titles list.")

        rows: list[RawRow] = []
        seen: set[str] = set()
        for raw in candidates:
            if not isinstance(raw, dict):
                continue
            name = _first_present(raw, _NAME_KEYS)
            if name is None or any(t in name.lower() for t in _EXCLUDED_NAME_TOKENS):
                continue
            title_id = _first_present(raw, _TITLE_ID_KEYS)
            key = f"id:{title_id}" if title_id else f"name:{name.lower()}"
            if key in seen:
                continue
            seen.add(key)

            rows.append(RawRow(
                title=name,
                external_id=title_id or f"name:{name.lower()}",
                platform_hint=_platform_label(raw) or self.default_platform_hint,
                category_hint="Digital",
                last_played_at=_last_played(raw),
                raw_fields={"title_id": title_id, "name": name, "platform": _platform_label(raw)},
            ))
        return rows

    def external_id_of(self, row: RawRow) -> str:
        return row.external_id or f"name:{row.title.lower()}"

    def display_name_of(self, row: RawRow) -> str:
        return row.title
