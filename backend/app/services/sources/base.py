"""
Source adapter capability set.

One import engine serves every external source. What differs per source
(how rows are parsed, which field is the stable external id, what the row
is called on screen) lives behind this protocol, implemented once per
source kind and looked up through the registry.
"""

import json
from typing import Any, Protocol

from app.core.errors import ImportValidationError
from app.models.enums import RecordKind, SourceKind
from app.schemas.imports import RawRow


class SourceAdapter(Protocol):
    kind: SourceKind
    record_kind: RecordKind
    default_platform_hint: str | None

    def parse_rows(self, payload: bytes, filename: str | None = None) -> list[RawRow]:
        """Parse a raw export or upload into rows, in source order."""
        ...

    def external_id_of(self, row: RawRow) -> str:
        ...

    def display_name_of(self, row: RawRow) -> str:
        ...


# ─── Adapter Registry ─────────────────────────────────────────

SOURCE_ADAPTERS: dict[SourceKind, SourceAdapter] = {}


def register_adapter(adapter: SourceAdapter) -> SourceAdapter:
    SOURCE_ADAPTERS[adapter.kind] = adapter
    return adapter


def get_adapter(kind: SourceKind | str) -> SourceAdapter:
    """Look up the adapter for a source kind."""
    try:
        return SOURCE_ADAPTERS[SourceKind(kind)]
    except (KeyError, ValueError):
        raise ImportValidationError(f"Unsupported import source '{kind}'.")


# ─── Shared Parsing Helpers ───────────────────────────────────

def load_json_payload(payload: bytes | dict | list, source_name: str) -> Any:
    """Decode a JSON export; already-decoded objects pass through."""
    if isinstance(payload, (dict, list)):
        return payload
    try:
        return json.loads(payload.decode("utf-8-sig"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ImportValidationError(f"{source_name} export is not valid JSON: {e}")


def clean_text(value: Any) -> str | None:
    """Stringify and trim a cell; blank becomes None."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_positive_int(value: Any) -> int | None:
    """'42' → 42; blanks, zero, negatives and junk → None."""
    text = clean_text(value)
    if text is None:
        return None
    try:
        number = int(float(text))
    except (ValueError, OverflowError):
        return None
    if number <= 0 or float(text) != number:
        return None
    return number
