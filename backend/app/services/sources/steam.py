"""
Steam owned-games adapter.

Parses the `IPlayerService/GetOwnedGames` response:

    {"response": {"game_count": 2, "games": [
        {"appid": 620, "name": "Portal 2", "playtime_forever": 713,
         "rtime_last_played": 1700000000}, ...]}}

Entries without an app id or a name are dropped, as Steam returns a few
of those for delisted tools.
"""

from typing import Any

from app.core.errors import ImportValidationError
from app.models.enums import RecordKind, SourceKind
from app.schemas.imports import RawRow
from app.services.normalization import from_unix_seconds
from app.services.sources.base import clean_text, load_json_payload, parse_positive_int

_PER_OS_PLAYTIME = (
    "playtime_windows_forever",
    "playtime_mac_forever",
    "playtime_linux_forever",
    "playtime_deck_forever",
)


class SteamLibraryAdapter:
    kind = SourceKind.STEAM
    record_kind = RecordKind.COLLECTION
    default_platform_hint = "PC"

    def parse_rows(self, payload: bytes | dict, filename: str | None = None) -> list[RawRow]:
        data = load_json_payload(payload, "Steam")
        games = _extract_games(data)

        rows: list[RawRow] = []
        for raw in games:
            row = self._to_row(raw)
            if row is not None:
                rows.append(row)
        return rows

    def external_id_of(self, row: RawRow) -> str:
        return row.external_id or ""

    def display_name_of(self, row: RawRow) -> str:
        return row.title

    def _to_row(self, raw: dict[str, Any]) -> RawRow | None:
        app_id = parse_positive_int(raw.get("appid"))
        name = clean_text(raw.get("name"))
        if app_id is None or name is None:
            return None

        playtime = raw.get("playtime_forever")
        fields = {"appid": app_id, "name": name, "playtime_forever": playtime}
        for key in _PER_OS_PLAYTIME:
            if raw.get(key) is not None:
                fields[key] = raw[key]
        if raw.get("rtime_last_played"):
            fields["rtime_last_played"] = raw["rtime_last_played"]

        return RawRow(
            title=name,
            external_id=str(app_id),
            platform_hint=self.default_platform_hint,
            category_hint="Digital",
            playtime_minutes=int(playtime) if playtime is not None else None,
            last_played_at=from_unix_seconds(raw.get("rtime_last_played")),
            raw_fields=fields,
        )


def _extract_games(data: Any) -> list[dict[str, Any]]:
    if isinstance(data, dict) and isinstance(data.get("response"), dict):
        data = data["response"]
    if isinstance(data, dict):
        if "games" not in data:
            # Steam answers a private profile with an empty response object.
            raise ImportValidationError(
                "Steam library is empty or private. Set game details to public and try again."
            )
        data = data["games"]
    if not isinstance(data, list):
        raise ImportValidationError("Steam export has no games list.")
    return [g for g in data if isinstance(g, dict)]
