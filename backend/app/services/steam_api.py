"""
Steam Web API client for fetching a member's owned-games library.

Profile identifiers are accepted the way members paste them: a 17-digit
SteamID64, a steamcommunity.com/profiles/<id> or /id/<vanity> URL, or a
bare vanity name.
"""

import logging
import re
from typing import Any

import httpx

from app.core.config import settings
from app.core.errors import ExternalServiceError, ImportValidationError

logger = logging.getLogger(__name__)

_STEAM_ID_64 = re.compile(r"^\d{17}$")
_PROFILE_URL = re.compile(r"^https?://steamcommunity\.com/(id|profiles)/([^/?#]+)", re.IGNORECASE)
_VANITY = re.compile(r"^[a-zA-Z0-9_-]{2,64}$")


def parse_profile_identifier(raw: str) -> tuple[str, str]:
    """
    Classify a pasted profile identifier.

    Returns (kind, value) with kind one of 'steamid64', 'profiles-url',
    'vanity-url', 'vanity'.
    """
    text = (raw or "").strip()
    if not text:
        raise ImportValidationError("Steam profile identifier is required.")
    if _STEAM_ID_64.match(text):
        return "steamid64", text
    m = _PROFILE_URL.match(text)
    if m:
        kind, segment = m.groups()
        return ("profiles-url" if kind.lower() == "profiles" else "vanity-url"), segment
    if _VANITY.match(text):
        return "vanity", text
    raise ImportValidationError("Unsupported Steam profile identifier format.")


def classify_status(status: int) -> str | None:
    """Steam HTTP status → error code, None when the status is not an error we map."""
    if status == 401:
        return "api-unauthorized"
    if status == 403:
        return "private-profile"
    if status == 429:
        return "api-rate-limited"
    if status >= 500:
        return "api-unavailable"
    return None


class SteamApiClient:
    def __init__(
        self,
        api_key: str | None = None,
        *,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.STEAM_API_KEY
        self.base_url = (base_url or settings.STEAM_API_BASE_URL).rstrip("/")
        self.transport = transport

    async def _get(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        if not self.api_key:
            raise ExternalServiceError("Steam", "STEAM_API_KEY is not configured")
        async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS, transport=self.transport) as client:
            try:
                response = await client.get(f"{self.base_url}/{path}", params={"key": self.api_key, **params})
            except httpx.HTTPError as e:
                raise ExternalServiceError("Steam", f"request failed: {e}")

        code = classify_status(response.status_code)
        if code == "private-profile":
            raise ImportValidationError("Steam profile or game details are private.")
        if code is not None or response.status_code != 200:
            raise ExternalServiceError("Steam", code or "unexpected response", response.status_code)
        data = response.json()
        return data if isinstance(data, dict) else {}

    async def resolve_steam_id(self, identifier: str) -> str:
        kind, value = parse_profile_identifier(identifier)
        if kind in ("steamid64", "profiles-url"):
            if not _STEAM_ID_64.match(value):
                raise ImportValidationError("Steam profile URL does not contain a SteamID64.")
            return value

        data = await self._get("ISteamUser/ResolveVanityURL/v1/", {"vanityurl": value})
        response = data.get("response") or {}
        if response.get("success") != 1 or not response.get("steamid"):
            raise ImportValidationError(f"No Steam profile found for '{value}'.")
        return str(response["steamid"])

    async def get_player_name(self, steam_id: str) -> str | None:
        data = await self._get("ISteamUser/GetPlayerSummaries/v2/", {"steamids": steam_id})
        players = (data.get("response") or {}).get("players") or []
        return players[0].get("personaname") if players else None

    async def get_owned_games(self, steam_id: str) -> dict[str, Any]:
        """Raw GetOwnedGames payload (parsed by the Steam source adapter)."""
        data = await self._get(
            "IPlayerService/GetOwnedGames/v1/",
            {
                "steamid": steam_id,
                "include_appinfo": 1,
                "include_played_free_games": 1,
            },
        )
        games = (data.get("response") or {}).get("games")
        logger.info("Fetched %s owned games for Steam profile %s", len(games or []), steam_id)
        return data
