"""
External metadata source: IGDB over its v4 query API.

Used as the last matching resort (a search surfaced to the human) and
to create catalog games on demand from a chosen result. Requests carry a
Twitch app access token obtained with the client-credentials grant.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

import httpx

from app.core.config import settings
from app.core.errors import ExternalServiceError

logger = logging.getLogger(__name__)

_GAME_FIELDS = "id,name,first_release_date,platforms.name,platforms.abbreviation"


@dataclass(frozen=True)
class ExternalGame:
    """A game as described by the external metadata source."""
    metadata_id: int
    title: str
    release_year: int | None = None
    platforms: list[str] = field(default_factory=list)


class MetadataSource(Protocol):
    async def search(self, title: str, limit: int = 10) -> list[ExternalGame]:
        ...

    async def fetch_details(self, metadata_id: int) -> ExternalGame | None:
        ...


def _escape_query(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')


def normalize_game(item: Any) -> ExternalGame | None:
    """IGDB game payload → ExternalGame; None when the entry is unusable."""
    if not isinstance(item, dict):
        return None
    try:
        metadata_id = int(item.get("id"))
    except (TypeError, ValueError):
        logger.warning("Skipping IGDB entry with invalid id %r", item.get("id"))
        return None
    name = str(item.get("name") or "").strip()
    if not name:
        return None

    release_year = None
    if item.get("first_release_date"):
        release_year = datetime.fromtimestamp(int(item["first_release_date"]), tz=timezone.utc).year

    platforms = [
        str(p["name"]).strip()
        for p in item.get("platforms") or []
        if isinstance(p, dict) and p.get("name")
    ]
    return ExternalGame(metadata_id, name, release_year, platforms)


class IgdbClient:
    """Async IGDB client; one instance may be shared across requests."""

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        *,
        base_url: str | None = None,
        token_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client_id = client_id if client_id is not None else settings.IGDB_CLIENT_ID
        self._client_secret = client_secret if client_secret is not None else settings.IGDB_CLIENT_SECRET
        self._base_url = (base_url or settings.IGDB_BASE_URL).rstrip("/")
        self._token_url = token_url or settings.TWITCH_TOKEN_URL
        self._transport = transport
        self._token: str | None = None
        self._token_expires_at = 0.0

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS, transport=self._transport)

    async def _access_token(self, client: httpx.AsyncClient) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token
        if not self._client_id or not self._client_secret:
            raise ExternalServiceError("IGDB", "client credentials are not configured")

        try:
            response = await client.post(
                self._token_url,
                params={
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "grant_type": "client_credentials",
                },
            )
        except httpx.HTTPError as e:
            raise ExternalServiceError("Twitch", f"token request failed: {e}")
        if response.status_code != 200:
            raise ExternalServiceError("Twitch", "token request rejected", response.status_code)

        data = response.json()
        token = data.get("access_token")
        if not token:
            raise ExternalServiceError("Twitch", "no access token in response")
        # Refresh a minute early.
        self._token = str(token)
        self._token_expires_at = time.monotonic() + max(0, int(data.get("expires_in", 0)) - 60)
        return self._token

    async def _query(self, endpoint: str, body: str) -> list[Any]:
        async with self._client() as client:
            token = await self._access_token(client)
            try:
                response = await client.post(
                    f"{self._base_url}/{endpoint}",
                    content=body.encode("utf-8"),
                    headers={
                        "Client-ID": self._client_id,
                        "Authorization": f"Bearer {token}",
                        "Accept": "application/json",
                    },
                )
            except httpx.HTTPError as e:
                raise ExternalServiceError("IGDB", f"request failed: {e}")

        if response.status_code == 401:
            self._token = None
        if response.status_code != 200:
            raise ExternalServiceError("IGDB", f"{endpoint} query failed", response.status_code)
        payload = response.json()
        return payload if isinstance(payload, list) else []

    async def search(self, title: str, limit: int = 10) -> list[ExternalGame]:
        query = f'search "{_escape_query(title)}"; fields {_GAME_FIELDS}; limit {int(limit)};'
        results = [g for g in map(normalize_game, await self._query("games", query)) if g]
        logger.debug("IGDB search %r → %d results", title, len(results))
        return results

    async def fetch_details(self, metadata_id: int) -> ExternalGame | None:
        query = f"fields {_GAME_FIELDS}; where id = {int(metadata_id)}; limit 1;"
        for item in await self._query("games", query):
            game = normalize_game(item)
            if game is not None:
                return game
        return None
