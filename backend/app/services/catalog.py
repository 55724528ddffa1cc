"""
Catalog collaborator: lookup, search, and on-demand creation of games.

The import engine talks to the catalog only through CatalogService.
SqlCatalogService is the default implementation over the games,
platforms and game_platforms tables.
"""

import logging
from dataclasses import dataclass
from typing import Protocol

from rapidfuzz import fuzz
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFoundError
from app.models.catalog import Game, GamePlatform, Platform
from app.services.igdb import MetadataSource
from app.services.normalization import title_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RankedGame:
    """A catalog search hit with its similarity to the query (0-100)."""
    game_id: int
    title: str
    release_year: int | None
    score: float


class CatalogService(Protocol):
    async def find_by_id(self, game_id: int) -> Game | None:
        ...

    async def find_by_title_key(self, key: str) -> list[Game]:
        ...

    async def search_by_title(self, text: str, limit: int = 25) -> list[RankedGame]:
        ...

    async def find_by_metadata_id(self, metadata_id: int) -> Game | None:
        ...

    async def create_from_external_metadata(self, metadata_id: int) -> Game:
        ...

    async def list_release_platforms(self, game_id: int) -> list[Platform]:
        ...


def rank_score(query: str, title: str) -> float:
    """Order-insensitive similarity of two titles on their normalized keys."""
    return float(fuzz.token_set_ratio(title_key(query), title_key(title)))


class SqlCatalogService:
    def __init__(self, db: AsyncSession, metadata: MetadataSource | None = None):
        self.db = db
        self.metadata = metadata

    async def find_by_id(self, game_id: int) -> Game | None:
        return await self.db.get(Game, game_id)

    async def find_by_title_key(self, key: str) -> list[Game]:
        result = await self.db.execute(
            select(Game).where(Game.title_key == key).order_by(Game.id)
        )
        return list(result.scalars().all())

    async def search_by_title(self, text: str, limit: int = 25) -> list[RankedGame]:
        """
        Substring search on title and title key, ranked by similarity.

        Returns an empty list for a blank query.
        """
        text = text.strip()
        if not text:
            return []
        key = title_key(text)
        conditions = [Game.title.ilike(f"%{text}%")]
        if key:
            conditions.append(Game.title_key.like(f"%{key}%"))

        result = await self.db.execute(
            select(Game).where(or_(*conditions)).limit(limit * 4)
        )
        ranked = [
            RankedGame(g.id, g.title, g.release_year, rank_score(text, g.title))
            for g in result.scalars().all()
        ]
        ranked.sort(key=lambda r: (-r.score, r.title.lower(), r.game_id))
        return ranked[:limit]

    async def find_by_metadata_id(self, metadata_id: int) -> Game | None:
        result = await self.db.execute(select(Game).where(Game.igdb_id == metadata_id))
        return result.scalar_one_or_none()

    async def create_from_external_metadata(self, metadata_id: int) -> Game:
        """
        Return the catalog game for an external metadata id, importing it
        (with its release platforms) when it is not in the catalog yet.
        """
        existing = await self.find_by_metadata_id(metadata_id)
        if existing is not None:
            return existing
        if self.metadata is None:
            raise NotFoundError(
                f"IGDB game {metadata_id} is not in the catalog and no metadata source is configured."
            )

        details = await self.metadata.fetch_details(metadata_id)
        if details is None:
            raise NotFoundError(f"IGDB game {metadata_id} not found.")

        game = Game(
            title=details.title,
            title_key=title_key(details.title),
            igdb_id=details.metadata_id,
            release_year=details.release_year,
        )
        self.db.add(game)
        await self.db.flush()

        for name in dict.fromkeys(details.platforms):
            platform = await self._get_or_create_platform(name)
            self.db.add(GamePlatform(game_id=game.id, platform_id=platform.id))
        await self.db.flush()

        logger.info("Imported %r from IGDB %d as catalog game %d", game.title, metadata_id, game.id)
        return game

    async def list_release_platforms(self, game_id: int) -> list[Platform]:
        result = await self.db.execute(
            select(Platform)
            .join(GamePlatform, GamePlatform.platform_id == Platform.id)
            .where(GamePlatform.game_id == game_id)
            .order_by(Platform.name)
        )
        return list(result.scalars().all())

    async def _get_or_create_platform(self, name: str) -> Platform:
        result = await self.db.execute(select(Platform).where(Platform.name == name))
        platform = result.scalar_one_or_none()
        if platform is None:
            platform = Platform(name=name)
            self.db.add(platform)
            await self.db.flush()
        return platform
