"""
Matching engine: resolve one imported row to a catalog game.

Resolution order (first hit wins):
  0. Catalog or metadata id supplied by the row itself
  1. Mapping cache (MAPPED → CachedMatch, SKIPPED → CachedSkip)
  2. Normalized exact title against the catalog title keys
  3. Historical manual picks by other users (suggestion only)
  4. Catalog substring search with fallbacks, ranked with rapidfuzz
The caller takes NoCandidate to the external metadata source.
"""

import enum
import logging
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import ImportValidationError
from app.models.catalog import Game
from app.models.enums import MapStatus, MatchConfidence, ResultReason, SourceKind
from app.models.imports import ImportItem
from app.schemas.imports import CandidateOption
from app.services import mapping_cache
from app.services.catalog import CatalogService, RankedGame, rank_score
from app.services.igdb import MetadataSource
from app.services.normalization import (
    build_title_variants,
    normalize_title_for_search,
    title_key,
    title_tokens,
)

logger = logging.getLogger(__name__)

# Per-token fallback hits below this score are noise.
FUZZY_MIN_SCORE = 60.0
# A lone fuzzy hit is applied without asking only above this score.
FUZZY_AUTO_ACCEPT_SCORE = 90.0


class MatchOrigin(str, enum.Enum):
    ROW_GAME_ID = "ROW_GAME_ID"
    ROW_METADATA_ID = "ROW_METADATA_ID"
    TITLE = "TITLE"
    HISTORICAL = "HISTORICAL"
    SEARCH = "SEARCH"


# ─── Outcomes ─────────────────────────────────────────────────

@dataclass(frozen=True)
class CachedMatch:
    game_id: int


@dataclass(frozen=True)
class CachedSkip:
    pass


@dataclass(frozen=True)
class SingleCandidate:
    game_id: int
    origin: MatchOrigin
    confidence: MatchConfidence


@dataclass(frozen=True)
class MultipleCandidates:
    candidates: list[CandidateOption] = field(default_factory=list)
    origin: MatchOrigin = MatchOrigin.SEARCH


@dataclass(frozen=True)
class NoCandidate:
    pass


MatchOutcome = CachedMatch | CachedSkip | SingleCandidate | MultipleCandidates | NoCandidate


def reason_for_origin(origin: MatchOrigin, confidence: MatchConfidence) -> ResultReason:
    """The result reason an item gets when it is committed via this origin."""
    if origin == MatchOrigin.ROW_GAME_ID:
        return ResultReason.CSV_GAMEDB_ID
    if origin == MatchOrigin.ROW_METADATA_ID:
        return ResultReason.CSV_IGDB_ID
    if confidence == MatchConfidence.MANUAL:
        return ResultReason.MANUAL_REMAP
    return ResultReason.AUTO_MATCH


def _option_from_game(game: Game, score: float | None = None) -> CandidateOption:
    return CandidateOption(game_id=game.id, title=game.title, release_year=game.release_year, score=score)


def _option_from_ranked(hit: RankedGame) -> CandidateOption:
    return CandidateOption(game_id=hit.game_id, title=hit.title, release_year=hit.release_year, score=hit.score)


class MatchingEngine:
    def __init__(
        self,
        db: AsyncSession,
        catalog: CatalogService,
        metadata: MetadataSource | None = None,
    ):
        self.db = db
        self.catalog = catalog
        self.metadata = metadata

    async def resolve(
        self,
        item: ImportItem,
        source_kind: SourceKind,
        owner_id: str,
    ) -> MatchOutcome:
        # 0. Ids supplied by the row
        if item.explicit_game_id is not None:
            game = await self.catalog.find_by_id(item.explicit_game_id)
            if game is None:
                raise ImportValidationError(
                    f"Catalog game {item.explicit_game_id} does not exist.",
                    reason=ResultReason.INVALID_REMAP.value,
                )
            return SingleCandidate(game.id, MatchOrigin.ROW_GAME_ID, MatchConfidence.EXACT)
        if item.explicit_metadata_id is not None:
            game = await self.import_from_external(item.explicit_metadata_id)
            return SingleCandidate(game.id, MatchOrigin.ROW_METADATA_ID, MatchConfidence.EXACT)

        # 1. Mapping cache
        cached = await mapping_cache.lookup(self.db, source_kind, item.external_id)
        if cached is not None:
            if cached.status == MapStatus.SKIPPED:
                return CachedSkip()
            return CachedMatch(cached.catalog_game_id)

        # 2. Normalized exact title
        key = title_key(item.title)
        if key:
            exact = await self.catalog.find_by_title_key(key)
            if len(exact) == 1:
                return SingleCandidate(exact[0].id, MatchOrigin.TITLE, MatchConfidence.EXACT)
            if len(exact) > 1:
                return MultipleCandidates([_option_from_game(g) for g in exact], MatchOrigin.TITLE)

        # 3. Historical manual picks
        historical = await mapping_cache.historical_matches(
            self.db, source_kind, item.external_id, exclude_owner=owner_id,
        )
        if len(historical) == 1:
            return SingleCandidate(historical[0], MatchOrigin.HISTORICAL, MatchConfidence.MANUAL)
        if len(historical) > 1:
            options = []
            for game_id in historical:
                game = await self.catalog.find_by_id(game_id)
                if game is not None:
                    options.append(_option_from_game(game))
            if options:
                return MultipleCandidates(options, MatchOrigin.HISTORICAL)

        # 4. Catalog search
        hits = await self.search_catalog(item.title)
        if not hits:
            return NoCandidate()
        if len(hits) == 1 and hits[0].score >= FUZZY_AUTO_ACCEPT_SCORE:
            return SingleCandidate(hits[0].game_id, MatchOrigin.SEARCH, MatchConfidence.FUZZY)
        return MultipleCandidates([_option_from_ranked(h) for h in hits], MatchOrigin.SEARCH)

    async def search_catalog(self, raw_title: str) -> list[RankedGame]:
        """
        Catalog search with fallbacks.

        Tries the normalized title (accepted outright when it yields one
        hit), then the raw title, then each variant, then the union of
        per-word searches. Results are ranked against the normalized title.
        """
        limit = settings.MATCH_CANDIDATE_LIMIT
        normalized = normalize_title_for_search(raw_title)

        if normalized:
            hits = await self.catalog.search_by_title(normalized, limit)
            if len(hits) == 1:
                return hits

        hits = await self.catalog.search_by_title(raw_title, limit)
        if not hits:
            for variant in build_title_variants(raw_title):
                hits = await self.catalog.search_by_title(variant, limit)
                if hits:
                    break

        if not hits:
            union: dict[int, RankedGame] = {}
            for token in title_tokens(raw_title):
                for hit in await self.catalog.search_by_title(token, limit):
                    union.setdefault(hit.game_id, hit)
            hits = list(union.values())

        reference = normalized or raw_title
        rescored = [
            RankedGame(h.game_id, h.title, h.release_year, rank_score(reference, h.title))
            for h in hits
        ]
        rescored = [h for h in rescored if h.score >= FUZZY_MIN_SCORE]
        rescored.sort(key=lambda h: (-h.score, h.title.lower(), h.game_id))
        return rescored[:limit]

    async def search_external(self, query: str) -> list[CandidateOption]:
        """Search the external metadata source; empty when none is configured."""
        if self.metadata is None:
            return []
        results = await self.metadata.search(normalize_title_for_search(query) or query)
        return [
            CandidateOption(metadata_id=r.metadata_id, title=r.title, release_year=r.release_year)
            for r in results
        ]

    async def import_from_external(self, metadata_id: int) -> Game:
        """Catalog game for a metadata id, created on demand."""
        return await self.catalog.create_from_external_metadata(metadata_id)

    async def remember(
        self,
        source_kind: SourceKind,
        external_id: str,
        game_id: int | None,
        owner_id: str,
    ) -> None:
        """Write a resolution back to the mapping cache (None means skip)."""
        if not external_id:
            return
        status = MapStatus.MAPPED if game_id is not None else MapStatus.SKIPPED
        await mapping_cache.upsert(self.db, source_kind, external_id, game_id, status, owner_id)
