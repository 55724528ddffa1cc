"""
Mapping cache: external id → catalog game id, shared by every user.

Once anyone resolves an external id by hand, later imports (theirs or
anyone else's) hit the cache instead of re-running matching. A SKIPPED
entry remembers that an id deliberately has no catalog counterpart.

Writes are dialect-native upserts keyed by (source_kind, external_id):
concurrent writers converge and the last write wins.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.enums import MapStatus, ResultReason, SourceKind
from app.models.imports import ExternalCatalogMap, ImportItem, ImportSession

logger = logging.getLogger(__name__)


async def lookup(
    db: AsyncSession,
    source_kind: SourceKind,
    external_id: str,
) -> ExternalCatalogMap | None:
    result = await db.execute(
        select(ExternalCatalogMap).where(
            ExternalCatalogMap.source_kind == source_kind,
            ExternalCatalogMap.external_id == external_id,
        )
    )
    return result.scalar_one_or_none()


def _insert_for(db: AsyncSession):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise NotImplementedError(f"Mapping cache upsert is not supported on {dialect}")


async def upsert(
    db: AsyncSession,
    source_kind: SourceKind,
    external_id: str,
    catalog_game_id: int | None,
    status: MapStatus,
    created_by: str | None = None,
) -> ExternalCatalogMap:
    """
    Insert or overwrite the mapping for an external id.

    `created_by` records the latest user to resolve the id.
    """
    if status == MapStatus.MAPPED and catalog_game_id is None:
        raise ValueError("A MAPPED entry needs a catalog game id")
    if status == MapStatus.SKIPPED:
        catalog_game_id = None

    now = datetime.now(timezone.utc)
    insert = _insert_for(db)
    stmt = insert(ExternalCatalogMap).values(
        source_kind=source_kind,
        external_id=external_id,
        catalog_game_id=catalog_game_id,
        status=status,
        created_by=created_by,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["source_kind", "external_id"],
        set_={
            "catalog_game_id": stmt.excluded.catalog_game_id,
            "status": stmt.excluded.status,
            "created_by": stmt.excluded.created_by,
            "updated_at": stmt.excluded.updated_at,
        },
    )
    await db.execute(stmt)

    result = await db.execute(
        select(ExternalCatalogMap)
        .where(
            ExternalCatalogMap.source_kind == source_kind,
            ExternalCatalogMap.external_id == external_id,
        )
        .execution_options(populate_existing=True)
    )
    entry = result.scalar_one()
    logger.info(
        "Mapping cache %s:%s → %s (%s) by %s",
        source_kind.value, external_id, catalog_game_id, status.value, created_by,
    )
    return entry


async def historical_matches(
    db: AsyncSession,
    source_kind: SourceKind,
    external_id: str,
    exclude_owner: str | None = None,
    limit: int | None = None,
) -> list[int]:
    """
    Catalog ids people picked by hand for this external id in past imports.

    Ordered by how often each id was chosen, then by most recent choice.
    The given owner's own sessions are left out. A suggestion source
    only: callers present these for confirmation.
    """
    times_chosen = func.count(ImportItem.id)
    last_chosen = func.max(ImportItem.updated_at)
    query = (
        select(ImportItem.resolved_game_id, times_chosen, last_chosen)
        .join(ImportSession, ImportSession.id == ImportItem.session_id)
        .where(
            ImportSession.source_kind == source_kind,
            ImportItem.external_id == external_id,
            ImportItem.result_reason == ResultReason.MANUAL_REMAP,
            ImportItem.resolved_game_id.is_not(None),
        )
        .group_by(ImportItem.resolved_game_id)
        .order_by(times_chosen.desc(), last_chosen.desc())
        .limit(limit or settings.HISTORICAL_MATCH_LIMIT)
    )
    if exclude_owner is not None:
        query = query.where(ImportSession.owner_id != exclude_owner)

    result = await db.execute(query)
    return [game_id for game_id, _count, _last in result.all()]
