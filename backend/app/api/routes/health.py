"""Health check endpoint."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import get_db
from app.models.enums import OPEN_SESSION_STATUSES
from app.models.imports import ImportSession

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)) -> dict[str, Any]:
    """
    Liveness plus database connectivity.

    Returns 503 if the database is unreachable, otherwise the number of
    open (active or paused) import sessions.
    """
    try:
        await db.execute(text("SELECT 1"))
        open_sessions = await db.scalar(
            select(func.count()).select_from(ImportSession)
            .where(ImportSession.status.in_(OPEN_SESSION_STATUSES))
        )
    except SQLAlchemyError as e:
        logger.error("Database health check failed: %s", e, exc_info=True)
        raise HTTPException(status_code=503, detail={"status": "degraded", "db": "error"})

    return {
        "status": "ok",
        "db": "ok",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "open_import_sessions": open_sessions or 0,
    }
