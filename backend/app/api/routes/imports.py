"""
Import API routes: collection and completion imports from external sources.

Endpoints:
  POST   /api/v1/imports/upload                           Start a session from a file/export
  POST   /api/v1/imports/steam                            Start a session from a Steam library
  GET    /api/v1/imports/active                           Owner's open session
  GET    /api/v1/imports/:session_id                      Session state
  GET    /api/v1/imports/:session_id/items                Items, optionally by status
  POST   /api/v1/imports/:session_id/advance              Run until the next prompt
  POST   /api/v1/imports/:session_id/items/:id/decision   Answer the open prompt
  POST   /api/v1/imports/:session_id/pause|resume|cancel  Lifecycle
  POST   /api/v1/imports/:session_id/items/:id/reopen     Operator override
  GET    /api/v1/imports/:session_id/report               Counts and failed items

One open session per (owner, source kind). Every step runs in the
request transaction, so a failed request leaves the session where it was.
"""

import logging
import uuid

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import get_db
from app.core.errors import (
    ConflictError,
    ExternalServiceError,
    ImportEngineError,
    ImportValidationError,
    NotFoundError,
    PermissionDeniedError,
)
from app.models.enums import ItemStatus, SourceKind
from app.schemas.imports import (
    DecisionRequest,
    ImportItemResponse,
    ImportReport,
    ImportSessionResponse,
    OwnerRequest,
    StepResponse,
    SteamFetchRequest,
)
from app.services import session_manager
from app.services.igdb import IgdbClient, MetadataSource
from app.services.orchestrator import ImportEngine
from app.services.steam_api import SteamApiClient

logger = logging.getLogger(__name__)

router = APIRouter()

_igdb_client: IgdbClient | None = None


# ─── Dependencies ──────────────────────────────────────────────

def get_metadata_source() -> MetadataSource | None:
    """Shared IGDB client, or None when no credentials are configured."""
    global _igdb_client
    if not (settings.IGDB_CLIENT_ID and settings.IGDB_CLIENT_SECRET):
        return None
    if _igdb_client is None:
        _igdb_client = IgdbClient()
    return _igdb_client


def get_steam_client() -> SteamApiClient:
    return SteamApiClient()


def get_engine(
    db: AsyncSession = Depends(get_db),
    metadata: MetadataSource | None = Depends(get_metadata_source),
) -> ImportEngine:
    return ImportEngine(db, metadata=metadata)


# ─── Helpers ───────────────────────────────────────────────────

def _http_error(e: ImportEngineError) -> HTTPException:
    """Translate an engine error into the matching HTTP status."""
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ConflictError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, PermissionDeniedError):
        return HTTPException(status_code=403, detail=str(e))
    if isinstance(e, ImportValidationError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, ExternalServiceError):
        logger.warning("External service failure: %s", e)
        return HTTPException(status_code=502, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


# ─── Starting a Session ───────────────────────────────────────

@router.post("/upload", response_model=ImportSessionResponse, status_code=201)
async def upload_import(
    file: UploadFile = File(...),
    owner_id: str = Form(...),
    source_kind: SourceKind = Form(...),
    engine: ImportEngine = Depends(get_engine),
):
    """
    Stage an import from an uploaded export.

    Completionator CSV, collection CSV/XLSX, and Steam or Xbox JSON
    exports are accepted. The whole file is parsed before anything is
    stored; a malformed file creates no session.
    """
    payload = await file.read()
    if not payload:
        raise HTTPException(status_code=400, detail="Empty file uploaded")

    try:
        session = await engine.start(
            owner_id, source_kind, payload,
            filename=file.filename,
            meta={"content_type": file.content_type},
        )
    except ImportEngineError as e:
        raise _http_error(e)
    return session


@router.post("/steam", response_model=ImportSessionResponse, status_code=201)
async def fetch_steam_library(
    payload: SteamFetchRequest,
    engine: ImportEngine = Depends(get_engine),
    steam: SteamApiClient = Depends(get_steam_client),
):
    """Fetch the owner's Steam library and stage it as a collection import."""
    try:
        steam_id = await steam.resolve_steam_id(payload.profile)
        library = await steam.get_owned_games(steam_id)
        persona_name = await steam.get_player_name(steam_id)
        session = await engine.start(
            payload.owner_id, SourceKind.STEAM, library,
            meta={"steam_id": steam_id, "persona_name": persona_name, "profile": payload.profile},
        )
    except ImportEngineError as e:
        raise _http_error(e)
    return session


# ─── Session State ────────────────────────────────────────────

@router.get("/active", response_model=ImportSessionResponse | None)
async def get_active_import(
    owner_id: str = Query(...),
    source_kind: SourceKind | None = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """The owner's ACTIVE or PAUSED session, if any (for resume-on-login)."""
    return await session_manager.get_active_session(db, owner_id, source_kind)


@router.get("/{session_id}", response_model=ImportSessionResponse)
async def get_import(
    session_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    try:
        return await session_manager.get_session(db, session_id)
    except ImportEngineError as e:
        raise _http_error(e)


@router.get("/{session_id}/items", response_model=list[ImportItemResponse])
async def list_import_items(
    session_id: uuid.UUID,
    status: ItemStatus | None = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    try:
        await session_manager.get_session(db, session_id)
    except ImportEngineError as e:
        raise _http_error(e)
    return await session_manager.list_items(db, session_id, status=status, limit=limit, offset=offset)


@router.get("/{session_id}/report", response_model=ImportReport)
async def get_import_report(
    session_id: uuid.UUID,
    engine: ImportEngine = Depends(get_engine),
):
    try:
        return await engine.report(session_id)
    except ImportEngineError as e:
        raise _http_error(e)


# ─── Driving a Session ────────────────────────────────────────

@router.post("/{session_id}/advance", response_model=StepResponse)
async def advance_import(
    session_id: uuid.UUID,
    payload: OwnerRequest,
    engine: ImportEngine = Depends(get_engine),
):
    """
    Process items until one needs the owner's input or none are left.

    Safe to call again after a crash or a lost response: finished items
    are never redone and an open prompt is simply re-sent.
    """
    try:
        return await engine.advance(session_id, payload.owner_id)
    except ImportEngineError as e:
        raise _http_error(e)


@router.post("/{session_id}/items/{item_id}/decision", response_model=StepResponse)
async def decide_import_item(
    session_id: uuid.UUID,
    item_id: uuid.UUID,
    payload: DecisionRequest,
    engine: ImportEngine = Depends(get_engine),
):
    """Answer the open prompt for an item, then continue with the next one."""
    try:
        return await engine.decide(session_id, item_id, payload)
    except ImportEngineError as e:
        raise _http_error(e)


@router.post("/{session_id}/pause", response_model=StepResponse)
async def pause_import(
    session_id: uuid.UUID,
    payload: OwnerRequest,
    engine: ImportEngine = Depends(get_engine),
):
    try:
        return await engine.pause(session_id, payload.owner_id)
    except ImportEngineError as e:
        raise _http_error(e)


@router.post("/{session_id}/resume", response_model=StepResponse)
async def resume_import(
    session_id: uuid.UUID,
    payload: OwnerRequest,
    engine: ImportEngine = Depends(get_engine),
):
    try:
        return await engine.resume(session_id, payload.owner_id)
    except ImportEngineError as e:
        raise _http_error(e)


@router.post("/{session_id}/cancel", response_model=StepResponse)
async def cancel_import(
    session_id: uuid.UUID,
    payload: OwnerRequest,
    engine: ImportEngine = Depends(get_engine),
):
    """Stop the session for good. Already committed items are kept."""
    try:
        return await engine.cancel(session_id, payload.owner_id)
    except ImportEngineError as e:
        raise _http_error(e)


@router.post("/{session_id}/items/{item_id}/reopen", response_model=ImportItemResponse)
async def reopen_import_item(
    session_id: uuid.UUID,
    item_id: uuid.UUID,
    engine: ImportEngine = Depends(get_engine),
):
    """Put a FAILED or SKIPPED item back to PENDING for another pass."""
    try:
        return await engine.reopen_item(session_id, item_id)
    except ImportEngineError as e:
        raise _http_error(e)
