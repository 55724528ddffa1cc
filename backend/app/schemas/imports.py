"""Pydantic schemas for the collection import engine."""

import uuid
from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from app.models.enums import (
    DateChoice,
    DecisionKind,
    ItemStatus,
    MatchConfidence,
    PromptKind,
    ResultReason,
    SessionStatus,
    SourceKind,
    UpdateField,
)


# ─── Source Rows ──────────────────────────────────────────────

class RawRow(BaseModel):
    """
    One entry of an external library, as parsed by a source adapter.

    Rows that failed adapter validation are still staged so the report
    accounts for them; `validation_error` carries the message and the
    item is failed with INVALID_ROW when the engine reaches it.
    """
    title: str
    external_id: str | None = None
    platform_hint: str | None = None
    region_hint: str | None = None
    category_hint: str | None = Field(
        None,
        description="Completion type or ownership type as given by the source",
    )
    playtime_minutes: int | None = None
    completed_at: date | None = None
    last_played_at: datetime | None = None
    note: str | None = None
    explicit_game_id: int | None = Field(
        None,
        description="Catalog game id supplied by the row (skips matching)",
    )
    explicit_metadata_id: int | None = Field(
        None,
        description="External metadata id supplied by the row (imports on demand)",
    )
    raw_fields: dict[str, Any] = Field(default_factory=dict)
    validation_error: str | None = None


class SourceDescriptor(BaseModel):
    """Which source a session imports from, plus profile/file metadata."""
    kind: SourceKind
    meta: dict[str, Any] = Field(default_factory=dict)


# ─── Session / Item Responses ─────────────────────────────────

class ImportSessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    owner_id: str
    source_kind: SourceKind
    status: SessionStatus
    cursor: int
    total_count: int
    source_meta: dict[str, Any]
    created_at: datetime
    updated_at: datetime


class ImportItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    session_id: uuid.UUID
    row_index: int
    external_id: str
    title: str
    platform_hint: str | None
    category_hint: str | None
    playtime_minutes: int | None
    completed_at: date | None
    status: ItemStatus
    match_confidence: MatchConfidence | None
    resolved_game_id: int | None
    resolved_record_id: int | None
    result_reason: ResultReason | None
    error_text: str | None
    prompt_kind: PromptKind | None


# ─── Prompts ──────────────────────────────────────────────────

class CandidateOption(BaseModel):
    """A catalog game or an external metadata result offered for selection."""
    game_id: int | None = None
    metadata_id: int | None = None
    title: str
    release_year: int | None = None
    score: float | None = Field(None, ge=0.0, le=100.0)


class PlatformOption(BaseModel):
    platform_id: int
    name: str


class FieldDiff(BaseModel):
    """A materially changed field between the existing record and the row."""
    field: UpdateField
    existing: str | None
    incoming: str | None


class PromptResponse(BaseModel):
    """
    A suspension point: the engine waits for the owner's decision.

    The presentation layer renders it and answers with a DecisionRequest
    for the same item.
    """
    session_id: uuid.UUID
    item_id: uuid.UUID
    row_index: int
    title: str
    prompt_kind: PromptKind
    candidates: list[CandidateOption] = Field(default_factory=list)
    platforms: list[PlatformOption] = Field(default_factory=list)
    update_fields: list[FieldDiff] = Field(default_factory=list)
    message: str | None = None


# ─── Decisions ────────────────────────────────────────────────

class DecisionRequest(BaseModel):
    """
    The owner's answer at a suspension point.

    Which fields are read depends on `kind`:
      - PICK_GAME / ENTER_GAME_ID: game_id
      - SEARCH_EXTERNAL: query
      - PICK_EXTERNAL: metadata_id
      - PICK_PLATFORM: platform_id or other_platform, plus completion_type,
        date_choice, custom_date for completion imports
      - CONFIRM_SAME: same_record
      - UPDATE_FIELDS: fields (empty means skip)
      - SKIP: nothing
    """
    owner_id: str
    kind: DecisionKind
    game_id: int | None = None
    metadata_id: int | None = None
    query: str | None = None
    platform_id: int | None = None
    other_platform: bool = False
    completion_type: str | None = None
    date_choice: DateChoice | None = None
    custom_date: date | None = None
    same_record: bool | None = None
    fields: list[UpdateField] = Field(default_factory=list)


class OwnerRequest(BaseModel):
    """Body for lifecycle commands; only the owner may drive a session."""
    owner_id: str


class SteamFetchRequest(BaseModel):
    owner_id: str
    profile: str = Field(
        ...,
        description="SteamID64, profile URL, or vanity name",
    )


# ─── Reporting ────────────────────────────────────────────────

class ImportCounts(BaseModel):
    pending: int = 0
    added: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0


class FailedItemSummary(BaseModel):
    item_id: uuid.UUID
    row_index: int
    title: str
    result_reason: ResultReason | None
    error_text: str | None


class ImportReport(BaseModel):
    """End-of-run (or on-demand) summary, computed from the item rows."""
    session_id: uuid.UUID
    source_kind: SourceKind
    status: SessionStatus
    total_count: int
    cursor: int
    counts: ImportCounts
    reasons: dict[str, int] = Field(default_factory=dict)
    failed_items: list[FailedItemSummary] = Field(default_factory=list)


class StepResponse(BaseModel):
    """
    Result of driving a session one step.

    `prompt` is set while an item awaits input; `report` once the
    session has completed. A paused or canceled session returns neither.
    """
    state: Literal["prompt", "finished", "paused", "canceled"]
    session: ImportSessionResponse
    prompt: PromptResponse | None = None
    report: ImportReport | None = None
