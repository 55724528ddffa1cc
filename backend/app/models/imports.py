"""
Import engine tables: sessions, items, and the external-id mapping cache.

A session exclusively owns its items (cascade). The mapping cache is a
shared, independent memo with no ownership relation to any session:
  - ImportSession: one run of importing one user's external library
  - ImportItem: one row of that library, processed exactly once
  - ExternalCatalogMap: external id → catalog game id, for all users
"""

import uuid
from datetime import date, datetime, timezone

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.models.enums import (
    DateChoice,
    ItemStatus,
    MapStatus,
    MatchConfidence,
    PromptKind,
    ResultReason,
    SessionStatus,
    SourceKind,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum(enum_cls: type, name: str) -> Enum:
    return Enum(enum_cls, name=name, native_enum=False, length=32)


class ImportSession(Base):
    """
    One run of importing one user's external library.

    The cursor is the row index of the next unprocessed item and only moves
    forward. COMPLETED and CANCELED are terminal.
    """

    __tablename__ = "import_sessions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    owner_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Chat-platform user id of the member importing.",
    )
    source_kind: Mapped[SourceKind] = mapped_column(
        _enum(SourceKind, "import_source_kind"),
        nullable=False,
    )
    status: Mapped[SessionStatus] = mapped_column(
        _enum(SessionStatus, "import_session_status"),
        nullable=False,
        default=SessionStatus.ACTIVE,
    )
    cursor: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Row index of the next unprocessed item.",
    )
    total_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    source_meta: Mapped[dict] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        comment="Platform profile or file metadata for the source.",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    items: Mapped[list["ImportItem"]] = relationship(
        "ImportItem",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="ImportItem.row_index",
        lazy="raise",
    )

    __table_args__ = (
        Index("idx_import_sessions_owner", "owner_id"),
        # At most one open session per (owner, source kind).
        Index(
            "uq_import_sessions_open_owner_kind",
            "owner_id",
            "source_kind",
            unique=True,
            postgresql_where=text("status IN ('ACTIVE', 'PAUSED')"),
            sqlite_where=text("status IN ('ACTIVE', 'PAUSED')"),
        ),
    )

    def __repr__(self) -> str:
        return f"<ImportSession {self.source_kind}:{self.owner_id} {self.status} {self.cursor}/{self.total_count}>"


class ImportItem(Base):
    """
    One row of the external library.

    Created in bulk as PENDING, mutated once per processing pass. The
    draft_* columns and prompt_kind persist a half-finished human decision
    so a restart re-renders the same prompt instead of losing input.
    """

    __tablename__ = "import_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    session_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("import_sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    row_index: Mapped[int] = mapped_column(Integer, nullable=False)

    # Raw row as received from the source
    external_id: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        comment="Source-specific id: Steam app id, Xbox title id, title key.",
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    platform_hint: Mapped[str | None] = mapped_column(String(100), nullable=True)
    region_hint: Mapped[str | None] = mapped_column(String(100), nullable=True)
    category_hint: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        comment="Completion type or ownership type as given by the source.",
    )
    playtime_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    completed_at: Mapped[date | None] = mapped_column(Date, nullable=True)
    last_played_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    explicit_game_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    explicit_metadata_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    raw_fields: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)

    # Outcome
    status: Mapped[ItemStatus] = mapped_column(
        _enum(ItemStatus, "import_item_status"),
        nullable=False,
        default=ItemStatus.PENDING,
    )
    match_confidence: Mapped[MatchConfidence | None] = mapped_column(
        _enum(MatchConfidence, "import_match_confidence"),
        nullable=True,
    )
    candidate_snapshot: Mapped[dict | None] = mapped_column(
        JSONB,
        nullable=True,
        comment="Candidates offered for this item, for audit and prompt re-render.",
    )
    resolved_game_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    resolved_record_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    result_reason: Mapped[ResultReason | None] = mapped_column(
        _enum(ResultReason, "import_result_reason"),
        nullable=True,
    )
    error_text: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Persisted draft of an in-progress human decision
    prompt_kind: Mapped[PromptKind | None] = mapped_column(
        _enum(PromptKind, "import_prompt_kind"),
        nullable=True,
    )
    draft_completion_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    draft_date_choice: Mapped[DateChoice | None] = mapped_column(
        _enum(DateChoice, "import_date_choice"),
        nullable=True,
    )
    draft_custom_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    draft_platform_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    draft_other_platform: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    draft_same_record: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    session: Mapped["ImportSession"] = relationship(
        "ImportSession",
        back_populates="items",
    )

    __table_args__ = (
        UniqueConstraint("session_id", "row_index", name="uq_import_items_session_row"),
        Index("idx_import_items_session_status", "session_id", "status", "row_index"),
        Index("idx_import_items_external", "external_id", "result_reason"),
    )

    def __repr__(self) -> str:
        return f"<ImportItem #{self.row_index} {self.title!r} {self.status}>"


class ExternalCatalogMap(Base):
    """
    Cross-session, cross-user memo: external id → catalog game id.

    A SKIPPED entry records a deliberate "no catalog counterpart" decision.
    Rows are overwritten, never deleted.
    """

    __tablename__ = "external_id_catalog_map"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    source_kind: Mapped[SourceKind] = mapped_column(
        _enum(SourceKind, "import_source_kind"),
        nullable=False,
    )
    external_id: Mapped[str] = mapped_column(String(200), nullable=False)
    catalog_game_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[MapStatus] = mapped_column(
        _enum(MapStatus, "import_map_status"),
        nullable=False,
    )
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    __table_args__ = (
        UniqueConstraint("source_kind", "external_id", name="uq_external_map_kind_id"),
    )

    def __repr__(self) -> str:
        return f"<ExternalCatalogMap {self.source_kind}:{self.external_id} → {self.catalog_game_id} {self.status}>"
