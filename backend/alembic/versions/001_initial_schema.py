"""Initial schema: catalog, member records, and the import engine tables.

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

OPEN_STATUS_PREDICATE = sa.text("status IN ('ACTIVE', 'PAUSED')")


def upgrade() -> None:
    # ── Catalog ─────────────────────────────────────────────
    op.create_table(
        "games",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("title_key", sa.String(500), nullable=False),
        sa.Column("igdb_id", sa.Integer, nullable=True, unique=True),
        sa.Column("release_year", sa.Integer, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True),
                  nullable=False, server_default=sa.func.now()),
    )
    op.create_index("idx_games_title_key", "games", ["title_key"])

    op.create_table(
        "platforms",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(200), nullable=False, unique=True),
        sa.Column("abbreviation", sa.String(50), nullable=True),
        sa.Column("igdb_id", sa.Integer, nullable=True, unique=True),
    )

    op.create_table(
        "game_platforms",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("game_id", sa.Integer,
                  sa.ForeignKey("games.id", ondelete="CASCADE"), nullable=False),
        sa.Column("platform_id", sa.Integer,
                  sa.ForeignKey("platforms.id", ondelete="CASCADE"), nullable=False),
        sa.UniqueConstraint("game_id", "platform_id", name="uq_game_platforms_game_platform"),
    )

    # ── Member records ──────────────────────────────────────
    op.create_table(
        "completions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("game_id", sa.Integer,
                  sa.ForeignKey("games.id", ondelete="CASCADE"), nullable=False),
        sa.Column("platform_id", sa.Integer, sa.ForeignKey("platforms.id"), nullable=True),
        sa.Column("completion_type", sa.String(100), nullable=False,
                  server_default="Main Story"),
        sa.Column("completed_at", sa.Date, nullable=True),
        sa.Column("playtime_minutes", sa.Integer, nullable=True),
        sa.Column("note", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True),
                  nullable=False, server_default=sa.func.now()),
    )
    op.create_index("idx_completions_user_game", "completions", ["user_id", "game_id"])

    op.create_table(
        "collection_entries",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("game_id", sa.Integer,
                  sa.ForeignKey("games.id", ondelete="CASCADE"), nullable=False),
        sa.Column("platform_id", sa.Integer, sa.ForeignKey("platforms.id"), nullable=True),
        sa.Column("ownership_type", sa.String(50), nullable=False, server_default="Digital"),
        sa.Column("note", sa.String(500), nullable=True),
        sa.Column("playtime_minutes", sa.Integer, nullable=True),
        sa.Column("last_played_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True),
                  nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint(
            "user_id", "game_id", "platform_id", "ownership_type",
            name="uq_collection_entries_user_game_platform_type",
        ),
    )

    op.create_table(
        "now_playing_entries",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("game_id", sa.Integer,
                  sa.ForeignKey("games.id", ondelete="CASCADE"), nullable=False),
        sa.Column("added_at", sa.DateTime(timezone=True),
                  nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "game_id", name="uq_now_playing_user_game"),
    )

    # ── Import sessions ─────────────────────────────────────
    op.create_table(
        "import_sessions",
        sa.Column("id", UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text("gen_random_uuid()")),
        sa.Column("owner_id", sa.String(64), nullable=False),
        sa.Column("source_kind", sa.String(32), nullable=False),
        sa.Column("status", sa.String(32), nullable=False, server_default="ACTIVE"),
        sa.Column("cursor", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("source_meta", JSONB, nullable=False,
                  server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True),
                  nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True),
                  nullable=False, server_default=sa.func.now()),
    )
    op.create_index("idx_import_sessions_owner", "import_sessions", ["owner_id"])
    # At most one open session per (owner, source kind)
    op.create_index(
        "uq_import_sessions_open_owner_kind",
        "import_sessions",
        ["owner_id", "source_kind"],
        unique=True,
        postgresql_where=OPEN_STATUS_PREDICATE,
    )

    # ── Import items ────────────────────────────────────────
    op.create_table(
        "import_items",
        sa.Column("id", UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text("gen_random_uuid()")),
        sa.Column("session_id", UUID(as_uuid=True),
                  sa.ForeignKey("import_sessions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("row_index", sa.Integer, nullable=False),
        sa.Column("external_id", sa.String(200), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("platform_hint", sa.String(100), nullable=True),
        sa.Column("region_hint", sa.String(100), nullable=True),
        sa.Column("category_hint", sa.String(100), nullable=True),
        sa.Column("playtime_minutes", sa.Integer, nullable=True),
        sa.Column("completed_at", sa.Date, nullable=True),
        sa.Column("last_played_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("note", sa.Text, nullable=True),
        sa.Column("explicit_game_id", sa.Integer, nullable=True),
        sa.Column("explicit_metadata_id", sa.Integer, nullable=True),
        sa.Column("raw_fields", JSONB, nullable=False,
                  server_default=sa.text("'{}'::jsonb")),
        sa.Column("status", sa.String(32), nullable=False, server_default="PENDING"),
        sa.Column("match_confidence", sa.String(32), nullable=True),
        sa.Column("candidate_snapshot", JSONB, nullable=True),
        sa.Column("resolved_game_id", sa.Integer, nullable=True),
        sa.Column("resolved_record_id", sa.Integer, nullable=True),
        sa.Column("result_reason", sa.String(32), nullable=True),
        sa.Column("error_text", sa.Text, nullable=True),
        sa.Column("prompt_kind", sa.String(32), nullable=True),
        sa.Column("draft_completion_type", sa.String(100), nullable=True),
        sa.Column("draft_date_choice", sa.String(32), nullable=True),
        sa.Column("draft_custom_date", sa.Date, nullable=True),
        sa.Column("draft_platform_id", sa.Integer, nullable=True),
        sa.Column("draft_other_platform", sa.Boolean, nullable=False,
                  server_default=sa.false()),
        sa.Column("draft_same_record", sa.Boolean, nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True),
                  nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("session_id", "row_index", name="uq_import_items_session_row"),
    )
    op.create_index(
        "idx_import_items_session_status", "import_items",
        ["session_id", "status", "row_index"],
    )
    op.create_index(
        "idx_import_items_external", "import_items",
        ["external_id", "result_reason"],
    )

    # ── External id → catalog game mapping cache ────────────
    op.create_table(
        "external_id_catalog_map",
        sa.Column("id", UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text("gen_random_uuid()")),
        sa.Column("source_kind", sa.String(32), nullable=False),
        sa.Column("external_id", sa.String(200), nullable=False),
        sa.Column("catalog_game_id", sa.Integer, nullable=True),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("created_by", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True),
                  nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True),
                  nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("source_kind", "external_id", name="uq_external_map_kind_id"),
    )


def downgrade() -> None:
    op.drop_table("external_id_catalog_map")
    op.drop_index("idx_import_items_external", table_name="import_items")
    op.drop_index("idx_import_items_session_status", table_name="import_items")
    op.drop_table("import_items")
    op.drop_index("uq_import_sessions_open_owner_kind", table_name="import_sessions")
    op.drop_index("idx_import_sessions_owner", table_name="import_sessions")
    op.drop_table("import_sessions")
    op.drop_table("now_playing_entries")
    op.drop_table("collection_entries")
    op.drop_index("idx_completions_user_game", table_name="completions")
    op.drop_table("completions")
    op.drop_table("game_platforms")
    op.drop_table("platforms")
    op.drop_index("idx_games_title_key", table_name="games")
    op.drop_table("games")
