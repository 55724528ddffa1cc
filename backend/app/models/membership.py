"""
Member-owned domain records the import engine produces.

  - Completion: a member finished a game (completion imports)
  - CollectionEntry: a member owns a game (library and collection imports)
  - NowPlayingEntry: a game on the member's in-progress list
"""

from datetime import date, datetime, timezone

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Completion(Base):
    """
    One completion of a game by a member.

    A member may complete the same game more than once, so there is no
    uniqueness on (user_id, game_id); the import engine asks before adding
    a second one.
    """

    __tablename__ = "completions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    game_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("games.id", ondelete="CASCADE"),
        nullable=False,
    )
    platform_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("platforms.id"),
        nullable=True,
    )
    completion_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default="Main Story",
        comment="Main Story, Main Story + Side Content, Completionist.",
    )
    completed_at: Mapped[date | None] = mapped_column(Date, nullable=True)
    playtime_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    __table_args__ = (
        Index("idx_completions_user_game", "user_id", "game_id"),
    )

    def __repr__(self) -> str:
        return f"<Completion #{self.id} user={self.user_id} game={self.game_id}>"


class CollectionEntry(Base):
    """One owned copy of a game on one platform."""

    __tablename__ = "collection_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    game_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("games.id", ondelete="CASCADE"),
        nullable=False,
    )
    platform_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("platforms.id"),
        nullable=True,
    )
    ownership_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="Digital",
        comment="Digital, Physical, Subscription, Other.",
    )
    note: Mapped[str | None] = mapped_column(String(500), nullable=True)
    playtime_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_played_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id", "game_id", "platform_id", "ownership_type",
            name="uq_collection_entries_user_game_platform_type",
        ),
    )

    def __repr__(self) -> str:
        return f"<CollectionEntry #{self.id} user={self.user_id} game={self.game_id}>"


class NowPlayingEntry(Base):
    __tablename__ = "now_playing_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    game_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("games.id", ondelete="CASCADE"),
        nullable=False,
    )
    added_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    __table_args__ = (
        UniqueConstraint("user_id", "game_id", name="uq_now_playing_user_game"),
    )

    def __repr__(self) -> str:
        return f"<NowPlayingEntry user={self.user_id} game={self.game_id}>"
