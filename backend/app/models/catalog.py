"""
Shared game catalog: games, platforms, and release rows.

The import engine only references catalog ids. These tables back the
default CatalogService and are populated by seed data or by on-demand
imports from the external metadata source.
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Game(Base):
    """A canonical, de-duplicated game title."""

    __tablename__ = "games"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    title_key: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        comment="Normalized title: suffix stripped, lowercased, punctuation removed.",
    )
    igdb_id: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        unique=True,
        comment="Id in the external metadata source, when imported from it.",
    )
    release_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    releases: Mapped[list["GamePlatform"]] = relationship(
        "GamePlatform",
        back_populates="game",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        Index("idx_games_title_key", "title_key"),
    )

    def __repr__(self) -> str:
        return f"<Game #{self.id} {self.title!r}>"


class Platform(Base):
    __tablename__ = "platforms"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    abbreviation: Mapped[str | None] = mapped_column(String(50), nullable=True)
    igdb_id: Mapped[int | None] = mapped_column(Integer, nullable=True, unique=True)

    def __repr__(self) -> str:
        return f"<Platform #{self.id} {self.name}>"


class GamePlatform(Base):
    """A release of a game on a platform."""

    __tablename__ = "game_platforms"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    game_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("games.id", ondelete="CASCADE"),
        nullable=False,
    )
    platform_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("platforms.id", ondelete="CASCADE"),
        nullable=False,
    )

    game: Mapped["Game"] = relationship("Game", back_populates="releases")
    platform: Mapped["Platform"] = relationship("Platform", lazy="joined")

    __table_args__ = (
        UniqueConstraint("game_id", "platform_id", name="uq_game_platforms_game_platform"),
    )

    def __repr__(self) -> str:
        return f"<GamePlatform game={self.game_id} platform={self.platform_id}>"
