"""
Shared test fixtures.

Uses an in-memory SQLite database for fast testing.
JSONB columns are compiled as JSON and UUID columns as CHAR(36) for
SQLite compatibility. The driver's own transaction handling is turned
off so SAVEPOINTs (used by the record stores) behave as on PostgreSQL.
For integration tests against PostgreSQL, point DATABASE_URL at it.
"""

from typing import AsyncGenerator

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event, select
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.ext.compiler import compiles

from app.api.routes.imports import get_metadata_source
from app.core.database import Base, get_db
from app.main import app
from app.models.catalog import Game, GamePlatform, Platform
from app.models.enums import SourceKind
from app.models.imports import ImportSession
from app.schemas.imports import RawRow, SourceDescriptor
from app.services import session_manager
from app.services.igdb import ExternalGame
from app.services.normalization import title_key
from app.services.orchestrator import ImportEngine
from tests.fixtures.fakes import FakeMetadataSource


# ─── SQLite compatibility: JSONB → JSON, UUID → CHAR(36) ──────

@compiles(JSONB, "sqlite")
def compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


@compiles(UUID, "sqlite")
def compile_uuid_sqlite(type_, compiler, **kw):
    return "CHAR(36)"


# Use SQLite async for tests (aiosqlite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine = create_async_engine(TEST_DATABASE_URL, echo=False)
test_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@event.listens_for(engine.sync_engine, "connect")
def _sqlite_connect(dbapi_connection, connection_record):
    # Let SQLAlchemy emit BEGIN itself so SAVEPOINT works.
    dbapi_connection.isolation_level = None


@event.listens_for(engine.sync_engine, "begin")
def _sqlite_begin(conn):
    conn.exec_driver_sql("BEGIN")


@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Provide a test database session."""
    async with test_session() as session:
        yield session


@pytest_asyncio.fixture
async def metadata() -> FakeMetadataSource:
    """External metadata source with a few games the catalog lacks."""
    return FakeMetadataSource([
        ExternalGame(1001, "Outer Wilds", 2019, ["PC (Microsoft Windows)", "PlayStation 4"]),
        ExternalGame(1002, "Celeste", 2018, ["PC (Microsoft Windows)"]),
        ExternalGame(1003, "Chrono Cross", 1999, ["PlayStation"]),
    ])


@pytest_asyncio.fixture
async def engine_factory(db_session: AsyncSession, metadata: FakeMetadataSource):
    """Build an ImportEngine over the test session; no post-run hooks by default."""
    def _make(**overrides) -> ImportEngine:
        options = {"metadata": metadata, "hooks": []}
        options.update(overrides)
        return ImportEngine(db_session, **options)
    return _make


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    metadata: FakeMetadataSource,
) -> AsyncGenerator[AsyncClient, None]:
    """Provide a test HTTP client with database and metadata overrides."""

    async def override_get_db():
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_metadata_source] = lambda: metadata

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# ─── Helper factories ─────────────────────────────────────────

@pytest_asyncio.fixture
async def make_platform(db_session: AsyncSession):
    """Factory fixture for platforms; returns the existing row for a known name."""
    async def _make(name: str, abbreviation: str | None = None) -> Platform:
        result = await db_session.execute(select(Platform).where(Platform.name == name))
        platform = result.scalar_one_or_none()
        if platform is None:
            platform = Platform(name=name, abbreviation=abbreviation)
            db_session.add(platform)
            await db_session.flush()
        return platform
    return _make


@pytest_asyncio.fixture
async def make_game(db_session: AsyncSession, make_platform):
    """Factory fixture for catalog games with their release platforms."""
    async def _make(
        title: str,
        release_year: int | None = None,
        platforms: tuple[str, ...] = ("PC (Microsoft Windows)",),
        igdb_id: int | None = None,
    ) -> Game:
        game = Game(
            title=title,
            title_key=title_key(title),
            release_year=release_year,
            igdb_id=igdb_id,
        )
        db_session.add(game)
        await db_session.flush()
        for name in platforms:
            platform = await make_platform(name)
            db_session.add(GamePlatform(game_id=game.id, platform_id=platform.id))
        await db_session.flush()
        return game
    return _make


@pytest_asyncio.fixture
async def make_session(db_session: AsyncSession):
    """Factory fixture for staged import sessions."""
    async def _make(
        rows: list[RawRow] | list[str],
        owner_id: str = "owner-1",
        kind: SourceKind = SourceKind.STEAM,
    ) -> ImportSession:
        staged = [
            RawRow(title=r, external_id=f"ext:{title_key(r)}") if isinstance(r, str) else r
            for r in rows
        ]
        return await session_manager.create_session(
            db_session, owner_id, SourceDescriptor(kind=kind), staged,
        )
    return _make
