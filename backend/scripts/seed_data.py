"""
Seed data script: creates a small game catalog for local imports.

Seeds:
  - 8 Platforms (PC, Sony, Nintendo, Microsoft)
  - 10 Games with their release platforms, including two distinct
    "Doom" titles so ambiguous matching can be tried by hand
  - 1 Now Playing entry for the demo member

Usage:
  python -m scripts.seed_data

  Alternatively, import and call seed_catalog() with a database session.
"""

import asyncio

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import settings
from app.models.catalog import Game, GamePlatform, Platform
from app.models.membership import NowPlayingEntry
from app.services.normalization import title_key

DEMO_USER_ID = "100000000000000001"


# ─── Catalog data ──────────────────────────────────────────────

PLATFORMS = [
    ("PC (Microsoft Windows)", "PC"),
    ("PlayStation", "PS1"),
    ("PlayStation 4", "PS4"),
    ("PlayStation 5", "PS5"),
    ("Super Nintendo Entertainment System", "SNES"),
    ("Nintendo Switch", "Switch"),
    ("Xbox One", "XONE"),
    ("Xbox Series X|S", "Series X|S"),
]

# (title, release year, platform names)
GAMES = [
    ("Chrono Trigger", 1995, ["Super Nintendo Entertainment System"]),
    ("Doom", 1993, ["PC (Microsoft Windows)"]),
    ("Doom", 2016, ["PC (Microsoft Windows)", "PlayStation 4", "Xbox One"]),
    ("Doom Eternal", 2020, ["PC (Microsoft Windows)", "PlayStation 4", "Xbox One", "Nintendo Switch"]),
    ("Hades", 2020, ["PC (Microsoft Windows)", "Nintendo Switch", "PlayStation 5", "Xbox Series X|S"]),
    ("Portal 2", 2011, ["PC (Microsoft Windows)"]),
    ("The Legend of Zelda: Breath of the Wild", 2017, ["Nintendo Switch"]),
    ("Final Fantasy VII", 1997, ["PlayStation", "PC (Microsoft Windows)"]),
    ("Stardew Valley", 2016, ["PC (Microsoft Windows)", "Nintendo Switch", "PlayStation 4", "Xbox One"]),
    ("Halo Infinite", 2021, ["PC (Microsoft Windows)", "Xbox One", "Xbox Series X|S"]),
]


# ─── Seed function ─────────────────────────────────────────────

async def seed_catalog(db: AsyncSession) -> dict[str, int]:
    """
    Create the demo catalog.
    Returns a dict of "<title> (<year>)" and platform names → ids.
    """
    ids: dict[str, int] = {}

    # ── Platforms ──────────────────────────────────────────
    platforms: dict[str, Platform] = {}
    for name, abbreviation in PLATFORMS:
        platform = Platform(name=name, abbreviation=abbreviation)
        db.add(platform)
        platforms[name] = platform
    await db.flush()
    for name, platform in platforms.items():
        ids[name] = platform.id

    # ── Games & releases ───────────────────────────────────
    games: list[tuple[Game, list[str]]] = []
    for title, year, platform_names in GAMES:
        game = Game(title=title, title_key=title_key(title), release_year=year)
        db.add(game)
        games.append((game, platform_names))
    await db.flush()

    for game, platform_names in games:
        ids[f"{game.title} ({game.release_year})"] = game.id
        for name in platform_names:
            db.add(GamePlatform(game_id=game.id, platform_id=platforms[name].id))

    # ── Now playing ────────────────────────────────────────
    db.add(NowPlayingEntry(user_id=DEMO_USER_ID, game_id=ids["Hades (2020)"]))
    await db.flush()

    print("Seeded catalog:")
    print(f"  Platforms:   {len(platforms)}")
    print(f"  Games:       {len(games)}")
    print(f"  Releases:    {sum(len(p) for _, p in games)}")
    print(f"  Demo user:   {DEMO_USER_ID}")

    return ids


# ─── CLI entry point ───────────────────────────────────────────

async def main():
    engine = create_async_engine(settings.DATABASE_URL, echo=False)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with session_factory() as session:
        async with session.begin():
            await seed_catalog(session)

    await engine.dispose()
    print("\nSeed complete.")


if __name__ == "__main__":
    asyncio.run(main())
