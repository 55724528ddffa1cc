"""
Platform-name dictionary.

External sources describe platforms in their own vocabulary ("PS4",
"Nintendo Switch", "Xbox Series X|S", "PC"). The catalog stores release
platforms by canonical name. Each alias entry maps a lowercased source
label to the catalog platform names it may stand for, in preference
order. Adding a label requires no migration, just an entry here.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class PlatformAlias:
    """A source platform label and the catalog names it resolves to."""
    label: str
    catalog_names: list[str] = field(default_factory=list)


# ─── Alias Registry ────────────────────────────────────────────

PLATFORM_ALIASES: dict[str, PlatformAlias] = {}


def register_alias(alias: PlatformAlias) -> PlatformAlias:
    """Register a source platform label (case-insensitive)."""
    PLATFORM_ALIASES[alias.label.strip().lower()] = alias
    return alias


def get_alias(label: str) -> PlatformAlias | None:
    """Look up the alias entry for a raw platform label."""
    return PLATFORM_ALIASES.get(label.strip().lower())


def resolve_platform_id(
    hint: str | None,
    platforms: list[tuple[int, str]],
) -> int | None:
    """
    Resolve a raw platform hint against a game's release platforms.

    `platforms` is a list of (platform_id, catalog_name). The hint matches
    either a catalog name directly or through the alias registry.
    Returns None when nothing matches.
    """
    if not hint or not hint.strip():
        return None
    by_name = {name.strip().lower(): pid for pid, name in platforms}

    direct = by_name.get(hint.strip().lower())
    if direct is not None:
        return direct

    alias = get_alias(hint)
    if alias is None:
        return None
    for name in alias.catalog_names:
        pid = by_name.get(name.lower())
        if pid is not None:
            return pid
    return None


# ─── PC ────────────────────────────────────────────────────────

register_alias(PlatformAlias("pc", ["PC (Microsoft Windows)", "PC"]))
register_alias(PlatformAlias("windows", ["PC (Microsoft Windows)", "PC"]))
register_alias(PlatformAlias("steam", ["PC (Microsoft Windows)", "PC"]))
register_alias(PlatformAlias("steam deck", ["PC (Microsoft Windows)", "PC"]))
register_alias(PlatformAlias("mac", ["Mac"]))
register_alias(PlatformAlias("linux", ["Linux"]))


# ─── Sony ──────────────────────────────────────────────────────

register_alias(PlatformAlias("ps1", ["PlayStation"]))
register_alias(PlatformAlias("psx", ["PlayStation"]))
register_alias(PlatformAlias("playstation", ["PlayStation"]))
register_alias(PlatformAlias("ps2", ["PlayStation 2"]))
register_alias(PlatformAlias("playstation 2", ["PlayStation 2"]))
register_alias(PlatformAlias("ps3", ["PlayStation 3"]))
register_alias(PlatformAlias("playstation 3", ["PlayStation 3"]))
register_alias(PlatformAlias("ps4", ["PlayStation 4"]))
register_alias(PlatformAlias("playstation 4", ["PlayStation 4"]))
register_alias(PlatformAlias("ps5", ["PlayStation 5"]))
register_alias(PlatformAlias("playstation 5", ["PlayStation 5"]))
register_alias(PlatformAlias("psp", ["PlayStation Portable"]))
register_alias(PlatformAlias("vita", ["PlayStation Vita"]))
register_alias(PlatformAlias("ps vita", ["PlayStation Vita"]))
register_alias(PlatformAlias("playstation vita", ["PlayStation Vita"]))


# ─── Nintendo ──────────────────────────────────────────────────

register_alias(PlatformAlias("nes", ["Nintendo Entertainment System"]))
register_alias(PlatformAlias("snes", ["Super Nintendo Entertainment System"]))
register_alias(PlatformAlias("super nintendo", ["Super Nintendo Entertainment System"]))
register_alias(PlatformAlias("n64", ["Nintendo 64"]))
register_alias(PlatformAlias("nintendo 64", ["Nintendo 64"]))
register_alias(PlatformAlias("gamecube", ["Nintendo GameCube"]))
register_alias(PlatformAlias("gcn", ["Nintendo GameCube"]))
register_alias(PlatformAlias("wii", ["Wii"]))
register_alias(PlatformAlias("wii u", ["Wii U"]))
register_alias(PlatformAlias("switch", ["Nintendo Switch"]))
register_alias(PlatformAlias("nintendo switch", ["Nintendo Switch"]))
register_alias(PlatformAlias("switch 2", ["Nintendo Switch 2"]))
register_alias(PlatformAlias("game boy", ["Game Boy"]))
register_alias(PlatformAlias("gbc", ["Game Boy Color"]))
register_alias(PlatformAlias("game boy color", ["Game Boy Color"]))
register_alias(PlatformAlias("gba", ["Game Boy Advance"]))
register_alias(PlatformAlias("game boy advance", ["Game Boy Advance"]))
register_alias(PlatformAlias("ds", ["Nintendo DS"]))
register_alias(PlatformAlias("nintendo ds", ["Nintendo DS"]))
register_alias(PlatformAlias("3ds", ["Nintendo 3DS", "New Nintendo 3DS"]))
register_alias(PlatformAlias("nintendo 3ds", ["Nintendo 3DS", "New Nintendo 3DS"]))


# ─── Microsoft ─────────────────────────────────────────────────

register_alias(PlatformAlias("xbox", ["Xbox"]))
register_alias(PlatformAlias("xbox 360", ["Xbox 360"]))
register_alias(PlatformAlias("xbox one", ["Xbox One"]))
register_alias(PlatformAlias("xbox series", ["Xbox Series X|S"]))
register_alias(PlatformAlias("xbox series x", ["Xbox Series X|S"]))
register_alias(PlatformAlias("xbox series x|s", ["Xbox Series X|S"]))
register_alias(PlatformAlias("xboxseries", ["Xbox Series X|S", "Xbox One"]))
register_alias(PlatformAlias("xboxone", ["Xbox One", "Xbox Series X|S"]))


# ─── Sega ──────────────────────────────────────────────────────

register_alias(PlatformAlias("genesis", ["Sega Mega Drive/Genesis"]))
register_alias(PlatformAlias("mega drive", ["Sega Mega Drive/Genesis"]))
register_alias(PlatformAlias("saturn", ["Sega Saturn"]))
register_alias(PlatformAlias("dreamcast", ["Dreamcast"]))
