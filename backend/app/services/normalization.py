"""
Title and value normalization utilities.

Used for catalog matching and for the material-change comparison of
imported rows against existing records. Normalizations are composable:
each is a small function that can be chained.
"""

import re
from datetime import date, datetime, timezone


def normalize_whitespace(value: str) -> str:
    """Collapse whitespace and strip."""
    return re.sub(r"\s+", " ", value.strip())


def normalize_case(value: str) -> str:
    """Lowercase for case-insensitive comparison."""
    return value.lower()


# ─── Title Normalization ──────────────────────────────────────

# External sources commonly append a release year or edition:
#   "Game Title (2019)"          → "Game Title"
#   "Doom (Classic Edition)  "   → "Doom"
_TRAILING_PARENTHETICAL = re.compile(r"\s*\([^)]*\)\s*$")

_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9]+")

# Trademark glyphs and curly quotes that sources sprinkle into names.
_DECORATIONS = re.compile(r"[™®©‘’“”]")


def strip_trailing_parenthetical(title: str) -> str:
    """Remove one trailing '(…)' suffix."""
    return _TRAILING_PARENTHETICAL.sub("", title).strip()


def title_key(title: str) -> str:
    """
    Case- and punctuation-insensitive comparison key.

    'Chrono Trigger (1995)' → 'chrono trigger'
    'Halo: Combat Evolved™' → 'halo combat evolved'
    """
    stripped = strip_trailing_parenthetical(_DECORATIONS.sub("", title))
    return normalize_whitespace(_NON_ALPHANUMERIC.sub(" ", normalize_case(stripped)))


def normalize_title_for_search(title: str) -> str:
    """Display-case title with the suffix and decorations removed."""
    return normalize_whitespace(strip_trailing_parenthetical(_DECORATIONS.sub("", title)))


def build_title_variants(title: str) -> list[str]:
    """
    Alternate spellings to retry a catalog search with.

    'The Witcher 3: Wild Hunt' → ['The Witcher 3: Wild Hunt',
    'The Witcher 3 Wild Hunt', 'The Witcher 3', 'Witcher 3: Wild Hunt', ...]
    Order is stable and duplicates are dropped.
    """
    base = normalize_title_for_search(title)
    variants = [base]
    if ":" in base:
        variants.append(normalize_whitespace(base.replace(":", " ")))
        variants.append(base.split(":", 1)[0].strip())
    if base.lower().startswith("the "):
        variants.append(base[4:].strip())
    elif base:
        variants.append(f"The {base}")
    if "&" in base:
        variants.append(normalize_whitespace(base.replace("&", "and")))

    seen: set[str] = set()
    unique: list[str] = []
    for v in variants:
        if v and v.lower() not in seen:
            seen.add(v.lower())
            unique.append(v)
    return unique


def title_tokens(title: str, min_length: int = 3) -> list[str]:
    """Significant words of a title, for the per-token fallback search."""
    stop = {"the", "and", "of", "edition"}
    return [t for t in title_key(title).split() if len(t) >= min_length and t not in stop]


# ─── Value Parsing ────────────────────────────────────────────

_PLAYTIME_HMS = re.compile(r"^\s*(\d+)h:(\d+)m:(\d+)s\s*$", re.IGNORECASE)


def parse_playtime_minutes(value: str | None) -> int | None:
    """
    Parse a play-time string to whole minutes.

    '12h:30m:0s' → 750
    '90'         → 90 (plain number is minutes)
    Returns None for blank or unrecognized input.
    """
    if value is None:
        return None
    value = str(value).strip()
    if not value:
        return None
    m = _PLAYTIME_HMS.match(value)
    if m:
        hours, minutes = int(m.group(1)), int(m.group(2))
        return hours * 60 + minutes
    try:
        return int(float(value))
    except ValueError:
        return None


def parse_us_date(value: str | None) -> date | None:
    """
    Parse 'M/D/YYYY' (or ISO 'YYYY-MM-DD') to a date.

    Returns None for blank or invalid input.
    """
    if value is None:
        return None
    value = str(value).strip()
    if not value:
        return None
    for fmt in ("%m/%d/%Y", "%Y-%m-%d"):
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return None


def from_unix_seconds(value: int | None) -> datetime | None:
    """Unix epoch seconds → aware UTC datetime (0 and None mean unknown)."""
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


# ─── Value Comparison ─────────────────────────────────────────

def categories_match(val_a: str | None, val_b: str | None) -> bool:
    """Categorical fields differ if they differ at all (after trimming/case)."""
    if val_a is None and val_b is None:
        return True
    if val_a is None or val_b is None:
        return False
    return normalize_case(normalize_whitespace(val_a)) == normalize_case(normalize_whitespace(val_b))


def same_calendar_date(val_a: date | datetime | None, val_b: date | datetime | None) -> bool:
    """Two dates match when they fall on the same calendar date."""
    if val_a is None and val_b is None:
        return True
    if val_a is None or val_b is None:
        return False
    if isinstance(val_a, datetime):
        val_a = val_a.date()
    if isinstance(val_b, datetime):
        val_b = val_b.date()
    return val_a == val_b


def playtime_is_material(
    existing: int | None,
    incoming: int | None,
    threshold_minutes: int,
) -> bool:
    """
    A play-time difference is material at or above the threshold.

    Unknown incoming play-time is never material; unknown existing
    play-time with a known incoming value always is.
    """
    if incoming is None:
        return False
    if existing is None:
        return True
    return abs(existing - incoming) >= threshold_minutes
