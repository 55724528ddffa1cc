"""
Closed enumerations for the import engine.

Stored as their names in VARCHAR columns (non-native enums) so the same
schema works on PostgreSQL and SQLite.
"""

import enum


class SourceKind(str, enum.Enum):
    STEAM = "STEAM"
    XBOX = "XBOX"
    COMPLETIONATOR = "COMPLETIONATOR"
    COLLECTION_FILE = "COLLECTION_FILE"


class RecordKind(str, enum.Enum):
    """Which domain record an import produces."""
    COMPLETION = "COMPLETION"
    COLLECTION = "COLLECTION"


class SessionStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    CANCELED = "CANCELED"


OPEN_SESSION_STATUSES = (SessionStatus.ACTIVE, SessionStatus.PAUSED)
TERMINAL_SESSION_STATUSES = (SessionStatus.COMPLETED, SessionStatus.CANCELED)


class ItemStatus(str, enum.Enum):
    PENDING = "PENDING"
    ADDED = "ADDED"
    UPDATED = "UPDATED"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"


class MatchConfidence(str, enum.Enum):
    EXACT = "EXACT"
    FUZZY = "FUZZY"
    MANUAL = "MANUAL"


class ResultReason(str, enum.Enum):
    AUTO_MATCH = "AUTO_MATCH"
    CSV_GAMEDB_ID = "CSV_GAMEDB_ID"
    CSV_IGDB_ID = "CSV_IGDB_ID"
    MANUAL_REMAP = "MANUAL_REMAP"
    DUPLICATE = "DUPLICATE"
    MANUAL_SKIP = "MANUAL_SKIP"
    SKIP_MAPPED = "SKIP_MAPPED"
    NO_CANDIDATE = "NO_CANDIDATE"
    INVALID_REMAP = "INVALID_REMAP"
    INVALID_ROW = "INVALID_ROW"
    PLATFORM_UNRESOLVED = "PLATFORM_UNRESOLVED"
    ADD_FAILED = "ADD_FAILED"


class MapStatus(str, enum.Enum):
    MAPPED = "MAPPED"
    SKIPPED = "SKIPPED"


class PromptKind(str, enum.Enum):
    """Suspension points where the engine waits for the human."""
    SELECT_CANDIDATE = "SELECT_CANDIDATE"
    SELECT_EXTERNAL = "SELECT_EXTERNAL"
    SELECT_PLATFORM = "SELECT_PLATFORM"
    CONFIRM_SAME_RECORD = "CONFIRM_SAME_RECORD"
    SELECT_UPDATE_FIELDS = "SELECT_UPDATE_FIELDS"


class DateChoice(str, enum.Enum):
    """Which completion date to record for a new completion."""
    ROW = "ROW"
    TODAY = "TODAY"
    UNKNOWN = "UNKNOWN"
    CUSTOM = "CUSTOM"


class UpdateField(str, enum.Enum):
    CATEGORY = "CATEGORY"
    COMPLETED_AT = "COMPLETED_AT"
    PLAYTIME = "PLAYTIME"


class DecisionKind(str, enum.Enum):
    """Human answers accepted at a suspension point."""
    PICK_GAME = "PICK_GAME"
    ENTER_GAME_ID = "ENTER_GAME_ID"
    SEARCH_EXTERNAL = "SEARCH_EXTERNAL"
    PICK_EXTERNAL = "PICK_EXTERNAL"
    PICK_PLATFORM = "PICK_PLATFORM"
    CONFIRM_SAME = "CONFIRM_SAME"
    UPDATE_FIELDS = "UPDATE_FIELDS"
    SKIP = "SKIP"
