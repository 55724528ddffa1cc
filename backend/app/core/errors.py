"""
Exception taxonomy for the import engine.

Item-scoped failures (validation, resolution, collaborator rejections) are
caught by the orchestrator and recorded on the item; the session keeps
going. Anything else (the database being unreachable, programming errors)
propagates and rolls back the current step.
"""


class ImportEngineError(Exception):
    """Base class for all engine errors."""


class NotFoundError(ImportEngineError):
    """A session, item, or catalog record does not exist."""


class ConflictError(ImportEngineError):
    """The request conflicts with current state (e.g. duplicate active session)."""


class InvalidTransitionError(ConflictError):
    """A session status change not allowed by the state machine."""

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move import session from {current} to {requested}.")


class PermissionDeniedError(ImportEngineError):
    """Someone other than the session owner tried to drive it."""


class ImportValidationError(ImportEngineError):
    """Malformed input row or invalid manual id entry."""

    def __init__(self, message: str, reason: str = "INVALID_ROW"):
        self.reason = reason
        super().__init__(message)


class ResolutionFailure(ImportEngineError):
    """No catalog game or no platform could be resolved for an item."""

    def __init__(self, message: str, reason: str = "NO_CANDIDATE"):
        self.reason = reason
        super().__init__(message)


class CollaboratorError(ImportEngineError):
    """A domain store rejected a create/update (uniqueness, validation)."""


class ExternalServiceError(ImportEngineError):
    """The external metadata source or platform API failed."""

    def __init__(self, service: str, message: str, status_code: int | None = None):
        self.service = service
        self.status_code = status_code
        super().__init__(f"{service}: {message}")
