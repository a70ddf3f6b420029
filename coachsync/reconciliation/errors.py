"""Error kinds raised by the reconciliation engine."""

from __future__ import annotations


class ReconciliationError(Exception):
    """Base class for every reconciliation failure."""


class MalformedRecordError(ReconciliationError, ValueError):
    """A raw platform payload cannot be normalized.

    Attributes:
        platform:    Platform slug the payload came from.
        external_id: External record ID, if it could be read.
    """

    def __init__(
        self, message: str, platform: str = "", external_id: str | None = None
    ) -> None:
        super().__init__(message)
        self.platform = platform
        self.external_id = external_id


class InvalidPrecedenceError(ReconciliationError, ValueError):
    """A precedence rule was rejected at write time; nothing was stored."""


class InvalidResolutionError(ReconciliationError, ValueError):
    """Manual resolution inputs do not fit the conflict they target."""


class AlreadyResolvedError(ReconciliationError):
    """The conflict is already RESOLVED; resolution is one-way."""

    def __init__(self, conflict_id: str) -> None:
        super().__init__(f"Conflict {conflict_id} is already resolved")
        self.conflict_id = conflict_id


class UnknownConflictError(ReconciliationError, LookupError):
    """No conflict exists with the given ID."""

    def __init__(self, conflict_id: str) -> None:
        super().__init__(f"Conflict not found: {conflict_id}")
        self.conflict_id = conflict_id
