"""Persistence contracts for conflicts and precedence rules.

The engine talks to storage only through the two protocols below.  The
in-memory implementations back the tests and single-process use; the
PostgreSQL implementations live in ``coachsync.reconciliation.postgres``.

Conflict transitions are compare-and-swap: ``transition`` applies an update
only if the persisted status is still one of ``from_statuses`` and bumps the
row version.  A caller that loses the race gets ``None`` back and must
re-read the conflict.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Protocol

from coachsync.reconciliation.base import ConflictStatus, DataConflict, PrecedenceRule
from coachsync.reconciliation.errors import UnknownConflictError

logger = logging.getLogger("coachsync.reconciliation.stores")


class ConflictStore(Protocol):
    async def save(self, conflict: DataConflict) -> DataConflict:
        """Persist a newly detected conflict."""
        ...

    async def get(self, conflict_id: str) -> DataConflict | None:
        ...

    async def transition(
        self, updated: DataConflict, from_statuses: frozenset[ConflictStatus]
    ) -> DataConflict | None:
        """Persist ``updated`` if the stored status is in ``from_statuses``.

        Returns the persisted conflict (with its new version), or None when
        the stored status had already moved on.

        Raises:
            UnknownConflictError: If no conflict with that ID is stored.
        """
        ...

    async def find_by_athlete_id(self, athlete_id: str) -> list[DataConflict]:
        ...

    async def find_by_status(
        self, *statuses: ConflictStatus, athlete_id: str | None = None
    ) -> list[DataConflict]:
        ...


class PrecedenceRuleStore(Protocol):
    async def save(self, rule: PrecedenceRule) -> PrecedenceRule:
        """Store ``rule`` as the athlete's only rule, replacing any previous one."""
        ...

    async def find_by_athlete_id(self, athlete_id: str) -> PrecedenceRule | None:
        ...


# ---------------------------------------------------------------------------
# In-memory implementations
# ---------------------------------------------------------------------------


class InMemoryConflictStore:
    """Process-local conflict store.

    Every mutation happens under one lock, so the status check and the write
    in ``transition`` are atomic with respect to other callers.
    """

    def __init__(self) -> None:
        self._conflicts: dict[str, DataConflict] = {}
        self._lock = threading.Lock()

    async def save(self, conflict: DataConflict) -> DataConflict:
        with self._lock:
            if conflict.id in self._conflicts:
                raise ValueError(
                    f"Conflict {conflict.id} is already stored; use transition()"
                )
            self._conflicts[conflict.id] = conflict
        return conflict

    async def get(self, conflict_id: str) -> DataConflict | None:
        return self._conflicts.get(conflict_id)

    async def transition(
        self, updated: DataConflict, from_statuses: frozenset[ConflictStatus]
    ) -> DataConflict | None:
        with self._lock:
            current = self._conflicts.get(updated.id)
            if current is None:
                raise UnknownConflictError(updated.id)
            if current.status not in from_statuses:
                logger.debug(
                    "CAS lost on conflict %s: stored status %s not in %s",
                    updated.id,
                    current.status.value,
                    sorted(s.value for s in from_statuses),
                )
                return None
            persisted = replace(updated, version=current.version + 1)
            self._conflicts[updated.id] = persisted
        return persisted

    async def find_by_athlete_id(self, athlete_id: str) -> list[DataConflict]:
        return [c for c in self._conflicts.values() if c.athlete_id == athlete_id]

    async def find_by_status(
        self, *statuses: ConflictStatus, athlete_id: str | None = None
    ) -> list[DataConflict]:
        return [
            c
            for c in self._conflicts.values()
            if c.status in statuses and (athlete_id is None or c.athlete_id == athlete_id)
        ]

    def __len__(self) -> int:
        return len(self._conflicts)


class InMemoryPrecedenceRuleStore:
    """Process-local precedence rule store: one rule per athlete, last write wins."""

    def __init__(self) -> None:
        self._rules: dict[str, PrecedenceRule] = {}
        self._lock = threading.Lock()

    async def save(self, rule: PrecedenceRule) -> PrecedenceRule:
        with self._lock:
            self._rules[rule.athlete_id] = rule
        return rule

    async def find_by_athlete_id(self, athlete_id: str) -> PrecedenceRule | None:
        return self._rules.get(athlete_id)
