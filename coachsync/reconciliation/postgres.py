"""PostgreSQL-backed conflict and precedence rule stores.

One row per conflict, with ``status`` and ``version`` columns: a transition is
a single conditional ``UPDATE ... WHERE status = ANY(...)``, so two resolvers
racing on the same conflict cannot both win.  One row per athlete for
precedence rules: setting a rule is an upsert on ``athlete_id``.

Idempotent writes use ``INSERT ... ON CONFLICT``; see ``build_upsert_query``.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import replace
from typing import Any

from coachsync.reconciliation.base import (
    ConflictStatus,
    ConflictType,
    DataConflict,
    NormalizedRecord,
    PrecedenceRule,
    Resolution,
)
from coachsync.reconciliation.errors import UnknownConflictError
from coachsync.services.database import execute, fetch, fetchrow, fetchval

logger = logging.getLogger("coachsync.reconciliation.postgres")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS data_conflicts (
    conflict_id          UUID PRIMARY KEY,
    athlete_id           TEXT NOT NULL,
    activity_date        DATE NOT NULL,
    conflict_type        TEXT NOT NULL CHECK (conflict_type IN ('DUPLICATE', 'OVERLAP')),
    status               TEXT NOT NULL CHECK (status IN ('UNRESOLVED', 'REQUIRES_REVIEW', 'RESOLVED')),
    conflicting_records  JSONB NOT NULL,
    resolution           JSONB,
    review_reason        TEXT,
    evidence             JSONB NOT NULL DEFAULT '[]'::jsonb,
    fingerprint          TEXT NOT NULL,
    detected_at          TIMESTAMPTZ NOT NULL,
    version              INTEGER NOT NULL DEFAULT 0,
    updated_at           TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CHECK (status <> 'RESOLVED' OR resolution IS NOT NULL)
);
CREATE INDEX IF NOT EXISTS ix_data_conflicts_athlete ON data_conflicts (athlete_id, activity_date);
CREATE INDEX IF NOT EXISTS ix_data_conflicts_status ON data_conflicts (status);

CREATE TABLE IF NOT EXISTS precedence_rules (
    athlete_id           TEXT PRIMARY KEY,
    rule_name            TEXT NOT NULL,
    platform_precedence  JSONB NOT NULL,
    created_at           TIMESTAMPTZ NOT NULL,
    updated_at           TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""


async def ensure_schema() -> None:
    """Create the reconciliation tables if they do not exist."""
    await execute(SCHEMA_SQL)
    logger.info("Reconciliation schema ensured")


def build_upsert_query(
    table: str,
    columns: list[str],
    conflict_columns: list[str],
    update_columns: list[str] | None = None,
    casts: dict[str, str] | None = None,
) -> str:
    """Build a PostgreSQL INSERT ... ON CONFLICT DO UPDATE (upsert) query.

    On conflict, updates the non-key columns (or ``update_columns``) and
    stamps ``updated_at``; with nothing to update it becomes DO NOTHING.
    ``casts`` maps a column to the type its placeholder is cast to
    (e.g. ``{"payload": "jsonb"}``).
    """
    if update_columns is None:
        update_columns = [c for c in columns if c not in conflict_columns]

    casts = casts or {}
    placeholders = ", ".join(
        f"${i + 1}::{casts[col]}" if col in casts else f"${i + 1}"
        for i, col in enumerate(columns)
    )
    col_list = ", ".join(columns)
    conflict_target = ", ".join(conflict_columns)

    if update_columns:
        update_set = ", ".join(f"{col} = EXCLUDED.{col}" for col in update_columns)
        update_set += ", updated_at = NOW()"
        do_clause = f"DO UPDATE SET {update_set}"
    else:
        do_clause = "DO NOTHING"

    return (
        f"INSERT INTO {table} ({col_list}) "
        f"VALUES ({placeholders}) "
        f"ON CONFLICT ({conflict_target}) {do_clause}"
    )


def _load_json(value: Any) -> Any:
    # asyncpg hands JSONB back as text unless a codec is registered
    return json.loads(value) if isinstance(value, str) else value


def _as_uuid(conflict_id: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(str(conflict_id))
    except ValueError:
        return None


def _row_to_conflict(row: Any) -> DataConflict:
    resolution = _load_json(row["resolution"])
    return DataConflict(
        id=str(row["conflict_id"]),
        athlete_id=row["athlete_id"],
        activity_date=row["activity_date"],
        conflict_type=ConflictType(row["conflict_type"]),
        conflicting_records={
            platform: NormalizedRecord.from_dict(record)
            for platform, record in _load_json(row["conflicting_records"]).items()
        },
        status=ConflictStatus(row["status"]),
        resolution=Resolution.from_dict(resolution) if resolution else None,
        review_reason=row["review_reason"],
        detected_at=row["detected_at"],
        version=row["version"],
        evidence=tuple(_load_json(row["evidence"]) or ()),
    )


class PostgresConflictStore:
    """ConflictStore over the ``data_conflicts`` table."""

    _INSERT = """
        INSERT INTO data_conflicts (
            conflict_id, athlete_id, activity_date, conflict_type, status,
            conflicting_records, resolution, review_reason, evidence,
            fingerprint, detected_at, version
        )
        VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7::jsonb, $8, $9::jsonb, $10, $11, $12)
    """

    async def save(self, conflict: DataConflict) -> DataConflict:
        data = conflict.to_dict()
        await execute(
            self._INSERT,
            uuid.UUID(conflict.id),
            conflict.athlete_id,
            conflict.activity_date,
            conflict.conflict_type.value,
            conflict.status.value,
            json.dumps(data["conflicting_records"]),
            json.dumps(data["resolution"]) if conflict.resolution else None,
            conflict.review_reason,
            json.dumps(data["evidence"]),
            json.dumps(conflict.fingerprint),
            conflict.detected_at,
            conflict.version,
        )
        return conflict

    async def get(self, conflict_id: str) -> DataConflict | None:
        key = _as_uuid(conflict_id)
        if key is None:
            return None
        row = await fetchrow("SELECT * FROM data_conflicts WHERE conflict_id = $1", key)
        return _row_to_conflict(row) if row else None

    async def transition(
        self, updated: DataConflict, from_statuses: frozenset[ConflictStatus]
    ) -> DataConflict | None:
        key = _as_uuid(updated.id)
        if key is None:
            raise UnknownConflictError(updated.id)
        new_version = await fetchval(
            """
            UPDATE data_conflicts
               SET status = $2, resolution = $3::jsonb, review_reason = $4,
                   version = version + 1, updated_at = NOW()
             WHERE conflict_id = $1 AND status = ANY($5::text[])
            RETURNING version
            """,
            key,
            updated.status.value,
            json.dumps(updated.resolution.to_dict()) if updated.resolution else None,
            updated.review_reason,
            sorted(s.value for s in from_statuses),
        )
        if new_version is None:
            exists = await fetchval("SELECT 1 FROM data_conflicts WHERE conflict_id = $1", key)
            if exists is None:
                raise UnknownConflictError(updated.id)
            logger.debug("CAS lost on conflict %s", updated.id)
            return None
        return replace(updated, version=new_version)

    async def find_by_athlete_id(self, athlete_id: str) -> list[DataConflict]:
        rows = await fetch(
            "SELECT * FROM data_conflicts WHERE athlete_id = $1 "
            "ORDER BY activity_date, detected_at",
            athlete_id,
        )
        return [_row_to_conflict(r) for r in rows]

    async def find_by_status(
        self, *statuses: ConflictStatus, athlete_id: str | None = None
    ) -> list[DataConflict]:
        status_values = sorted(s.value for s in statuses)
        if athlete_id is None:
            rows = await fetch(
                "SELECT * FROM data_conflicts WHERE status = ANY($1::text[]) "
                "ORDER BY detected_at",
                status_values,
            )
        else:
            rows = await fetch(
                "SELECT * FROM data_conflicts WHERE status = ANY($1::text[]) "
                "AND athlete_id = $2 ORDER BY detected_at",
                status_values,
                athlete_id,
            )
        return [_row_to_conflict(r) for r in rows]


class PostgresPrecedenceRuleStore:
    """PrecedenceRuleStore over the ``precedence_rules`` table (row per athlete)."""

    _UPSERT = build_upsert_query(
        "precedence_rules",
        ["athlete_id", "rule_name", "platform_precedence", "created_at"],
        ["athlete_id"],
        casts={"platform_precedence": "jsonb"},
    )

    async def save(self, rule: PrecedenceRule) -> PrecedenceRule:
        await execute(
            self._UPSERT,
            rule.athlete_id,
            rule.rule_name,
            json.dumps(rule.platform_precedence),
            rule.created_at,
        )
        return rule

    async def find_by_athlete_id(self, athlete_id: str) -> PrecedenceRule | None:
        row = await fetchrow(
            "SELECT * FROM precedence_rules WHERE athlete_id = $1", athlete_id
        )
        if row is None:
            return None
        return PrecedenceRule(
            athlete_id=row["athlete_id"],
            rule_name=row["rule_name"],
            platform_precedence={
                p: int(rank) for p, rank in _load_json(row["platform_precedence"]).items()
            },
            created_at=row["created_at"],
        )
