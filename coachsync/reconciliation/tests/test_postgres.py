"""Tests for the asyncpg-backed stores with the database helpers mocked out."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest

from coachsync.reconciliation.base import (
    OPEN_STATUSES,
    ConflictStatus,
    ConflictType,
    DataConflict,
    PrecedenceRule,
    Resolution,
)
from coachsync.reconciliation.errors import UnknownConflictError
from coachsync.reconciliation.postgres import (
    PostgresConflictStore,
    PostgresPrecedenceRuleStore,
    build_upsert_query,
)
from coachsync.reconciliation.tests.conftest import (
    TEST_ATHLETE_ID,
    TEST_DATE,
    at,
    make_record,
)

_MODULE = "coachsync.reconciliation.postgres"


def _conflict() -> DataConflict:
    return DataConflict.create(
        TEST_ATHLETE_ID,
        TEST_DATE,
        ConflictType.DUPLICATE,
        [make_record("garmin", at(8), 60), make_record("strava", at(8), 60)],
    )


def _row(conflict: DataConflict) -> dict:
    """Shape of an asyncpg row, with JSONB columns as text."""
    data = conflict.to_dict()
    return {
        "conflict_id": uuid.UUID(conflict.id),
        "athlete_id": conflict.athlete_id,
        "activity_date": conflict.activity_date,
        "conflict_type": conflict.conflict_type.value,
        "status": conflict.status.value,
        "conflicting_records": json.dumps(data["conflicting_records"]),
        "resolution": json.dumps(data["resolution"]) if data["resolution"] else None,
        "review_reason": conflict.review_reason,
        "evidence": json.dumps(data["evidence"]),
        "fingerprint": json.dumps(conflict.fingerprint),
        "detected_at": conflict.detected_at,
        "version": conflict.version,
    }


class TestBuildUpsertQuery:
    def test_updates_non_key_columns(self) -> None:
        query = build_upsert_query("precedence_rules", ["athlete_id", "rule_name"], ["athlete_id"])
        assert query == (
            "INSERT INTO precedence_rules (athlete_id, rule_name) VALUES ($1, $2) "
            "ON CONFLICT (athlete_id) DO UPDATE SET rule_name = EXCLUDED.rule_name, "
            "updated_at = NOW()"
        )

    def test_nothing_to_update(self) -> None:
        query = build_upsert_query("t", ["a"], ["a"])
        assert query.endswith("ON CONFLICT (a) DO NOTHING")

    def test_per_column_casts(self) -> None:
        query = build_upsert_query("t", ["a", "b", "c"], ["a"], casts={"b": "jsonb"})
        assert "VALUES ($1, $2::jsonb, $3)" in query
        assert "b = EXCLUDED.b" in query

    def test_rule_upsert_casts_jsonb(self) -> None:
        assert "$3::jsonb" in PostgresPrecedenceRuleStore._UPSERT
        assert "$4::jsonb" not in PostgresPrecedenceRuleStore._UPSERT


class TestPostgresConflictStore:
    @pytest.mark.asyncio
    async def test_save_serializes_jsonb(self) -> None:
        conflict = _conflict()
        with patch(f"{_MODULE}.execute", new_callable=AsyncMock) as mock_execute:
            await PostgresConflictStore().save(conflict)
        args = mock_execute.await_args.args
        assert "INSERT INTO data_conflicts" in args[0]
        assert args[1] == uuid.UUID(conflict.id)
        assert args[5] == "UNRESOLVED"
        assert set(json.loads(args[6])) == {"garmin", "strava"}
        assert args[7] is None

    @pytest.mark.asyncio
    async def test_get_maps_row(self) -> None:
        conflict = _conflict()
        with patch(f"{_MODULE}.fetchrow", new=AsyncMock(return_value=_row(conflict))):
            loaded = await PostgresConflictStore().get(conflict.id)
        assert loaded == conflict

    @pytest.mark.asyncio
    async def test_get_with_non_uuid_id(self) -> None:
        with patch(f"{_MODULE}.fetchrow", new_callable=AsyncMock) as mock_fetchrow:
            assert await PostgresConflictStore().get("not-a-uuid") is None
        mock_fetchrow.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transition_success(self) -> None:
        conflict = _conflict()
        resolution = Resolution(
            "garmin", frozenset({"garmin"}), "kept", resolved_at=datetime.now(timezone.utc)
        )
        with patch(f"{_MODULE}.fetchval", new=AsyncMock(return_value=1)) as mock_fetchval:
            persisted = await PostgresConflictStore().transition(
                conflict.resolve(resolution), OPEN_STATUSES
            )
        assert persisted.version == 1
        assert persisted.status is ConflictStatus.RESOLVED
        args = mock_fetchval.await_args.args
        assert "status = ANY($5::text[])" in args[0]
        assert args[2] == "RESOLVED"
        assert args[5] == ["REQUIRES_REVIEW", "UNRESOLVED"]

    @pytest.mark.asyncio
    async def test_transition_lost_cas(self) -> None:
        conflict = _conflict()
        with patch(f"{_MODULE}.fetchval", new=AsyncMock(side_effect=[None, 1])):
            result = await PostgresConflictStore().transition(
                conflict.require_review("no rule"), frozenset({ConflictStatus.UNRESOLVED})
            )
        assert result is None

    @pytest.mark.asyncio
    async def test_transition_unknown(self) -> None:
        conflict = _conflict()
        with patch(f"{_MODULE}.fetchval", new=AsyncMock(side_effect=[None, None])):
            with pytest.raises(UnknownConflictError):
                await PostgresConflictStore().transition(conflict, OPEN_STATUSES)

    @pytest.mark.asyncio
    async def test_find_by_status_filters_athlete(self) -> None:
        conflict = _conflict().require_review("no rule")
        with patch(f"{_MODULE}.fetch", new=AsyncMock(return_value=[_row(conflict)])) as mock_fetch:
            found = await PostgresConflictStore().find_by_status(
                ConflictStatus.REQUIRES_REVIEW, athlete_id=TEST_ATHLETE_ID
            )
        assert [c.review_reason for c in found] == ["no rule"]
        args = mock_fetch.await_args.args
        assert args[1] == ["REQUIRES_REVIEW"]
        assert args[2] == TEST_ATHLETE_ID


class TestPostgresPrecedenceRuleStore:
    @pytest.mark.asyncio
    async def test_save_upserts(self) -> None:
        rule = PrecedenceRule(TEST_ATHLETE_ID, "coach default", {"garmin": 1, "strava": 2})
        with patch(f"{_MODULE}.execute", new_callable=AsyncMock) as mock_execute:
            await PostgresPrecedenceRuleStore().save(rule)
        args = mock_execute.await_args.args
        assert "ON CONFLICT (athlete_id) DO UPDATE" in args[0]
        assert json.loads(args[3]) == {"garmin": 1, "strava": 2}

    @pytest.mark.asyncio
    async def test_find_decodes_json(self) -> None:
        row = {
            "athlete_id": TEST_ATHLETE_ID,
            "rule_name": "coach default",
            "platform_precedence": '{"garmin": 1, "strava": 2}',
            "created_at": datetime(2026, 2, 1, tzinfo=timezone.utc),
        }
        with patch(f"{_MODULE}.fetchrow", new=AsyncMock(return_value=row)):
            rule = await PostgresPrecedenceRuleStore().find_by_athlete_id(TEST_ATHLETE_ID)
        assert rule.platform_precedence == {"garmin": 1, "strava": 2}

    @pytest.mark.asyncio
    async def test_find_missing(self) -> None:
        with patch(f"{_MODULE}.fetchrow", new=AsyncMock(return_value=None)):
            assert await PostgresPrecedenceRuleStore().find_by_athlete_id("nobody") is None
