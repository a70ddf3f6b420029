"""Shared fixtures and raw platform payloads for reconciliation engine tests."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from coachsync.reconciliation.base import NormalizedRecord
from coachsync.reconciliation.config_loader import (
    DetectionThresholds,
    ReconciliationConfig,
    load_reconciliation_config,
)
from coachsync.reconciliation.orchestrator import ReconciliationOrchestrator
from coachsync.reconciliation.precedence import PrecedenceRegistry
from coachsync.reconciliation.stores import (
    InMemoryConflictStore,
    InMemoryPrecedenceRuleStore,
)

# Canonical test athlete ID
TEST_ATHLETE_ID = "athlete-7f3c"
TEST_DATE = date(2026, 2, 23)


def make_record(
    platform: str,
    start: datetime | None,
    minutes: float,
    distance_km: float | None = None,
    external_id: str | None = None,
    athlete_id: str = TEST_ATHLETE_ID,
    record_date: date | None = None,
    activity_type: str = "running",
    avg_power: float | None = None,
    avg_heart_rate: float | None = None,
) -> NormalizedRecord:
    duration = int(minutes * 60)
    return NormalizedRecord(
        platform=platform,
        external_id=external_id or _default_id(platform, start),
        athlete_id=athlete_id,
        date=record_date or (start.date() if start else TEST_DATE),
        duration_seconds=duration,
        start_time=start,
        end_time=start + timedelta(seconds=duration) if start else None,
        distance_meters=distance_km * 1000 if distance_km is not None else None,
        avg_power=avg_power,
        avg_heart_rate=avg_heart_rate,
        activity_type=activity_type,
    )


def _default_id(platform: str, start: datetime | None) -> str:
    return f"{platform}-{start:%H%M}" if start else f"{platform}-untimed"


def at(hour: int, minute: int = 0) -> datetime:
    """Naive UTC timestamp on TEST_DATE."""
    return datetime(TEST_DATE.year, TEST_DATE.month, TEST_DATE.day, hour, minute)


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def reconciliation_config() -> ReconciliationConfig:
    """Load the real reconciliation config for tests."""
    return load_reconciliation_config()


@pytest.fixture
def strict_distance_config(reconciliation_config: ReconciliationConfig) -> ReconciliationConfig:
    """Same config, but a lone distance rules a pair out as a duplicate."""
    return ReconciliationConfig(
        version=reconciliation_config.version,
        detection=DetectionThresholds(single_distance_policy="require"),
        platform_aliases=dict(reconciliation_config.platform_aliases),
    )


# ---------------------------------------------------------------------------
# Store / orchestrator fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def conflict_store() -> InMemoryConflictStore:
    return InMemoryConflictStore()


@pytest.fixture
def rule_store() -> InMemoryPrecedenceRuleStore:
    return InMemoryPrecedenceRuleStore()


@pytest.fixture
def registry(
    rule_store: InMemoryPrecedenceRuleStore, reconciliation_config: ReconciliationConfig
) -> PrecedenceRegistry:
    return PrecedenceRegistry(rule_store, reconciliation_config)


@pytest.fixture
def orchestrator(
    conflict_store: InMemoryConflictStore,
    registry: PrecedenceRegistry,
    reconciliation_config: ReconciliationConfig,
) -> ReconciliationOrchestrator:
    return ReconciliationOrchestrator(
        conflict_store=conflict_store,
        registry=registry,
        config=reconciliation_config,
    )


# ---------------------------------------------------------------------------
# Raw platform payloads (all describe the 08:00 UTC run on TEST_DATE)
# ---------------------------------------------------------------------------


@pytest.fixture
def garmin_activity_raw() -> dict:
    return {
        "athleteId": TEST_ATHLETE_ID,
        "summaryId": "8123456789",
        "activityType": "RUNNING",
        "startTimeInSeconds": int(datetime(2026, 2, 23, 8, 0, tzinfo=timezone.utc).timestamp()),
        "startTimeOffsetInSeconds": 3600,
        "durationInSeconds": 3600,
        "distanceInMeters": 20000.0,
        "averageHeartRateInBeatsPerMinute": 151,
    }


@pytest.fixture
def strava_activity_raw() -> dict:
    return {
        "athleteId": TEST_ATHLETE_ID,
        "id": 11223344556,
        "sport_type": "Run",
        "start_date": "2026-02-23T08:02:00Z",
        "start_date_local": "2026-02-23T09:02:00Z",
        "elapsed_time": 3360,
        "moving_time": 3300,
        "distance": 20100.0,
        "average_heartrate": 150.2,
        "average_watts": 248.0,
    }


@pytest.fixture
def intervals_activity_raw() -> dict:
    return {
        "athleteId": TEST_ATHLETE_ID,
        "id": "i55667788",
        "type": "Ride",
        "start_date": "2026-02-23T08:30:00Z",
        "start_date_local": "2026-02-23T09:30:00",
        "elapsed_time": 3600,
        "distance": 32000.0,
        "icu_average_watts": 212,
        "average_heartrate": 138,
    }


@pytest.fixture
def whoop_workout_raw() -> dict:
    return {
        "athleteId": TEST_ATHLETE_ID,
        "id": 93845,
        "sport_id": 0,
        "start": "2026-02-23T08:01:00.000Z",
        "end": "2026-02-23T08:59:00.000Z",
        "timezone_offset": "+01:00",
        "score": {"average_heart_rate": 149, "distance_meter": 19950.0},
    }

