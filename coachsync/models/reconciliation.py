"""Pydantic request/response models for the reconciliation API."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from pydantic import Field, StrictInt

from coachsync.models.base import CoachSyncBase
from coachsync.reconciliation.base import (
    ConflictStatus,
    ConflictType,
    DataConflict,
    RawPlatformRecord,
    ReconciliationResult,
)


# ---------- Input ----------

class RawRecordIn(CoachSyncBase):
    platform: str = Field(min_length=1, max_length=50)
    payload: dict[str, Any]

    def to_domain(self) -> RawPlatformRecord:
        return RawPlatformRecord(platform=self.platform, payload=self.payload)


class ResolveConflictRequest(CoachSyncBase):
    primary_platform: str = Field(min_length=1)
    retained_sources: list[str] = Field(min_length=1)
    resolution: str = Field(min_length=1, max_length=2000)
    resolved_by: str | None = None


class PrecedenceRuleWrite(CoachSyncBase):
    rule_name: str = Field(min_length=1, max_length=200)
    platform_precedence: dict[str, StrictInt]


# ---------- Output ----------

class NormalizedRecordRead(CoachSyncBase):
    platform: str
    external_id: str
    athlete_id: str
    date: date
    duration_seconds: int
    start_time: datetime | None = None
    end_time: datetime | None = None
    distance_meters: float | None = None
    avg_power: float | None = None
    avg_heart_rate: float | None = None
    activity_type: str = "other"


class ResolutionRead(CoachSyncBase):
    primary_platform: str
    retained_sources: list[str]
    resolution_note: str
    resolved_by: str | None = None
    resolved_at: datetime | None = None


class DataConflictRead(CoachSyncBase):
    id: str
    athlete_id: str
    activity_date: date
    conflict_type: ConflictType
    status: ConflictStatus
    conflicting_records: dict[str, NormalizedRecordRead]
    resolution: ResolutionRead | None = None
    review_reason: str | None = None
    detected_at: datetime
    version: int = 0

    @classmethod
    def from_domain(cls, conflict: DataConflict) -> DataConflictRead:
        return cls.model_validate(conflict.to_dict())


class SkippedRecordRead(CoachSyncBase):
    platform: str
    external_id: str | None = None
    reason: str


class ReconciliationResultRead(CoachSyncBase):
    athlete_id: str
    conflicts_detected: int
    auto_resolved: int
    requires_review: int
    skipped_records: int
    previously_detected: int
    pending_records: int
    conflicts: list[DataConflictRead] = Field(default_factory=list)
    skipped: list[SkippedRecordRead] = Field(default_factory=list)
    canonical_records: list[NormalizedRecordRead] = Field(default_factory=list)
    processed_at: datetime

    @classmethod
    def from_domain(cls, result: ReconciliationResult) -> ReconciliationResultRead:
        return cls(
            athlete_id=result.athlete_id,
            conflicts_detected=result.conflicts_detected,
            auto_resolved=result.auto_resolved,
            requires_review=result.requires_review,
            skipped_records=result.skipped_records,
            previously_detected=result.previously_detected,
            pending_records=result.pending_records,
            conflicts=[DataConflictRead.from_domain(c) for c in result.conflicts],
            skipped=[
                SkippedRecordRead(platform=s.platform, external_id=s.external_id, reason=s.reason)
                for s in result.skipped
            ],
            canonical_records=[
                NormalizedRecordRead.model_validate(r.to_dict())
                for r in result.canonical_records
            ],
            processed_at=result.processed_at,
        )


class PrecedenceRuleRead(CoachSyncBase):
    athlete_id: str
    rule_name: str
    platform_precedence: dict[str, int]
    created_at: datetime
