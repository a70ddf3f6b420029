"""Canonical data models for the CoachSync reconciliation engine.

Every platform normalizer returns ``NormalizedRecord``; the detector emits
``DataConflict``; the resolver and orchestrator only ever derive new
``DataConflict`` values from old ones.  These types are the single source of
truth consumed by the stores, the orchestrator and the API layer.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any

logger = logging.getLogger("coachsync.reconciliation")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | date | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ConflictType(str, Enum):
    """How two or more cross-platform records collide.

    DUPLICATE — the records describe the same real-world session.
    OVERLAP   — the time windows collide but the sessions are distinct.
    """

    DUPLICATE = "DUPLICATE"
    OVERLAP = "OVERLAP"


class ConflictStatus(str, Enum):
    """Lifecycle of a DataConflict.

    UNRESOLVED → REQUIRES_REVIEW → RESOLVED, or UNRESOLVED → RESOLVED.
    RESOLVED is terminal.
    """

    UNRESOLVED = "UNRESOLVED"
    REQUIRES_REVIEW = "REQUIRES_REVIEW"
    RESOLVED = "RESOLVED"


OPEN_STATUSES: frozenset[ConflictStatus] = frozenset(
    {ConflictStatus.UNRESOLVED, ConflictStatus.REQUIRES_REVIEW}
)


# ---------------------------------------------------------------------------
# Raw input
# ---------------------------------------------------------------------------


@dataclass
class RawPlatformRecord:
    """Raw, un-normalized record handed over by a platform adapter.

    Attributes:
        platform:   Platform slug or alias ('garmin', 'strava', 'icu', ...).
        payload:    The platform's JSON for one activity or wellness entry.
                    Adapters add the internal ``athleteId`` before handing it over.
        fetched_at: UTC timestamp of the fetch.
    """

    platform: str
    payload: dict
    fetched_at: datetime = field(default_factory=utc_now)


# ---------------------------------------------------------------------------
# Normalized record
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NormalizedRecord:
    """Uniform, comparable shape of one activity or wellness record.

    All timestamps are naive UTC.  ``raw_payload`` is kept for audit only and
    does not take part in equality.

    Attributes:
        platform:         Canonical platform slug.
        external_id:      The platform's own ID for the record.
        athlete_id:       Internal athlete ID.
        date:             Calendar date the record belongs to (athlete's local date).
        duration_seconds: Elapsed duration.
        start_time:       UTC start, or None if the platform gave no timing.
        end_time:         UTC end; derived from start + duration when missing.
        distance_meters:  Distance, when the session has one.
        avg_power:        Average power in watts.
        avg_heart_rate:   Average heart rate in bpm.
        activity_type:    Canonical activity type slug.
    """

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
    raw_payload: dict = field(default_factory=dict, compare=False, repr=False)

    @property
    def key(self) -> tuple[str, str]:
        """(platform, external_id) — identifies a record across re-deliveries."""
        return (self.platform, self.external_id)

    @property
    def window(self) -> tuple[datetime, datetime] | None:
        """The [start, end) time window, or None without a start time."""
        if self.start_time is None:
            return None
        end = self.end_time or self.start_time + timedelta(seconds=self.duration_seconds)
        return (self.start_time, end)

    def to_dict(self) -> dict[str, Any]:
        return {
            "platform": self.platform,
            "external_id": self.external_id,
            "athlete_id": self.athlete_id,
            "date": self.date.isoformat(),
            "duration_seconds": self.duration_seconds,
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "distance_meters": self.distance_meters,
            "avg_power": self.avg_power,
            "avg_heart_rate": self.avg_heart_rate,
            "activity_type": self.activity_type,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NormalizedRecord:
        return cls(
            platform=data["platform"],
            external_id=data["external_id"],
            athlete_id=data["athlete_id"],
            date=date.fromisoformat(data["date"]),
            duration_seconds=int(data["duration_seconds"]),
            start_time=_parse_dt(data.get("start_time")),
            end_time=_parse_dt(data.get("end_time")),
            distance_meters=data.get("distance_meters"),
            avg_power=data.get("avg_power"),
            avg_heart_rate=data.get("avg_heart_rate"),
            activity_type=data.get("activity_type") or "other",
        )


# ---------------------------------------------------------------------------
# Conflicts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Resolution:
    """How a conflict was settled.

    ``resolved_by`` is None for automatic resolutions and carries the
    operator's identity for manual ones.
    """

    primary_platform: str
    retained_sources: frozenset[str]
    resolution_note: str
    resolved_by: str | None = None
    resolved_at: datetime | None = None

    @property
    def is_manual(self) -> bool:
        return self.resolved_by is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "primary_platform": self.primary_platform,
            "retained_sources": sorted(self.retained_sources),
            "resolution_note": self.resolution_note,
            "resolved_by": self.resolved_by,
            "resolved_at": _iso(self.resolved_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Resolution:
        return cls(
            primary_platform=data["primary_platform"],
            retained_sources=frozenset(data.get("retained_sources") or ()),
            resolution_note=data.get("resolution_note", ""),
            resolved_by=data.get("resolved_by"),
            resolved_at=_parse_dt(data.get("resolved_at")),
        )


@dataclass(frozen=True)
class DataConflict:
    """A set of cross-platform records that collide on one date.

    Instances are immutable; every transition returns a new value that the
    caller persists through the conflict store.

    Attributes:
        id:                  Conflict UUID (string form).
        athlete_id:          Internal athlete ID.
        activity_date:       Date the records belong to.
        conflict_type:       DUPLICATE or OVERLAP.
        conflicting_records: platform → record; always two or more entries.
        status:              Lifecycle status.
        resolution:          Present once RESOLVED.
        review_reason:       Why the conflict was routed to manual review.
        detected_at:         UTC detection timestamp.
        version:             Bumped by the store on every persisted transition.
        evidence:            Pairwise ratios that led to the grouping (audit only).
    """

    id: str
    athlete_id: str
    activity_date: date
    conflict_type: ConflictType
    conflicting_records: dict[str, NormalizedRecord]
    status: ConflictStatus = ConflictStatus.UNRESOLVED
    resolution: Resolution | None = None
    review_reason: str | None = None
    detected_at: datetime = field(default_factory=utc_now)
    version: int = 0
    evidence: tuple[dict[str, Any], ...] = field(default=(), compare=False, repr=False)

    def __post_init__(self) -> None:
        if len(self.conflicting_records) < 2:
            raise ValueError(
                f"A conflict needs at least 2 conflicting records, got "
                f"{len(self.conflicting_records)}"
            )
        for platform, record in self.conflicting_records.items():
            if record.platform != platform:
                raise ValueError(
                    f"Record keyed under {platform!r} belongs to {record.platform!r}"
                )
        if self.status is ConflictStatus.RESOLVED:
            if self.resolution is None:
                raise ValueError("A RESOLVED conflict must carry a resolution")
            if self.resolution.primary_platform not in self.conflicting_records:
                raise ValueError(
                    f"Primary platform {self.resolution.primary_platform!r} is not "
                    f"part of conflict {self.id}"
                )

    @classmethod
    def create(
        cls,
        athlete_id: str,
        activity_date: date,
        conflict_type: ConflictType,
        records: list[NormalizedRecord],
        evidence: tuple[dict[str, Any], ...] = (),
    ) -> DataConflict:
        """Build a new UNRESOLVED conflict from detected records."""
        return cls(
            id=str(uuid.uuid4()),
            athlete_id=athlete_id,
            activity_date=activity_date,
            conflict_type=conflict_type,
            conflicting_records={r.platform: r for r in records},
            evidence=evidence,
        )

    @property
    def platforms(self) -> list[str]:
        return sorted(self.conflicting_records)

    @property
    def fingerprint(self) -> tuple[tuple[str, str], ...]:
        """Sorted (platform, external_id) membership, stable across runs."""
        return tuple(sorted(r.key for r in self.conflicting_records.values()))

    @property
    def is_resolved(self) -> bool:
        return self.status is ConflictStatus.RESOLVED

    @property
    def requires_review(self) -> bool:
        return self.status is ConflictStatus.REQUIRES_REVIEW

    def require_review(self, reason: str) -> DataConflict:
        return replace(self, status=ConflictStatus.REQUIRES_REVIEW, review_reason=reason)

    def resolve(self, resolution: Resolution) -> DataConflict:
        return replace(self, status=ConflictStatus.RESOLVED, resolution=resolution)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "athlete_id": self.athlete_id,
            "activity_date": self.activity_date.isoformat(),
            "conflict_type": self.conflict_type.value,
            "conflicting_records": {
                p: r.to_dict() for p, r in sorted(self.conflicting_records.items())
            },
            "status": self.status.value,
            "resolution": self.resolution.to_dict() if self.resolution else None,
            "review_reason": self.review_reason,
            "detected_at": _iso(self.detected_at),
            "version": self.version,
            "evidence": list(self.evidence),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DataConflict:
        resolution = data.get("resolution")
        return cls(
            id=str(data["id"]),
            athlete_id=data["athlete_id"],
            activity_date=date.fromisoformat(data["activity_date"]),
            conflict_type=ConflictType(data["conflict_type"]),
            conflicting_records={
                p: NormalizedRecord.from_dict(r)
                for p, r in data["conflicting_records"].items()
            },
            status=ConflictStatus(data["status"]),
            resolution=Resolution.from_dict(resolution) if resolution else None,
            review_reason=data.get("review_reason"),
            detected_at=_parse_dt(data.get("detected_at")) or utc_now(),
            version=int(data.get("version", 0)),
            evidence=tuple(data.get("evidence") or ()),
        )


# ---------------------------------------------------------------------------
# Precedence
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PrecedenceRule:
    """Per-athlete platform ranking; rank 1 is the most trusted platform."""

    athlete_id: str
    rule_name: str
    platform_precedence: dict[str, int]
    created_at: datetime = field(default_factory=utc_now)

    def rank(self, platform: str) -> int | None:
        return self.platform_precedence.get(platform)

    def ranked(self, platforms: list[str]) -> list[str]:
        """Return the ranked subset of ``platforms``, most trusted first."""
        return sorted(
            (p for p in platforms if p in self.platform_precedence),
            key=lambda p: self.platform_precedence[p],
        )

    def primary_among(self, platforms: list[str]) -> str | None:
        ranked = self.ranked(platforms)
        return ranked[0] if ranked else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "athlete_id": self.athlete_id,
            "rule_name": self.rule_name,
            "platform_precedence": dict(self.platform_precedence),
            "created_at": _iso(self.created_at),
        }


# ---------------------------------------------------------------------------
# Run result
# ---------------------------------------------------------------------------


@dataclass
class SkippedRecord:
    """A raw record that was left out of a run, with the reason."""

    platform: str
    external_id: str | None
    reason: str


@dataclass
class ReconciliationResult:
    """Summary of one orchestrator run for one athlete.

    Attributes:
        athlete_id:          Internal athlete ID.
        conflicts_detected:  New conflicts created by this run.
        auto_resolved:       New conflicts resolved from the precedence rule.
        requires_review:     New conflicts routed to manual review.
        conflicts:           The new conflicts, in their persisted state.
        skipped:             Raw records that could not be used.
        previously_detected: Conflicts already persisted by an earlier run.
        canonical_records:   Independent records plus records retained by
                             resolved conflicts.
        pending_records:     Records held back inside open conflicts.
        processed_at:        UTC completion timestamp.
    """

    athlete_id: str
    conflicts_detected: int = 0
    auto_resolved: int = 0
    requires_review: int = 0
    conflicts: list[DataConflict] = field(default_factory=list)
    skipped: list[SkippedRecord] = field(default_factory=list)
    previously_detected: int = 0
    canonical_records: list[NormalizedRecord] = field(default_factory=list)
    pending_records: int = 0
    processed_at: datetime = field(default_factory=utc_now)

    @property
    def skipped_records(self) -> int:
        return len(self.skipped)

    def to_summary_dict(self) -> dict[str, Any]:
        """Counts only — used for logging and the API response header block."""
        return {
            "athlete_id": self.athlete_id,
            "conflicts_detected": self.conflicts_detected,
            "auto_resolved": self.auto_resolved,
            "requires_review": self.requires_review,
            "skipped_records": self.skipped_records,
            "previously_detected": self.previously_detected,
            "canonical_records": len(self.canonical_records),
            "pending_records": self.pending_records,
        }
