"""Conflict detector — find records from different platforms that collide.

For one athlete and one date, every pair of records from different platforms
is classified as DUPLICATE, OVERLAP or independent using the thresholds in
reconciliation_config.yaml.  Implicated pairs are then merged into connected
components (union-find), so three platforms reporting the same session yield
one conflict rather than three.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime

from coachsync.reconciliation.base import ConflictType, DataConflict, NormalizedRecord
from coachsync.reconciliation.config_loader import (
    DetectionThresholds,
    ReconciliationConfig,
    get_reconciliation_config,
)

logger = logging.getLogger("coachsync.reconciliation.detector")


# ---------------------------------------------------------------------------
# Ratio helpers
# ---------------------------------------------------------------------------


def _overlap_seconds(
    start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime
) -> float:
    """Return the number of seconds two time intervals overlap (0 if disjoint)."""
    overlap_start = max(start_a, start_b)
    overlap_end = min(end_a, end_b)
    return max(0.0, (overlap_end - overlap_start).total_seconds())


def overlap_ratio(a: NormalizedRecord, b: NormalizedRecord) -> float:
    """Overlap of the two windows as a fraction of the shorter duration.

    Records without a start time have no window and never overlap.  Capped at
    1.0 for platforms whose explicit end time runs past start + duration.
    """
    window_a, window_b = a.window, b.window
    if window_a is None or window_b is None:
        return 0.0
    shorter = min(a.duration_seconds, b.duration_seconds)
    if shorter <= 0:
        return 0.0
    return min(1.0, _overlap_seconds(*window_a, *window_b) / shorter)


def delta_ratio(x: float, y: float) -> float:
    """|x - y| / max(x, y); 0.0 when both are zero."""
    larger = max(x, y)
    if larger <= 0:
        return 0.0
    return abs(x - y) / larger


# ---------------------------------------------------------------------------
# Pair classification
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PairClassification:
    """Outcome of comparing two records from different platforms.

    ``conflict_type`` is None when the records are independent.
    """

    a: NormalizedRecord
    b: NormalizedRecord
    conflict_type: ConflictType | None
    overlap_ratio: float
    duration_delta_ratio: float
    distance_delta_ratio: float | None = None

    def to_evidence(self) -> dict:
        """Serializable audit entry stored on the conflict."""
        return {
            "records": [list(self.a.key), list(self.b.key)],
            "classification": (
                self.conflict_type.value if self.conflict_type else "INDEPENDENT"
            ),
            "overlap_ratio": round(self.overlap_ratio, 4),
            "duration_delta_ratio": round(self.duration_delta_ratio, 4),
            "distance_delta_ratio": (
                round(self.distance_delta_ratio, 4)
                if self.distance_delta_ratio is not None
                else None
            ),
        }


def classify_pair(
    a: NormalizedRecord, b: NormalizedRecord, thresholds: DetectionThresholds
) -> PairClassification:
    """Classify two records as DUPLICATE, OVERLAP or independent.

    DUPLICATE needs enough window overlap, a small duration delta and, when
    both records report a distance, a small distance delta.  Any other
    positive overlap is an OVERLAP.
    """
    ov = overlap_ratio(a, b)
    dur = delta_ratio(a.duration_seconds, b.duration_seconds)
    dist: float | None = None
    if a.distance_meters is not None and b.distance_meters is not None:
        dist = delta_ratio(a.distance_meters, b.distance_meters)

    if ov <= 0.0:
        return PairClassification(a, b, None, ov, dur, dist)

    is_duplicate = (
        ov >= thresholds.duplicate_min_overlap_ratio
        and dur <= thresholds.max_duration_delta_ratio
    )
    if dist is not None:
        is_duplicate = is_duplicate and dist <= thresholds.max_distance_delta_ratio
    elif (a.distance_meters is None) != (b.distance_meters is None):
        if thresholds.single_distance_policy == "require":
            is_duplicate = False

    kind = ConflictType.DUPLICATE if is_duplicate else ConflictType.OVERLAP
    return PairClassification(a, b, kind, ov, dur, dist)


# ---------------------------------------------------------------------------
# Union-find
# ---------------------------------------------------------------------------


class _PlatformDisjointUnionFind:
    """Union-find whose components never hold two records from one platform.

    ``union`` refuses to merge components that share a platform, which keeps
    every resulting conflict keyed by platform.
    """

    def __init__(self, records: list[NormalizedRecord]) -> None:
        self._parent = list(range(len(records)))
        self._platforms = [{r.platform} for r in records]

    def find(self, i: int) -> int:
        while self._parent[i] != i:
            self._parent[i] = self._parent[self._parent[i]]
            i = self._parent[i]
        return i

    def union(self, i: int, j: int) -> bool:
        root_i, root_j = self.find(i), self.find(j)
        if root_i == root_j:
            return True
        if self._platforms[root_i] & self._platforms[root_j]:
            return False
        # Lower index stays root so that component order is stable
        root, child = min(root_i, root_j), max(root_i, root_j)
        self._parent[child] = root
        self._platforms[root] |= self._platforms[child]
        return True


# ---------------------------------------------------------------------------
# Detector
# ---------------------------------------------------------------------------


def _sort_key(record: NormalizedRecord) -> tuple:
    return (record.start_time or datetime.min, record.platform, record.external_id)


class ConflictDetector:
    """Detect cross-platform conflicts for one athlete and date.

    Usage::

        detector = ConflictDetector()
        conflicts = detector.detect_conflicts("athlete-1", date(2026, 2, 23), records)
    """

    def __init__(self, config: ReconciliationConfig | None = None) -> None:
        self._config = config or get_reconciliation_config()

    @property
    def thresholds(self) -> DetectionThresholds:
        return self._config.detection

    def classify(self, a: NormalizedRecord, b: NormalizedRecord) -> PairClassification:
        return classify_pair(a, b, self.thresholds)

    def detect_conflicts(
        self,
        athlete_id: str,
        on_date: date,
        records: list[NormalizedRecord],
    ) -> list[DataConflict]:
        """Group colliding cross-platform records into UNRESOLVED conflicts.

        Algorithm:
            1. Keep only records for ``athlete_id`` on ``on_date`` and collapse
               re-deliveries of the same (platform, external_id).
            2. Classify every pair from different platforms.
            3. Union implicated pairs, strongest first (DUPLICATE before
               OVERLAP, then by overlap ratio), refusing any merge that would
               put two records of one platform in a component.
            4. Emit one conflict per component of two or more records: DUPLICATE
               when every edge in it is a duplicate, otherwise OVERLAP.

        Same-platform collisions are ignored — that is a data-quality problem
        for the source adapter, not a reconciliation conflict.

        Returns:
            Conflicts ordered by the earliest start time among their records.
        """
        candidates = [r for r in records if r.athlete_id == athlete_id and r.date == on_date]
        if len(candidates) < len(records):
            logger.debug(
                "Detector ignored %d record(s) outside athlete %s / %s",
                len(records) - len(candidates),
                athlete_id,
                on_date,
            )

        unique: dict[tuple[str, str], NormalizedRecord] = {}
        for record in sorted(candidates, key=_sort_key):
            if record.key in unique:
                logger.debug("Collapsed re-delivered record %s:%s", *record.key)
                continue
            unique[record.key] = record
        ordered = list(unique.values())

        edges: list[tuple[int, int, PairClassification]] = []
        for i in range(len(ordered)):
            for j in range(i + 1, len(ordered)):
                if ordered[i].platform == ordered[j].platform:
                    continue
                pair = self.classify(ordered[i], ordered[j])
                if pair.conflict_type is not None:
                    edges.append((i, j, pair))

        edges.sort(
            key=lambda e: (
                e[2].conflict_type is not ConflictType.DUPLICATE,
                -e[2].overlap_ratio,
                e[0],
                e[1],
            )
        )

        uf = _PlatformDisjointUnionFind(ordered)
        for i, j, pair in edges:
            if not uf.union(i, j):
                logger.info(
                    "Kept %s:%s and %s:%s apart; merging would put two records "
                    "of one platform in a conflict",
                    *pair.a.key,
                    *pair.b.key,
                )

        members: dict[int, list[int]] = {}
        for idx in range(len(ordered)):
            members.setdefault(uf.find(idx), []).append(idx)

        component_edges: dict[int, list[PairClassification]] = {}
        for i, j, pair in edges:
            root = uf.find(i)
            if root == uf.find(j):
                component_edges.setdefault(root, []).append(pair)

        conflicts: list[DataConflict] = []
        for root in sorted(members, key=lambda r: min(members[r])):
            indices = members[root]
            if len(indices) < 2:
                continue
            pairs = component_edges.get(root, [])
            kind = (
                ConflictType.DUPLICATE
                if all(p.conflict_type is ConflictType.DUPLICATE for p in pairs)
                else ConflictType.OVERLAP
            )
            conflict = DataConflict.create(
                athlete_id=athlete_id,
                activity_date=on_date,
                conflict_type=kind,
                records=[ordered[i] for i in indices],
                evidence=tuple(p.to_evidence() for p in pairs),
            )
            logger.info(
                "Detected %s conflict %s for athlete %s on %s across %s",
                kind.value,
                conflict.id,
                athlete_id,
                on_date,
                ", ".join(conflict.platforms),
            )
            conflicts.append(conflict)

        logger.debug(
            "Detector: %d records → %d implicated pairs → %d conflicts",
            len(ordered),
            len(edges),
            len(conflicts),
        )
        return conflicts
