"""Reconciliation orchestrator — the entry point other layers call.

For one athlete and a batch of raw platform records:

    normalize → detect (per date) → fetch precedence rule → persist new
    conflicts → resolve → persist transition → aggregate result

``run`` and ``resolve_conflict`` are the only operations that change a
conflict's status, and both go through the store's compare-and-swap
transition.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date

from coachsync.reconciliation.base import (
    OPEN_STATUSES,
    ConflictStatus,
    DataConflict,
    NormalizedRecord,
    PrecedenceRule,
    RawPlatformRecord,
    ReconciliationResult,
    SkippedRecord,
    utc_now,
)
from coachsync.reconciliation.config_loader import (
    ReconciliationConfig,
    get_reconciliation_config,
)
from coachsync.reconciliation.detector import ConflictDetector
from coachsync.reconciliation.errors import (
    AlreadyResolvedError,
    MalformedRecordError,
    UnknownConflictError,
)
from coachsync.reconciliation.normalizer import RecordNormalizer
from coachsync.reconciliation.precedence import PrecedenceRegistry
from coachsync.reconciliation.resolver import ConflictResolver
from coachsync.reconciliation.stores import ConflictStore

logger = logging.getLogger("coachsync.reconciliation.orchestrator")


class ReconciliationOrchestrator:
    """Run the reconciliation pipeline and expose manual overrides and queries.

    Usage::

        orchestrator = ReconciliationOrchestrator(
            conflict_store=InMemoryConflictStore(),
            registry=PrecedenceRegistry(InMemoryPrecedenceRuleStore()),
        )
        result = await orchestrator.run("athlete-1", raw_records)
    """

    def __init__(
        self,
        conflict_store: ConflictStore,
        registry: PrecedenceRegistry,
        config: ReconciliationConfig | None = None,
        normalizer: RecordNormalizer | None = None,
        detector: ConflictDetector | None = None,
        resolver: ConflictResolver | None = None,
    ) -> None:
        cfg = config or get_reconciliation_config()
        self._config = cfg
        self._store = conflict_store
        self._registry = registry
        self._normalizer = normalizer or RecordNormalizer(cfg)
        self._detector = detector or ConflictDetector(cfg)
        self._resolver = resolver or ConflictResolver(cfg)

    @property
    def config(self) -> ReconciliationConfig:
        return self._config

    @property
    def registry(self) -> PrecedenceRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _normalize_batch(
        self, athlete_id: str, records: list[RawPlatformRecord], result: ReconciliationResult
    ) -> list[NormalizedRecord]:
        """Normalize every raw record, skipping (and counting) the unusable ones."""
        normalized: list[NormalizedRecord] = []
        for raw in records:
            try:
                record = self._normalizer.normalize(raw.platform, raw.payload)
            except MalformedRecordError as exc:
                logger.warning("Skipping malformed %s record: %s", raw.platform, exc)
                result.skipped.append(
                    SkippedRecord(
                        platform=exc.platform or raw.platform,
                        external_id=exc.external_id,
                        reason=str(exc),
                    )
                )
                continue
            if record.athlete_id != athlete_id:
                logger.warning(
                    "Skipping %s record %s: belongs to athlete %s, not %s",
                    record.platform,
                    record.external_id,
                    record.athlete_id,
                    athlete_id,
                )
                result.skipped.append(
                    SkippedRecord(
                        platform=record.platform,
                        external_id=record.external_id,
                        reason=f"record belongs to athlete {record.athlete_id}",
                    )
                )
                continue
            normalized.append(record)
        return normalized

    async def _apply_resolution(
        self, conflict: DataConflict, rule: PrecedenceRule | None
    ) -> DataConflict:
        """Resolve a freshly persisted conflict and CAS the outcome into the store."""
        updated = self._resolver.resolve(conflict, rule)
        persisted = await self._store.transition(
            updated, frozenset({ConflictStatus.UNRESOLVED})
        )
        if persisted is None:
            # Someone (a manual resolve) moved it first; theirs stands.
            current = await self._store.get(conflict.id)
            logger.info(
                "Conflict %s changed during automatic resolution; keeping %s",
                conflict.id,
                current.status.value if current else "missing",
            )
            return current or conflict
        return persisted

    async def run(
        self, athlete_id: str, records: list[RawPlatformRecord]
    ) -> ReconciliationResult:
        """Reconcile one athlete's batch of raw platform records.

        A malformed record, or one belonging to another athlete, is skipped
        and counted; it never aborts the batch.  Conflicts with the same
        membership as an already persisted conflict are not created again.

        Returns:
            ReconciliationResult with counts, the new conflicts, and the
            canonical records that survive reconciliation.
        """
        result = ReconciliationResult(athlete_id=athlete_id)
        normalized = self._normalize_batch(athlete_id, records, result)

        by_date: defaultdict[date, list[NormalizedRecord]] = defaultdict(list)
        for record in normalized:
            by_date[record.date].append(record)

        existing = await self._store.find_by_athlete_id(athlete_id)
        known = {c.fingerprint: c for c in existing}
        rule = await self._registry.get_precedence_rule(athlete_id)

        settled: list[DataConflict] = []
        for on_date in sorted(by_date):
            for conflict in self._detector.detect_conflicts(athlete_id, on_date, by_date[on_date]):
                previous = known.get(conflict.fingerprint)
                if previous is not None:
                    result.previously_detected += 1
                    settled.append(previous)
                    continue

                await self._store.save(conflict)
                current = await self._apply_resolution(conflict, rule)
                known[current.fingerprint] = current
                result.conflicts_detected += 1
                if current.is_resolved and not current.resolution.is_manual:
                    result.auto_resolved += 1
                elif current.requires_review:
                    result.requires_review += 1
                result.conflicts.append(current)
                settled.append(current)

        self._collect_canonical(normalized, settled, rule, result)
        result.processed_at = utc_now()
        logger.info("Reconciliation run complete: %s", result.to_summary_dict())
        return result

    def _collect_canonical(
        self,
        normalized: list[NormalizedRecord],
        conflicts: list[DataConflict],
        rule: PrecedenceRule | None,
        result: ReconciliationResult,
    ) -> None:
        """Fill canonical_records and pending_records on the result."""
        implicated: set[tuple[str, str]] = set()
        for conflict in conflicts:
            keys = set(conflict.fingerprint)
            implicated |= keys
            if conflict.is_resolved:
                result.canonical_records.extend(self._resolver.canonical_records(conflict, rule))
            else:
                result.pending_records += len(keys)

        seen: set[tuple[str, str]] = set()
        for record in normalized:
            if record.key in implicated or record.key in seen:
                continue
            seen.add(record.key)
            result.canonical_records.append(record)

    # ------------------------------------------------------------------
    # Manual override
    # ------------------------------------------------------------------

    async def resolve_conflict(
        self,
        conflict_id: str,
        primary_platform: str,
        retained_sources: set[str] | list[str],
        resolution_text: str,
        resolved_by: str | None = None,
    ) -> DataConflict:
        """Resolve a conflict from explicit operator input.

        Moves an UNRESOLVED or REQUIRES_REVIEW conflict to RESOLVED.
        Resolution is one-way.

        Raises:
            UnknownConflictError:   If no conflict has that ID.
            AlreadyResolvedError:   If the conflict is (or concurrently became) RESOLVED.
            InvalidResolutionError: If the inputs do not fit the conflict.
        """
        conflict = await self._store.get(conflict_id)
        if conflict is None:
            raise UnknownConflictError(conflict_id)

        updated = self._resolver.manual_resolution(
            conflict, primary_platform, retained_sources, resolution_text, resolved_by
        )
        persisted = await self._store.transition(updated, OPEN_STATUSES)
        if persisted is None:
            raise AlreadyResolvedError(conflict_id)

        logger.info(
            "Manually resolved conflict %s with platform %s as source (by %s)",
            conflict_id,
            persisted.resolution.primary_platform if persisted.resolution else "?",
            persisted.resolution.resolved_by if persisted.resolution else "?",
        )
        return persisted

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_conflict(self, conflict_id: str) -> DataConflict:
        conflict = await self._store.get(conflict_id)
        if conflict is None:
            raise UnknownConflictError(conflict_id)
        return conflict

    async def find_unresolved(self, athlete_id: str) -> list[DataConflict]:
        """All of an athlete's conflicts that are not yet RESOLVED."""
        return await self._store.find_by_status(
            ConflictStatus.UNRESOLVED,
            ConflictStatus.REQUIRES_REVIEW,
            athlete_id=athlete_id,
        )

    async def find_requiring_review(self) -> list[DataConflict]:
        """Every athlete's conflicts waiting for manual review."""
        return await self._store.find_by_status(ConflictStatus.REQUIRES_REVIEW)
