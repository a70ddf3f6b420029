"""Conflict resolver — apply a precedence rule to a detected conflict.

The resolver is pure: it never touches storage and never mutates the
conflict it is given.  It returns the next state, which the orchestrator
persists through a compare-and-swap transition.

Automatic resolution never guesses: without a rule that ranks at least one
of the conflict's platforms, the conflict goes to manual review.
"""

from __future__ import annotations

import logging
from dataclasses import replace

from coachsync.reconciliation.base import (
    ConflictType,
    DataConflict,
    NormalizedRecord,
    PrecedenceRule,
    Resolution,
    utc_now,
)
from coachsync.reconciliation.config_loader import (
    ReconciliationConfig,
    get_reconciliation_config,
)
from coachsync.reconciliation.errors import AlreadyResolvedError, InvalidResolutionError

logger = logging.getLogger("coachsync.reconciliation.resolver")

MANUAL_RESOLVER = "manual"

# Optional metrics a duplicate's canonical record may borrow from the dropped copies
_BACKFILL_FIELDS = ("distance_meters", "avg_power", "avg_heart_rate")


def _describe(platform: str, rule: PrecedenceRule) -> str:
    rank = rule.rank(platform)
    return f"{platform} (rank {rank})" if rank is not None else f"{platform} (unranked)"


class ConflictResolver:
    """Resolve conflicts from precedence rules or from explicit operator input.

    Usage::

        resolver = ConflictResolver()
        updated = resolver.resolve(conflict, rule)
        if updated.is_resolved:
            records = resolver.canonical_records(updated, rule)
    """

    def __init__(self, config: ReconciliationConfig | None = None) -> None:
        self._config = config or get_reconciliation_config()

    def resolve(self, conflict: DataConflict, rule: PrecedenceRule | None) -> DataConflict:
        """Return the conflict resolved by ``rule``, or routed to review.

        Raises:
            AlreadyResolvedError: If the conflict is already RESOLVED.
        """
        if conflict.is_resolved:
            raise AlreadyResolvedError(conflict.id)

        if rule is None:
            reason = f"No precedence rule set for athlete {conflict.athlete_id}"
            logger.info("Conflict %s requires review: %s", conflict.id, reason)
            return conflict.require_review(reason)

        ranked = rule.ranked(conflict.platforms)
        if not ranked:
            reason = (
                f"Precedence rule '{rule.rule_name}' ranks none of "
                f"{', '.join(conflict.platforms)}"
            )
            logger.info("Conflict %s requires review: %s", conflict.id, reason)
            return conflict.require_review(reason)

        primary = ranked[0]
        if conflict.conflict_type is ConflictType.DUPLICATE:
            retained = frozenset({primary})
            dropped = [p for p in conflict.platforms if p != primary]
            note = (
                f"Duplicate session: retained {_describe(primary, rule)} per precedence "
                f"rule '{rule.rule_name}'; dropped "
                f"{', '.join(_describe(p, rule) for p in dropped)} as lower precedence."
            )
        else:
            retained = frozenset(conflict.platforms)
            note = (
                f"Distinct sessions retained, overlap acknowledged. "
                f"{_describe(primary, rule)} is authoritative for shared fields per "
                f"precedence rule '{rule.rule_name}'."
            )

        resolution = Resolution(
            primary_platform=primary,
            retained_sources=retained,
            resolution_note=note,
            resolved_by=None,
            resolved_at=utc_now(),
        )
        logger.info(
            "Auto-resolved %s conflict %s: primary=%s retained=%s",
            conflict.conflict_type.value,
            conflict.id,
            primary,
            sorted(retained),
        )
        return conflict.resolve(resolution)

    def manual_resolution(
        self,
        conflict: DataConflict,
        primary_platform: str,
        retained_sources: set[str] | list[str],
        resolution_text: str,
        resolved_by: str | None = None,
    ) -> DataConflict:
        """Return the conflict resolved exactly as an operator specified.

        Bypasses precedence lookup entirely.

        Raises:
            AlreadyResolvedError:   If the conflict is already RESOLVED.
            InvalidResolutionError: If the inputs do not fit the conflict.
        """
        if conflict.is_resolved:
            raise AlreadyResolvedError(conflict.id)

        primary = self._config.canonical_platform(primary_platform or "")
        retained = frozenset(self._config.canonical_platform(p) for p in retained_sources)

        if primary not in conflict.conflicting_records:
            raise InvalidResolutionError(
                f"Primary platform {primary_platform!r} is not part of conflict "
                f"{conflict.id} ({', '.join(conflict.platforms)})"
            )
        unknown = sorted(retained - set(conflict.conflicting_records))
        if unknown:
            raise InvalidResolutionError(
                f"Retained sources {unknown} are not part of conflict {conflict.id}"
            )
        if primary not in retained:
            raise InvalidResolutionError(
                f"Retained sources must include the primary platform {primary!r}"
            )
        if not resolution_text or not resolution_text.strip():
            raise InvalidResolutionError("Resolution text cannot be blank")

        resolution = Resolution(
            primary_platform=primary,
            retained_sources=retained,
            resolution_note=resolution_text.strip(),
            resolved_by=resolved_by or MANUAL_RESOLVER,
            resolved_at=utc_now(),
        )
        return conflict.resolve(resolution)

    def canonical_records(
        self, conflict: DataConflict, rule: PrecedenceRule | None = None
    ) -> list[NormalizedRecord]:
        """Records kept as authoritative once the conflict is resolved.

        DUPLICATE: the primary record, with missing optional metrics filled
        from the other copies (retained copies first, then by rank).
        OVERLAP: every retained record, primary first.
        Open conflicts yield no records.
        """
        if not conflict.is_resolved or conflict.resolution is None:
            return []

        resolution = conflict.resolution
        records = conflict.conflicting_records
        primary = records[resolution.primary_platform]

        if conflict.conflict_type is ConflictType.OVERLAP:
            others = sorted(p for p in resolution.retained_sources if p != primary.platform)
            return [primary] + [records[p] for p in others]

        def donor_order(platform: str) -> tuple:
            rank = rule.rank(platform) if rule else None
            return (
                platform not in resolution.retained_sources,
                rank if rank is not None else float("inf"),
                platform,
            )

        donors = [records[p] for p in sorted(records, key=donor_order) if p != primary.platform]
        updates: dict[str, object] = {}
        for name in _BACKFILL_FIELDS:
            if getattr(primary, name) is not None:
                continue
            for donor in donors:
                value = getattr(donor, name)
                if value is not None:
                    updates[name] = value
                    break
        if primary.activity_type == "other":
            for donor in donors:
                if donor.activity_type != "other":
                    updates["activity_type"] = donor.activity_type
                    break

        return [replace(primary, **updates)] if updates else [primary]
