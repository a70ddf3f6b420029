"""CoachSync multi-source reconciliation engine.

This package decides, per athlete and calendar date, which records pulled
from different fitness platforms describe the same session (duplicates),
which describe distinct sessions that collide in time (overlaps), and which
platform's version is authoritative.

Subpackages:
    adapters/  — Per-platform normalizers (Garmin, Strava, intervals.icu, Whoop, generic)
    tests/     — Unit and integration tests

Core modules:
    base          — Canonical data models (NormalizedRecord, DataConflict, PrecedenceRule)
    errors        — Error kinds
    config_loader — Load/validate/hot-reload reconciliation_config.yaml
    normalizer    — Route raw payloads to platform normalizers
    detector      — Pairwise classification and union-find grouping
    precedence    — Per-athlete precedence rule registry
    resolver      — Automatic and manual conflict resolution
    orchestrator  — Full pipeline, manual override, and queries
    stores        — Store protocols and in-memory implementations
    postgres      — asyncpg-backed stores
"""

from coachsync.reconciliation.base import (
    ConflictStatus,
    ConflictType,
    DataConflict,
    NormalizedRecord,
    PrecedenceRule,
    RawPlatformRecord,
    ReconciliationResult,
    Resolution,
)
from coachsync.reconciliation.config_loader import (
    ReconciliationConfig,
    get_reconciliation_config,
)
from coachsync.reconciliation.errors import (
    AlreadyResolvedError,
    InvalidPrecedenceError,
    InvalidResolutionError,
    MalformedRecordError,
    ReconciliationError,
    UnknownConflictError,
)

__all__ = [
    "ConflictStatus",
    "ConflictType",
    "DataConflict",
    "NormalizedRecord",
    "PrecedenceRule",
    "RawPlatformRecord",
    "ReconciliationResult",
    "Resolution",
    "ReconciliationConfig",
    "get_reconciliation_config",
    "ReconciliationError",
    "MalformedRecordError",
    "InvalidPrecedenceError",
    "InvalidResolutionError",
    "AlreadyResolvedError",
    "UnknownConflictError",
]
