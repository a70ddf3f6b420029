"""Platform normalizers for CoachSync.

Each normalizer implements the PlatformNormalizer ABC and converts one
platform's raw activity/wellness JSON into a canonical NormalizedRecord.

Available normalizers:
    GarminNormalizer       — Garmin Connect activity summaries
    StravaNormalizer       — Strava activities
    IntervalsIcuNormalizer — intervals.icu activities
    WhoopNormalizer        — Whoop workouts and sleeps
    GenericNormalizer      — payloads already in canonical field names
"""

from coachsync.reconciliation.adapters.base import PlatformNormalizer
from coachsync.reconciliation.adapters.garmin import GarminNormalizer
from coachsync.reconciliation.adapters.generic import GenericNormalizer
from coachsync.reconciliation.adapters.intervals_icu import IntervalsIcuNormalizer
from coachsync.reconciliation.adapters.strava import StravaNormalizer
from coachsync.reconciliation.adapters.whoop import WhoopNormalizer

__all__ = [
    "PlatformNormalizer",
    "GarminNormalizer",
    "StravaNormalizer",
    "IntervalsIcuNormalizer",
    "WhoopNormalizer",
    "GenericNormalizer",
]


def default_normalizers() -> list[PlatformNormalizer]:
    """One instance of every dedicated platform normalizer."""
    return [
        GarminNormalizer(),
        StravaNormalizer(),
        IntervalsIcuNormalizer(),
        WhoopNormalizer(),
    ]
