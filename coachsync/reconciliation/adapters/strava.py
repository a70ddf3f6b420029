"""Strava activity normalizer.

Reads the Strava ``DetailedActivity`` / ``SummaryActivity`` shape.  The
record window uses ``elapsed_time`` (wall-clock) rather than
``moving_time`` so that it lines up with what other platforms record for the
same session.
"""

from __future__ import annotations

import logging

from coachsync.reconciliation.adapters.base import PlatformNormalizer
from coachsync.reconciliation.base import NormalizedRecord

logger = logging.getLogger("coachsync.reconciliation.adapters.strava")

# Strava-style sport type → canonical activity type slug.
# intervals.icu uses the same vocabulary.
SPORT_TYPE_MAP: dict[str, str] = {
    "run": "running",
    "trailrun": "running",
    "virtualrun": "running",
    "ride": "cycling",
    "virtualride": "cycling",
    "gravelride": "cycling",
    "mountainbikeride": "cycling",
    "ebikeride": "cycling",
    "swim": "swimming",
    "walk": "walking",
    "hike": "hiking",
    "weighttraining": "strength_training",
    "yoga": "yoga",
    "rowing": "rowing",
    "nordicski": "cross_country_skiing",
}


class StravaNormalizer(PlatformNormalizer):
    """Strava activities."""

    PLATFORM_ID = "strava"
    DISPLAY_NAME = "Strava"

    def normalize(self, raw: dict) -> NormalizedRecord:
        sport = str(raw.get("sport_type") or raw.get("type") or "other").lower()
        return self._build_record(
            raw,
            external_id=raw.get("id"),
            record_date=self._parse_local_date(raw.get("start_date_local")),
            start_time=self._parse_iso_datetime(raw.get("start_date")),
            end_time=None,
            duration_seconds=self._safe_int(raw.get("elapsed_time")),
            distance_meters=self._safe_float(raw.get("distance")),
            avg_power=self._safe_float(raw.get("average_watts")),
            avg_heart_rate=self._safe_float(raw.get("average_heartrate")),
            activity_type=SPORT_TYPE_MAP.get(sport, "other"),
        )
