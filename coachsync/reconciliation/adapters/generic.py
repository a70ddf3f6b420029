"""Generic normalizer for payloads already in canonical field names.

Used for platforms without a dedicated normalizer, and for adapters that
pre-shape their output.  Accepts camelCase and snake_case keys::

    {"athleteId": "a-1", "externalId": "x-9", "date": "2026-02-23",
     "startTime": "2026-02-23T08:00:00Z", "durationSeconds": 3600,
     "distanceMeters": 20000, "avgPower": 230, "avgHeartRate": 148}
"""

from __future__ import annotations

from coachsync.reconciliation.adapters.base import PlatformNormalizer
from coachsync.reconciliation.base import NormalizedRecord


def _first(raw: dict, *keys: str) -> object:
    for key in keys:
        if raw.get(key) is not None:
            return raw[key]
    return None


class GenericNormalizer(PlatformNormalizer):
    """Canonical-shape payloads, tagged with whatever platform slug they came from."""

    DISPLAY_NAME = "Generic"

    def __init__(self, platform_id: str = "generic") -> None:
        self.PLATFORM_ID = platform_id
        self.DISPLAY_NAME = f"Generic ({platform_id})"

    def normalize(self, raw: dict) -> NormalizedRecord:
        activity_type = _first(raw, "activityType", "activity_type")
        return self._build_record(
            raw,
            external_id=_first(raw, "externalId", "external_id", "id"),
            record_date=self._parse_local_date(_first(raw, "date")),
            start_time=self._parse_iso_datetime(_first(raw, "startTime", "start_time")),
            end_time=self._parse_iso_datetime(_first(raw, "endTime", "end_time")),
            duration_seconds=self._safe_int(
                _first(raw, "durationSeconds", "duration_seconds", "duration")
            ),
            distance_meters=self._safe_float(
                _first(raw, "distanceMeters", "distance_meters", "distance")
            ),
            avg_power=self._safe_float(_first(raw, "avgPower", "avg_power")),
            avg_heart_rate=self._safe_float(_first(raw, "avgHeartRate", "avg_heart_rate")),
            activity_type=str(activity_type).lower() if activity_type else "other",
        )
