"""Garmin Connect activity normalizer.

Reads the Garmin Health API activity summary shape::

    {
      "summaryId": "8123456789",
      "activityType": "RUNNING",
      "startTimeInSeconds": 1771833600,
      "startTimeOffsetInSeconds": 3600,
      "durationInSeconds": 3600,
      "distanceInMeters": 20000.0,
      "averageHeartRateInBeatsPerMinute": 151,
      "averagePowerInWatts": 245
    }

``startTimeOffsetInSeconds`` is the athlete's local UTC offset and decides
the calendar date when no ``calendarDate`` is present.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from coachsync.reconciliation.adapters.base import PlatformNormalizer
from coachsync.reconciliation.base import NormalizedRecord

logger = logging.getLogger("coachsync.reconciliation.adapters.garmin")

# Garmin activity type → canonical activity type slug
_GARMIN_ACTIVITY_TYPE_MAP: dict[str, str] = {
    "running": "running",
    "treadmill_running": "running",
    "trail_running": "running",
    "cycling": "cycling",
    "road_biking": "cycling",
    "mountain_biking": "cycling",
    "indoor_cycling": "cycling",
    "virtual_ride": "cycling",
    "lap_swimming": "swimming",
    "open_water_swimming": "swimming",
    "walking": "walking",
    "hiking": "hiking",
    "strength_training": "strength_training",
    "yoga": "yoga",
    "rowing": "rowing",
    "indoor_rowing": "rowing",
    "cross_country_skiing": "cross_country_skiing",
}


class GarminNormalizer(PlatformNormalizer):
    """Garmin Connect activity summaries."""

    PLATFORM_ID = "garmin"
    DISPLAY_NAME = "Garmin Connect"

    def normalize(self, raw: dict) -> NormalizedRecord:
        start_ts = self._safe_int(raw.get("startTimeInSeconds"))
        start_time = self._from_epoch(start_ts)
        duration = self._safe_int(raw.get("durationInSeconds"))

        record_date = self._parse_local_date(raw.get("calendarDate"))
        if record_date is None and start_time is not None:
            offset = self._safe_int(raw.get("startTimeOffsetInSeconds")) or 0
            try:
                record_date = (start_time + timedelta(seconds=offset)).date()
            except OverflowError:
                raise self._malformed(
                    f"start time offset {offset}s out of range",
                    str(raw.get("summaryId") or raw.get("activityId") or "") or None,
                ) from None

        activity_type_raw = str(raw.get("activityType") or "other").lower()

        return self._build_record(
            raw,
            external_id=raw.get("summaryId") or raw.get("activityId"),
            record_date=record_date,
            start_time=start_time,
            end_time=None,
            duration_seconds=duration,
            distance_meters=self._safe_float(raw.get("distanceInMeters")),
            avg_power=self._safe_float(raw.get("averagePowerInWatts")),
            avg_heart_rate=self._safe_float(raw.get("averageHeartRateInBeatsPerMinute")),
            activity_type=_GARMIN_ACTIVITY_TYPE_MAP.get(activity_type_raw, "other"),
        )
