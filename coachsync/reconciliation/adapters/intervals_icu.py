"""intervals.icu activity normalizer."""

from __future__ import annotations

import logging

from coachsync.reconciliation.adapters.base import PlatformNormalizer
from coachsync.reconciliation.adapters.strava import SPORT_TYPE_MAP
from coachsync.reconciliation.base import NormalizedRecord

logger = logging.getLogger("coachsync.reconciliation.adapters.intervals_icu")


class IntervalsIcuNormalizer(PlatformNormalizer):
    """intervals.icu activities.

    intervals.icu reports local start time without an offset
    (``start_date_local``) and UTC start time separately (``start_date``).
    Power comes from ``icu_average_watts`` when the platform computed it,
    otherwise from the device's ``average_watts``.
    """

    PLATFORM_ID = "intervals.icu"
    DISPLAY_NAME = "intervals.icu"

    def normalize(self, raw: dict) -> NormalizedRecord:
        sport = str(raw.get("type") or "other").lower()
        power = self._safe_float(raw.get("icu_average_watts"))
        if power is None:
            power = self._safe_float(raw.get("average_watts"))

        return self._build_record(
            raw,
            external_id=raw.get("id"),
            record_date=self._parse_local_date(raw.get("start_date_local")),
            start_time=self._parse_iso_datetime(raw.get("start_date")),
            end_time=None,
            duration_seconds=self._safe_int(raw.get("elapsed_time")),
            distance_meters=self._safe_float(raw.get("distance")),
            avg_power=power,
            avg_heart_rate=self._safe_float(raw.get("average_heartrate")),
            activity_type=SPORT_TYPE_MAP.get(sport, "other"),
        )
