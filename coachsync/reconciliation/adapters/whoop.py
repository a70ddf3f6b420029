"""Whoop workout and sleep normalizer.

Whoop records carry explicit ``start``/``end`` timestamps and a
``timezone_offset`` (e.g. ``"-05:00"``); there is no duration field, so the
duration is the window length.  Sleep entries (which carry a ``nap`` flag
instead of a ``sport_id``) are normalized as wellness records with activity
type ``sleep``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from coachsync.reconciliation.adapters.base import PlatformNormalizer
from coachsync.reconciliation.base import NormalizedRecord

logger = logging.getLogger("coachsync.reconciliation.adapters.whoop")

# Whoop sport ID → canonical activity type slug
_WHOOP_SPORT_MAP: dict[int, str] = {
    0: "running",
    1: "cycling",
    33: "swimming",
    63: "walking",
    52: "hiking",
    45: "strength_training",
    44: "yoga",
    18: "rowing",
    57: "cycling",  # spin
    47: "cross_country_skiing",
}


def _parse_offset(value: object) -> timedelta:
    """Parse a '+HH:MM' / '-HH:MM' offset; anything else is treated as UTC."""
    if not isinstance(value, str) or len(value) != 6 or value[0] not in "+-":
        return timedelta(0)
    try:
        hours, minutes = int(value[1:3]), int(value[4:6])
    except ValueError:
        return timedelta(0)
    delta = timedelta(hours=hours, minutes=minutes)
    return -delta if value[0] == "-" else delta


class WhoopNormalizer(PlatformNormalizer):
    """Whoop v1 workouts and sleeps."""

    PLATFORM_ID = "whoop"
    DISPLAY_NAME = "Whoop"

    def normalize(self, raw: dict) -> NormalizedRecord:
        start_time = self._parse_iso_datetime(raw.get("start"))
        end_time = self._parse_iso_datetime(raw.get("end"))

        record_date = None
        if start_time is not None:
            try:
                local_start: datetime = start_time + _parse_offset(raw.get("timezone_offset"))
            except OverflowError:
                raise self._malformed(
                    "start time out of range", str(raw.get("id") or "") or None
                ) from None
            record_date = local_start.date()

        score = raw.get("score") or {}
        if "nap" in raw and "sport_id" not in raw:
            activity_type = "sleep"
        else:
            sport_id = self._safe_int(raw.get("sport_id"))
            activity_type = _WHOOP_SPORT_MAP.get(sport_id, "other") if sport_id is not None else "other"

        return self._build_record(
            raw,
            external_id=raw.get("id"),
            record_date=record_date,
            start_time=start_time,
            end_time=end_time,
            duration_seconds=None,
            distance_meters=self._safe_float(score.get("distance_meter")),
            avg_power=None,
            avg_heart_rate=self._safe_float(score.get("average_heart_rate")),
            activity_type=activity_type,
        )
