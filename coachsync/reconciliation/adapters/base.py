"""Base class for platform normalizers.

A platform normalizer turns one raw payload from a fitness platform into a
``NormalizedRecord``.  It is a pure function of the payload: no I/O, no
clock, no shared state.  Fetching the payload (OAuth, HTTP, retries) belongs
to the platform adapter layer and never happens here.

By convention the adapter layer adds the internal ``athleteId`` to every
payload before handing it over, since the platform's own user ID is not the
athlete ID the engine reconciles on.
"""

from __future__ import annotations

import hashlib
import json
import logging
import math
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone

from coachsync.reconciliation.base import NormalizedRecord
from coachsync.reconciliation.errors import MalformedRecordError

logger = logging.getLogger("coachsync.reconciliation.adapters")


def payload_content_hash(payload: dict) -> str:
    """SHA-256 hex digest of the canonicalized JSON payload.

    Gives records without an external ID a stable identity, so that the same
    payload delivered twice still collapses to one record.
    """
    canonical = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


class PlatformNormalizer(ABC):
    """Abstract base class for all platform normalizers.

    Subclasses implement ``normalize()`` by reading their platform's field
    names and handing the values to ``_build_record()``, which applies the
    shared validation rules.
    """

    #: Canonical platform slug (e.g. 'garmin', 'intervals.icu').
    PLATFORM_ID: str = "unknown"

    #: Human-readable name for logging.
    DISPLAY_NAME: str = "Unknown Platform"

    @abstractmethod
    def normalize(self, raw: dict) -> NormalizedRecord:
        """Convert one platform payload to a NormalizedRecord.

        Raises:
            MalformedRecordError: If required fields are missing or invalid.
        """

    # ------------------------------------------------------------------
    # Shared helpers for all normalizers
    # ------------------------------------------------------------------

    def _build_record(
        self,
        raw: dict,
        *,
        external_id: object,
        record_date: date | None,
        start_time: datetime | None,
        end_time: datetime | None,
        duration_seconds: int | None,
        distance_meters: float | None = None,
        avg_power: float | None = None,
        avg_heart_rate: float | None = None,
        activity_type: str = "other",
    ) -> NormalizedRecord:
        """Validate extracted fields and assemble the record.

        Rules:
            - ``athleteId`` (or ``athlete_id``) must be present.
            - Duration falls back to ``end - start``; without either it is missing.
            - Date falls back to the start date; without either it is missing.
            - Duration and distance must not be negative.
        """
        ext_id = str(external_id) if external_id not in (None, "") else None
        if ext_id is None:
            ext_id = payload_content_hash(raw)[:16]

        athlete_id = raw.get("athleteId", raw.get("athlete_id"))
        if athlete_id in (None, ""):
            raise self._malformed("missing athleteId", ext_id)

        if start_time is not None and end_time is not None and end_time < start_time:
            raise self._malformed("end time precedes start time", ext_id)

        if duration_seconds is None and start_time is not None and end_time is not None:
            duration_seconds = int((end_time - start_time).total_seconds())
        if duration_seconds is None:
            raise self._malformed("missing duration", ext_id)
        if duration_seconds < 0:
            raise self._malformed(f"negative duration {duration_seconds}s", ext_id)

        if distance_meters is not None and distance_meters < 0:
            raise self._malformed(f"negative distance {distance_meters}m", ext_id)

        if record_date is None and start_time is not None:
            record_date = start_time.date()
        if record_date is None:
            raise self._malformed("missing date", ext_id)

        if end_time is None and start_time is not None:
            try:
                end_time = start_time + timedelta(seconds=duration_seconds)
            except OverflowError:
                raise self._malformed(
                    f"duration {duration_seconds}s runs past the calendar", ext_id
                ) from None

        return NormalizedRecord(
            platform=self.PLATFORM_ID,
            external_id=ext_id,
            athlete_id=str(athlete_id),
            date=record_date,
            duration_seconds=duration_seconds,
            start_time=start_time,
            end_time=end_time,
            distance_meters=distance_meters,
            avg_power=avg_power,
            avg_heart_rate=avg_heart_rate,
            activity_type=activity_type,
            raw_payload=raw,
        )

    def _malformed(self, reason: str, external_id: str | None = None) -> MalformedRecordError:
        return MalformedRecordError(
            f"{self.DISPLAY_NAME} record {external_id or '<no id>'}: {reason}",
            platform=self.PLATFORM_ID,
            external_id=external_id,
        )

    @staticmethod
    def _safe_int(value: object) -> int | None:
        """Safely coerce a value to int, returning None on failure."""
        if value is None or isinstance(value, bool):
            return None
        try:
            return int(float(value))
        except (TypeError, ValueError, OverflowError):
            return None

    @staticmethod
    def _safe_float(value: object) -> float | None:
        """Safely coerce a value to a finite float, returning None on failure."""
        if value is None or isinstance(value, bool):
            return None
        try:
            result = float(value)
        except (TypeError, ValueError, OverflowError):
            return None
        return result if math.isfinite(result) else None

    @staticmethod
    def _parse_iso_datetime(value: object) -> datetime | None:
        """Parse an ISO-8601 datetime string to naive UTC.

        Handles both naive (assumed UTC) and timezone-aware strings.
        Returns None if the value is None or unparseable.
        """
        if not value or not isinstance(value, str):
            return None
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.warning("Could not parse datetime string: %r", value)
            return None
        # Convert to UTC if tz-aware, leave naive as-is (assumed UTC)
        if dt.tzinfo is not None:
            dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
        return dt

    @staticmethod
    def _parse_local_date(value: object) -> date | None:
        """Return the calendar date of a local timestamp or date string.

        The time zone suffix is ignored on purpose: platforms that label local
        times with 'Z' (Strava's ``start_date_local``) still mean local time.
        """
        if not value or not isinstance(value, str):
            return None
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            logger.warning("Could not parse date string: %r", value)
            return None

    @staticmethod
    def _from_epoch(value: object) -> datetime | None:
        """Convert a Unix timestamp (seconds) to naive UTC."""
        if value is None or isinstance(value, bool):
            return None
        try:
            return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)
        except (TypeError, ValueError, OverflowError, OSError):
            return None
