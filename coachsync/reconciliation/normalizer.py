"""Record normalizer — routes raw platform payloads to platform normalizers.

The registry holds one normalizer per canonical platform slug.  Platform
names coming from adapters are canonicalized through the configured alias
table first; platforms without a dedicated normalizer fall back to the
generic (canonical field names) normalizer tagged with that platform's slug.
"""

from __future__ import annotations

import logging

from coachsync.reconciliation.adapters import (
    GenericNormalizer,
    PlatformNormalizer,
    default_normalizers,
)
from coachsync.reconciliation.base import NormalizedRecord
from coachsync.reconciliation.config_loader import (
    ReconciliationConfig,
    get_reconciliation_config,
)
from coachsync.reconciliation.errors import MalformedRecordError

logger = logging.getLogger("coachsync.reconciliation.normalizer")


class RecordNormalizer:
    """Registry of platform normalizers.

    Usage::

        normalizer = RecordNormalizer()
        record = normalizer.normalize("strava", payload)
    """

    def __init__(
        self,
        config: ReconciliationConfig | None = None,
        normalizers: list[PlatformNormalizer] | None = None,
    ) -> None:
        self._config = config or get_reconciliation_config()
        self._normalizers: dict[str, PlatformNormalizer] = {}
        for normalizer in normalizers if normalizers is not None else default_normalizers():
            self.register(normalizer)

    def register(self, normalizer: PlatformNormalizer) -> None:
        """Add (or replace) the normalizer for its platform."""
        self._normalizers[normalizer.PLATFORM_ID] = normalizer
        logger.debug("Registered normalizer %s", normalizer.PLATFORM_ID)

    @property
    def registered(self) -> list[str]:
        return sorted(self._normalizers)

    def normalizer_for(self, platform: str) -> PlatformNormalizer:
        """Return the normalizer for a platform slug or alias."""
        slug = self._config.canonical_platform(platform)
        normalizer = self._normalizers.get(slug)
        if normalizer is None:
            normalizer = GenericNormalizer(slug)
        return normalizer

    def normalize(self, platform: str, raw_payload: dict) -> NormalizedRecord:
        """Convert one raw payload to a NormalizedRecord.

        Pure: no I/O and no side effects beyond logging.

        Raises:
            MalformedRecordError: If the platform is blank, the payload is not
                a mapping, or a required field is missing or invalid.
        """
        if not isinstance(platform, str) or not platform.strip():
            raise MalformedRecordError("record has no platform")
        if not isinstance(raw_payload, dict):
            raise MalformedRecordError(
                f"{platform} payload must be a mapping, got {type(raw_payload).__name__}",
                platform=platform,
            )
        return self.normalizer_for(platform).normalize(raw_payload)
