"""Load, validate, and hot-reload the reconciliation configuration.

The config lives in ``reconciliation_config.yaml`` alongside this module.  At
startup it is loaded once and cached.  Call ``reload_reconciliation_config()``
to re-read from disk after an admin update — no restart required.

Usage::

    from coachsync.reconciliation.config_loader import get_reconciliation_config

    config = get_reconciliation_config()
    config.detection.duplicate_min_overlap_ratio   # 0.8
    config.canonical_platform("icu")               # 'intervals.icu'
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from coachsync.reconciliation.errors import ReconciliationError

logger = logging.getLogger("coachsync.reconciliation.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "reconciliation_config.yaml"

SINGLE_DISTANCE_POLICIES = ("ignore", "require")


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class DetectionThresholds:
    """Duplicate-vs-overlap classification thresholds."""

    duplicate_min_overlap_ratio: float = 0.8
    max_duration_delta_ratio: float = 0.1
    max_distance_delta_ratio: float = 0.1
    single_distance_policy: str = "ignore"


@dataclass
class ReconciliationConfig:
    """Complete, validated reconciliation configuration.

    Attributes:
        version:          Config schema version string.
        detection:        Classification thresholds used by the detector.
        platform_aliases: alias → canonical platform slug.
    """

    version: str
    detection: DetectionThresholds
    platform_aliases: dict[str, str] = field(default_factory=dict)
    _raw: dict = field(default_factory=dict, repr=False)

    def canonical_platform(self, platform: str) -> str:
        """Lower-case a platform slug and resolve it through the alias table."""
        slug = platform.strip().lower()
        return self.platform_aliases.get(slug, slug)


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ReconciliationError, ValueError):
    """Raised when reconciliation_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Reconciliation config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> ReconciliationConfig:
    """Validate the raw YAML dict and construct a ReconciliationConfig.

    Every problem is collected before raising so that an admin sees all of
    them at once.

    Raises:
        ConfigValidationError: If a field is missing or out of range.
    """
    errors: list[str] = []
    version = str(raw.get("version", "1.0"))

    # ── Detection thresholds ──
    det_raw = raw.get("detection")
    if not isinstance(det_raw, dict):
        errors.append("'detection' section is missing or not a mapping")
        det_raw = {}

    defaults = DetectionThresholds()
    ratios: dict[str, float] = {}
    for key in (
        "duplicate_min_overlap_ratio",
        "max_duration_delta_ratio",
        "max_distance_delta_ratio",
    ):
        value = det_raw.get(key, getattr(defaults, key))
        try:
            ratio = float(value)
        except (TypeError, ValueError):
            errors.append(f"detection.{key} must be a number, got {value!r}")
            continue
        if not (0.0 <= ratio <= 1.0):
            errors.append(f"detection.{key} = {ratio} is out of range [0.0, 1.0]")
        ratios[key] = ratio

    policy = str(det_raw.get("single_distance_policy", defaults.single_distance_policy))
    if policy not in SINGLE_DISTANCE_POLICIES:
        errors.append(
            f"detection.single_distance_policy must be one of "
            f"{', '.join(SINGLE_DISTANCE_POLICIES)}, got {policy!r}"
        )

    # ── Platform aliases ──
    aliases_raw = raw.get("platform_aliases") or {}
    aliases: dict[str, str] = {}
    if not isinstance(aliases_raw, dict):
        errors.append("'platform_aliases' must be a mapping of alias→platform")
    else:
        for alias, target in aliases_raw.items():
            if not isinstance(target, str) or not target.strip():
                errors.append(f"platform_aliases.{alias} must name a platform")
                continue
            aliases[str(alias).strip().lower()] = target.strip().lower()

    if errors:
        raise ConfigValidationError(
            f"reconciliation_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return ReconciliationConfig(
        version=version,
        detection=DetectionThresholds(single_distance_policy=policy, **ratios),
        platform_aliases=aliases,
        _raw=raw,
    )


def load_reconciliation_config(path: Path | None = None) -> ReconciliationConfig:
    """Load and validate the reconciliation config from disk.

    Args:
        path: Override path to YAML. Uses the bundled file by default.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded reconciliation config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: ReconciliationConfig | None = None
_config_lock = threading.Lock()


def get_reconciliation_config() -> ReconciliationConfig:
    """Return the global ReconciliationConfig singleton, loading it on first call.

    Thread-safe.  Use ``reload_reconciliation_config()`` to refresh after YAML changes.
    """
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_reconciliation_config()
    return _config


def reload_reconciliation_config(path: Path | None = None) -> ReconciliationConfig:
    """Reload the config from disk and replace the global singleton.

    If validation fails, the old config is retained and the error is re-raised.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_reconciliation_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info(
        "Reloaded reconciliation config: %s → %s",
        old_version,
        new_config.version,
    )
    return new_config
