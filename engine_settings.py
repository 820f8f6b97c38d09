"""
Engine Settings — loads cohort defaults and outlier thresholds from YAML.

Every collection run and API handler reads its defaults from the
EngineSettings returned here instead of hard-coding region codes or
limits. Edit settings.yaml (or point ENGINE_SETTINGS_PATH elsewhere)
and restart to change them.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

import config

logger = logging.getLogger(__name__)


class SettingsValidationError(Exception):
    """Raised when settings.yaml contains unusable values."""
    pass


@dataclass(frozen=True)
class OutlierThresholds:
    view_spike_z: float = 1.5
    view_spike_min_views: int = 10_000
    engagement_spike_multiple: float = 2.0
    rapid_growth_rate_per_hour: float = 5_000.0


@dataclass(frozen=True)
class EngineSettings:
    default_region: str = "IN"
    default_snapshot_type: str = "trending"
    max_results_ceiling: int = 50
    series_window: int = 30
    flagged_per_snapshot: int = 25
    thresholds: OutlierThresholds = field(default_factory=OutlierThresholds)

    def clamp_max_results(self, requested: Optional[int]) -> int:
        """Bound a requested page size to [1, max_results_ceiling]."""
        if requested is None:
            return self.max_results_ceiling
        return max(1, min(int(requested), self.max_results_ceiling))


def _positive(name: str, value, cast):
    try:
        value = cast(value)
    except (TypeError, ValueError):
        raise SettingsValidationError(f"'{name}' must be a number, got {value!r}")
    if value <= 0:
        raise SettingsValidationError(f"'{name}' must be positive, got {value}")
    return value


def _parse_thresholds(raw: dict) -> OutlierThresholds:
    defaults = OutlierThresholds()
    return OutlierThresholds(
        view_spike_z=_positive(
            "view_spike_z", raw.get("view_spike_z", defaults.view_spike_z), float),
        view_spike_min_views=_positive(
            "view_spike_min_views",
            raw.get("view_spike_min_views", defaults.view_spike_min_views), int),
        engagement_spike_multiple=_positive(
            "engagement_spike_multiple",
            raw.get("engagement_spike_multiple", defaults.engagement_spike_multiple),
            float),
        rapid_growth_rate_per_hour=_positive(
            "rapid_growth_rate_per_hour",
            raw.get("rapid_growth_rate_per_hour", defaults.rapid_growth_rate_per_hour),
            float),
    )


def parse_settings(data: Optional[dict]) -> EngineSettings:
    """Build EngineSettings from an already-parsed YAML mapping."""
    data = data or {}
    if not isinstance(data, dict):
        raise SettingsValidationError("Settings root must be a mapping")

    defaults = EngineSettings()
    collection = data.get("collection", {}) or {}
    thresholds = data.get("outlier_thresholds", {}) or {}

    region = str(collection.get("default_region", defaults.default_region)).upper()
    if len(region) != 2 or not region.isalpha():
        raise SettingsValidationError(f"default_region must be a 2-letter code, got {region!r}")

    return EngineSettings(
        default_region=region,
        default_snapshot_type=str(
            collection.get("default_snapshot_type", defaults.default_snapshot_type)),
        max_results_ceiling=_positive(
            "max_results_ceiling",
            collection.get("max_results_ceiling", defaults.max_results_ceiling), int),
        series_window=_positive(
            "series_window", collection.get("series_window", defaults.series_window), int),
        flagged_per_snapshot=_positive(
            "flagged_per_snapshot",
            collection.get("flagged_per_snapshot", defaults.flagged_per_snapshot), int),
        thresholds=_parse_thresholds(thresholds),
    )


def load_settings(path: Optional[Path] = None) -> EngineSettings:
    """
    Load engine settings from YAML.

    A missing file is not an error: the built-in defaults apply. A file
    that exists but fails validation raises SettingsValidationError.
    """
    path = Path(path or config.SETTINGS_PATH)
    if not path.exists():
        logger.info(f"No settings file at {path}, using defaults")
        return EngineSettings()

    with open(path, "r") as f:
        data = yaml.safe_load(f)

    settings = parse_settings(data)
    logger.debug(f"Loaded engine settings from {path}: {settings}")
    return settings
