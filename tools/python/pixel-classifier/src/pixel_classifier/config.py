"""
Pixel Classifier — Configuration
=================================
One :class:`ClassifierConfig` record carries every tunable of a run:
composite thresholds, breakpoint tables, buffer policy, coastline window,
NN boundaries and execution settings.  It is validated once, at load time,
before any pixel is processed.

Configuration files are JSON objects whose keys are the field names below.
Nested records (``thresholds``, ``nn_boundaries``, ``dense_cloud``) are
objects; ``channel_tables`` maps channel names to breakpoint lists.  Keys
that are not fields are rejected.

Example file::

    {
        "sensor": "vgt",
        "buffer_policy": "fixed",
        "buffer_width": 3,
        "channel_tables": {"cl_all_3": [1.6, 2.3, 3.1]},
        "thresholds": {"cloud": 1.7}
    }

Usage::

    config = load_config("cloudscreen.json")
    config = ClassifierConfig.for_sensor("vgt", buffer_width=3)
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Mapping

from shared.python.exceptions import ConfigurationError
from shared.python.validators import Validators
from pixel_classifier.breakpoints import BreakpointTable, build_channel_tables
from pixel_classifier.composite import NN_MODES, SENSOR_THRESHOLDS, CompositeThresholds, NnBoundaries
from pixel_classifier.consolidation import BUFFER_POLICIES, BufferPolicy, buffer_policy_for
from pixel_classifier.features import LAYOUTS, FeatureLayout
from pixel_classifier.indicators import PROFILES, DenseCloudThresholds

logger = logging.getLogger("cloudscreen.pixel_classifier.config")

# Per-sensor defaults applied by ClassifierConfig.for_sensor.
SENSOR_DEFAULTS: dict[str, dict[str, Any]] = {
    "meris": {"thresholds": SENSOR_THRESHOLDS["meris"], "feature_layout": "CC_2013_03_01"},
    "vgt": {"thresholds": SENSOR_THRESHOLDS["vgt"]},
    "generic": {"thresholds": SENSOR_THRESHOLDS["generic"]},
}

_NESTED_RECORDS = {
    "thresholds": CompositeThresholds,
    "nn_boundaries": NnBoundaries,
    "dense_cloud": DenseCloudThresholds,
}


@dataclass
class ClassifierConfig:
    """All settings of one classification run.

    Attributes:
        sensor: Indicator profile tag (``meris``, ``vgt``, ``generic``).
        thresholds: Composite thresholds; ``None`` picks the sensor default.
        channel_tables: Breakpoint overrides per NN channel, merged over the
            built-in tables.
        feature_layout: Name of the NN feature layout.
        buffer_policy: ``adaptive`` or ``fixed``.
        buffer_width: Width of the fixed buffer; must be >= 1 either way.
        coastline_enabled: Run coastline refinement before buffering.
        coastline_radius: Half-width of the coastline window.
        nn_boundaries: Score intervals for NN refinement.
        nn_mode: ``off``, ``pure`` or ``refine``.
        nn_score_channel: NN channel whose score drives refinement when no
            ``nn_score`` raster is supplied.
        water_fraction_threshold: Fraction (0–100) at and above which a
            pixel counts as water.
        use_l1_land_flag: Derive land only from the a-priori L1 flag.
        dense_cloud: Blue dense cloud thresholds (MERIS only).
        tile_size: Tile edge length for tiled processing.
        max_workers: Thread-pool size.
        write_diagnostics: Also write the indicator rasters.
    """

    sensor: str = "meris"
    thresholds: CompositeThresholds | None = None
    channel_tables: dict[str, tuple[float, ...]] = field(default_factory=dict)
    feature_layout: str = "CC_2013_03_01"
    buffer_policy: str = "adaptive"
    buffer_width: int = 2
    coastline_enabled: bool = True
    coastline_radius: int = 1
    nn_boundaries: NnBoundaries = field(default_factory=NnBoundaries)
    nn_mode: str = "off"
    nn_score_channel: str = "cl_all_1"
    water_fraction_threshold: float = 23.0
    use_l1_land_flag: bool = False
    dense_cloud: DenseCloudThresholds = field(default_factory=DenseCloudThresholds)
    tile_size: int = 512
    max_workers: int = 4
    write_diagnostics: bool = False

    def __post_init__(self) -> None:
        if self.thresholds is None:
            self.thresholds = SENSOR_THRESHOLDS.get(self.sensor, CompositeThresholds())
        self.channel_tables = {k: tuple(v) for k, v in self.channel_tables.items()}

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def for_sensor(cls, sensor: str, **overrides: Any) -> ClassifierConfig:
        """Sensor defaults from :data:`SENSOR_DEFAULTS`, then *overrides*."""
        Validators.assert_choice(sensor, list(SENSOR_DEFAULTS), "sensor")
        values = dict(SENSOR_DEFAULTS[sensor])
        values.update(overrides)
        return cls(sensor=sensor, **values)

    @classmethod
    def from_dict(cls, mapping: Mapping[str, Any]) -> ClassifierConfig:
        """Build and validate a config from plain JSON-style data.

        Raises:
            ConfigurationError: On unknown keys, malformed nested records,
                or any failed check in :meth:`validate`.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(mapping) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration key(s): {', '.join(unknown)}")

        values = dict(mapping)
        sensor = values.pop("sensor", "meris")
        Validators.assert_choice(sensor, list(SENSOR_DEFAULTS), "sensor")
        for key, record in _NESTED_RECORDS.items():
            if key not in values or isinstance(values[key], record):
                continue
            nested = values[key]
            if not isinstance(nested, Mapping):
                raise ConfigurationError(f"'{key}' must be an object, got {type(nested).__name__}.")
            base = SENSOR_THRESHOLDS[sensor] if key == "thresholds" else record()
            try:
                values[key] = replace(base, **nested)
            except TypeError as exc:
                raise ConfigurationError(f"Invalid '{key}' entry: {exc}") from exc

        config = cls.for_sensor(sensor, **values)
        config.validate()
        return config

    def to_dict(self) -> dict[str, Any]:
        """JSON-serialisable form accepted by :meth:`from_dict`."""
        data = asdict(self)
        data["channel_tables"] = {k: list(v) for k, v in self.channel_tables.items()}
        return data

    # ------------------------------------------------------------------
    # Validation and derived objects
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """Run every configuration check.

        Raises:
            ConfigurationError: On the first failed check.
        """
        Validators.assert_choice(self.sensor, list(PROFILES), "sensor")
        Validators.assert_choice(self.buffer_policy, BUFFER_POLICIES, "buffer_policy")
        Validators.assert_choice(self.nn_mode, NN_MODES, "nn_mode")
        Validators.assert_choice(self.feature_layout, list(LAYOUTS), "feature_layout")
        Validators.assert_positive_int(self.buffer_width, "buffer_width")
        Validators.assert_positive_int(self.coastline_radius, "coastline_radius")
        Validators.assert_positive_int(self.tile_size, "tile_size")
        Validators.assert_positive_int(self.max_workers, "max_workers")
        if not 0.0 <= float(self.water_fraction_threshold) <= 100.0:
            raise ConfigurationError(
                f"water_fraction_threshold must be within 0–100, got {self.water_fraction_threshold}."
            )
        tables = self.make_channel_tables()
        if self.nn_mode != "off" and self.nn_score_channel not in tables:
            raise ConfigurationError(f"Unknown nn_score_channel '{self.nn_score_channel}'.")
        logger.debug("Configuration validated: %s", self)

    def make_buffer_policy(self) -> BufferPolicy:
        return buffer_policy_for(self.buffer_policy, self.buffer_width)

    def make_channel_tables(self) -> dict[str, BreakpointTable]:
        return build_channel_tables(self.channel_tables)

    @property
    def layout(self) -> FeatureLayout:
        return LAYOUTS[self.feature_layout]


def load_config(path: str | Path) -> ClassifierConfig:
    """Read and validate a JSON configuration file.

    Raises:
        InputValidationError: If *path* does not exist.
        ConfigurationError: If the file is not a JSON object or fails
            validation.
    """
    path = Path(path)
    Validators.assert_file_exists(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Configuration file '{path}' is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file '{path}' must contain a JSON object.")
    logger.info("Loaded configuration from '%s'.", path)
    return ClassifierConfig.from_dict(data)
