"""
Pixel Classifier — Scene Pipeline
==================================
Chains the stages for one scene held in memory as named channel arrays::

    channels → indicators → composite flags → (NN refinement)
             → coastline refinement + cloud buffer (tiled) → PipelineResult

The pipeline never touches the file system; see
:mod:`pixel_classifier.tool` for the GeoTIFF front end.

Usage::

    pipeline = CloudScreenPipeline(config, solar_flux=flux)
    result = pipeline.run(channels, start=start_time, stop=stop_time)
    print(result.summary)
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Mapping, Sequence

import numpy as np
import numpy.typing as npt

from shared.python.exceptions import ConfigurationError, ProcessingCancelledError
from shared.python.validators import Validators
from pixel_classifier.composite import CompositeClassifier, apply_nn_score
from pixel_classifier.config import ClassifierConfig
from pixel_classifier.features import NUM_RADIANCE_BANDS, FeatureAssembler, SceneTiming
from pixel_classifier.flags import FLAG_DESCRIPTIONS, FlagView
from pixel_classifier.indicators import get_profile
from pixel_classifier.neural import ChannelOutputs, NeuralNetCache, NnChannelClassifier
from pixel_classifier.tiling import consolidate_tiled

logger = logging.getLogger("cloudscreen.pixel_classifier.pipeline")

RADIANCE_CHANNELS = [f"radiance_{i}" for i in range(1, NUM_RADIANCE_BANDS + 1)]
REFLECTANCE_CHANNELS = [f"reflec_{i}" for i in range(1, NUM_RADIANCE_BANDS + 1)]


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FlagSummary:
    """Pixel counts per flag of a finished raster."""

    total: int
    counts: dict[str, int]

    @classmethod
    def from_flags(cls, flags: npt.NDArray[np.uint32]) -> FlagSummary:
        view = FlagView(flags)
        counts = {flag.name: view.count(flag) for flag in FLAG_DESCRIPTIONS}
        return cls(total=int(flags.size), counts=counts)

    def fraction(self, name: str) -> float:
        return self.counts[name] / self.total if self.total else 0.0

    def __str__(self) -> str:
        return (
            f"{self.total} pixels: {self.counts['INVALID']} invalid, "
            f"{self.counts['CLOUD']} cloud, {self.counts['CLOUD_BUFFER']} buffer, "
            f"{self.counts['CLEAR_SNOW']} snow, {self.counts['COASTLINE']} coastline"
        )


@dataclass
class PipelineResult:
    """Everything one scene run produces.

    Attributes:
        flags: Final ``uint32`` flag raster.
        indicators: Diagnostic rasters by name (float32, NO_DATA on
            invalid pixels).
        nn_outputs: Per-channel NN scores and categories, when nets ran.
        reflectances: ``reflec_N`` rasters derived from radiances, if any.
    """

    flags: npt.NDArray[np.uint32]
    indicators: dict[str, npt.NDArray[np.float32]] = field(default_factory=dict)
    nn_outputs: ChannelOutputs | None = None
    reflectances: dict[str, npt.NDArray[np.float64]] = field(default_factory=dict)

    @property
    def summary(self) -> FlagSummary:
        return FlagSummary.from_flags(self.flags)

    @property
    def view(self) -> FlagView:
        return FlagView(self.flags)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class CloudScreenPipeline:
    """Classify and consolidate one scene.

    Args:
        config: Run configuration; validated on construction.
        solar_flux: Per-band solar flux, needed when reflectances or NN
            features are derived from ``radiance_N`` channels.
        nets: NN channel name → :class:`NeuralNetCache`.
        cancel_event: Optional event checked between stages and tiles.

    Raises:
        ConfigurationError: If *config* is invalid.
    """

    def __init__(
        self,
        config: ClassifierConfig | None = None,
        *,
        solar_flux: Sequence[float] | None = None,
        nets: Mapping[str, NeuralNetCache] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.config = config or ClassifierConfig()
        self.config.validate()
        self.solar_flux = None if solar_flux is None else tuple(float(f) for f in solar_flux)
        self.nets = dict(nets or {})
        self.cancel_event = cancel_event
        self.profile = get_profile(self.config.sensor, self.config.dense_cloud)

    # ------------------------------------------------------------------
    # Input contract
    # ------------------------------------------------------------------

    def required_channels(self, available: Sequence[str]) -> list[str]:
        """Channel names this run needs, given what is *available*.

        MERIS accepts either ``reflec_N`` or ``radiance_N`` plus
        ``sun_zenith``.  NN channels add radiances, zenith and, for
        geographic layouts, latitude and longitude.
        """
        required = list(self.profile.required_channels)
        present = set(available)
        if self.config.sensor == "meris" and not present.issuperset(REFLECTANCE_CHANNELS):
            required = [c for c in required if c not in REFLECTANCE_CHANNELS]
            required += RADIANCE_CHANNELS + ["sun_zenith"]
        if self.nets:
            required += [c for c in RADIANCE_CHANNELS + ["sun_zenith"] if c not in required]
            if self.config.layout.geographic:
                required += ["latitude", "longitude"]
        return required

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(
        self,
        channels: Mapping[str, npt.ArrayLike],
        *,
        start: datetime | None = None,
        stop: datetime | None = None,
    ) -> PipelineResult:
        """Classify *channels* and return the consolidated result.

        Raises:
            MissingChannelError: If a required channel is absent.
            RasterDimensionError: If channels differ in shape.
            MissingAcquisitionTimeError: If NN features need scene timing
                and *start* or *stop* is missing.
            ProcessingCancelledError: If the cancel event is set.
        """
        config = self.config
        arrays = {name: np.asarray(value) for name, value in channels.items()}
        Validators.assert_channels_present(self.required_channels(list(arrays)), list(arrays))
        shape = self._common_shape(arrays)
        logger.info("Classifying %s scene of %dx%d pixels.", config.sensor, shape[1], shape[0])

        reflectances: dict[str, npt.NDArray[np.float64]] = {}
        nn_outputs: ChannelOutputs | None = None
        if self.nets:
            nn_outputs = self._run_nets(arrays, start, stop)
        if config.sensor == "meris" and not set(REFLECTANCE_CHANNELS) <= set(arrays):
            reflectances = self._reflectances(arrays)
            arrays.update(reflectances)
        self._check_cancelled()

        indicators = self.profile.compute(
            arrays,
            water_fraction_threshold=config.water_fraction_threshold,
            use_l1_land_flag=config.use_l1_land_flag,
        )
        flags = CompositeClassifier(config.thresholds).classify(indicators)

        if config.nn_mode != "off":
            score = self._nn_score(arrays, nn_outputs)
            if score is None:
                logger.warning(
                    "nn_mode is '%s' but neither an nn_score channel nor an evaluator "
                    "for '%s' is available; skipping NN refinement.",
                    config.nn_mode, config.nn_score_channel,
                )
            else:
                flags = apply_nn_score(flags, score, config.nn_boundaries, config.nn_mode)
        self._check_cancelled()

        flags = consolidate_tiled(
            flags,
            arrays.get("water_fraction"),
            config,
            cancel_event=self.cancel_event,
        )

        result = PipelineResult(
            flags=flags,
            indicators=indicators.diagnostics(),
            nn_outputs=nn_outputs,
            reflectances=reflectances,
        )
        logger.info("Classification finished: %s", result.summary)
        return result

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _common_shape(arrays: Mapping[str, npt.NDArray]) -> tuple[int, int]:
        names = sorted(arrays)
        reference = names[0]
        shape = arrays[reference].shape
        for name in names[1:]:
            Validators.assert_raster_shapes_match(shape, arrays[name].shape, reference, name)
        return shape  # type: ignore[return-value]

    def _assembler(self, timing: SceneTiming | None) -> FeatureAssembler:
        if self.solar_flux is None:
            raise ConfigurationError("solar_flux is required to derive reflectances from radiances.")
        return FeatureAssembler(self.solar_flux, layout=self.config.layout, timing=timing)

    def _radiance_stack(self, arrays: Mapping[str, npt.NDArray]) -> npt.NDArray[np.float64]:
        return np.stack([arrays[name].astype(np.float64) for name in RADIANCE_CHANNELS])

    def _reflectances(self, arrays: Mapping[str, npt.NDArray]) -> dict[str, npt.NDArray[np.float64]]:
        # Reflectances do not depend on scene timing.
        assembler = self._assembler(SceneTiming.from_fraction(0.0))
        refl = assembler.reflectances(self._radiance_stack(arrays), arrays["sun_zenith"])
        return {name: refl[i] for i, name in enumerate(REFLECTANCE_CHANNELS)}

    def _run_nets(
        self,
        arrays: Mapping[str, npt.NDArray],
        start: datetime | None,
        stop: datetime | None,
    ) -> ChannelOutputs:
        layout = self.config.layout
        timing = SceneTiming.from_times(start, stop) if layout.seasonal else None
        features = self._assembler(timing).assemble(
            self._radiance_stack(arrays),
            arrays["sun_zenith"],
            arrays.get("latitude"),
            arrays.get("longitude"),
        )
        tables = self.config.make_channel_tables()
        nets = {name: cache for name, cache in self.nets.items() if name in tables}
        for name in sorted(set(self.nets) - set(nets)):
            logger.warning("No breakpoint table for NN channel '%s'; skipping it.", name)
        logger.info("Evaluating %d NN channel(s) on layout %s.", len(nets), layout.name)
        return NnChannelClassifier(nets, tables).classify(features)

    def _nn_score(
        self,
        arrays: Mapping[str, npt.NDArray],
        nn_outputs: ChannelOutputs | None,
    ) -> npt.NDArray[np.float64] | None:
        if "nn_score" in arrays:
            return arrays["nn_score"].astype(np.float64)
        if nn_outputs is not None and self.config.nn_score_channel in nn_outputs.scores:
            return nn_outputs.scores[self.config.nn_score_channel]
        return None

    def _check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise ProcessingCancelledError(0, 1)

