"""
Pixel Classifier — GeoTIFF Tool
================================
File front end for :class:`~pixel_classifier.pipeline.CloudScreenPipeline`.

A scene is a directory with one single-band GeoTIFF per channel, named
``<channel>.tif`` (``brr_1.tif``, ``sun_zenith.tif``, ``water_fraction.tif``,
…).  Radiance rasters may carry their band's solar flux in a ``SOLAR_FLUX``
metadata tag; the flux is needed when reflectances are derived from them.

Outputs, written to the output directory:

* ``pixel_classif_flags.tif``  uint32 flag bitmask, LZW compressed.
* ``<indicator>_value.tif``    float32 diagnostics (nodata −1), when
  ``write_diagnostics`` is enabled.
* ``<channel>.tif`` / ``<channel>_val.tif``  NN categories and scores, when
  evaluators were supplied.

Usage::

    tool = PixelClassifierTool(
        bands_dir=Path("scene/"),
        output_dir=Path("output/"),
        config=load_config("cloudscreen.json"),
        start=datetime(2011, 7, 1, 10, 2),
        stop=datetime(2011, 7, 1, 10, 45),
    )
    tool.run()
    print(tool.results.summary)
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Mapping

import numpy as np
import numpy.typing as npt
import rasterio
from rasterio import profiles
from rasterio.errors import RasterioIOError

from shared.python.base_tool import GeoTool
from shared.python.exceptions import (
    ConfigurationError,
    InputValidationError,
    OutputWriteError,
    RasterError,
)
from shared.python.validators import Validators
from pixel_classifier.config import ClassifierConfig
from pixel_classifier.flags import NO_DATA_VALUE
from pixel_classifier.neural import NeuralNetCache
from pixel_classifier.pipeline import RADIANCE_CHANNELS, CloudScreenPipeline, PipelineResult

logger = logging.getLogger("cloudscreen.pixel_classifier.tool")

FLAGS_FILENAME = "pixel_classif_flags.tif"
SOLAR_FLUX_TAG = "SOLAR_FLUX"


class PixelClassifierTool(GeoTool):
    """Classify a directory of channel GeoTIFFs and write the flag raster.

    Inherits the Template Method pipeline from :class:`~shared.python.GeoTool`.

    Args:
        bands_dir: Directory holding one ``<channel>.tif`` per channel.
        output_dir: Directory the result rasters are written to.
        config: Run configuration; defaults to ``ClassifierConfig()``.
        start: Scene start time (needed by seasonal NN layouts).
        stop: Scene stop time.
        nets: Optional NN channel evaluators.
        cancel_event: Optional event that cancels the run between tiles.
        verbose: Enable DEBUG-level logging.
    """

    def __init__(
        self,
        bands_dir: Path,
        output_dir: Path,
        config: ClassifierConfig | None = None,
        *,
        start: datetime | None = None,
        stop: datetime | None = None,
        nets: Mapping[str, NeuralNetCache] | None = None,
        cancel_event: threading.Event | None = None,
        verbose: bool = False,
    ) -> None:
        super().__init__(Path(bands_dir), Path(output_dir), verbose=verbose)
        self.config: ClassifierConfig = config or ClassifierConfig()
        self.start = start
        self.stop = stop
        self.nets = dict(nets or {})
        self.cancel_event = cancel_event
        self._pipeline: CloudScreenPipeline | None = None
        self._result: PipelineResult | None = None

    # ------------------------------------------------------------------
    # Channel discovery
    # ------------------------------------------------------------------

    def available_channels(self) -> dict[str, Path]:
        """Channel name → GeoTIFF path for every ``*.tif`` in the bands dir."""
        return {p.stem: p for p in sorted(self.input_path.glob("*.tif"))}

    # ------------------------------------------------------------------
    # GeoTool abstract method implementations
    # ------------------------------------------------------------------

    def validate_inputs(self) -> None:
        """Check configuration, channel files, raster shapes and output dir.

        Raises:
            ConfigurationError: If the configuration is invalid.
            InputValidationError: If the bands directory is missing.
            MissingChannelError: If a required channel file is absent.
            RasterDimensionError: If channel rasters differ in shape.
            OutputWriteError: If the output directory cannot be created.
        """
        Validators.assert_directory_exists(self.input_path)
        self._pipeline = CloudScreenPipeline(
            self.config, nets=self.nets, cancel_event=self.cancel_event
        )

        available = self.available_channels()
        required = self._pipeline.required_channels(list(available))
        Validators.assert_channels_present(required, list(available))

        reference: tuple[str, tuple[int, int]] | None = None
        for name, path in available.items():
            try:
                with rasterio.open(path) as src:
                    shape = (src.height, src.width)
            except RasterioIOError as exc:
                raise InputValidationError(f"Cannot read channel '{name}' from '{path}': {exc}") from exc
            if reference is None:
                reference = (name, shape)
            else:
                Validators.assert_raster_shapes_match(reference[1], shape, reference[0], name)

        Validators.assert_output_dir_writable(self.output_path)
        logger.info("Found %d channel(s) in '%s'.", len(available), self.input_path)

    def process(self) -> None:
        """Read every channel, run the pipeline and write the outputs.

        Raises:
            ConfigurationError: If :meth:`validate_inputs` has not run.
        """
        if self._pipeline is None:
            raise ConfigurationError("validate_inputs() must run before process().")
        channels, reference_profile, solar_flux = self._read_channels()
        if solar_flux is not None:
            self._pipeline.solar_flux = solar_flux

        result = self._pipeline.run(channels, start=self.start, stop=self.stop)

        self._write_raster(result.flags, self.output_path / FLAGS_FILENAME, reference_profile, "uint32", None)
        if self.config.write_diagnostics:
            for name, values in result.indicators.items():
                self._write_raster(
                    values, self.output_path / f"{name}_value.tif",
                    reference_profile, "float32", NO_DATA_VALUE,
                )
        if result.nn_outputs is not None:
            for name, categories in result.nn_outputs.categories.items():
                self._write_raster(categories, self.output_path / f"{name}.tif", reference_profile, "uint8", None)
                self._write_raster(
                    result.nn_outputs.scores[name].astype(np.float32),
                    self.output_path / f"{name}_val.tif",
                    reference_profile, "float32", None,
                )
        self._result = result

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _read_channels(
        self,
    ) -> tuple[dict[str, npt.NDArray], profiles.Profile, tuple[float, ...] | None]:
        channels: dict[str, npt.NDArray] = {}
        reference_profile: profiles.Profile | None = None
        fluxes: dict[str, float] = {}

        for name, path in self.available_channels().items():
            with rasterio.open(path) as src:
                channels[name] = src.read(1)
                if reference_profile is None:
                    reference_profile = src.profile.copy()
                if name in RADIANCE_CHANNELS and SOLAR_FLUX_TAG in src.tags():
                    fluxes[name] = float(src.tags()[SOLAR_FLUX_TAG])

        if reference_profile is None:
            raise RasterError(f"No channel rasters found in '{self.input_path}'.")

        solar_flux = None
        if len(fluxes) == len(RADIANCE_CHANNELS):
            solar_flux = tuple(fluxes[name] for name in RADIANCE_CHANNELS)
        if fluxes and solar_flux is None:
            logger.warning(
                "Only %d of %d radiance channels carry a %s tag; ignoring them.",
                len(fluxes), len(RADIANCE_CHANNELS), SOLAR_FLUX_TAG,
            )
        return channels, reference_profile, solar_flux

    @staticmethod
    def _write_raster(
        array: npt.NDArray,
        output_path: Path,
        reference_profile: profiles.Profile,
        dtype: str,
        nodata: float | None,
    ) -> None:
        """Write a single-band LZW-compressed GeoTIFF.

        Raises:
            OutputWriteError: If the file cannot be written.
        """
        profile = reference_profile.copy()
        profile.update(
            driver="GTiff",
            dtype=dtype,
            count=1,
            nodata=nodata,
            compress="lzw",
        )
        try:
            with rasterio.open(output_path, "w", **profile) as dst:
                dst.write(array.astype(dtype), 1)
        except OSError as exc:
            raise OutputWriteError(str(output_path), str(exc)) from exc
        logger.debug("Wrote '%s'.", output_path)

    @property
    def results(self) -> PipelineResult | None:
        """:class:`PipelineResult` from the last run, or ``None``."""
        return self._result
