"""
Pixel Classifier — Feature Assembler
=====================================
Turns top-of-atmosphere radiances plus viewing geometry into the normalised
feature vectors the cloud neural nets were trained on.

Per band ``i``::

    feature[i] = sqrt(radiance[i] * pi * inv_flux[i] / cos(sza))

followed, for layouts that use them, by a scene-constant seasonal encoding
(``sin`` / ``cos`` of the day-of-year fraction) and a per-pixel geographic
encoding (``cos(lat)``, ``sin(lon)``, ``cos(lon)``).

Radiances that are non-positive or non-finite, and a sun at or below the
horizon (``cos(sza) <= 0``), produce NaN features.  NaN is never mapped to a
valid category downstream; see :func:`pixel_classifier.breakpoints.classify`.

Classes:
    SceneTiming        sin/cos of the day-of-year fraction, computed once.
    FeatureLayout      Which bands and encodings make up a feature vector.
    FeatureAssembler   Vectorised assembly over a tile.

Usage::

    timing = SceneTiming.from_times(start, stop)
    assembler = FeatureAssembler(solar_flux, layout=LAYOUT_CC_2013_03_01, timing=timing)
    features = assembler.assemble(radiance, sun_zenith, latitude, longitude)
"""

from __future__ import annotations

import calendar
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

import numpy as np
import numpy.typing as npt

from shared.python.exceptions import (
    ConfigurationError,
    MissingAcquisitionTimeError,
    MissingChannelError,
    RasterDimensionError,
    RasterError,
)

logger = logging.getLogger("cloudscreen.pixel_classifier.features")

NUM_RADIANCE_BANDS = 15


# ---------------------------------------------------------------------------
# Scene-level helpers
# ---------------------------------------------------------------------------


def inverse_solar_flux(solar_flux: Sequence[float]) -> npt.NDArray[np.float64]:
    """Pre-compute ``1 / solar_flux`` once per scene.

    Raises:
        ConfigurationError: If any flux is non-positive or non-finite.
    """
    flux = np.asarray(solar_flux, dtype=np.float64)
    if flux.ndim != 1 or flux.size == 0:
        raise ConfigurationError(f"solar_flux must be a 1-D sequence, got shape {flux.shape}")
    if not np.all(np.isfinite(flux)) or np.any(flux <= 0.0):
        raise ConfigurationError(f"solar_flux values must be positive: {flux.tolist()}")
    return 1.0 / flux


def days_in_year(year: int) -> int:
    return 366 if calendar.isleap(year) else 365


def day_of_year_fraction(start: datetime | None, stop: datetime | None) -> float:
    """Mid-acquisition day of year as a fraction of the year.

    The midpoint is taken between the *day-of-year* numbers of start and
    stop, not between the timestamps, and the year length is taken from the
    start time.

    Args:
        start: Scene start time.
        stop: Scene stop time.

    Returns:
        ``((doy(start) + doy(stop)) / 2) / days_in_year(start.year)``

    Raises:
        MissingAcquisitionTimeError: If either time is ``None``.

    Example::

        >>> day_of_year_fraction(datetime(2009, 12, 31), datetime(2009, 12, 31))
        1.0
    """
    if start is None or stop is None:
        raise MissingAcquisitionTimeError()

    start_doy = start.timetuple().tm_yday
    stop_doy = stop.timetuple().tm_yday
    return (start_doy + stop_doy) * 0.5 / days_in_year(start.year)


@dataclass(frozen=True)
class SceneTiming:
    """Seasonal encoding shared by every pixel of a scene.

    Attributes:
        day_fraction: Output of :func:`day_of_year_fraction`.
        sin_time: ``sin(2π · day_fraction)``
        cos_time: ``cos(2π · day_fraction)``
    """

    day_fraction: float
    sin_time: float
    cos_time: float

    @classmethod
    def from_fraction(cls, day_fraction: float) -> SceneTiming:
        argument = 2.0 * math.pi * day_fraction
        return cls(day_fraction, math.sin(argument), math.cos(argument))

    @classmethod
    def from_times(cls, start: datetime | None, stop: datetime | None) -> SceneTiming:
        return cls.from_fraction(day_of_year_fraction(start, stop))


# ---------------------------------------------------------------------------
# Layouts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FeatureLayout:
    """Describes one feature-vector layout.

    Attributes:
        name: Layout identifier used in configuration files.
        band_indices: 0-based radiance bands that become features, in order.
        seasonal: Append ``sin_time`` and ``cos_time``.
        geographic: Append ``cos(lat)``, ``sin(lon)``, ``cos(lon)``.
        channels: Names of the NN channels trained on this layout.
    """

    name: str
    band_indices: tuple[int, ...]
    seasonal: bool
    geographic: bool
    channels: tuple[str, ...]

    @property
    def n_features(self) -> int:
        return len(self.band_indices) + (2 if self.seasonal else 0) + (3 if self.geographic else 0)


LAYOUT_CC_2013_03_01 = FeatureLayout(
    name="CC_2013_03_01",
    band_indices=tuple(range(NUM_RADIANCE_BANDS)),
    seasonal=True,
    geographic=True,
    channels=(
        "cl_all_1", "cl_all_2",
        "cl_ter_1", "cl_ter_2",
        "cl_wat_1", "cl_wat_2",
        "cl_simple_wat_1", "cl_simple_wat_2",
    ),
)

# Band 11 (index 10, the O2 absorption band) is not an input of this layout.
LAYOUT_CC_2013_05_09 = FeatureLayout(
    name="CC_2013_05_09",
    band_indices=tuple(i for i in range(NUM_RADIANCE_BANDS) if i != 10),
    seasonal=False,
    geographic=False,
    channels=("cl_all_3", "cl_ter_3", "cl_wat_3", "cl_simple_wat_3"),
)

LAYOUTS: dict[str, FeatureLayout] = {
    LAYOUT_CC_2013_03_01.name: LAYOUT_CC_2013_03_01,
    LAYOUT_CC_2013_05_09.name: LAYOUT_CC_2013_05_09,
}


# ---------------------------------------------------------------------------
# Assembler
# ---------------------------------------------------------------------------


class FeatureAssembler:
    """Vectorised feature assembly for one scene.

    Args:
        solar_flux: Per-band solar flux, one entry per radiance band.
        layout: The :class:`FeatureLayout` to produce.
        timing: Scene timing; required when ``layout.seasonal`` is true.

    Raises:
        ConfigurationError: If the flux is invalid or does not cover the
            layout's bands.
        MissingAcquisitionTimeError: If the layout is seasonal and no
            timing was supplied.
    """

    def __init__(
        self,
        solar_flux: Sequence[float],
        layout: FeatureLayout = LAYOUT_CC_2013_03_01,
        timing: SceneTiming | None = None,
    ) -> None:
        self.layout = layout
        self.inv_flux = inverse_solar_flux(solar_flux)
        if max(layout.band_indices) >= self.inv_flux.size:
            raise ConfigurationError(
                f"Layout {layout.name} needs {max(layout.band_indices) + 1} solar flux values, "
                f"got {self.inv_flux.size}."
            )
        if layout.seasonal and timing is None:
            raise MissingAcquisitionTimeError()
        self.timing = timing

    def reflectances(
        self,
        radiance: npt.ArrayLike,
        solar_zenith: npt.ArrayLike,
    ) -> npt.NDArray[np.float64]:
        """TOA reflectance ``radiance · π · inv_flux / cos(sza)`` per band.

        Args:
            radiance: ``(bands, rows, cols)`` radiances.
            solar_zenith: ``(rows, cols)`` solar zenith in degrees.

        Returns:
            ``(bands, rows, cols)`` float64 reflectances, NaN where the
            input is non-positive, non-finite, or the sun is down.
        """
        rad = np.asarray(radiance, dtype=np.float64)
        sza = np.asarray(solar_zenith, dtype=np.float64)
        if rad.ndim != 3:
            raise RasterError(f"radiance must be a (bands, rows, cols) array, got shape {rad.shape}")
        if rad.shape[0] != self.inv_flux.size:
            raise RasterDimensionError(
                "radiance bands", (rad.shape[0],), "solar_flux", (self.inv_flux.size,)
            )
        if rad.shape[1:] != sza.shape:
            raise RasterDimensionError("radiance", rad.shape[1:], "sun_zenith", sza.shape)

        cos_sza = np.cos(np.deg2rad(sza))
        usable = np.isfinite(rad) & (rad > 0.0) & np.isfinite(sza) & (sza < 90.0) & (cos_sza > 0.0)
        with np.errstate(invalid="ignore", divide="ignore"):
            refl = rad * np.pi * self.inv_flux[:, None, None] / cos_sza
        return np.where(usable, refl, np.nan)

    def assemble(
        self,
        radiance: npt.ArrayLike,
        solar_zenith: npt.ArrayLike,
        latitude: npt.ArrayLike | None = None,
        longitude: npt.ArrayLike | None = None,
    ) -> npt.NDArray[np.float64]:
        """Build the ``(rows, cols, n_features)`` feature array for a tile.

        Raises:
            MissingAcquisitionTimeError: If the layout is seasonal and
                :attr:`timing` is unset.
            MissingChannelError: If the layout is geographic and latitude or
                longitude is missing.
            RasterDimensionError: If the inputs disagree in shape.
        """
        refl = self.reflectances(radiance, solar_zenith)
        rows, cols = refl.shape[1:]
        columns: list[npt.NDArray[np.float64]] = [
            np.sqrt(refl[i]) for i in self.layout.band_indices
        ]

        if self.layout.seasonal:
            if self.timing is None:
                raise MissingAcquisitionTimeError()
            columns.append(np.full((rows, cols), self.timing.sin_time))
            columns.append(np.full((rows, cols), self.timing.cos_time))

        if self.layout.geographic:
            if latitude is None:
                raise MissingChannelError("latitude", ["radiance", "sun_zenith"])
            if longitude is None:
                raise MissingChannelError("longitude", ["radiance", "sun_zenith", "latitude"])
            lat = np.deg2rad(np.asarray(latitude, dtype=np.float64))
            lon = np.deg2rad(np.asarray(longitude, dtype=np.float64))
            for label, arr in (("latitude", lat), ("longitude", lon)):
                if arr.shape != (rows, cols):
                    raise RasterDimensionError("radiance", (rows, cols), label, arr.shape)
            columns.extend([np.cos(lat), np.sin(lon), np.cos(lon)])

        features = np.stack(columns, axis=-1)
        logger.debug(
            "Assembled %s features for %dx%d pixels (%d non-finite).",
            self.layout.name, rows, cols,
            int(np.count_nonzero(~valid_pixels(features))),
        )
        return features


def valid_pixels(features: npt.NDArray[np.float64]) -> npt.NDArray[np.bool_]:
    """True where every entry of the feature vector is finite."""
    return np.all(np.isfinite(features), axis=-1)
