"""
Pixel Classifier — Indicator Profiles
======================================
Continuous per-pixel indicators feeding the composite classifier.

Every sensor computes the same set of indicators (brightness, whiteness,
NDSI, NDVI, pressure height, …) from a different set of channels.  Each
sensor is an :class:`IndicatorProfile` strategy; the composite decision
logic in :mod:`pixel_classifier.composite` never looks at raw channels.

Indicators live in ``[0, 1]`` with 0.5 meaning "no evidence".  Brightness
is the one exception: where its inputs are unusable it is ``NO_DATA_VALUE``.

Profiles:
    MerisProfile     Rayleigh-corrected + TOA reflectances, barometric /
                     scattering pressure, L1 land flag, blue dense cloud test.
    VgtProfile       Four-band SPOT VGT reflectances and status-map land flag.
    GenericProfile   Indicators supplied directly as channels.

Usage::

    profile = PROFILES["meris"]
    indicators = profile.compute(channels, water_fraction_threshold=23)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Mapping, Sequence

import numpy as np
import numpy.typing as npt

from shared.python.validators import Validators
from pixel_classifier.flags import NO_DATA_VALUE, UNCERTAINTY_VALUE

logger = logging.getLogger("cloudscreen.pixel_classifier.indicators")

Raster = npt.NDArray[np.float64]
Mask = npt.NDArray[np.bool_]

MERIS_WAVELENGTHS = (
    412.7, 442.5, 489.9, 509.8, 559.7, 619.6, 664.6, 680.8,
    708.3, 753.3, 761.5, 778.4, 864.9, 884.9, 900.0,
)
VGT_WAVELENGTHS = (450.0, 645.0, 835.0, 1670.0)

# Water-fraction values above this are "no data" in the land/water mask.
WATER_FRACTION_INVALID_ABOVE = 100.0

LAND_THRESH = 0.9
WATER_THRESH = 0.9


# ---------------------------------------------------------------------------
# Indicator container
# ---------------------------------------------------------------------------


@dataclass
class IndicatorSet:
    """All indicators for one tile, aligned to the same ``(rows, cols)`` grid.

    Float rasters are float64; boolean rasters are masks.  ``invalid`` marks
    pixels whose measurements cannot be used at all; a pixel with a
    non-finite decision indicator is folded into it on construction.
    """

    brightness: Raster
    whiteness: Raster
    ndsi: Raster
    ndvi: Raster
    pressure: Raster
    temperature: Raster
    invalid: Mask
    is_water: Mask
    is_land: Mask
    spectral_flatness: Raster | None = None
    glint_risk: Raster | None = None
    radiometric_land: Raster | None = None
    radiometric_water: Raster | None = None
    a_priori_land: Raster | None = None
    a_priori_water: Raster | None = None
    dense_cloud: Mask | None = None
    glint_enabled: bool = True

    def __post_init__(self) -> None:
        shape = self.brightness.shape
        for name, value in self.__dict__.items():
            if isinstance(value, np.ndarray):
                Validators.assert_raster_shapes_match(shape, value.shape, "brightness", name)
        uncertain = np.full(shape, UNCERTAINTY_VALUE)
        for name in (
            "spectral_flatness", "glint_risk", "radiometric_land",
            "radiometric_water", "a_priori_land", "a_priori_water",
        ):
            if getattr(self, name) is None:
                setattr(self, name, uncertain.copy())
        if self.dense_cloud is None:
            self.dense_cloud = np.zeros(shape, dtype=bool)

        decision = np.stack(
            [self.brightness, self.whiteness, self.ndsi, self.ndvi, self.pressure, self.temperature]
        )
        self.invalid = np.asarray(self.invalid, dtype=bool) | ~np.isfinite(decision).all(axis=0)

    @property
    def shape(self) -> tuple[int, ...]:
        return self.brightness.shape

    def diagnostics(self) -> dict[str, npt.NDArray[np.float32]]:
        """Float32 diagnostic rasters, ``NO_DATA_VALUE`` on invalid pixels."""
        bright = np.where(self.brightness == NO_DATA_VALUE, 0.0, self.brightness)
        values = {
            "bright": self.brightness,
            "white": self.whiteness,
            "bright_white": bright + self.whiteness,
            "temperature": self.temperature,
            "spectral_flatness": self.spectral_flatness,
            "ndvi": self.ndvi,
            "ndsi": self.ndsi,
            "glint_risk": self.glint_risk,
            "radiometric_land": self.radiometric_land,
            "radiometric_water": self.radiometric_water,
            "pressure": self.pressure,
        }
        return {
            name: np.where(self.invalid, NO_DATA_VALUE, value).astype(np.float32)
            for name, value in values.items()
        }


# ---------------------------------------------------------------------------
# Shared numeric helpers
# ---------------------------------------------------------------------------


def clamp01(values: npt.ArrayLike) -> Raster:
    """Clip into ``[0, 1]``; NaN stays NaN."""
    return np.clip(np.asarray(values, dtype=np.float64), 0.0, 1.0)


def spectral_slope(ch1: Raster, ch2: Raster, wl1: float, wl2: float) -> Raster:
    return (ch2 - ch1) / (wl2 - wl1)


def normalized_difference(a: Raster, b: Raster) -> Raster:
    with np.errstate(invalid="ignore", divide="ignore"):
        return (a - b) / (a + b)


def no_valid_reflectance(stack: Raster) -> Mask:
    """True where no band of a ``(bands, rows, cols)`` stack is finite and positive."""
    with np.errstate(invalid="ignore"):
        usable = np.isfinite(stack) & (stack > 0.0)
    return ~usable.any(axis=0)


def water_mask(
    water_fraction: npt.ArrayLike | None,
    l1_land: Mask | None,
    threshold: float,
    shape: tuple[int, ...],
) -> Mask:
    """Binary water classification from a 0–100 water fraction.

    Fractions above 100 (or non-finite) are "no data" and fall back to the
    inverse of the L1 land flag; without a fraction raster the L1 flag is
    used everywhere.
    """
    fallback = ~l1_land if l1_land is not None else np.zeros(shape, dtype=bool)
    if water_fraction is None:
        return fallback
    fraction = np.asarray(water_fraction, dtype=np.float64)
    Validators.assert_raster_shapes_match(shape, fraction.shape, "indicators", "water_fraction")
    unusable = ~np.isfinite(fraction) | (fraction > WATER_FRACTION_INVALID_ABOVE) | (fraction < 0.0)
    if unusable.any():
        logger.warning(
            "%d pixel(s) without a usable water fraction; using the L1 land flag there.",
            int(unusable.sum()),
        )
    return np.where(unusable, fallback, fraction >= threshold)


def a_priori_values(l1_land: Mask | None, invalid: Mask) -> tuple[Raster, Raster]:
    """A-priori land and water values (1 / 0, or 0.5 without evidence)."""
    shape = invalid.shape
    if l1_land is None:
        uncertain = np.full(shape, UNCERTAINTY_VALUE)
        return uncertain, uncertain.copy()
    land = np.where(l1_land, 1.0, 0.0)
    land = np.where(invalid, UNCERTAINTY_VALUE, land)
    water = np.where(invalid, UNCERTAINTY_VALUE, 1.0 - land)
    return land, water


def land_mask(is_water: Mask, a_priori_land: Raster, invalid: Mask, use_l1_land_flag: bool) -> Mask:
    from_mask = ~is_water if not use_l1_land_flag else np.zeros(is_water.shape, dtype=bool)
    return from_mask | (~invalid & (a_priori_land > LAND_THRESH))


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DenseCloudThresholds:
    """Thresholds of the blue dense cloud test (reflectance units)."""

    d_bbt: float = 0.25
    r1: float = -1.0
    r2: float = 0.01
    r3: float = 0.1
    r4: float = 0.95
    r5: float = 0.05
    r6: float = 0.6
    r7: float = 0.45


class IndicatorProfile(ABC):
    """Sensor-specific indicator computation.

    Subclasses declare :attr:`required_channels` and implement
    :meth:`compute`.
    """

    name: str = ""
    optional_channels: tuple[str, ...] = ("l1_invalid", "l1_land", "water_fraction")

    @property
    @abstractmethod
    def required_channels(self) -> list[str]:
        """Channel names :meth:`compute` reads unconditionally."""

    @abstractmethod
    def compute(
        self,
        channels: Mapping[str, npt.ArrayLike],
        *,
        water_fraction_threshold: float = 23.0,
        use_l1_land_flag: bool = False,
    ) -> IndicatorSet:
        """Compute the :class:`IndicatorSet` for one tile."""

    # ------------------------------------------------------------------

    def check_channels(self, available: Sequence[str]) -> None:
        Validators.assert_channels_present(self.required_channels, available)

    @staticmethod
    def _stack(channels: Mapping[str, npt.ArrayLike], names: Sequence[str]) -> Raster:
        return np.stack([np.asarray(channels[n], dtype=np.float64) for n in names])

    @staticmethod
    def _optional_mask(channels: Mapping[str, npt.ArrayLike], name: str) -> Mask | None:
        if name not in channels:
            return None
        return np.asarray(channels[name]).astype(bool)

    def _surface(
        self,
        channels: Mapping[str, npt.ArrayLike],
        invalid: Mask,
        water_fraction_threshold: float,
        use_l1_land_flag: bool,
    ) -> tuple[Mask, Mask, Raster, Raster]:
        l1_land = self._optional_mask(channels, "l1_land")
        a_land, a_water = a_priori_values(l1_land, invalid)
        is_water = water_mask(
            channels.get("water_fraction"), l1_land, water_fraction_threshold, invalid.shape
        )
        is_land = land_mask(is_water, a_land, invalid, use_l1_land_flag)
        return is_water, is_land, a_land, a_water

    def _invalid(self, channels: Mapping[str, npt.ArrayLike], reflectance: Raster) -> Mask:
        invalid = no_valid_reflectance(reflectance)
        l1_invalid = self._optional_mask(channels, "l1_invalid")
        if l1_invalid is not None:
            invalid = invalid | l1_invalid
        return invalid


class MerisProfile(IndicatorProfile):
    """MERIS indicators.

    Channels: ``reflec_1..15`` (TOA reflectance), ``brr_1..15`` (Rayleigh
    corrected reflectance), ``brr442`` and ``brr442_thresh``, and the
    pressures ``p1``, ``pscatt``, ``pbaro`` in hPa.
    """

    name = "meris"
    BRIGHT_FOR_WHITE_THRESH = 0.8

    def __init__(self, dense_cloud: DenseCloudThresholds | None = None) -> None:
        self.dense_cloud = dense_cloud or DenseCloudThresholds()

    @property
    def required_channels(self) -> list[str]:
        return (
            [f"reflec_{i}" for i in range(1, 16)]
            + [f"brr_{i}" for i in range(1, 16)]
            + ["brr442", "brr442_thresh", "p1", "pscatt", "pbaro"]
        )

    def compute(
        self,
        channels: Mapping[str, npt.ArrayLike],
        *,
        water_fraction_threshold: float = 23.0,
        use_l1_land_flag: bool = False,
    ) -> IndicatorSet:
        self.check_channels(list(channels))
        refl = self._stack(channels, [f"reflec_{i}" for i in range(1, 16)])
        brr = self._stack(channels, [f"brr_{i}" for i in range(1, 16)])
        invalid = self._invalid(channels, refl)
        is_water, is_land, a_land, a_water = self._surface(
            channels, invalid, water_fraction_threshold, use_l1_land_flag
        )

        with np.errstate(invalid="ignore", divide="ignore"):
            brightness = self.brightness(
                np.asarray(channels["brr442"], dtype=np.float64),
                np.asarray(channels["brr442_thresh"], dtype=np.float64),
            )
            flatness = self.spectral_flatness(refl)
            whiteness = np.where(brightness > self.BRIGHT_FOR_WHITE_THRESH, flatness, 0.0)
            ndsi = clamp01(20.0 * (normalized_difference(brr[11], brr[12]) + 0.02))
            ndvi = clamp01(0.5 * (normalized_difference(brr[9], brr[4]) + 1.0))
            pressure = self.pressure(
                np.asarray(channels["pbaro"], dtype=np.float64),
                np.asarray(channels["p1"], dtype=np.float64),
                np.asarray(channels["pscatt"], dtype=np.float64),
                is_land,
                is_water,
            )
            dense = self.blue_dense_cloud(refl)

        shape = invalid.shape
        return IndicatorSet(
            brightness=brightness,
            whiteness=whiteness,
            ndsi=ndsi,
            ndvi=ndvi,
            pressure=pressure,
            temperature=np.full(shape, UNCERTAINTY_VALUE),
            invalid=invalid,
            is_water=is_water,
            is_land=is_land,
            spectral_flatness=flatness,
            a_priori_land=a_land,
            a_priori_water=a_water,
            dense_cloud=dense,
        )

    @staticmethod
    def brightness(brr442: Raster, brr442_thresh: Raster) -> Raster:
        """``clamp01(0.5 · brr442 / thresh / 3)``, NO_DATA if an input is <= 0."""
        value = clamp01(0.5 * brr442 / brr442_thresh / 3.0)
        unusable = ~(brr442 > 0.0) | ~(brr442_thresh > 0.0)
        return np.where(unusable, NO_DATA_VALUE, value)

    @staticmethod
    def spectral_flatness(refl: Raster) -> Raster:
        wl = MERIS_WAVELENGTHS
        slope0 = spectral_slope(refl[0], refl[2], wl[0], wl[2])
        slope1 = spectral_slope(refl[4], refl[5], wl[4], wl[5])
        slope2 = spectral_slope(refl[6], refl[9], wl[6], wl[9])
        flatness = 1.0 - np.abs(1000.0 * (slope0 + slope1 + slope2) / 3.0)
        return np.maximum(0.0, flatness)

    @staticmethod
    def pressure(pbaro: Raster, p1: Raster, pscatt: Raster, is_land: Mask, is_water: Mask) -> Raster:
        """Surface-minus-cloud pressure difference in units of 1000 hPa."""
        value = np.where(
            is_land,
            pbaro / 1000.0 - p1 / 1000.0,
            np.where(is_water, pbaro / 1000.0 - pscatt / 1000.0, UNCERTAINTY_VALUE),
        )
        return clamp01(value)

    def blue_dense_cloud(self, refl: Raster) -> Mask:
        t = self.dense_cloud
        ndvi = normalized_difference(refl[12], refl[6])
        ndsi = normalized_difference(refl[9], refl[12])
        po2 = refl[10] / refl[9]
        snow_like = ((ndvi <= t.r1 * ndsi + t.r2) | (ndsi >= t.r3)) & (po2 <= t.r7)
        vegetation_like = (refl[12] <= t.r4 * refl[6] + t.r5) & (refl[12] <= t.r6) & (po2 <= t.r7)
        used = np.isfinite(refl[[0, 6, 9, 10, 12]]).all(axis=0)
        return used & (refl[0] >= t.d_bbt) & ~snow_like & ~vegetation_like


class VgtProfile(IndicatorProfile):
    """SPOT VGT indicators from the B0, B2, B3 and MIR reflectances."""

    name = "vgt"
    BRIGHT_FOR_WHITE_THRESH = 0.2
    REFL835_WATER_THRESH = 0.1
    REFL835_LAND_THRESH = 0.15

    @property
    def required_channels(self) -> list[str]:
        return ["b0", "b2", "b3", "mir"]

    def compute(
        self,
        channels: Mapping[str, npt.ArrayLike],
        *,
        water_fraction_threshold: float = 23.0,
        use_l1_land_flag: bool = False,
    ) -> IndicatorSet:
        self.check_channels(list(channels))
        refl = self._stack(channels, self.required_channels)
        invalid = self._invalid(channels, refl)
        is_water, is_land, a_land, a_water = self._surface(
            channels, invalid, water_fraction_threshold, use_l1_land_flag
        )
        wl = VGT_WAVELENGTHS

        with np.errstate(invalid="ignore", divide="ignore"):
            brightness = np.where(
                is_water, clamp01(refl[1] + refl[2]), clamp01((refl[0] + refl[1]) / 2.0)
            )
            slope0 = spectral_slope(refl[0], refl[1], wl[0], wl[1])
            slope1 = spectral_slope(refl[1], refl[2], wl[1], wl[2])
            flatness = np.maximum(0.0, 1.0 - np.abs(2000.0 * (slope0 + slope1) / 2.0))
            whiteness = np.where(brightness > self.BRIGHT_FOR_WHITE_THRESH, flatness, 0.0)
            ndsi = clamp01(normalized_difference(refl[2], refl[3]))
            ndvi = clamp01(normalized_difference(refl[2], refl[1]))

            nir_bright = refl[2] > self.REFL835_LAND_THRESH
            radiometric_land = np.where(
                nir_bright & (refl[2] > refl[1]), 1.0, np.where(nir_bright, 0.75, 0.25)
            )
            water_like = (refl[0] > refl[1]) & (refl[1] > refl[2]) & (refl[2] < self.REFL835_WATER_THRESH)
            radiometric_water = np.where(water_like, 1.0, 0.25)

        shape = invalid.shape
        return IndicatorSet(
            brightness=brightness,
            whiteness=whiteness,
            ndsi=ndsi,
            ndvi=ndvi,
            pressure=np.full(shape, UNCERTAINTY_VALUE),
            temperature=np.full(shape, UNCERTAINTY_VALUE),
            invalid=invalid,
            is_water=is_water,
            is_land=is_land,
            spectral_flatness=flatness,
            glint_risk=slope0,
            radiometric_land=radiometric_land,
            radiometric_water=radiometric_water,
            a_priori_land=a_land,
            a_priori_water=a_water,
            glint_enabled=False,
        )


class GenericProfile(IndicatorProfile):
    """Indicators computed elsewhere and supplied as channels.

    ``brightness``, ``whiteness``, ``ndsi``, ``ndvi`` and ``pressure`` are
    required; ``temperature`` and ``glint_risk`` default to 0.5.  Whiteness,
    pressure and temperature are clamped into ``[0, 1]`` here; a negative
    brightness is treated as NO_DATA.
    """

    name = "generic"

    @property
    def required_channels(self) -> list[str]:
        return ["brightness", "whiteness", "ndsi", "ndvi", "pressure"]

    def compute(
        self,
        channels: Mapping[str, npt.ArrayLike],
        *,
        water_fraction_threshold: float = 23.0,
        use_l1_land_flag: bool = False,
    ) -> IndicatorSet:
        self.check_channels(list(channels))
        values = {n: np.asarray(channels[n], dtype=np.float64) for n in self.required_channels}
        shape = values["brightness"].shape
        for name, arr in values.items():
            Validators.assert_raster_shapes_match(shape, arr.shape, "brightness", name)

        invalid = ~np.all(np.isfinite(np.stack(list(values.values()))), axis=0)
        l1_invalid = self._optional_mask(channels, "l1_invalid")
        if l1_invalid is not None:
            invalid |= l1_invalid
        is_water, is_land, a_land, a_water = self._surface(
            channels, invalid, water_fraction_threshold, use_l1_land_flag
        )

        def optional(name: str) -> Raster:
            if name in channels:
                return np.asarray(channels[name], dtype=np.float64)
            return np.full(shape, UNCERTAINTY_VALUE)

        brightness = values["brightness"]
        return IndicatorSet(
            brightness=np.where(brightness < 0.0, NO_DATA_VALUE, clamp01(brightness)),
            whiteness=clamp01(values["whiteness"]),
            ndsi=clamp01(values["ndsi"]),
            ndvi=clamp01(values["ndvi"]),
            pressure=clamp01(values["pressure"]),
            temperature=clamp01(optional("temperature")),
            invalid=invalid,
            is_water=is_water,
            is_land=is_land,
            glint_risk=optional("glint_risk"),
            radiometric_land=optional("radiometric_land"),
            radiometric_water=optional("radiometric_water"),
            a_priori_land=a_land,
            a_priori_water=a_water,
        )


PROFILES: dict[str, IndicatorProfile] = {
    "meris": MerisProfile(),
    "vgt": VgtProfile(),
    "generic": GenericProfile(),
}


def get_profile(sensor: str, dense_cloud: DenseCloudThresholds | None = None) -> IndicatorProfile:
    """Profile for *sensor*; MERIS gets the configured dense-cloud thresholds."""
    Validators.assert_choice(sensor, list(PROFILES), "sensor")
    if sensor == "meris" and dense_cloud is not None:
        return MerisProfile(dense_cloud)
    return PROFILES[sensor]
