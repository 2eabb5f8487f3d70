"""
Pixel Classifier — Composite Classifier
========================================
Threshold rules that turn an :class:`~pixel_classifier.indicators.IndicatorSet`
into the per-pixel flag bitmask, and the optional NN-score refinement that
runs on top of it.

Rules (all vectorised)::

    brightWhite = white + bright > bright_white
    clearSnow   = brightWhite and ndsi > ndsi
    cloud       = (white + bright + pressure + temperature > cloud
                   or dense_cloud) and not clearSnow

Invalid pixels carry the INVALID bit and nothing else.

Usage::

    classifier = CompositeClassifier(SENSOR_THRESHOLDS["meris"])
    flags = classifier.classify(indicators)
    flags = apply_nn_score(flags, nn_score, NnBoundaries(), mode="refine")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
import numpy.typing as npt

from shared.python.validators import Validators
from pixel_classifier.flags import (
    CLEAR_FLAGS,
    CLOUD_FLAGS,
    FLAG_DTYPE,
    NO_DATA_VALUE,
    UNCERTAINTY_VALUE,
    PixelFlag,
    empty_flags,
    is_set,
)
from pixel_classifier.indicators import LAND_THRESH, WATER_THRESH, IndicatorSet

logger = logging.getLogger("cloudscreen.pixel_classifier.composite")

NN_MODES = ("off", "pure", "refine")


@dataclass(frozen=True)
class CompositeThresholds:
    """Decision thresholds of the composite classifier."""

    bright_white: float = 1.5
    ndsi: float = 0.68
    cloud: float = 1.65
    bright: float = 0.25
    white: float = 0.9
    ndvi: float = 0.7
    temperature: float = 0.9
    glint: float = 0.5
    pressure: float = 0.9


SENSOR_THRESHOLDS: dict[str, CompositeThresholds] = {
    "meris": CompositeThresholds(),
    "vgt": CompositeThresholds(
        bright_white=0.65,
        ndsi=0.50,
        cloud=1.65,
        bright=0.3,
        white=0.5,
        ndvi=0.4,
        temperature=0.9,
        glint=0.5,
        pressure=0.9,
    ),
    "generic": CompositeThresholds(),
}


def _set(flags: npt.NDArray[np.uint32], flag: int, mask: npt.NDArray[np.bool_]) -> None:
    flags[mask] |= FLAG_DTYPE(flag)


def _clear(flags: npt.NDArray[np.uint32], flag: int, mask: npt.NDArray[np.bool_]) -> None:
    flags[mask] &= FLAG_DTYPE(~int(flag) & 0xFFFFFFFF)


def _surface_value(radiometric: npt.NDArray[np.float64], a_priori: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    """Radiometric evidence unless it is "uncertain", then the a-priori value.

    An a-priori value of 0.5 or less counts as "no evidence" and yields 0.
    """
    fallback = np.where(a_priori > UNCERTAINTY_VALUE, a_priori, 0.0)
    return np.where(radiometric != UNCERTAINTY_VALUE, radiometric, fallback)


class CompositeClassifier:
    """Apply :class:`CompositeThresholds` to an indicator set.

    Args:
        thresholds: Decision thresholds; defaults to the MERIS values.
    """

    def __init__(self, thresholds: CompositeThresholds | None = None) -> None:
        self.thresholds = thresholds or CompositeThresholds()

    def classify(self, indicators: IndicatorSet) -> npt.NDArray[np.uint32]:
        """Return the ``uint32`` flag raster for *indicators*."""
        t = self.thresholds
        valid = ~indicators.invalid
        flags = empty_flags(indicators.shape)
        _set(flags, PixelFlag.INVALID, indicators.invalid)

        # Undefined brightness adds nothing to the sums.
        bright = indicators.brightness
        bright_known = bright != NO_DATA_VALUE
        bright_sum = np.where(bright_known, bright, 0.0)
        white = indicators.whiteness

        with np.errstate(invalid="ignore"):
            bright_white = white + bright_sum > t.bright_white
            clear_snow = bright_white & (indicators.ndsi > t.ndsi)
            cloud_sum = white + bright_sum + indicators.pressure + indicators.temperature
            cloud = ((cloud_sum > t.cloud) | indicators.dense_cloud) & ~clear_snow

            is_water = indicators.is_water
            is_land = indicators.is_land
            land_value = _surface_value(indicators.radiometric_land, indicators.a_priori_land)
            water_value = _surface_value(indicators.radiometric_water, indicators.a_priori_water)
            clear_land = is_land & ~cloud & (land_value > LAND_THRESH)
            clear_water = is_water & ~cloud & (water_value > WATER_THRESH)

            rules: list[tuple[PixelFlag, npt.NDArray[np.bool_]]] = [
                (PixelFlag.CLOUD | PixelFlag.CLOUD_SURE, cloud),
                (PixelFlag.CLEAR_SNOW, clear_snow),
                (PixelFlag.CLEAR_LAND, clear_land),
                (PixelFlag.CLEAR_WATER, clear_water),
                (PixelFlag.LAND, is_land),
                (PixelFlag.WATER, is_water),
                (PixelFlag.BRIGHT, bright_known & (bright > t.bright)),
                (PixelFlag.WHITE, white > t.white),
                (PixelFlag.BRIGHTWHITE, bright_white),
                (PixelFlag.HIGH, indicators.pressure > t.pressure),
                (PixelFlag.VEG_RISK, indicators.ndvi > t.ndvi),
            ]
            if indicators.glint_enabled:
                rules.append(
                    (PixelFlag.GLINT_RISK, is_water & cloud & (indicators.glint_risk > t.glint))
                )

        for flag, mask in rules:
            _set(flags, flag, mask & valid)

        logger.debug(
            "Composite classification: %d invalid, %d cloud, %d snow of %d pixels.",
            int(indicators.invalid.sum()),
            int((cloud & valid).sum()),
            int((clear_snow & valid).sum()),
            flags.size,
        )
        return flags


# ---------------------------------------------------------------------------
# NN refinement
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NnBoundaries:
    """Score intervals used by :func:`apply_nn_score`.

    ``(ambiguous_lower, ambiguous_sure]`` is ambiguous cloud,
    ``(ambiguous_sure, sure_snow]`` is sure cloud, above ``sure_snow`` snow.
    """

    ambiguous_lower: float = 1.1
    ambiguous_sure: float = 2.7
    sure_snow: float = 4.6

    def __post_init__(self) -> None:
        Validators.assert_strictly_increasing(
            (self.ambiguous_lower, self.ambiguous_sure, self.sure_snow), "nn_boundaries"
        )


def apply_nn_score(
    flags: npt.NDArray[np.uint32],
    score: npt.ArrayLike,
    boundaries: NnBoundaries | None = None,
    mode: str = "refine",
) -> npt.NDArray[np.uint32]:
    """Combine an NN cloud score with composite flags.

    Args:
        flags: Composite flag raster.
        score: NN score raster of the same shape.  Negative or NaN scores
               mean "not computed" and leave the pixel alone.
        boundaries: Score intervals.
        mode: ``"pure"`` replaces the cloud and snow decision on every
              pixel with a usable score; ``"refine"`` only adds cloud or snow
              to pixels the composite rules left without CLOUD or
              CLOUD_SURE.

    Returns:
        A new flag raster; *flags* is not modified.
    """
    Validators.assert_choice(mode, NN_MODES[1:], "nn_mode")
    b = boundaries or NnBoundaries()
    score = np.asarray(score, dtype=np.float64)
    Validators.assert_raster_shapes_match(flags.shape, score.shape, "flags", "nn_score")

    out = np.array(flags, dtype=FLAG_DTYPE, copy=True)
    with np.errstate(invalid="ignore"):
        usable = np.isfinite(score) & (score >= 0.0) & ~is_set(out, PixelFlag.INVALID)
        ambiguous = (score > b.ambiguous_lower) & (score <= b.ambiguous_sure)
        sure = (score > b.ambiguous_sure) & (score <= b.sure_snow)
        snow = score > b.sure_snow

    was_cloud = is_set(out, PixelFlag.CLOUD)
    if mode == "pure":
        target = usable
        _clear(out, CLOUD_FLAGS | PixelFlag.CLEAR_SNOW, target)
    else:
        target = usable & ~was_cloud & ~is_set(out, PixelFlag.CLOUD_SURE)

    _set(out, PixelFlag.CLOUD | PixelFlag.CLOUD_AMBIGUOUS, target & ambiguous)
    _set(out, PixelFlag.CLOUD | PixelFlag.CLOUD_SURE, target & sure)
    _clear(out, PixelFlag.CLOUD_AMBIGUOUS, target & sure)
    _set(out, PixelFlag.CLEAR_SNOW, target & snow)

    newly_cloudy = target & is_set(out, PixelFlag.CLOUD) & ~was_cloud
    _clear(out, CLEAR_FLAGS, target & is_set(out, PixelFlag.CLOUD))
    logger.debug("NN %s mode: %d pixel(s) newly cloudy.", mode, int(newly_cloudy.sum()))
    return out
