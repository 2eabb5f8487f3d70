"""
Pixel Classifier — Flag Bitmask
================================
Bit layout of the ``pixel_classif_flags`` raster and read-only accessors for
downstream consumers (e.g. a cloud-shadow projector) that only need to ask
"is this pixel cloud?".

Flags are stored as ``uint32``.  Bit positions are fixed; adding a flag means
appending a new bit, never renumbering.

Usage::

    from pixel_classifier.flags import PixelFlag, FlagView

    view = FlagView(flags)
    cloudy = view.cloud                    # bool raster
    water = view.is_set(PixelFlag.WATER)
"""

from __future__ import annotations

import enum

import numpy as np
import numpy.typing as npt

FLAG_DTYPE = np.uint32

# Sentinel written to diagnostic rasters where an indicator is undefined.
NO_DATA_VALUE = -1.0

# Neutral "no evidence" value shared by every indicator in [0, 1].
UNCERTAINTY_VALUE = 0.5


class PixelFlag(enum.IntFlag):
    """Named bits of the classification bitmask."""

    INVALID = 1 << 0
    CLOUD = 1 << 1
    CLOUD_AMBIGUOUS = 1 << 2
    CLOUD_SURE = 1 << 3
    CLOUD_BUFFER = 1 << 4
    CLOUD_SHADOW = 1 << 5
    COASTLINE = 1 << 6
    CLEAR_SNOW = 1 << 7
    CLEAR_LAND = 1 << 8
    CLEAR_WATER = 1 << 9
    LAND = 1 << 10
    WATER = 1 << 11
    BRIGHT = 1 << 12
    WHITE = 1 << 13
    BRIGHTWHITE = 1 << 14
    HIGH = 1 << 15
    VEG_RISK = 1 << 16
    GLINT_RISK = 1 << 17

    SNOW_ICE = CLEAR_SNOW


CLOUD_FLAGS = PixelFlag.CLOUD | PixelFlag.CLOUD_AMBIGUOUS | PixelFlag.CLOUD_SURE
CLEAR_FLAGS = PixelFlag.CLEAR_LAND | PixelFlag.CLEAR_WATER | PixelFlag.CLEAR_SNOW

FLAG_DESCRIPTIONS: dict[PixelFlag, str] = {
    PixelFlag.INVALID: "Invalid pixels",
    PixelFlag.CLOUD: "Pixels which are either cloud_sure or cloud_ambiguous",
    PixelFlag.CLOUD_AMBIGUOUS: "Semi transparent clouds, or clouds where the detection level is uncertain",
    PixelFlag.CLOUD_SURE: "Fully opaque clouds with full confidence of their detection",
    PixelFlag.CLOUD_BUFFER: "A buffer of n pixels around a cloud",
    PixelFlag.CLOUD_SHADOW: "Pixels is affect by a cloud shadow",
    PixelFlag.COASTLINE: "Pixels at a coastline",
    PixelFlag.CLEAR_SNOW: "Clear snow/ice pixels",
    PixelFlag.CLEAR_LAND: "Clear land pixels",
    PixelFlag.CLEAR_WATER: "Clear water pixels",
    PixelFlag.LAND: "Land pixels",
    PixelFlag.WATER: "Water pixels",
    PixelFlag.BRIGHT: "Bright pixels",
    PixelFlag.WHITE: "White pixels",
    PixelFlag.BRIGHTWHITE: "'Brightwhite' pixels",
    PixelFlag.HIGH: "High pixels",
    PixelFlag.VEG_RISK: "Pixels with vegetation risk",
    PixelFlag.GLINT_RISK: "Pixels with glint risk",
}


def empty_flags(shape: tuple[int, int]) -> npt.NDArray[np.uint32]:
    """Return an all-clear flag raster of *shape*."""
    return np.zeros(shape, dtype=FLAG_DTYPE)


def set_flag(
    flags: npt.NDArray[np.uint32],
    flag: PixelFlag,
    mask: npt.NDArray[np.bool_],
) -> npt.NDArray[np.uint32]:
    """Return a copy of *flags* with *flag* set where *mask* is true."""
    out = flags.copy()
    out[mask] |= FLAG_DTYPE(flag)
    return out


def clear_flag(
    flags: npt.NDArray[np.uint32],
    flag: PixelFlag,
    mask: npt.NDArray[np.bool_] | None = None,
) -> npt.NDArray[np.uint32]:
    """Return a copy of *flags* with *flag* cleared where *mask* is true.

    A ``None`` mask clears the bit everywhere.
    """
    out = flags.copy()
    keep = FLAG_DTYPE(~int(flag) & 0xFFFFFFFF)
    if mask is None:
        out &= keep
    else:
        out[mask] &= keep
    return out


def is_set(flags: npt.NDArray[np.uint32], flag: PixelFlag) -> npt.NDArray[np.bool_]:
    """Boolean raster that is true wherever *any* bit of *flag* is set."""
    return (flags & FLAG_DTYPE(flag)) != 0


def describe_flags(value: int) -> list[str]:
    """Names of the single-bit flags set in one bitmask *value*.

    Example::

        >>> describe_flags(0b1010)
        ['CLOUD', 'CLOUD_SURE']
    """
    return [flag.name for flag in FLAG_DESCRIPTIONS if int(value) & int(flag)]


class FlagView:
    """Read-only, named accessors over a finished flag raster.

    Args:
        flags: A ``uint32`` flag raster.  The view keeps a reference; it never
               writes to it.
    """

    def __init__(self, flags: npt.NDArray[np.uint32]) -> None:
        self._flags = np.asarray(flags, dtype=FLAG_DTYPE)

    @property
    def shape(self) -> tuple[int, ...]:
        return self._flags.shape

    def is_set(self, flag: PixelFlag) -> npt.NDArray[np.bool_]:
        return is_set(self._flags, flag)

    def at(self, x: int, y: int) -> list[str]:
        """Flag names for the pixel at column *x*, row *y*."""
        return describe_flags(int(self._flags[y, x]))

    def count(self, flag: PixelFlag) -> int:
        return int(np.count_nonzero(self.is_set(flag)))

    @property
    def invalid(self) -> npt.NDArray[np.bool_]:
        return self.is_set(PixelFlag.INVALID)

    @property
    def cloud(self) -> npt.NDArray[np.bool_]:
        return self.is_set(PixelFlag.CLOUD)

    @property
    def cloud_buffer(self) -> npt.NDArray[np.bool_]:
        return self.is_set(PixelFlag.CLOUD_BUFFER)

    @property
    def snow(self) -> npt.NDArray[np.bool_]:
        return self.is_set(PixelFlag.CLEAR_SNOW)

    @property
    def land(self) -> npt.NDArray[np.bool_]:
        return self.is_set(PixelFlag.LAND)

    @property
    def water(self) -> npt.NDArray[np.bool_]:
        return self.is_set(PixelFlag.WATER)

    @property
    def coastline(self) -> npt.NDArray[np.bool_]:
        return self.is_set(PixelFlag.COASTLINE)
