"""
Pixel Classifier — Spatial Consolidator
========================================
Neighbourhood post-processing of a finished flag raster:

1. **Coastline refinement** flags pixels whose window straddles a land/water
   boundary and removes cloud detections that only exist because of it.
2. **Cloud buffer** marks a margin of CLOUD_BUFFER pixels around cloud.

Both steps only look at a bounded neighbourhood, so a tile expanded by
:func:`required_halo` and cropped afterwards gives exactly the whole-raster
answer (see :mod:`pixel_classifier.tiling`).

Buffer policies:
    FixedBufferPolicy     Square buffer of ``width`` pixels around every cloud.
    AdaptiveBufferPolicy  3×3 buffer, widened to ``[x-2, x+3]`` where the
                          forward 2×2 block is all cloud.

Usage::

    flags = consolidate(flags, water_fraction, config)
    buffer = compute_cloud_buffer(view.cloud, AdaptiveBufferPolicy())
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, ClassVar

import numpy as np
import numpy.typing as npt
from scipy.ndimage import binary_dilation, convolve, maximum_filter, minimum_filter

from shared.python.exceptions import ConfigurationError
from shared.python.validators import Validators
from pixel_classifier.flags import (
    CLEAR_FLAGS,
    CLOUD_FLAGS,
    FLAG_DTYPE,
    PixelFlag,
    is_set,
)

if TYPE_CHECKING:
    from pixel_classifier.config import ClassifierConfig

logger = logging.getLogger("cloudscreen.pixel_classifier.consolidation")

Mask = npt.NDArray[np.bool_]

BUFFER_POLICIES = ("adaptive", "fixed")

# 8-neighbourhood without the centre pixel.
_NEIGHBOURS = np.array([[1, 1, 1], [1, 0, 1], [1, 1, 1]], dtype=np.int32)


def _grow(mask: Mask, before: int, after: int) -> Mask:
    """Mark ``[x-before, x+after] × [y-before, y+after]`` around every true pixel.

    The window is clipped at the raster edge.
    """
    rows, cols = mask.shape
    out = mask.copy()
    for dy in range(-after, before + 1):
        if abs(dy) >= rows:
            continue
        for dx in range(-after, before + 1):
            if abs(dx) >= cols or (dy == 0 and dx == 0):
                continue
            # out[y, x] |= mask[y + dy, x + dx]
            out[max(-dy, 0):rows - max(dy, 0), max(-dx, 0):cols - max(dx, 0)] |= mask[
                max(dy, 0):rows + min(dy, 0), max(dx, 0):cols + min(dx, 0)
            ]
    return out


# ---------------------------------------------------------------------------
# Buffer policies
# ---------------------------------------------------------------------------


class BufferPolicy(ABC):
    """Strategy that turns a cloud mask into a buffer mask."""

    name: str = ""

    @property
    @abstractmethod
    def required_halo(self) -> int:
        """Pixels of context a tile needs on every side for an exact result."""

    @abstractmethod
    def buffer(self, cloud: Mask) -> Mask:
        """Return the buffer mask (cloud pixels included) for *cloud*."""


@dataclass(frozen=True)
class FixedBufferPolicy(BufferPolicy):
    """Square ``(2·width + 1)²`` buffer around every cloud pixel."""

    width: int = 2
    name: ClassVar[str] = "fixed"

    def __post_init__(self) -> None:
        Validators.assert_positive_int(self.width, "buffer_width")

    @property
    def required_halo(self) -> int:
        return self.width

    def buffer(self, cloud: Mask) -> Mask:
        structure = np.ones((2 * self.width + 1, 2 * self.width + 1), dtype=bool)
        return binary_dilation(cloud, structure=structure, border_value=0)


@dataclass(frozen=True)
class AdaptiveBufferPolicy(BufferPolicy):
    """3×3 buffer, widened where clouds form solid 2×2 blocks.

    Anchors with a right, lower and lower-right cloud neighbour buffer
    ``[x-2, x+3] × [y-2, y+3]``.  Anchors on the last row or column have no
    forward neighbours and always get the 3×3 buffer.
    """

    name: ClassVar[str] = "adaptive"

    @property
    def required_halo(self) -> int:
        return 3

    def buffer(self, cloud: Mask) -> Mask:
        block = np.zeros_like(cloud)
        block[:-1, :-1] = cloud[:-1, :-1] & cloud[:-1, 1:] & cloud[1:, :-1] & cloud[1:, 1:]
        return _grow(cloud, 1, 1) | _grow(block, 2, 3)


def buffer_policy_for(name: str, width: int = 2) -> BufferPolicy:
    """Build the policy called *name*.

    Raises:
        ConfigurationError: For an unknown policy or a width below 1.
    """
    Validators.assert_choice(name, BUFFER_POLICIES, "buffer_policy")
    if width < 1:
        raise ConfigurationError(f"buffer_width must be >= 1 for the {name} policy, got {width}.")
    if name == "fixed":
        return FixedBufferPolicy(width)
    return AdaptiveBufferPolicy()


def compute_cloud_buffer(cloud_mask: npt.ArrayLike, policy: BufferPolicy | None = None) -> Mask:
    """Boolean buffer raster for *cloud_mask* (cloud pixels included)."""
    cloud = np.asarray(cloud_mask, dtype=bool)
    if cloud.ndim != 2:
        raise ConfigurationError(f"cloud mask must be 2-D, got shape {cloud.shape}")
    return (policy or AdaptiveBufferPolicy()).buffer(cloud)


def apply_cloud_buffer(
    flags: npt.NDArray[np.uint32],
    policy: BufferPolicy | None = None,
    source: PixelFlag = PixelFlag.CLOUD,
) -> npt.NDArray[np.uint32]:
    """Return a copy of *flags* with CLOUD_BUFFER OR-ed in around *source*.

    INVALID pixels never receive the buffer bit.  Existing buffer bits are
    kept.
    """
    out = np.array(flags, dtype=FLAG_DTYPE, copy=True)
    buffer = compute_cloud_buffer(is_set(out, source), policy)
    buffer &= ~is_set(out, PixelFlag.INVALID)
    out[buffer] |= FLAG_DTYPE(PixelFlag.CLOUD_BUFFER)
    return out


# ---------------------------------------------------------------------------
# Coastline refinement
# ---------------------------------------------------------------------------


def water_state(
    flags: npt.NDArray[np.uint32],
    water_fraction: npt.ArrayLike | None = None,
) -> npt.NDArray[np.float64]:
    """Per-pixel water fraction 0–100 used for coastline detection.

    Fractions above 100 (and non-finite ones) fall back to 100 / 0 from the
    WATER bit.
    """
    from_bit = np.where(is_set(flags, PixelFlag.WATER), 100.0, 0.0)
    if water_fraction is None:
        return from_bit
    fraction = np.asarray(water_fraction, dtype=np.float64)
    Validators.assert_raster_shapes_match(flags.shape, fraction.shape, "flags", "water_fraction")
    with np.errstate(invalid="ignore"):
        unusable = ~np.isfinite(fraction) | (fraction > 100.0)
    return np.where(unusable, from_bit, fraction)


def near_coastline(state: npt.NDArray[np.float64], radius: int = 1) -> Mask:
    """True where any pixel in the clipped ``(2r+1)²`` window differs from the centre."""
    size = 2 * radius + 1
    # "nearest" replicates edge values, which is the same as clipping here.
    high = maximum_filter(state, size=size, mode="nearest")
    low = minimum_filter(state, size=size, mode="nearest")
    return (high != state) | (low != state)


def refine_coastline(
    flags: npt.NDArray[np.uint32],
    water_fraction: npt.ArrayLike | None = None,
    radius: int = 1,
) -> npt.NDArray[np.uint32]:
    """Flag coastline pixels and drop cloud detections caused by the coast.

    Near-coastline pixels get COASTLINE and lose CLEAR_SNOW.  A near-coastline
    cloud pixel keeps its cloud bits only if all 8 neighbours are cloud, or
    if some cloud pixel in its window is not itself near the coastline.
    Pixels that stay cloudy lose every CLEAR_* bit.

    Returns:
        A new flag raster; *flags* is not modified.
    """
    Validators.assert_positive_int(radius, "coastline_radius")
    out = np.array(flags, dtype=FLAG_DTYPE, copy=True)
    invalid = is_set(out, PixelFlag.INVALID)
    near = near_coastline(water_state(out, water_fraction), radius) & ~invalid

    cloud = is_set(out, PixelFlag.CLOUD)
    surrounded = convolve(cloud.astype(np.int32), _NEIGHBOURS, mode="constant", cval=0) == 8
    inland_cloud = cloud & ~near
    supported = maximum_filter(
        inland_cloud.astype(np.uint8), size=2 * radius + 1, mode="constant", cval=0
    ) > 0
    artefact = near & cloud & ~surrounded & ~supported

    out[near] |= FLAG_DTYPE(PixelFlag.COASTLINE)
    out[near] &= FLAG_DTYPE(~int(PixelFlag.CLEAR_SNOW) & 0xFFFFFFFF)
    out[artefact] &= FLAG_DTYPE(~int(CLOUD_FLAGS) & 0xFFFFFFFF)
    out[is_set(out, PixelFlag.CLOUD)] &= FLAG_DTYPE(~int(CLEAR_FLAGS) & 0xFFFFFFFF)

    logger.debug(
        "Coastline refinement: %d coastline pixel(s), %d cloud pixel(s) removed.",
        int(near.sum()), int(artefact.sum()),
    )
    return out


# ---------------------------------------------------------------------------
# Combined stage
# ---------------------------------------------------------------------------


def required_halo(config: ClassifierConfig) -> int:
    """Halo that makes :func:`consolidate` tile-invariant under *config*."""
    halo = config.make_buffer_policy().required_halo
    if config.coastline_enabled:
        halo += 2 * config.coastline_radius
    return halo


def consolidate(
    flags: npt.NDArray[np.uint32],
    water_fraction: npt.ArrayLike | None = None,
    config: ClassifierConfig | None = None,
) -> npt.NDArray[np.uint32]:
    """Coastline refinement (when enabled) followed by the cloud buffer.

    Args:
        flags: Composite flag raster.
        water_fraction: Optional 0–100 water fraction raster.
        config: Classifier configuration; defaults to ``ClassifierConfig()``.

    Returns:
        A new flag raster.
    """
    if config is None:
        from pixel_classifier.config import ClassifierConfig

        config = ClassifierConfig()

    out = np.asarray(flags, dtype=FLAG_DTYPE)
    if config.coastline_enabled:
        out = refine_coastline(out, water_fraction, config.coastline_radius)
    return apply_cloud_buffer(out, config.make_buffer_policy())
