"""
Pixel Classifier — Tiled Consolidation
=======================================
Runs :func:`~pixel_classifier.consolidation.consolidate` tile by tile on a
thread pool.  Each tile is expanded by a halo, consolidated, and cropped
back, so the stitched result is bit-identical to a whole-raster run.

Usage::

    flags = consolidate_tiled(flags, water_fraction, config, tile_size=512)
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Iterator

import numpy as np
import numpy.typing as npt

from shared.python.exceptions import ConfigurationError, ProcessingCancelledError
from shared.python.validators import Validators
from pixel_classifier.config import ClassifierConfig
from pixel_classifier.consolidation import consolidate, required_halo
from pixel_classifier.flags import FLAG_DTYPE

logger = logging.getLogger("cloudscreen.pixel_classifier.tiling")


@dataclass(frozen=True)
class Tile:
    """Rectangle ``[y, y + height) × [x, x + width)`` of a raster."""

    x: int
    y: int
    width: int
    height: int

    @property
    def slices(self) -> tuple[slice, slice]:
        return slice(self.y, self.y + self.height), slice(self.x, self.x + self.width)

    def expand(self, halo: int, shape: tuple[int, int]) -> Tile:
        """This tile grown by *halo* on every side, clipped to *shape*."""
        rows, cols = shape
        x0, y0 = max(self.x - halo, 0), max(self.y - halo, 0)
        x1 = min(self.x + self.width + halo, cols)
        y1 = min(self.y + self.height + halo, rows)
        return Tile(x0, y0, x1 - x0, y1 - y0)


def iter_tiles(shape: tuple[int, int], tile_size: int | tuple[int, int]) -> Iterator[Tile]:
    """Row-major tiles covering *shape*; edge tiles may be smaller."""
    if isinstance(tile_size, int):
        tile_h = tile_w = tile_size
    else:
        tile_h, tile_w = tile_size
    Validators.assert_positive_int(tile_h, "tile_size")
    Validators.assert_positive_int(tile_w, "tile_size")
    rows, cols = shape
    for y in range(0, rows, tile_h):
        for x in range(0, cols, tile_w):
            yield Tile(x, y, min(tile_w, cols - x), min(tile_h, rows - y))


def consolidate_tiled(
    flags: npt.NDArray[np.uint32],
    water_fraction: npt.ArrayLike | None = None,
    config: ClassifierConfig | None = None,
    tile_size: int | tuple[int, int] | None = None,
    halo: int | None = None,
    *,
    cancel_event: threading.Event | None = None,
) -> npt.NDArray[np.uint32]:
    """Tile-by-tile :func:`consolidate` with halos.

    Args:
        flags: Complete composite flag raster.  Halo pixels are read from
               it, never from partially consolidated output.
        water_fraction: Optional water fraction raster of the same shape.
        config: Classifier configuration (``tile_size`` and ``max_workers``
                are read from it when not given here).
        tile_size: Tile edge length, or ``(rows, cols)``.
        halo: Context pixels per side; defaults to the minimum that keeps
              the result exact.
        cancel_event: Set it to stop scheduling further tiles.

    Raises:
        ConfigurationError: If *halo* is smaller than required.
        ProcessingCancelledError: If *cancel_event* was set before every
            tile finished.
    """
    config = config or ClassifierConfig()
    flags = np.asarray(flags, dtype=FLAG_DTYPE)
    if water_fraction is not None:
        water_fraction = np.asarray(water_fraction, dtype=np.float64)
        Validators.assert_raster_shapes_match(flags.shape, water_fraction.shape, "flags", "water_fraction")

    minimum = required_halo(config)
    if halo is None:
        halo = minimum
    elif halo < minimum:
        raise ConfigurationError(
            f"Halo of {halo} pixel(s) is too small; this configuration needs at least {minimum}."
        )

    tiles = list(iter_tiles(flags.shape, tile_size or config.tile_size))
    out = np.empty_like(flags)
    logger.info(
        "Consolidating %d tile(s) with a %d-pixel halo on %d worker(s).",
        len(tiles), halo, config.max_workers,
    )

    def _run(tile: Tile) -> bool:
        if cancel_event is not None and cancel_event.is_set():
            return False
        region = tile.expand(halo, flags.shape)
        wf = None if water_fraction is None else water_fraction[region.slices]
        result = consolidate(flags[region.slices], wf, config)
        dy, dx = tile.y - region.y, tile.x - region.x
        out[tile.slices] = result[dy:dy + tile.height, dx:dx + tile.width]
        logger.debug("Consolidated tile at (%d, %d) %dx%d.", tile.x, tile.y, tile.width, tile.height)
        return True

    completed = 0
    with ThreadPoolExecutor(max_workers=config.max_workers) as pool:
        futures = {pool.submit(_run, tile): tile for tile in tiles}
        for future in as_completed(futures):
            completed += int(future.result())

    if completed < len(tiles):
        raise ProcessingCancelledError(completed, len(tiles))
    return out
