"""
Pixel Classifier — Breakpoint Classifier
=========================================
Maps a scalar NN score onto an ordered cloud category using a table of
strictly increasing breakpoints.

With ``N`` breakpoints there are ``N + 1`` categories.  Intervals are closed
on the left, so a score equal to a breakpoint belongs to the upper category::

    [1.65, 2.4, 3.2]:   1.64 → 0   1.65 → 1   2.4 → 2   3.2 → 3

Negative and non-finite scores mean "not computed upstream" and map to
:data:`UNPROCESSED`.

Classes:
    CloudCategory      Category bitmasks written to the ``cl_*`` rasters.
    BreakpointTable    Immutable, validated breakpoint sequence.

Usage::

    table = BreakpointTable((1.65, 2.4, 3.2))
    classify(2.0, table)                       # → 1
    category_flags(classify_array(scores, table), len(table))
"""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass
from typing import Mapping, Sequence

import numpy as np
import numpy.typing as npt

from shared.python.exceptions import ConfigurationError
from shared.python.validators import Validators

UNPROCESSED = -1


class CloudCategory(enum.IntFlag):
    """Bitmask values of the per-channel category rasters."""

    CLEAR = 0x01
    SPAMX = 0x02
    NONCL = 0x04
    CLOUD = 0x08
    UNPROCESSED = 0x10

    SPAMX_OR_NONCL = SPAMX


# Category index → mask, keyed by breakpoint count.
_CATEGORY_MASKS: dict[int, tuple[CloudCategory, ...]] = {
    3: (CloudCategory.CLEAR, CloudCategory.SPAMX, CloudCategory.NONCL, CloudCategory.CLOUD),
    2: (CloudCategory.CLEAR, CloudCategory.SPAMX_OR_NONCL, CloudCategory.CLOUD),
}


@dataclass(frozen=True)
class BreakpointTable:
    """Strictly increasing, finite breakpoints for one classifier variant.

    Args:
        values: The breakpoints, lowest first.
        name: Optional label used in error messages.

    Raises:
        ConfigurationError: If *values* is empty, holds a non-finite value,
            or is not strictly increasing.
    """

    values: tuple[float, ...]
    name: str = "breakpoints"

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", tuple(float(v) for v in self.values))
        Validators.assert_strictly_increasing(self.values, self.name)

    def __len__(self) -> int:
        return len(self.values)

    @property
    def n_categories(self) -> int:
        return len(self.values) + 1


def classify(score: float, table: BreakpointTable) -> int:
    """Category index of a single *score*.

    Returns:
        :data:`UNPROCESSED` for negative or non-finite scores, otherwise the
        number of breakpoints that are ``<= score``.
    """
    if not math.isfinite(score) or score < 0.0:
        return UNPROCESSED
    category = 0
    for bp in table.values:
        if score >= bp:
            category += 1
        else:
            break
    return category


def classify_array(scores: npt.ArrayLike, table: BreakpointTable) -> npt.NDArray[np.int8]:
    """Vectorised :func:`classify` over a raster of scores."""
    arr = np.asarray(scores, dtype=np.float64)
    categories = np.searchsorted(np.asarray(table.values), arr, side="right").astype(np.int8)
    unprocessed = ~np.isfinite(arr) | (arr < 0.0)
    categories[unprocessed] = UNPROCESSED
    return categories


def category_flags(categories: npt.ArrayLike, n_breakpoints: int) -> npt.NDArray[np.uint8]:
    """Translate category indices into :class:`CloudCategory` masks.

    Only 2- and 3-breakpoint tables have a defined mask mapping.

    Raises:
        ConfigurationError: For any other breakpoint count.
    """
    try:
        masks = _CATEGORY_MASKS[n_breakpoints]
    except KeyError:
        raise ConfigurationError(
            f"No category masks defined for {n_breakpoints} breakpoint(s); expected 2 or 3."
        ) from None

    cats = np.asarray(categories)
    lookup = np.array([int(m) for m in masks], dtype=np.uint8)
    out = np.full(cats.shape, int(CloudCategory.UNPROCESSED), dtype=np.uint8)
    processed = cats != UNPROCESSED
    out[processed] = lookup[cats[processed]]
    return out


# ---------------------------------------------------------------------------
# Default per-channel tables
# ---------------------------------------------------------------------------

DEFAULT_CHANNEL_TABLES: dict[str, tuple[float, ...]] = {
    "cl_all_1": (1.65, 2.4, 3.2),
    "cl_all_2": (1.7, 2.35, 3.3),
    "cl_ter_1": (1.75, 2.45, 3.4),
    "cl_ter_2": (1.75, 2.5, 3.45),
    "cl_wat_1": (1.65, 2.4, 3.45),
    "cl_wat_2": (1.65, 2.35, 3.45),
    "cl_simple_wat_1": (1.55, 2.5),
    "cl_simple_wat_2": (1.45, 2.5),
    # No published tables for the third variant; start from variant 1.
    "cl_all_3": (1.65, 2.4, 3.2),
    "cl_ter_3": (1.75, 2.45, 3.4),
    "cl_wat_3": (1.65, 2.4, 3.45),
    "cl_simple_wat_3": (1.55, 2.5),
}


def build_channel_tables(
    overrides: Mapping[str, Sequence[float]] | None = None,
) -> dict[str, BreakpointTable]:
    """Validated tables for every known channel, with optional overrides.

    Raises:
        ConfigurationError: If any table (default or override) is invalid.
    """
    merged: dict[str, Sequence[float]] = dict(DEFAULT_CHANNEL_TABLES)
    merged.update(overrides or {})
    return {name: BreakpointTable(tuple(values), name=name) for name, values in merged.items()}
