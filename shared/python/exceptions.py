"""
CloudScreen — Custom Exception Hierarchy
=========================================
Every CloudScreen module raises exceptions from this module so callers can
tell a broken configuration from a broken scene from a broken output path.

Hierarchy::

    CloudScreenError                     ← catch-all base
    ├── InputValidationError             ← bad files, unreadable inputs
    │   └── MissingChannelError          ← required raster channel absent
    ├── MissingAcquisitionTimeError      ← scene start/stop time unknown
    ├── ConfigurationError               ← rejected before any pixel runs
    ├── RasterError                      ← rasterio / numpy raster issues
    │   └── RasterDimensionError         ← co-registered shapes disagree
    ├── NeuralNetError                   ← NN evaluator cannot be built
    ├── ProcessingCancelledError         ← cooperative cancel between tiles
    └── OutputWriteError                 ← cannot write to output path

Per-pixel problems (NaN radiances, sun below the horizon) are never raised;
they end up as the INVALID flag bit.

Usage::

    from shared.python.exceptions import ConfigurationError

    raise ConfigurationError("buffer_width must be >= 1 for the adaptive policy")
"""

from __future__ import annotations

from typing import Sequence


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


class CloudScreenError(Exception):
    """Base exception for all CloudScreen errors.

    Args:
        message: Human-readable description of the error.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message: str = message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r})"


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


class InputValidationError(CloudScreenError):
    """Raised when the scene inputs fail pre-processing validation."""


class MissingChannelError(InputValidationError):
    """Raised when a raster channel the classifier needs is not supplied.

    Args:
        channel: Name of the missing channel (e.g. ``"sun_zenith"``).
        available: Channel names that ARE present, used to build a
                   helpful message.

    Example::

        raise MissingChannelError("brr442", sorted(channels))
    """

    def __init__(self, channel: str, available: Sequence[str]) -> None:
        available_str = ", ".join(f"'{c}'" for c in available) or "none"
        super().__init__(
            f"Required channel '{channel}' not found. Available channels: {available_str}"
        )
        self.channel: str = channel
        self.available: list[str] = list(available)


class MissingAcquisitionTimeError(CloudScreenError):
    """Raised when the scene start or stop time is unknown.

    The seasonal feature encoding cannot be built without both times, so
    the whole scene is rejected.
    """

    def __init__(self, message: str = "Unable to read start or stop time from product.") -> None:
        super().__init__(message)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(CloudScreenError):
    """Raised when a configuration record is inconsistent.

    Raised at load time, before any pixel is processed.

    Example::

        raise ConfigurationError("Breakpoints must be strictly increasing: [2.0, 1.0]")
    """


# ---------------------------------------------------------------------------
# Raster
# ---------------------------------------------------------------------------


class RasterError(CloudScreenError):
    """Raised for general raster processing failures (rasterio / numpy)."""


class RasterDimensionError(RasterError):
    """Raised when rasters that must be co-registered differ in shape.

    Args:
        label_a: Name of the reference raster.
        shape_a: Its ``(rows, cols)`` shape.
        label_b: Name of the offending raster.
        shape_b: Its ``(rows, cols)`` shape.
    """

    def __init__(
        self,
        label_a: str,
        shape_a: tuple[int, ...],
        label_b: str,
        shape_b: tuple[int, ...],
    ) -> None:
        super().__init__(
            f"Raster shape mismatch: {label_a} is {shape_a} but {label_b} is {shape_b}. "
            "All input channels must have identical dimensions."
        )
        self.shape_a = shape_a
        self.shape_b = shape_b


# ---------------------------------------------------------------------------
# Neural network
# ---------------------------------------------------------------------------


class NeuralNetError(CloudScreenError):
    """Raised when a neural-net evaluator cannot be constructed or called.

    Args:
        net_name: Identifier of the net (e.g. ``"cl_all_1"``).
        reason: Underlying error message.
        action: What was being attempted, ``"load"`` or ``"evaluate"``.
    """

    def __init__(self, net_name: str, reason: str, action: str = "load") -> None:
        super().__init__(f"Unable to {action} neural net '{net_name}': {reason}")
        self.action: str = action
        self.net_name: str = net_name
        self.reason: str = reason


# ---------------------------------------------------------------------------
# Processing control
# ---------------------------------------------------------------------------


class ProcessingCancelledError(CloudScreenError):
    """Raised when a tiled run is cancelled between tiles.

    Args:
        completed: Number of tiles finished before the cancel was seen.
        total: Total number of tiles scheduled.
    """

    def __init__(self, completed: int, total: int) -> None:
        super().__init__(f"Processing cancelled after {completed}/{total} tile(s).")
        self.completed: int = completed
        self.total: int = total


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


class OutputWriteError(CloudScreenError):
    """Raised when a result raster cannot be written to disk.

    Args:
        output_path: String representation of the path that failed.
        reason: Underlying OS or library error message.

    Example::

        raise OutputWriteError("/read-only/dir/flags.tif", "Permission denied")
    """

    def __init__(self, output_path: str, reason: str) -> None:
        super().__init__(f"Failed to write output to '{output_path}': {reason}")
        self.output_path: str = output_path
        self.reason: str = reason
