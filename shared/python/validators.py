"""
CloudScreen — Shared Input Validators
======================================
Static precondition checks used by the classifier configuration and the
raster tool before any pixel is touched.

All methods raise an exception from :mod:`shared.python.exceptions` rather
than returning booleans, so ``validate`` / ``validate_inputs``
implementations read as a flat list of assertions::

    class PixelClassifierTool(GeoTool):
        def validate_inputs(self) -> None:
            Validators.assert_directory_exists(self.input_path)
            Validators.assert_channels_present(required, available)
            Validators.assert_raster_shapes_match(shape, other, "sun_zenith", "brr_1")
"""

from __future__ import annotations

import math
from pathlib import Path
from typing import Iterable, Sequence

from shared.python.exceptions import (
    ConfigurationError,
    InputValidationError,
    MissingChannelError,
    OutputWriteError,
    RasterDimensionError,
)


class Validators:
    """Collection of static precondition checks.

    All methods are ``@staticmethod``; the class is only a namespace.
    """

    # ------------------------------------------------------------------
    # File-system checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_file_exists(path: Path) -> None:
        """Assert that *path* points to an existing regular file.

        Args:
            path: Path object to check.

        Raises:
            InputValidationError: If *path* does not exist or is a directory.
        """
        path = Path(path)
        if not path.exists():
            raise InputValidationError(
                f"Input file not found: '{path}'. "
                "Check that the path is correct and the file exists."
            )
        if path.is_dir():
            raise InputValidationError(f"Expected a file but got a directory: '{path}'.")

    @staticmethod
    def assert_directory_exists(path: Path) -> None:
        """Assert that *path* is an existing directory.

        Raises:
            InputValidationError: If *path* does not exist or is not a
                directory.
        """
        path = Path(path)
        if not path.exists():
            raise InputValidationError(f"Input directory not found: '{path}'.")
        if not path.is_dir():
            raise InputValidationError(f"Expected a directory but got a file: '{path}'.")

    @staticmethod
    def assert_output_dir_writable(output_path: Path) -> None:
        """Create *output_path* (a directory) if needed and check it is usable.

        Raises:
            OutputWriteError: If the directory cannot be created.
        """
        output_path = Path(output_path)
        try:
            output_path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise OutputWriteError(str(output_path), str(exc)) from exc

    # ------------------------------------------------------------------
    # Channel / raster checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_channels_present(required: Iterable[str], available: Sequence[str]) -> None:
        """Assert that every channel in *required* is in *available*.

        Raises:
            MissingChannelError: On the first missing channel.

        Example::

            Validators.assert_channels_present(["sun_zenith"], list(channels))
        """
        present = set(available)
        for name in required:
            if name not in present:
                raise MissingChannelError(name, sorted(present))

    @staticmethod
    def assert_raster_shapes_match(
        shape_a: tuple[int, ...],
        shape_b: tuple[int, ...],
        label_a: str = "Raster A",
        label_b: str = "Raster B",
    ) -> None:
        """Assert that two rasters have identical ``(rows, cols)`` shapes.

        Raises:
            RasterDimensionError: If the shapes differ.
        """
        if tuple(shape_a) != tuple(shape_b):
            raise RasterDimensionError(label_a, tuple(shape_a), label_b, tuple(shape_b))

    # ------------------------------------------------------------------
    # Configuration checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_strictly_increasing(values: Sequence[float], label: str = "values") -> None:
        """Assert that *values* is non-empty, finite and strictly increasing.

        Args:
            values: The sequence to check (e.g. a breakpoint table).
            label: Name used in the error message.

        Raises:
            ConfigurationError: If the sequence is empty, holds a
                non-finite value, or is not strictly increasing.

        Example::

            Validators.assert_strictly_increasing([1.65, 2.4, 3.2], "cl_all_1")
        """
        if len(values) == 0:
            raise ConfigurationError(f"{label} must contain at least one value.")
        if any(not math.isfinite(v) for v in values):
            raise ConfigurationError(f"{label} must only contain finite values: {list(values)}")
        for lower, upper in zip(values, values[1:]):
            if not lower < upper:
                raise ConfigurationError(
                    f"{label} must be strictly increasing: {list(values)}"
                )

    @staticmethod
    def assert_positive_int(value: int, label: str, *, allow_zero: bool = False) -> None:
        """Assert that *value* is an int greater than zero (or >= 0).

        Raises:
            ConfigurationError: If the check fails.
        """
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigurationError(f"{label} must be an integer, got {value!r}.")
        minimum = 0 if allow_zero else 1
        if value < minimum:
            raise ConfigurationError(f"{label} must be >= {minimum}, got {value}.")

    @staticmethod
    def assert_choice(value: str, choices: Sequence[str], label: str) -> None:
        """Assert that *value* is one of *choices*.

        Raises:
            ConfigurationError: If *value* is not allowed.
        """
        if value not in choices:
            raise ConfigurationError(
                f"Unknown {label} '{value}'. Valid options: {', '.join(choices)}"
            )
