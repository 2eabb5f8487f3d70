"""
CloudScreen — Shared Base Tool
===============================
Abstract base class for the file-driven CloudScreen tools.

Design Pattern:
    Template Method — the public ``run()`` method fixes the pipeline
    (validate → process → report) and subclasses fill in
    ``validate_inputs`` and ``process``.

The numeric core (feature assembly, classification, consolidation) never
touches this class; only the raster I/O layer does::

    from shared.python.base_tool import GeoTool

    class MyTool(GeoTool):
        def validate_inputs(self) -> None:
            ...
        def process(self) -> None:
            ...
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path

# ---------------------------------------------------------------------------
# Root logger; every module logs to a child of "cloudscreen".
# ---------------------------------------------------------------------------
logger = logging.getLogger("cloudscreen")

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s — %(message)s"


class GeoTool(ABC):
    """Abstract base class for CloudScreen raster tools.

    Attributes:
        input_path: Scene input (a directory of channel GeoTIFFs).
        output_path: Directory the tool writes its rasters to.
        verbose: When ``True`` the ``cloudscreen`` logger runs at DEBUG.
    """

    def __init__(
        self,
        input_path: Path,
        output_path: Path,
        *,
        verbose: bool = False,
    ) -> None:
        self.input_path: Path = Path(input_path)
        self.output_path: Path = Path(output_path)
        self.verbose: bool = verbose

        self._configure_logging()

    # ------------------------------------------------------------------
    # Abstract interface
    # ------------------------------------------------------------------

    @abstractmethod
    def validate_inputs(self) -> None:
        """Validate all inputs before processing begins.

        Raises:
            InputValidationError: If a channel is missing or unreadable.
            ConfigurationError: If the configuration is inconsistent.
        """

    @abstractmethod
    def process(self) -> None:
        """Run the scene through the processing pipeline and write outputs."""

    # ------------------------------------------------------------------
    # Template method
    # ------------------------------------------------------------------

    def run(self) -> None:
        """Execute validate → process → report.

        Exceptions from ``validate_inputs`` or ``process`` propagate
        unchanged; nothing is reported as a success after a failure.
        """
        logger.info("Starting %s", self.__class__.__name__)
        start = time.perf_counter()

        self.validate_inputs()
        self.process()

        elapsed = time.perf_counter() - start
        self._report_success(elapsed)

    # ------------------------------------------------------------------
    # Protected helpers
    # ------------------------------------------------------------------

    def _report_success(self, elapsed: float) -> None:
        logger.info(
            "%s completed in %.2fs → %s",
            self.__class__.__name__,
            elapsed,
            self.output_path,
        )

    def _configure_logging(self) -> None:
        """Attach a console handler to the ``cloudscreen`` logger once.

        Uses DEBUG level when ``self.verbose`` is ``True``, otherwise INFO.
        """
        if not logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt="%H:%M:%S"))
            logger.addHandler(handler)

        logger.setLevel(logging.DEBUG if self.verbose else logging.INFO)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"input_path={self.input_path!r}, "
            f"output_path={self.output_path!r})"
        )
