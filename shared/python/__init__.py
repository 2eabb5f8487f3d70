"""
CloudScreen — Shared Python Package
====================================
Re-exports the shared base class, exception hierarchy, and validator
utilities so the tool packages import from a single location::

    from shared.python import GeoTool, Validators
    from shared.python.exceptions import ConfigurationError
"""

from shared.python.base_tool import GeoTool
from shared.python.exceptions import (
    CloudScreenError,
    ConfigurationError,
    InputValidationError,
    MissingAcquisitionTimeError,
    MissingChannelError,
    NeuralNetError,
    OutputWriteError,
    ProcessingCancelledError,
    RasterDimensionError,
    RasterError,
)
from shared.python.validators import Validators

__all__ = [
    "GeoTool",
    "Validators",
    "CloudScreenError",
    "InputValidationError",
    "MissingChannelError",
    "MissingAcquisitionTimeError",
    "ConfigurationError",
    "RasterError",
    "RasterDimensionError",
    "NeuralNetError",
    "ProcessingCancelledError",
    "OutputWriteError",
]
