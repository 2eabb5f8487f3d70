"""
Pixel Classifier
================
Pixel-level cloud / land / water / snow classification with tile-invariant
cloud buffering and coastline refinement.
"""

from pixel_classifier.breakpoints import (
    DEFAULT_CHANNEL_TABLES,
    BreakpointTable,
    CloudCategory,
    category_flags,
    classify,
    classify_array,
)
from pixel_classifier.composite import (
    CompositeClassifier,
    CompositeThresholds,
    NnBoundaries,
    apply_nn_score,
)
from pixel_classifier.config import ClassifierConfig, load_config
from pixel_classifier.consolidation import (
    AdaptiveBufferPolicy,
    FixedBufferPolicy,
    apply_cloud_buffer,
    compute_cloud_buffer,
    consolidate,
    refine_coastline,
)
from pixel_classifier.features import (
    FeatureAssembler,
    SceneTiming,
    day_of_year_fraction,
    inverse_solar_flux,
)
from pixel_classifier.flags import FlagView, PixelFlag, describe_flags
from pixel_classifier.indicators import IndicatorSet, get_profile
from pixel_classifier.neural import NeuralNet, NeuralNetCache
from pixel_classifier.pipeline import CloudScreenPipeline, FlagSummary, PipelineResult
from pixel_classifier.tiling import consolidate_tiled
from pixel_classifier.tool import PixelClassifierTool

__all__ = [
    "PixelClassifierTool",
    "CloudScreenPipeline",
    "PipelineResult",
    "FlagSummary",
    "ClassifierConfig",
    "load_config",
    "FeatureAssembler",
    "SceneTiming",
    "day_of_year_fraction",
    "inverse_solar_flux",
    "BreakpointTable",
    "CloudCategory",
    "DEFAULT_CHANNEL_TABLES",
    "classify",
    "classify_array",
    "category_flags",
    "IndicatorSet",
    "get_profile",
    "CompositeClassifier",
    "CompositeThresholds",
    "NnBoundaries",
    "apply_nn_score",
    "FixedBufferPolicy",
    "AdaptiveBufferPolicy",
    "compute_cloud_buffer",
    "apply_cloud_buffer",
    "refine_coastline",
    "consolidate",
    "consolidate_tiled",
    "NeuralNet",
    "NeuralNetCache",
    "PixelFlag",
    "FlagView",
    "describe_flags",
]
