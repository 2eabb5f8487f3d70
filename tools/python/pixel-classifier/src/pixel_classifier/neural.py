"""
Pixel Classifier — Neural-Net Interface
========================================
The pretrained cloud nets are external collaborators: this module only
defines how they are called, cached and turned into category rasters.

* :class:`NeuralNet` is the protocol an evaluator satisfies
  (``evaluate(features) -> scores``).
* :class:`NeuralNetCache` builds one evaluator per worker thread on first
  use and hands the same instance back on every later call from that
  thread.  Handles are never mutated after construction.
* :class:`NnChannelClassifier` evaluates every configured channel over a
  tile of feature vectors and applies the channel's breakpoint table.

Usage::

    cache = NeuralNetCache("cl_all_1", lambda: load_my_net("all_1.net"))
    classifier = NnChannelClassifier({"cl_all_1": cache}, tables)
    outputs = classifier.classify(features)
    outputs.categories["cl_all_1"]       # uint8 CloudCategory masks
    outputs.scores["cl_all_1"]           # raw float scores, NaN if unprocessed
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Mapping, Protocol, runtime_checkable

import numpy as np
import numpy.typing as npt

from shared.python.exceptions import ConfigurationError, NeuralNetError
from pixel_classifier.breakpoints import BreakpointTable, category_flags, classify_array
from pixel_classifier.features import valid_pixels

logger = logging.getLogger("cloudscreen.pixel_classifier.neural")


@runtime_checkable
class NeuralNet(Protocol):
    """Anything that maps ``(n_pixels, n_features)`` to scores."""

    def evaluate(self, features: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """Return ``(n_pixels,)`` or ``(n_pixels, k)`` scores."""
        ...


class NeuralNetCache:
    """Lazily constructed, per-worker evaluator handles.

    The loader runs at most once per worker thread.  Evaluators are assumed
    to be side-effect free per call, but not necessarily safe to share
    between threads, so each thread gets its own.

    Args:
        name: Net identifier, used in log and error messages.
        loader: Zero-argument factory returning a :class:`NeuralNet`.

    Raises:
        NeuralNetError: From :meth:`get` when the loader fails or returns
            something that is not a :class:`NeuralNet`.
    """

    def __init__(self, name: str, loader: Callable[[], NeuralNet]) -> None:
        self.name = name
        self._loader = loader
        self._handles: dict[int, NeuralNet] = {}
        self._lock = threading.Lock()

    def get(self) -> NeuralNet:
        """The evaluator belonging to the calling worker thread."""
        worker = threading.get_ident()
        with self._lock:
            handle = self._handles.get(worker)
        if handle is not None:
            return handle

        try:
            handle = self._loader()
        except Exception as exc:
            raise NeuralNetError(self.name, str(exc)) from exc
        if not isinstance(handle, NeuralNet):
            raise NeuralNetError(self.name, f"loader returned {type(handle).__name__}, not a NeuralNet")

        with self._lock:
            handle = self._handles.setdefault(worker, handle)
        logger.debug("Loaded neural net '%s' for worker %d.", self.name, worker)
        return handle

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)

    def clear(self) -> None:
        with self._lock:
            self._handles.clear()


def evaluate_tile(
    net: NeuralNet,
    features: npt.NDArray[np.float64],
) -> npt.NDArray[np.float64]:
    """Evaluate *net* on the valid pixels of a ``(rows, cols, n)`` tile.

    Pixels whose feature vector is not fully finite are never passed to the
    net; their score is NaN.
    """
    rows, cols, n_features = features.shape
    scores = np.full((rows, cols), np.nan, dtype=np.float64)
    valid = valid_pixels(features)
    if not valid.any():
        return scores

    raw = np.asarray(net.evaluate(features[valid].reshape(-1, n_features)), dtype=np.float64)
    if raw.ndim == 2:
        raw = raw[:, 0]
    if raw.shape != (int(valid.sum()),):
        raise NeuralNetError(
            type(net).__name__,
            f"returned {raw.shape} scores for {int(valid.sum())} pixels",
            action="evaluate",
        )
    scores[valid] = raw
    return scores


# ---------------------------------------------------------------------------
# Channel classification
# ---------------------------------------------------------------------------


@dataclass
class ChannelOutputs:
    """Per-channel results for one tile.

    Attributes:
        scores: Channel name → raw NN score raster (``<name>_val``).
        categories: Channel name → :class:`CloudCategory` mask raster.
    """

    scores: dict[str, npt.NDArray[np.float64]] = field(default_factory=dict)
    categories: dict[str, npt.NDArray[np.uint8]] = field(default_factory=dict)


class NnChannelClassifier:
    """Evaluate a set of NN channels and classify each with its own table.

    Args:
        nets: Channel name → :class:`NeuralNetCache`.
        tables: Channel name → :class:`BreakpointTable`.  Must cover every
                channel in *nets*.

    Raises:
        ConfigurationError: If a channel has no table, or its table is not
            2 or 3 breakpoints long.
    """

    def __init__(
        self,
        nets: Mapping[str, NeuralNetCache],
        tables: Mapping[str, BreakpointTable],
    ) -> None:
        for name in nets:
            if name not in tables:
                raise ConfigurationError(f"No breakpoint table configured for NN channel '{name}'.")
            if len(tables[name]) not in (2, 3):
                raise ConfigurationError(
                    f"NN channel '{name}' needs 2 or 3 breakpoints, got {len(tables[name])}."
                )
        self.nets = dict(nets)
        self.tables = dict(tables)

    def classify(self, features: npt.NDArray[np.float64]) -> ChannelOutputs:
        outputs = ChannelOutputs()
        for name, cache in self.nets.items():
            scores = evaluate_tile(cache.get(), features)
            table = self.tables[name]
            outputs.scores[name] = scores
            outputs.categories[name] = category_flags(classify_array(scores, table), len(table))
        return outputs
