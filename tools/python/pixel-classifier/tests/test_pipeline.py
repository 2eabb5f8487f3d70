"""
Tests for the Scene Pipeline and GeoTIFF Tool
==============================================
Raster I/O uses temporary GeoTIFFs created with rasterio so no real
satellite imagery is required.

Test classes:
    TestCloudScreenPipeline    In-memory runs of the full chain.
    TestPixelClassifierTool    End-to-end output file assertions.
    TestToolValidation         Error conditions.
"""

from __future__ import annotations

import math
import threading
from pathlib import Path

import numpy as np
import numpy.typing as npt
import pytest
import rasterio
from rasterio.crs import CRS
from rasterio.transform import from_bounds

from pixel_classifier.config import ClassifierConfig
from pixel_classifier.flags import PixelFlag, is_set
from pixel_classifier.neural import NeuralNetCache
from pixel_classifier.pipeline import RADIANCE_CHANNELS, CloudScreenPipeline, FlagSummary
from pixel_classifier.tool import FLAGS_FILENAME, PixelClassifierTool
from shared.python.exceptions import (
    ConfigurationError,
    InputValidationError,
    MissingChannelError,
    ProcessingCancelledError,
    RasterDimensionError,
)

FLUX = [float(i) for i in range(1, 16)]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_band(
    tmp_path: Path,
    name: str,
    values: npt.ArrayLike,
    dtype: str = "float32",
    tags: dict[str, str] | None = None,
) -> Path:
    """Write a 4×4 single-band GeoTIFF with the given constant or array values.

    Args:
        tmp_path: Directory to write into.
        name: Channel name (file base name without extension).
        values: Value or 2-D array to fill the raster with.
        dtype: numpy dtype string for the raster.
        tags: Optional dataset metadata tags.

    Returns:
        Path to the created GeoTIFF.
    """
    arr = np.full((4, 4), values, dtype=dtype) if np.isscalar(values) else np.array(values, dtype=dtype)
    fpath = tmp_path / f"{name}.tif"
    profile = {
        "driver": "GTiff",
        "dtype": dtype,
        "count": 1,
        "height": arr.shape[0],
        "width": arr.shape[1],
        "crs": CRS.from_epsg(4326),
        "transform": from_bounds(0, 0, 1, 1, arr.shape[1], arr.shape[0]),
    }
    with rasterio.open(fpath, "w", **profile) as dst:
        dst.write(arr, 1)
        if tags:
            dst.update_tags(**tags)
    return fpath


def _generic_channels() -> dict[str, np.ndarray]:
    """4×4 generic scene: one bright white cloud pixel at row 1, col 1."""
    brightness = np.full((4, 4), 0.1)
    whiteness = np.zeros((4, 4))
    brightness[1, 1] = 0.6
    whiteness[1, 1] = 0.6
    return {
        "brightness": brightness,
        "whiteness": whiteness,
        "ndsi": np.full((4, 4), 0.1),
        "ndvi": np.full((4, 4), 0.2),
        "pressure": np.full((4, 4), 0.3),
    }


def _write_scene(scene_dir: Path, channels: dict[str, np.ndarray]) -> Path:
    scene_dir.mkdir(parents=True, exist_ok=True)
    for name, values in channels.items():
        _make_band(scene_dir, name, values)
    return scene_dir


class MeanNet:
    def evaluate(self, features: np.ndarray) -> np.ndarray:
        return features.mean(axis=1)


# ---------------------------------------------------------------------------
# In-memory pipeline
# ---------------------------------------------------------------------------

class TestCloudScreenPipeline:
    """CloudScreenPipeline.run on channel arrays."""

    def test_generic_scene(self) -> None:
        result = CloudScreenPipeline(ClassifierConfig.for_sensor("generic")).run(_generic_channels())
        view = result.view

        assert view.cloud.sum() == 1
        assert view.cloud[1, 1]
        assert view.cloud_buffer[:3, :3].all()
        assert view.cloud_buffer.sum() == 9
        assert view.land.all()
        assert not view.coastline.any()
        assert result.flags.dtype == np.uint32

    def test_diagnostics(self) -> None:
        result = CloudScreenPipeline(ClassifierConfig.for_sensor("generic")).run(_generic_channels())
        assert result.indicators["bright"][1, 1] == pytest.approx(0.6)
        assert result.indicators["bright_white"][1, 1] == pytest.approx(1.2)
        assert result.indicators["temperature"].dtype == np.float32

    def test_summary(self) -> None:
        result = CloudScreenPipeline(ClassifierConfig.for_sensor("generic")).run(_generic_channels())
        summary = result.summary
        assert isinstance(summary, FlagSummary)
        assert summary.total == 16
        assert summary.counts["CLOUD_BUFFER"] == 9
        assert summary.fraction("CLOUD") == pytest.approx(1 / 16)
        assert "1 cloud" in str(summary)

    def test_nn_score_refines(self) -> None:
        channels = _generic_channels()
        channels["nn_score"] = np.full((4, 4), -1.0)
        channels["nn_score"][3, 3] = 3.0
        config = ClassifierConfig.for_sensor("generic", nn_mode="refine", coastline_enabled=False)
        view = CloudScreenPipeline(config).run(channels).view
        assert view.cloud[3, 3]
        assert view.cloud[1, 1]
        assert view.cloud.sum() == 2

    def test_nn_mode_without_score_is_skipped(self) -> None:
        config = ClassifierConfig.for_sensor("generic", nn_mode="pure")
        view = CloudScreenPipeline(config).run(_generic_channels()).view
        assert view.cloud.sum() == 1

    def test_nets_drive_refinement(self) -> None:
        """Features are sqrt(π) for radiance == flux at nadir sun; mean → ambiguous."""
        channels = _generic_channels()
        channels.update({name: np.full((4, 4), FLUX[i]) for i, name in enumerate(RADIANCE_CHANNELS)})
        channels["sun_zenith"] = np.zeros((4, 4))
        config = ClassifierConfig.for_sensor(
            "generic",
            feature_layout="CC_2013_05_09",
            nn_mode="refine",
            nn_score_channel="cl_all_3",
        )
        pipeline = CloudScreenPipeline(
            config, solar_flux=FLUX, nets={"cl_all_3": NeuralNetCache("cl_all_3", MeanNet)}
        )
        result = pipeline.run(channels)

        assert result.nn_outputs is not None
        assert result.nn_outputs.scores["cl_all_3"][0, 0] == pytest.approx(math.sqrt(math.pi))
        assert is_set(result.flags, PixelFlag.CLOUD_AMBIGUOUS)[0, 0]
        assert result.view.cloud.all()

    def test_nets_need_radiances(self) -> None:
        pipeline = CloudScreenPipeline(
            ClassifierConfig.for_sensor("generic", feature_layout="CC_2013_05_09"),
            nets={"cl_all_3": NeuralNetCache("cl_all_3", MeanNet)},
        )
        with pytest.raises(MissingChannelError, match="radiance_1"):
            pipeline.run(_generic_channels())

    def test_meris_required_channels_without_reflectances(self) -> None:
        pipeline = CloudScreenPipeline(ClassifierConfig())
        required = pipeline.required_channels(["brr_1"])
        assert "radiance_1" in required
        assert "sun_zenith" in required
        assert "reflec_1" not in required

    def test_meris_reflectances_from_radiance(self) -> None:
        channels: dict[str, np.ndarray] = {f"brr_{i}": np.full((2, 2), 0.1) for i in range(1, 16)}
        channels.update({name: np.full((2, 2), FLUX[i]) for i, name in enumerate(RADIANCE_CHANNELS)})
        channels.update(
            brr442=np.full((2, 2), 0.3),
            brr442_thresh=np.full((2, 2), 0.1),
            p1=np.full((2, 2), 300.0),
            pscatt=np.full((2, 2), 600.0),
            pbaro=np.full((2, 2), 1000.0),
            sun_zenith=np.zeros((2, 2)),
        )
        result = CloudScreenPipeline(ClassifierConfig(), solar_flux=FLUX).run(channels)
        assert result.reflectances["reflec_1"][0, 0] == pytest.approx(math.pi)
        assert not result.view.invalid.any()

        with pytest.raises(ConfigurationError, match="solar_flux"):
            CloudScreenPipeline(ClassifierConfig()).run(channels)

    def test_shape_mismatch(self) -> None:
        channels = _generic_channels()
        channels["ndvi"] = np.zeros((3, 3))
        with pytest.raises(RasterDimensionError):
            CloudScreenPipeline(ClassifierConfig.for_sensor("generic")).run(channels)

    def test_cancelled(self) -> None:
        event = threading.Event()
        event.set()
        pipeline = CloudScreenPipeline(ClassifierConfig.for_sensor("generic"), cancel_event=event)
        with pytest.raises(ProcessingCancelledError):
            pipeline.run(_generic_channels())


# ---------------------------------------------------------------------------
# GeoTIFF tool
# ---------------------------------------------------------------------------

class TestPixelClassifierTool:
    """End-to-end runs on temporary GeoTIFF scenes."""

    def test_flags_written(self, tmp_path: Path) -> None:
        scene = _write_scene(tmp_path / "scene", _generic_channels())
        out_dir = tmp_path / "out"
        tool = PixelClassifierTool(scene, out_dir, ClassifierConfig.for_sensor("generic"))
        tool.run()

        out_path = out_dir / FLAGS_FILENAME
        assert out_path.exists()
        with rasterio.open(out_path) as src:
            assert src.dtypes[0] == "uint32"
            assert src.crs == CRS.from_epsg(4326)
            flags = src.read(1)
        assert flags[1, 1] & PixelFlag.CLOUD
        assert np.array_equal(flags, tool.results.flags)
        assert not (out_dir / "bright_value.tif").exists()

    def test_diagnostics_written(self, tmp_path: Path) -> None:
        scene = _write_scene(tmp_path / "scene", _generic_channels())
        out_dir = tmp_path / "out"
        config = ClassifierConfig.for_sensor("generic", write_diagnostics=True)
        PixelClassifierTool(scene, out_dir, config).run()

        with rasterio.open(out_dir / "bright_value.tif") as src:
            assert src.dtypes[0] == "float32"
            assert src.nodata == -1.0
            assert src.read(1)[1, 1] == pytest.approx(0.6)
        assert (out_dir / "ndsi_value.tif").exists()

    def test_solar_flux_tags_in_band_order(self, tmp_path: Path) -> None:
        scene = tmp_path / "scene"
        scene.mkdir()
        for i, name in enumerate(RADIANCE_CHANNELS):
            _make_band(scene, name, 1.0, tags={"SOLAR_FLUX": str(FLUX[i])})
        tool = PixelClassifierTool(scene, tmp_path / "out", ClassifierConfig.for_sensor("generic"))
        _, _, solar_flux = tool._read_channels()
        assert solar_flux == tuple(FLUX)

    def test_results_none_before_run(self, tmp_path: Path) -> None:
        tool = PixelClassifierTool(tmp_path, tmp_path / "out")
        assert tool.results is None


class TestToolValidation:
    """Errors raised before any pixel is processed."""

    def test_missing_channel(self, tmp_path: Path) -> None:
        channels = _generic_channels()
        del channels["pressure"]
        scene = _write_scene(tmp_path / "scene", channels)
        tool = PixelClassifierTool(scene, tmp_path / "out", ClassifierConfig.for_sensor("generic"))
        with pytest.raises(MissingChannelError, match="pressure"):
            tool.run()

    def test_shape_mismatch(self, tmp_path: Path) -> None:
        channels = _generic_channels()
        channels["ndvi"] = np.zeros((3, 3))
        scene = _write_scene(tmp_path / "scene", channels)
        tool = PixelClassifierTool(scene, tmp_path / "out", ClassifierConfig.for_sensor("generic"))
        with pytest.raises(RasterDimensionError):
            tool.run()

    def test_missing_bands_dir(self, tmp_path: Path) -> None:
        tool = PixelClassifierTool(tmp_path / "nowhere", tmp_path / "out")
        with pytest.raises(InputValidationError, match="not found"):
            tool.run()

    def test_invalid_config(self, tmp_path: Path) -> None:
        scene = _write_scene(tmp_path / "scene", _generic_channels())
        config = ClassifierConfig.for_sensor("generic", buffer_width=0)
        with pytest.raises(ConfigurationError, match="buffer_width"):
            PixelClassifierTool(scene, tmp_path / "out", config).run()

    def test_process_before_validation(self, tmp_path: Path) -> None:
        scene = _write_scene(tmp_path / "scene", _generic_channels())
        tool = PixelClassifierTool(scene, tmp_path / "out", ClassifierConfig.for_sensor("generic"))
        with pytest.raises(ConfigurationError, match="validate_inputs"):
            tool.process()
        assert not (tmp_path / "out" / FLAGS_FILENAME).exists()
