"""
Tests for the Feature Assembler
================================
Scene timing, solar-flux normalisation and the per-pixel feature vector.

Test classes:
    TestSceneHelpers      inverse_solar_flux / day_of_year_fraction / SceneTiming.
    TestFeatureVector     Values of an assembled feature vector.
    TestInvalidInputs     NaN features and scene-level errors.
"""

from __future__ import annotations

import math
from datetime import datetime

import numpy as np
import pytest

from pixel_classifier.features import (
    LAYOUT_CC_2013_03_01,
    LAYOUT_CC_2013_05_09,
    FeatureAssembler,
    SceneTiming,
    day_of_year_fraction,
    inverse_solar_flux,
    valid_pixels,
)
from shared.python.exceptions import (
    ConfigurationError,
    MissingAcquisitionTimeError,
    MissingChannelError,
    RasterDimensionError,
)

FLUX = [float(i) for i in range(1, 16)]


def _pixel(values: list[float]) -> np.ndarray:
    """(bands, 1, 1) radiance cube from one value per band."""
    return np.array(values, dtype=np.float64).reshape(-1, 1, 1)


# ---------------------------------------------------------------------------
# Scene helpers
# ---------------------------------------------------------------------------

class TestSceneHelpers:
    """Scene-constant values computed once per product."""

    def test_inverse_solar_flux(self) -> None:
        """1 / flux per band."""
        assert inverse_solar_flux([2.0, 4.0]).tolist() == [0.5, 0.25]

    def test_inverse_solar_flux_rejects_zero(self) -> None:
        with pytest.raises(ConfigurationError, match="positive"):
            inverse_solar_flux([1.0, 0.0])

    def test_day_fraction_mid_january(self) -> None:
        """Two hours on day 14 of 2007 → 14 / 365."""
        fraction = day_of_year_fraction(
            datetime(2007, 1, 14, 9, 23, 11), datetime(2007, 1, 14, 11, 23, 11)
        )
        assert fraction == pytest.approx(0.038356164383561646)

    def test_day_fraction_last_day(self) -> None:
        fraction = day_of_year_fraction(datetime(2009, 12, 31), datetime(2009, 12, 31))
        assert fraction == pytest.approx(1.0)

    def test_day_fraction_leap_year(self) -> None:
        """2004 has 366 days."""
        fraction = day_of_year_fraction(datetime(2004, 1, 14), datetime(2004, 1, 14))
        assert fraction == pytest.approx(0.03825136612021858)

    def test_missing_time_raises(self) -> None:
        with pytest.raises(MissingAcquisitionTimeError, match="start or stop time"):
            day_of_year_fraction(None, datetime(2011, 1, 1))

    def test_scene_timing(self) -> None:
        timing = SceneTiming.from_fraction(0.25)
        assert timing.sin_time == pytest.approx(1.0)
        assert timing.cos_time == pytest.approx(0.0, abs=1e-12)


# ---------------------------------------------------------------------------
# Feature vector values
# ---------------------------------------------------------------------------

class TestFeatureVector:
    """Assembled features for known inputs."""

    def test_reference_pixel(self) -> None:
        """radiance == flux, sza 18°, lat 16°, lon 17°."""
        timing = SceneTiming.from_fraction(0.1)
        assembler = FeatureAssembler(FLUX, LAYOUT_CC_2013_03_01, timing)
        features = assembler.assemble(
            _pixel(FLUX), np.array([[18.0]]), np.array([[16.0]]), np.array([[17.0]])
        )

        assert features.shape == (1, 1, 20)
        expected_band = math.sqrt(math.pi / math.cos(math.radians(18.0)))
        for i in range(15):
            assert features[0, 0, i] == pytest.approx(expected_band)
        assert features[0, 0, 15] == pytest.approx(timing.sin_time)
        assert features[0, 0, 16] == pytest.approx(timing.cos_time)
        assert features[0, 0, 17] == pytest.approx(math.cos(math.radians(16.0)))
        assert features[0, 0, 18] == pytest.approx(math.sin(math.radians(17.0)))
        assert features[0, 0, 19] == pytest.approx(math.cos(math.radians(17.0)))

    def test_band_scaling(self) -> None:
        """feature = sqrt(radiance · π / flux / cos(sza))."""
        assembler = FeatureAssembler(FLUX, LAYOUT_CC_2013_05_09)
        radiance = [2.0 * f for f in FLUX]
        features = assembler.assemble(_pixel(radiance), np.array([[0.0]]))
        assert features[0, 0, 0] == pytest.approx(math.sqrt(2.0 * math.pi))

    def test_second_layout_skips_band_11(self) -> None:
        """CC_2013_05_09 has 14 band features and no time or geo inputs."""
        assembler = FeatureAssembler(FLUX, LAYOUT_CC_2013_05_09)
        radiance = list(FLUX)
        radiance[10] = 4.0 * FLUX[10]
        features = assembler.assemble(_pixel(radiance), np.array([[0.0]]))
        assert features.shape == (1, 1, 14)
        assert LAYOUT_CC_2013_05_09.n_features == 14
        assert features[0, 0, 10] == pytest.approx(math.sqrt(math.pi))

    def test_reflectances_shape(self) -> None:
        assembler = FeatureAssembler(FLUX, LAYOUT_CC_2013_05_09)
        radiance = np.ones((15, 3, 4))
        refl = assembler.reflectances(radiance, np.zeros((3, 4)))
        assert refl.shape == (15, 3, 4)
        assert refl[0, 0, 0] == pytest.approx(math.pi)


# ---------------------------------------------------------------------------
# Invalid inputs
# ---------------------------------------------------------------------------

class TestInvalidInputs:
    """Per-pixel problems become NaN; scene-level problems raise."""

    def test_non_positive_radiance_is_nan(self) -> None:
        assembler = FeatureAssembler(FLUX, LAYOUT_CC_2013_05_09)
        radiance = list(FLUX)
        radiance[3] = 0.0
        features = assembler.assemble(_pixel(radiance), np.array([[10.0]]))
        assert np.isnan(features[0, 0, 3])
        assert not valid_pixels(features)[0, 0]

    def test_sun_below_horizon_is_nan(self) -> None:
        assembler = FeatureAssembler(FLUX, LAYOUT_CC_2013_05_09)
        features = assembler.assemble(_pixel(FLUX), np.array([[95.0]]))
        assert np.all(np.isnan(features))

    def test_sun_at_horizon_is_nan(self) -> None:
        assembler = FeatureAssembler(FLUX, LAYOUT_CC_2013_05_09)
        features = assembler.assemble(_pixel(FLUX), np.array([[90.0]]))
        assert np.all(np.isnan(features))

    def test_seasonal_layout_needs_timing(self) -> None:
        with pytest.raises(MissingAcquisitionTimeError):
            FeatureAssembler(FLUX, LAYOUT_CC_2013_03_01, timing=None)

    def test_seasonal_timing_cleared_after_construction(self) -> None:
        assembler = FeatureAssembler(FLUX, LAYOUT_CC_2013_03_01, SceneTiming.from_fraction(0.5))
        assembler.timing = None
        with pytest.raises(MissingAcquisitionTimeError):
            assembler.assemble(_pixel(FLUX), np.array([[10.0]]), latitude=np.array([[45.0]]))

    def test_geographic_layout_needs_latitude(self) -> None:
        assembler = FeatureAssembler(FLUX, LAYOUT_CC_2013_03_01, SceneTiming.from_fraction(0.5))
        with pytest.raises(MissingChannelError, match="latitude"):
            assembler.assemble(_pixel(FLUX), np.array([[10.0]]))

    def test_zenith_shape_mismatch(self) -> None:
        assembler = FeatureAssembler(FLUX, LAYOUT_CC_2013_05_09)
        with pytest.raises(RasterDimensionError):
            assembler.assemble(np.ones((15, 2, 2)), np.zeros((3, 3)))

    def test_short_flux_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            FeatureAssembler(FLUX[:10], LAYOUT_CC_2013_05_09)
