"""
Tests for ClassifierConfig
==========================
Test classes:
    TestDefaults      Sensor defaults and derived objects.
    TestFromDict      Parsing and validation of plain data.
    TestLoadConfig    JSON files on disk.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from pixel_classifier.composite import SENSOR_THRESHOLDS
from pixel_classifier.config import ClassifierConfig, load_config
from pixel_classifier.consolidation import AdaptiveBufferPolicy, FixedBufferPolicy
from shared.python.exceptions import ConfigurationError, InputValidationError


class TestDefaults:
    """Values of a default configuration."""

    def test_meris_defaults(self) -> None:
        config = ClassifierConfig()
        assert config.thresholds == SENSOR_THRESHOLDS["meris"]
        assert config.buffer_policy == "adaptive"
        assert config.buffer_width == 2
        assert config.water_fraction_threshold == 23.0
        assert isinstance(config.make_buffer_policy(), AdaptiveBufferPolicy)
        config.validate()

    def test_vgt_thresholds(self) -> None:
        config = ClassifierConfig.for_sensor("vgt")
        assert config.thresholds.bright_white == pytest.approx(0.65)
        assert config.thresholds.ndvi == pytest.approx(0.4)

    def test_fixed_policy(self) -> None:
        policy = ClassifierConfig(buffer_policy="fixed", buffer_width=3).make_buffer_policy()
        assert policy == FixedBufferPolicy(3)

    def test_channel_table_override(self) -> None:
        config = ClassifierConfig(channel_tables={"cl_all_3": [1.6, 2.3, 3.1]})
        assert config.make_channel_tables()["cl_all_3"].values == (1.6, 2.3, 3.1)

    def test_unknown_sensor(self) -> None:
        with pytest.raises(ConfigurationError, match="sensor"):
            ClassifierConfig.for_sensor("modis")


class TestFromDict:
    """ClassifierConfig.from_dict."""

    def test_nested_thresholds_merge_over_sensor_defaults(self) -> None:
        config = ClassifierConfig.from_dict({"sensor": "vgt", "thresholds": {"cloud": 1.7}})
        assert config.thresholds.cloud == pytest.approx(1.7)
        assert config.thresholds.bright_white == pytest.approx(0.65)

    def test_nn_boundaries(self) -> None:
        config = ClassifierConfig.from_dict({"nn_boundaries": {"sure_snow": 5.0}})
        assert config.nn_boundaries.sure_snow == 5.0
        assert config.nn_boundaries.ambiguous_sure == 2.7

    def test_unknown_key(self) -> None:
        with pytest.raises(ConfigurationError, match="buffer_size"):
            ClassifierConfig.from_dict({"buffer_size": 2})

    def test_unknown_nested_key(self) -> None:
        with pytest.raises(ConfigurationError, match="thresholds"):
            ClassifierConfig.from_dict({"thresholds": {"clouds": 1.0}})

    def test_nested_must_be_object(self) -> None:
        with pytest.raises(ConfigurationError, match="must be an object"):
            ClassifierConfig.from_dict({"dense_cloud": [0.25]})

    def test_unsorted_breakpoints(self) -> None:
        with pytest.raises(ConfigurationError, match="strictly increasing"):
            ClassifierConfig.from_dict({"channel_tables": {"cl_all_1": [2.4, 1.65, 3.2]}})

    def test_unsorted_nn_boundaries(self) -> None:
        with pytest.raises(ConfigurationError, match="strictly increasing"):
            ClassifierConfig.from_dict({"nn_boundaries": {"ambiguous_lower": 3.0}})

    @pytest.mark.parametrize("policy", ["adaptive", "fixed"])
    def test_zero_buffer_width(self, policy: str) -> None:
        with pytest.raises(ConfigurationError, match="buffer_width"):
            ClassifierConfig.from_dict({"buffer_policy": policy, "buffer_width": 0})

    @pytest.mark.parametrize(
        ("key", "value"),
        [
            ("buffer_policy", "ring"),
            ("nn_mode", "always"),
            ("feature_layout", "CC_1999"),
            ("coastline_radius", 0),
            ("tile_size", -4),
            ("water_fraction_threshold", 120.0),
        ],
    )
    def test_rejected_values(self, key: str, value: object) -> None:
        with pytest.raises(ConfigurationError):
            ClassifierConfig.from_dict({key: value})

    def test_unknown_score_channel(self) -> None:
        with pytest.raises(ConfigurationError, match="nn_score_channel"):
            ClassifierConfig.from_dict({"nn_mode": "refine", "nn_score_channel": "cl_xyz"})

    def test_to_dict_round_trip(self) -> None:
        config = ClassifierConfig.for_sensor(
            "vgt", buffer_policy="fixed", buffer_width=3, channel_tables={"cl_all_3": [1.6, 2.3, 3.1]}
        )
        data = json.loads(json.dumps(config.to_dict()))
        assert ClassifierConfig.from_dict(data) == config


class TestLoadConfig:
    """Configuration files."""

    def test_load(self, tmp_path: Path) -> None:
        path = tmp_path / "cloudscreen.json"
        path.write_text(json.dumps({"sensor": "generic", "coastline_enabled": False}), encoding="utf-8")
        config = load_config(path)
        assert config.sensor == "generic"
        assert config.coastline_enabled is False

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(InputValidationError):
            load_config(tmp_path / "missing.json")

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.json"
        path.write_text("{sensor: meris", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="not valid JSON"):
            load_config(path)

    def test_not_an_object(self, tmp_path: Path) -> None:
        path = tmp_path / "list.json"
        path.write_text("[1, 2]", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="JSON object"):
            load_config(path)
