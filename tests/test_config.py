from dataclasses import FrozenInstanceError, replace

import pytest

from slam_fusion.config import EkfSlamConfig, FusionConfig, SlamFusionConfig


def test_reference_defaults():
    config = SlamFusionConfig()
    assert config.tracker.grid_pitch == 12
    assert config.tracker.max_features == 150
    assert config.ekf.new_landmark_variance == 100.0
    assert (config.ekf.range_noise, config.ekf.bearing_noise) == (0.1, 0.05)
    assert (config.fusion.dr_weight, config.fusion.slam_weight, config.fusion.visual_weight) == (
        0.3,
        0.4,
        0.5,
    )
    assert len(config.fusion.landmarks) == 6
    assert config.visual.map_point_capacity == 100


def test_from_dict_overrides():
    config = SlamFusionConfig.from_dict(
        {"ekf": {"range_noise": 0.2}, "fusion": {"landmarks": [[1, 2], [3, 4]]}}
    )
    assert config.ekf.range_noise == 0.2
    assert config.ekf.bearing_noise == 0.05
    assert config.fusion.landmarks == ((1, 2), (3, 4))


def test_from_dict_rejects_unknown_keys():
    with pytest.raises(ValueError, match="section"):
        SlamFusionConfig.from_dict({"gps": {}})
    with pytest.raises(ValueError, match="ekf.range_nosie"):
        SlamFusionConfig.from_dict({"ekf": {"range_nosie": 0.2}})


def test_round_trip():
    config = SlamFusionConfig.from_dict({"fusion": {"seed": 3, "slam_enabled": True}})
    assert SlamFusionConfig.from_dict(config.to_dict()) == config


def test_frozen_and_replace():
    config = EkfSlamConfig()
    with pytest.raises(FrozenInstanceError):
        config.range_noise = 1.0
    assert replace(config, range_noise=1.0).range_noise == 1.0
    assert FusionConfig().seed is None
