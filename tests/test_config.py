"""Tests for TrackerConfig loading and validation."""

from pathlib import Path

import numpy as np
import pytest

from jax_tracker.config import TrackerConfig

CONFIG_DIR = Path(__file__).parent.parent / "config"


def test_defaults():
    config = TrackerConfig()
    assert config.visual_delay == 0.0
    assert config.hypothesis_count == 1
    np.testing.assert_array_equal(config.per_joint("joint_sigmas", 3), [0.1, 0.1, 0.1])


def test_per_joint_sequence():
    config = TrackerConfig(bias_sigmas=[0.01, 0.02])
    np.testing.assert_array_equal(config.per_joint("bias_sigmas", 2), [0.01, 0.02])
    with pytest.raises(ValueError):
        config.per_joint("bias_sigmas", 3)
    with pytest.raises(ValueError):
        TrackerConfig(joint_sigmas=-0.1).per_joint("joint_sigmas", 2)


@pytest.mark.parametrize("kwargs", [
    {"visual_delay": -0.1},
    {"max_staleness": -1.0},
    {"perturbation_ratio": 1.5},
    {"poll_rate": 0.0},
    {"hypothesis_count": 0},
    {"history_length": 0},
])
def test_invalid_values(kwargs):
    with pytest.raises(ValueError):
        TrackerConfig(**kwargs)


def test_from_dict_nested_sections():
    config = TrackerConfig.from_dict({
        "transition": {"joint_sigmas": 0.3, "bias_factors": 0.5},
        "observation": {"joint_sigmas": 0.01},
        "visual_delay": 0.05,
    })
    assert config.joint_sigmas == 0.3
    assert config.bias_factors == 0.5
    assert config.bias_sigmas == 0.001
    assert config.observation_sigmas == 0.01
    assert config.visual_delay == 0.05


def test_from_dict_rejects_unknown_keys():
    with pytest.raises(ValueError, match="camera_delay"):
        TrackerConfig.from_dict({"camera_delay": 0.1})


def test_from_yaml(tmp_path):
    path = tmp_path / "tracker.yaml"
    path.write_text("max_staleness: 0.25\ntransition:\n  joint_sigmas: [0.1, 0.2]\n")
    config = TrackerConfig.from_yaml(path)
    assert config.max_staleness == 0.25
    np.testing.assert_array_equal(config.per_joint("joint_sigmas", 2), [0.1, 0.2])


def test_from_empty_yaml(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert TrackerConfig.from_yaml(path) == TrackerConfig()


def test_shipped_config_loads():
    config = TrackerConfig.from_yaml(CONFIG_DIR / "fusion_tracker.yaml")
    assert config.visual_delay == 0.04
    assert config.hypothesis_count == 8
    np.testing.assert_array_equal(config.per_joint("joint_sigmas", 3), [0.1, 0.1, 0.05])
