"""Tracker configuration.

Noise magnitudes may be given once for all joints or as one value per joint.
A configuration file is YAML, either flat or with the transition and
observation parameters grouped::

    transition:
      joint_sigmas: 0.1
      bias_sigmas: 0.001
      bias_factors: 1.0
    observation:
      joint_sigmas: 0.002
    visual_delay: 0.04
    max_staleness: 0.5
"""

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Sequence, Union

import numpy as np
import yaml

PerJoint = Union[float, Sequence[float]]


@dataclass(frozen=True)
class TrackerConfig:
    """All tunables of the rotary estimator and the fusion engine.

    Attributes:
        joint_sigmas: Angle process noise per sqrt(second).
        bias_sigmas: Bias random-walk noise per sqrt(second).
        bias_factors: Coupling of the bias walk into the angle prediction.
        observation_sigmas: Encoder measurement noise.
        initial_sigma: Prior angle standard deviation before the first reading.
        visual_delay: Seconds between image capture and its header stamp.
        max_staleness: How far before the oldest history entry a visual
                       result may refer and still be applied.
        perturbation_ratio: Hypothesis spread as a fraction of the joint range.
        hypothesis_count: Size of the initial hypothesis pool.
        poll_rate: Consumer snapshot rate in Hz.
        history_length: Maximum committed states kept for delay compensation.
        history_duration: Maximum age in seconds of kept committed states.
        shutdown_timeout: Bound in seconds on draining the visual worker.
    """
    joint_sigmas: PerJoint = 0.1
    bias_sigmas: PerJoint = 0.001
    bias_factors: PerJoint = 1.0
    observation_sigmas: PerJoint = 0.002
    initial_sigma: float = 1.0
    visual_delay: float = 0.0
    max_staleness: float = 0.5
    perturbation_ratio: float = 0.1
    hypothesis_count: int = 1
    poll_rate: float = 100.0
    history_length: int = 2000
    history_duration: float = 5.0
    shutdown_timeout: float = 2.0

    def __post_init__(self):
        for name in ("initial_sigma", "visual_delay", "max_staleness", "history_duration",
                     "shutdown_timeout"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative, got {getattr(self, name)}")
        if not 0.0 <= self.perturbation_ratio <= 1.0:
            raise ValueError(f"perturbation_ratio must lie in [0, 1], got {self.perturbation_ratio}")
        if self.poll_rate <= 0:
            raise ValueError(f"poll_rate must be positive, got {self.poll_rate}")
        if self.hypothesis_count < 1 or self.history_length < 1:
            raise ValueError("hypothesis_count and history_length must be at least 1")

    def per_joint(self, name: str, num_joints: int) -> np.ndarray:
        """Broadcast a per-joint parameter to a (num_joints,) array."""
        values = np.asarray(getattr(self, name), dtype=np.float64)
        if np.any(values < 0):
            raise ValueError(f"{name} must be non-negative")
        if values.ndim == 0:
            return np.full(num_joints, float(values))
        if values.shape != (num_joints,):
            raise ValueError(f"{name} has {values.size} entries, expected {num_joints}")
        return values.copy()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrackerConfig":
        flat = dict(data)
        transition = flat.pop("transition", None) or {}
        observation = flat.pop("observation", None) or {}
        for key in ("joint_sigmas", "bias_sigmas", "bias_factors"):
            if key in transition:
                flat[key] = transition[key]
        if "joint_sigmas" in observation:
            flat["observation_sigmas"] = observation["joint_sigmas"]

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(flat) - known)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {unknown}")
        return cls(**flat)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "TrackerConfig":
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data)
