"""Data types shared by the estimators and the fusion engine."""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

import jax
import numpy as np
from flax import struct

from .transforms import so3

OFFSET_DIM = 6


@dataclass(frozen=True)
class JointObservation:
    """Joint encoder reading: possibly partial, possibly naming unknown joints."""
    timestamp: float
    positions: Mapping[str, float]

    def __post_init__(self):
        object.__setattr__(self, "positions", MappingProxyType(dict(self.positions)))


@dataclass(frozen=True)
class DepthObservation:
    """Depth image handed through to the visual estimator."""
    timestamp: float
    depth: np.ndarray
    camera_matrix: np.ndarray = field(default_factory=lambda: np.eye(3))


@dataclass(frozen=True)
class LinkFrame:
    """Rigid transform of one link relative to the reference frame."""
    position: np.ndarray
    rotation: np.ndarray

    @classmethod
    def from_matrix(cls, T) -> "LinkFrame":
        T = np.asarray(T)
        return cls(position=T[:3, 3].copy(), rotation=T[:3, :3].copy())

    @property
    def orientation(self) -> np.ndarray:
        """Orientation as a (w, x, y, z) quaternion."""
        return np.asarray(so3.to_quaternion(self.rotation))

    def as_matrix(self) -> np.ndarray:
        T = np.eye(4)
        T[:3, :3] = self.rotation
        T[:3, 3] = self.position
        return T


@struct.dataclass
class RobotStateEstimate:
    """Full robot state: joint angles, camera mount offset and uncertainty.

    Attributes:
        angles: (num_joints,) joint vector in topology order.
        offset: (6,) camera mount offset [x, y, z, roll, pitch, yaw].
        angle_std: (num_joints,) per-joint standard deviation.
        timestamp: Time in seconds the estimate refers to.
    """
    angles: np.ndarray
    offset: np.ndarray
    angle_std: np.ndarray
    timestamp: float = struct.field(pytree_node=False, default=0.0)

    @classmethod
    def from_angles(cls, angles, timestamp: float = 0.0, offset=None,
                    angle_std=None) -> "RobotStateEstimate":
        angles = np.array(angles, dtype=np.float64)
        return cls(
            angles=angles,
            offset=np.zeros(OFFSET_DIM) if offset is None else np.array(offset, dtype=np.float64),
            angle_std=np.zeros_like(angles) if angle_std is None else np.array(angle_std, dtype=np.float64),
            timestamp=float(timestamp),
        )

    @property
    def num_joints(self) -> int:
        return self.angles.shape[0]

    def copy(self) -> "RobotStateEstimate":
        return jax.tree_util.tree_map(np.copy, self)


def state_delta(target: RobotStateEstimate, source: RobotStateEstimate) -> Tuple[np.ndarray, np.ndarray]:
    """Angle and offset difference ``target - source``."""
    return target.angles - source.angles, target.offset - source.offset


def apply_delta(state: RobotStateEstimate, angles_delta: np.ndarray,
                offset_delta: np.ndarray) -> RobotStateEstimate:
    """New estimate with a correction added; timestamp and uncertainty are kept."""
    return state.replace(angles=state.angles + angles_delta, offset=state.offset + offset_delta)


@dataclass(frozen=True)
class VisualResult:
    """Output of a visual estimator.

    ``state.timestamp`` is the stamp of the depth observation the result was
    computed from, not the time the computation finished.
    """
    state: RobotStateEstimate
    hypotheses: Tuple[RobotStateEstimate, ...] = ()


@dataclass(frozen=True)
class FusionSnapshot:
    """Consistent copy of the committed estimate handed to consumers."""
    state: RobotStateEstimate
    timestamp: float
    last_joint_observation: Optional[JointObservation]
