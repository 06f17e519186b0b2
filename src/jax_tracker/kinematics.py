"""KinematicModel: cached forward kinematics relative to the camera.

The model owns one Topology and the last computed set of link frames. It is
not safe for concurrent mutation; share it through a TrackingContext when
several threads need link poses.
"""

import logging
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import jax.numpy as jnp
import numpy as np

from .chain import reference_frame_poses
from .core import Topology
from .errors import ParseError, UnknownJointError
from .state import OFFSET_DIM, LinkFrame, RobotStateEstimate

_logger = logging.getLogger(__name__)

# Relative and absolute tolerance for treating two joint vectors as equal
_CACHE_TOLERANCE = 1e-12


class KinematicModel:
    """Forward kinematics with a name/index table and a link-frame cache.

    Args:
        topology: Robot tree, built once at startup.
        reference_frame: Link the poses are expressed in (the camera link).
        tracked_links: Links whose frames are exposed, in index order.
                       Defaults to every link except the root.
        seed: Seed for the perturbation generator.

    Raises:
        ParseError: If the reference frame or a tracked link is unknown, or a
            joint has no usable limits.
    """

    def __init__(self, topology: Topology, reference_frame: str,
                 tracked_links: Optional[Sequence[str]] = None,
                 seed: Optional[int] = None):
        self.topology = topology
        self._link_index = {name: i for i, name in enumerate(topology.link_names)}
        self._joint_index = {name: i for i, name in enumerate(topology.joint_names)}

        if reference_frame not in self._link_index:
            raise ParseError(f"Reference frame '{reference_frame}' is not a link of the robot")
        self.reference_frame = reference_frame
        self._reference_index = self._link_index[reference_frame]

        if tracked_links is None:
            tracked_links = topology.link_names[1:]
        missing = [name for name in tracked_links if name not in self._link_index]
        if missing:
            raise ParseError(f"Tracked links not found in robot: {missing}")
        self._tracked = tuple(tracked_links)
        self._tracked_indices = np.array([self._link_index[name] for name in self._tracked], dtype=np.int64)

        self.lower_limits = np.asarray(topology.lower_limits, dtype=np.float64)
        self.upper_limits = np.asarray(topology.upper_limits, dtype=np.float64)
        if not (np.all(np.isfinite(self.lower_limits)) and np.all(np.isfinite(self.upper_limits))):
            raise ParseError("Every actuated joint needs finite limits")

        self._rng = np.random.default_rng(seed)
        self._angles: Optional[np.ndarray] = None
        self._offset: Optional[np.ndarray] = None
        self._frames: List[LinkFrame] = []
        self._reference_pose: Optional[np.ndarray] = None
        self.fk_evaluations = 0

    # Topology queries
    @property
    def num_joints(self) -> int:
        return self.topology.num_joints

    @property
    def num_links(self) -> int:
        return len(self._tracked)

    @property
    def root_frame(self) -> str:
        return self.topology.link_names[0]

    @property
    def joint_names(self) -> Tuple[str, ...]:
        return self.topology.joint_names

    @property
    def link_names(self) -> Tuple[str, ...]:
        return self._tracked

    def joint_index(self, name: str) -> int:
        try:
            return self._joint_index[name]
        except KeyError:
            raise UnknownJointError(name) from None

    def link_name(self, index: int) -> str:
        return self._tracked[index]

    def joint_order(self, names: Sequence[str]) -> List[int]:
        """Topology index for each name, -1 where the joint is unknown."""
        return [self._joint_index.get(name, -1) for name in names]

    def joint_vector(self, positions: Mapping[str, float],
                     default: Optional[np.ndarray] = None) -> Tuple[np.ndarray, List[str]]:
        """Build a dense joint vector from a name to angle mapping.

        Args:
            positions: Joint angles by name; may be partial.
            default: Values for joints missing from ``positions``
                     (zeros when not given).

        Returns:
            The (num_joints,) vector and the names that were not in the
            topology and therefore dropped.
        """
        vector = np.zeros(self.num_joints) if default is None else np.array(default, dtype=np.float64)
        unknown = []
        for name, angle in positions.items():
            index = self._joint_index.get(name)
            if index is None:
                unknown.append(name)
                continue
            vector[index] = angle
        if unknown:
            _logger.warning("Dropping unknown joints: %s", ", ".join(unknown))
        return vector, unknown

    def describe(self) -> str:
        lines = ["robot joints:"]
        lines += [f"  ({i} : {name})" for i, name in enumerate(self.topology.joint_names)]
        lines.append("robot links:")
        lines += [f"  ({i} : {name})" for i, name in enumerate(self._tracked)]
        return "\n".join(lines)

    # Forward kinematics
    def set_joint_angles(self, angles, offset=None) -> None:
        """Recompute all tracked link frames for a new joint vector.

        Does nothing when both vectors equal the cached ones within a
        1e-12 tolerance.

        Args:
            angles: (num_joints,) joint vector in topology order.
            offset: (6,) camera mount offset; zeros when omitted.
        """
        angles = np.asarray(angles, dtype=np.float64)
        if angles.shape != (self.num_joints,):
            raise ValueError(f"Expected {self.num_joints} joint angles, got shape {angles.shape}")
        offset = np.zeros(OFFSET_DIM) if offset is None else np.asarray(offset, dtype=np.float64)
        if offset.shape != (OFFSET_DIM,):
            raise ValueError(f"Expected a {OFFSET_DIM}-DOF offset, got shape {offset.shape}")

        if (self._angles is not None
                and np.allclose(angles, self._angles, rtol=_CACHE_TOLERANCE, atol=_CACHE_TOLERANCE)
                and np.allclose(offset, self._offset, rtol=_CACHE_TOLERANCE, atol=_CACHE_TOLERANCE)):
            return

        reference_pose, poses = reference_frame_poses(
            self.topology, jnp.asarray(angles), jnp.asarray(offset), self._reference_index
        )
        poses = np.asarray(poses)[self._tracked_indices]

        self._angles = angles.copy()
        self._offset = offset.copy()
        self._reference_pose = np.asarray(reference_pose)
        self._frames = [LinkFrame.from_matrix(T) for T in poses]
        self.fk_evaluations += 1

    def set_state(self, state: RobotStateEstimate) -> None:
        self.set_joint_angles(state.angles, state.offset)

    def _frame(self, index: int) -> LinkFrame:
        if self._angles is None:
            raise RuntimeError("Link poses requested before set_joint_angles")
        return self._frames[index]

    def link_pose(self, index: int) -> LinkFrame:
        return self._frame(index)

    def link_position(self, index: int) -> np.ndarray:
        return self._frame(index).position

    def link_orientation(self, index: int) -> np.ndarray:
        """(w, x, y, z) quaternion of a tracked link in the reference frame."""
        return self._frame(index).orientation

    def link_poses(self) -> Dict[str, LinkFrame]:
        if self._angles is None:
            raise RuntimeError("Link poses requested before set_joint_angles")
        return dict(zip(self._tracked, self._frames))

    @property
    def reference_pose(self) -> np.ndarray:
        """World pose of the reference frame from the last computation."""
        if self._reference_pose is None:
            raise RuntimeError("Reference pose requested before set_joint_angles")
        return self._reference_pose

    # Hypothesis seeding
    def perturb(self, joint_index: int, angle: float, ratio: float) -> float:
        """Gaussian sample around ``angle`` clipped to the joint limits.

        The standard deviation is ``ratio`` times the joint's range.
        """
        if not 0.0 <= ratio <= 1.0:
            raise ValueError(f"ratio must lie in [0, 1], got {ratio}")
        lower = self.lower_limits[joint_index]
        upper = self.upper_limits[joint_index]
        value = self._rng.normal(angle, ratio * (upper - lower))
        return float(np.clip(value, lower, upper))

    def initial_hypotheses(self, positions: Mapping[str, float], count: int,
                           ratio: float, timestamp: float = 0.0) -> List[RobotStateEstimate]:
        """Seed a hypothesis pool around a joint reading.

        The first hypothesis is the reading itself; the remaining ``count - 1``
        perturb every joint present in the reading.
        """
        if count < 1:
            raise ValueError("count must be at least 1")
        base, _ = self.joint_vector(positions)
        present = [self._joint_index[name] for name in positions if name in self._joint_index]

        hypotheses = [RobotStateEstimate.from_angles(base, timestamp)]
        for _ in range(count - 1):
            sample = base.copy()
            for index in present:
                sample[index] = self.perturb(index, base[index], ratio)
            hypotheses.append(RobotStateEstimate.from_angles(sample, timestamp))
        return hypotheses
