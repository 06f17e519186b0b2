"""Factorized Gaussian filter over joint encoder readings.

Each joint carries an independent two-dimensional belief over its angle ``q``
and a slowly drifting encoder bias ``b``. There is no cross-joint covariance,
so one step costs O(num_joints).

Process model over ``dt`` seconds::

    db ~ N(0, bias_sigma^2 dt)
    dq = bias_factor * db + N(0, joint_sigma^2 dt)

Measurement model::

    y = q + b + N(0, observation_sigma^2)
"""

from typing import List, Optional, Protocol, Sequence, Tuple, runtime_checkable

import jax
import jax.numpy as jnp
import numpy as np
from jax import Array

from .config import TrackerConfig
from .state import JointObservation, RobotStateEstimate


@runtime_checkable
class GaussianFilter(Protocol):
    """Capability interface of a recursive Gaussian estimator."""

    def predict(self, dt: float) -> None:
        ...

    def update(self, values: np.ndarray, mask: np.ndarray) -> None:
        ...


@jax.jit
def predict_belief(mean: Array, cov: Array, dt: Array, joint_sigmas: Array,
                   bias_sigmas: Array, bias_factors: Array) -> Tuple[Array, Array]:
    """Time update of per-joint (angle, bias) beliefs.

    Args:
        mean: (num_joints, 2) angle and bias means
        cov: (num_joints, 2, 2) covariances
        dt: Elapsed time in seconds
        joint_sigmas, bias_sigmas, bias_factors: (num_joints,) parameters

    Returns:
        Predicted mean (unchanged) and covariance
    """
    bias_var = bias_sigmas**2
    cross = bias_factors * bias_var
    Q = jnp.stack([
        jnp.stack([joint_sigmas**2 + bias_factors * cross, cross], axis=-1),
        jnp.stack([cross, bias_var], axis=-1),
    ], axis=-2)
    return mean, cov + dt * Q


@jax.jit
def update_belief(mean: Array, cov: Array, values: Array, mask: Array,
                  observation_sigmas: Array) -> Tuple[Array, Array]:
    """Measurement update of the joints selected by ``mask``.

    Unselected joints are returned bit-for-bit unchanged.
    """
    # H = [1, 1]: P H^T is the row sum of each symmetric 2x2 covariance
    PHt = cov.sum(axis=-1)
    S = PHt.sum(axis=-1) + observation_sigmas**2
    K = PHt / S[:, None]

    innovation = values - mean.sum(axis=-1)
    updated_mean = mean + K * innovation[:, None]
    updated_cov = cov - K[:, :, None] * PHt[:, None, :]
    updated_cov = 0.5 * (updated_cov + jnp.swapaxes(updated_cov, -1, -2))

    return (
        jnp.where(mask[:, None], updated_mean, mean),
        jnp.where(mask[:, None, None], updated_cov, cov),
    )


class RotaryEstimator(GaussianFilter):
    """Recursive per-joint filter fed by joint observations.

    Runs synchronously on the caller's thread; it is not thread-safe on its
    own and is guarded by the FusionEngine's state lock.

    Args:
        joint_names: Joint names in topology order.
        config: Noise parameters.
    """

    def __init__(self, joint_names: Sequence[str], config: TrackerConfig):
        self.joint_names = tuple(joint_names)
        self._index = {name: i for i, name in enumerate(self.joint_names)}
        n = len(self.joint_names)

        self.joint_sigmas = jnp.asarray(config.per_joint("joint_sigmas", n))
        self.bias_sigmas = jnp.asarray(config.per_joint("bias_sigmas", n))
        self.bias_factors = jnp.asarray(config.per_joint("bias_factors", n))
        self.observation_sigmas = jnp.asarray(config.per_joint("observation_sigmas", n))
        self.initial_sigma = config.initial_sigma

        self.reset(np.zeros(n))
        self._compile()

    @property
    def num_joints(self) -> int:
        return len(self.joint_names)

    def _compile(self) -> None:
        """Trace the jitted steps for this joint count before the first reading.

        Runs the predict and update chain twice so both input kinds (fresh
        arrays from reset and outputs of a previous step) are cached.
        """
        mean, cov = self._mean, self._cov
        values = jnp.zeros(self.num_joints, dtype=jnp.float64)
        mask = jnp.zeros(self.num_joints, dtype=bool)
        for _ in range(2):
            mean, cov = predict_belief(mean, cov, 0.0, self.joint_sigmas, self.bias_sigmas, self.bias_factors)
            mean, cov = update_belief(mean, cov, values, mask, self.observation_sigmas)
        jax.block_until_ready((mean, cov))

    def reset(self, angles, timestamp: float = 0.0, angle_std: Optional[np.ndarray] = None) -> None:
        """Restart from a joint vector with zero bias.

        The bias starts exactly known; its uncertainty only grows through
        the random walk.
        """
        angles = np.asarray(angles, dtype=np.float64)
        if angles.shape != (self.num_joints,):
            raise ValueError(f"Expected {self.num_joints} joint angles, got shape {angles.shape}")
        std = np.full(self.num_joints, self.initial_sigma) if angle_std is None else np.asarray(angle_std)

        mean = np.zeros((self.num_joints, 2))
        mean[:, 0] = angles
        cov = np.zeros((self.num_joints, 2, 2))
        cov[:, 0, 0] = std**2

        self._mean = jnp.asarray(mean)
        self._cov = jnp.asarray(cov)
        self.timestamp = float(timestamp)

    def predict(self, dt: float) -> None:
        dt = max(0.0, float(dt))
        self._mean, self._cov = predict_belief(
            self._mean, self._cov, dt, self.joint_sigmas, self.bias_sigmas, self.bias_factors
        )

    def update(self, values: np.ndarray, mask: np.ndarray) -> None:
        self._mean, self._cov = update_belief(
            self._mean, self._cov, jnp.asarray(values, dtype=jnp.float64),
            jnp.asarray(mask, dtype=bool), self.observation_sigmas
        )

    def ingest(self, observation: JointObservation,
               elapsed: float) -> Tuple[RobotStateEstimate, List[str]]:
        """Predict by ``elapsed`` seconds, then correct with the observed joints.

        Returns:
            The full estimate stamped at the observation time and the joint
            names that were dropped because they are not in the topology.
        """
        values = np.zeros(self.num_joints)
        mask = np.zeros(self.num_joints, dtype=bool)
        unknown = []
        for name, angle in observation.positions.items():
            index = self._index.get(name)
            if index is None:
                unknown.append(name)
                continue
            values[index] = angle
            mask[index] = True

        self.predict(elapsed)
        if mask.any():
            self.update(values, mask)
        self.timestamp = float(observation.timestamp)
        return self.estimate(), unknown

    def shift(self, angles_delta: np.ndarray) -> None:
        """Move the angle means by a correction computed elsewhere."""
        self._mean = self._mean.at[:, 0].add(jnp.asarray(angles_delta, dtype=jnp.float64))

    def estimate(self, offset: Optional[np.ndarray] = None) -> RobotStateEstimate:
        mean = np.asarray(self._mean)
        cov = np.asarray(self._cov)
        return RobotStateEstimate.from_angles(
            mean[:, 0],
            timestamp=self.timestamp,
            offset=offset,
            angle_std=np.sqrt(np.maximum(cov[:, 0, 0], 0.0)),
        )

    @property
    def belief(self) -> Tuple[np.ndarray, np.ndarray]:
        """Copies of the (num_joints, 2) mean and (num_joints, 2, 2) covariance."""
        return np.array(self._mean), np.array(self._cov)
