"""SE(3) homogeneous transform helpers in JAX.

Twists are 6-vectors ordered [vx, vy, vz, wx, wy, wz], matching the joint
axis layout stored in a Topology.
"""

import jax
import jax.numpy as jnp

from . import so3

Array = jax.Array


def from_rotation_translation(R: Array, t: Array) -> Array:
    """
    Assemble (..., 4, 4) transforms from rotations and translations.

    Args:
        R: (..., 3, 3) rotation matrices
        t: (..., 3) translations

    Returns:
        (..., 4, 4) homogeneous transforms
    """
    batch = jnp.broadcast_shapes(R.shape[:-2], t.shape[:-1])
    top = jnp.concatenate(
        [jnp.broadcast_to(R, batch + (3, 3)), jnp.broadcast_to(t, batch + (3,))[..., None]],
        axis=-1,
    )
    bottom = jnp.broadcast_to(jnp.array([0.0, 0.0, 0.0, 1.0], dtype=top.dtype), batch + (1, 4))
    return jnp.concatenate([top, bottom], axis=-2)


def from_xyz_rpy(pose: Array) -> Array:
    """Transform from a (..., 6) [x, y, z, roll, pitch, yaw] vector."""
    return from_rotation_translation(so3.from_rpy(pose[..., 3:]), pose[..., :3])


def exp(twist: Array) -> Array:
    """
    Exponential map from a twist to a rigid transform.

    Args:
        twist: (..., 6) twists [v, w]

    Returns:
        (..., 4, 4) transforms
    """
    v, w = twist[..., :3], twist[..., 3:]
    theta = jnp.linalg.norm(w, axis=-1)[..., None, None]
    small = theta < 1e-6
    safe = jnp.where(small, 1.0, theta)

    # Left Jacobian of SO(3): V = I + b K + c K^2
    b = jnp.where(small, 0.5 - theta**2 / 24.0, (1.0 - jnp.cos(safe)) / safe**2)
    c = jnp.where(small, 1.0 / 6.0 - theta**2 / 120.0, (safe - jnp.sin(safe)) / safe**3)

    K = so3.hat(w)
    eye = jnp.broadcast_to(jnp.eye(3, dtype=twist.dtype), K.shape)
    V = eye + b * K + c * (K @ K)

    return from_rotation_translation(so3.exp(w), (V @ v[..., None])[..., 0])


def inverse(T: Array) -> Array:
    """Invert rigid transforms using R^T and -R^T t."""
    R_t = jnp.swapaxes(T[..., :3, :3], -1, -2)
    return from_rotation_translation(R_t, -(R_t @ T[..., :3, 3:])[..., 0])


def position(T: Array) -> Array:
    return T[..., :3, 3]


def rotation(T: Array) -> Array:
    return T[..., :3, :3]
