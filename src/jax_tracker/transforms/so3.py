"""SO(3) rotation helpers in JAX.

Rotations are 3x3 matrices; axis-angle vectors live in so(3). Quaternions
use the (w, x, y, z) convention throughout the package.
"""

import jax
import jax.numpy as jnp

Array = jax.Array

_SMALL_ANGLE = 1e-8


def hat(v: Array) -> Array:
    """Map a (..., 3) vector to its (..., 3, 3) cross-product matrix."""
    x, y, z = v[..., 0], v[..., 1], v[..., 2]
    o = jnp.zeros_like(x)
    rows = [
        jnp.stack([o, -z, y], axis=-1),
        jnp.stack([z, o, -x], axis=-1),
        jnp.stack([-y, x, o], axis=-1),
    ]
    return jnp.stack(rows, axis=-2)


def exp(omega: Array) -> Array:
    """
    Exponential map from an axis-angle vector to a rotation matrix.

    Uses Rodrigues' formula on the unnormalized cross-product matrix, with
    Taylor coefficients near zero so the result stays finite and smooth.

    Args:
        omega: (..., 3) axis-angle vectors

    Returns:
        (..., 3, 3) rotation matrices
    """
    theta = jnp.linalg.norm(omega, axis=-1)[..., None, None]
    small = theta < _SMALL_ANGLE
    safe = jnp.where(small, 1.0, theta)

    a = jnp.where(small, 1.0 - theta**2 / 6.0, jnp.sin(safe) / safe)
    b = jnp.where(small, 0.5 - theta**2 / 24.0, (1.0 - jnp.cos(safe)) / safe**2)

    K = hat(omega)
    eye = jnp.broadcast_to(jnp.eye(3, dtype=omega.dtype), K.shape)
    return eye + a * K + b * (K @ K)


def from_rpy(rpy: Array) -> Array:
    """
    Rotation matrix from fixed-axis roll, pitch, yaw (URDF convention).

    Args:
        rpy: (..., 3) array of [roll, pitch, yaw] in radians

    Returns:
        (..., 3, 3) rotation matrices equal to Rz(yaw) @ Ry(pitch) @ Rx(roll)
    """
    cr, sr = jnp.cos(rpy[..., 0]), jnp.sin(rpy[..., 0])
    cp, sp = jnp.cos(rpy[..., 1]), jnp.sin(rpy[..., 1])
    cy, sy = jnp.cos(rpy[..., 2]), jnp.sin(rpy[..., 2])

    rows = [
        jnp.stack([cy * cp, cy * sp * sr - sy * cr, cy * sp * cr + sy * sr], axis=-1),
        jnp.stack([sy * cp, sy * sp * sr + cy * cr, sy * sp * cr - cy * sr], axis=-1),
        jnp.stack([-sp, cp * sr, cp * cr], axis=-1),
    ]
    return jnp.stack(rows, axis=-2)


def to_quaternion(R: Array) -> Array:
    """
    Convert rotation matrices to unit quaternions (w, x, y, z).

    Shepperd's method: each row of the candidate matrix is the quaternion
    scaled by one of its components, and the row built from the largest
    diagonal term is the best conditioned.

    Args:
        R: (..., 3, 3) rotation matrices

    Returns:
        (..., 4) quaternions with non-negative scalar part
    """
    m00, m01, m02 = R[..., 0, 0], R[..., 0, 1], R[..., 0, 2]
    m10, m11, m12 = R[..., 1, 0], R[..., 1, 1], R[..., 1, 2]
    m20, m21, m22 = R[..., 2, 0], R[..., 2, 1], R[..., 2, 2]
    trace = m00 + m11 + m22

    candidates = jnp.stack([
        jnp.stack([1.0 + trace, m21 - m12, m02 - m20, m10 - m01], axis=-1),
        jnp.stack([m21 - m12, 1.0 + m00 - m11 - m22, m01 + m10, m02 + m20], axis=-1),
        jnp.stack([m02 - m20, m01 + m10, 1.0 - m00 + m11 - m22, m12 + m21], axis=-1),
        jnp.stack([m10 - m01, m02 + m20, m12 + m21, 1.0 - m00 - m11 + m22], axis=-1),
    ], axis=-2)

    choice = jnp.argmax(jnp.stack([trace, m00, m11, m22], axis=-1), axis=-1)
    q = jnp.take_along_axis(candidates, choice[..., None, None], axis=-2)[..., 0, :]
    q = q / jnp.linalg.norm(q, axis=-1, keepdims=True)
    return jnp.where(q[..., :1] < 0, -q, q)
