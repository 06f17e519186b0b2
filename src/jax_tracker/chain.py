"""Forward kinematics over a Topology.

Link poses are computed in a single ordered pass over the breadth-first link
array with ``jax.lax.scan``, so every parent pose is final before any child
reads it. The reference-frame variant expresses all poses relative to a
chosen link (normally the camera) composed with a 6-DOF mount offset.
"""

from functools import partial
from typing import Dict, Tuple

import jax
import jax.numpy as jnp
from jax import Array

from .core import Topology
from .transforms import se3


def forward_kinematics(topology: Topology, q: Array) -> Dict[str, Array]:
    """Compute world poses for all links in the robot.

    Args:
        topology: Topology containing the robot's kinematic structure
        q: Joint values of shape (num_joints,) for actuated joints only

    Returns:
        Dictionary mapping link names to their 4x4 SE(3) world poses
    """
    world_transforms = forward_kinematics_world(topology, q)
    return {name: world_transforms[i] for i, name in enumerate(topology.link_names)}


@jax.jit
def forward_kinematics_world(topology: Topology, q: Array) -> Array:
    """Array form of forward kinematics.

    Args:
        topology: Topology containing the robot's kinematic structure
        q: Joint values of shape (num_joints,) for actuated joints only

    Returns:
        Array of shape (num_links, 4, 4) with world poses for all links
    """
    num_links = topology.num_links

    # Scatter actuated joint values onto the links they move
    q_links = jnp.zeros(num_links, dtype=topology.joint_axes.dtype)
    q_links = q_links.at[topology.joint_link_indices].set(q)

    motion = se3.exp(topology.joint_axes * q_links[:, None])
    local = topology.joint_transforms @ motion

    def visit(poses, i):
        pose = poses[topology.parent_indices[i]] @ local[i]
        return poses.at[i].set(pose), None

    # The root (index 0) keeps its identity pose
    initial = jnp.broadcast_to(jnp.eye(4, dtype=local.dtype), local.shape)
    poses, _ = jax.lax.scan(visit, initial, jnp.arange(1, num_links))
    return poses


@partial(jax.jit, static_argnames=("reference_index",))
def reference_frame_poses(topology: Topology, q: Array, offset: Array,
                          reference_index: int) -> Tuple[Array, Array]:
    """Forward kinematics relative to a reference link and mount offset.

    Args:
        topology: Topology containing the robot's kinematic structure
        q: Joint values of shape (num_joints,)
        offset: (6,) [x, y, z, roll, pitch, yaw] applied on top of the
                reference link's pose
        reference_index: Link index of the reference frame

    Returns:
        Tuple of the (4, 4) world pose of the reference frame and the
        (num_links, 4, 4) poses of every link expressed in that frame
    """
    world = forward_kinematics_world(topology, q)
    T_world_reference = world[reference_index] @ se3.from_xyz_rpy(offset)
    return T_world_reference, se3.inverse(T_world_reference) @ world
