"""Topology PyTree: the immutable joint/link tree of a robot.

Links and joints live in flat arrays referenced by integer index, ordered
breadth-first from the root, so a single forward pass over the link array
always visits a parent before its children.
"""

import math
from collections import deque
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import jax.numpy as jnp
import numpy as np
from flax import struct
from jax import Array

from ..errors import ParseError
from ..transforms import se3

JOINT_TYPES = ("revolute", "continuous", "prismatic", "fixed")
ACTUATED_TYPES = ("revolute", "continuous", "prismatic")


@dataclass(frozen=True)
class JointSpec:
    """Plain description of one joint, as read from a robot description."""
    name: str
    type: str
    parent: str
    child: str
    xyz: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    rpy: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    axis: Tuple[float, float, float] = (0.0, 0.0, 1.0)
    lower: Optional[float] = None
    upper: Optional[float] = None


@struct.dataclass
class Topology:
    """Immutable PyTree representation of a robot's kinematic tree.

    Attributes:
        link_names: All link names; index is the link ID. Static for JIT.
        joint_names: Actuated (non-fixed) joint names; index is the position
                     in a joint vector. Static for JIT.
        joint_types: Type of each actuated joint. Static for JIT.
        parent_indices: (num_links,) parent link index. The root parents itself.
        joint_transforms: (num_links, 4, 4) fixed transform from the parent
                          link to the joint frame of each link.
        joint_axes: (num_links, 6) unit twist [v, w] of the joint moving each
                    link; zero for the root and fixed joints.
        joint_link_indices: (num_joints,) link moved by each actuated joint.
        lower_limits: (num_joints,) lower joint limits.
        upper_limits: (num_joints,) upper joint limits.
    """
    link_names: Tuple[str, ...] = struct.field(pytree_node=False)
    joint_names: Tuple[str, ...] = struct.field(pytree_node=False)
    joint_types: Tuple[str, ...] = struct.field(pytree_node=False)
    parent_indices: Array
    joint_transforms: Array
    joint_axes: Array
    joint_link_indices: Array
    lower_limits: Array
    upper_limits: Array

    @property
    def num_links(self) -> int:
        return len(self.link_names)

    @property
    def num_joints(self) -> int:
        return len(self.joint_names)


def build_topology(links: Sequence[str], joints: Sequence[JointSpec]) -> Topology:
    """Validate a joint/link description and convert it to a Topology.

    Args:
        links: Names of all links.
        joints: Joint descriptions connecting those links.

    Returns:
        Topology: Breadth-first ordered robot tree.

    Raises:
        ParseError: If the description does not form a single tree, a joint
            references an undefined link, or an actuated joint lacks limits.
    """
    all_links = list(dict.fromkeys(links))
    if len(all_links) != len(links):
        raise ParseError("Duplicate link names in robot description")
    link_set = set(all_links)

    joint_by_child: Dict[str, JointSpec] = {}
    children: Dict[str, List[str]] = {name: [] for name in all_links}
    seen_joints = set()
    for joint in joints:
        if joint.name in seen_joints:
            raise ParseError(f"Duplicate joint '{joint.name}'")
        seen_joints.add(joint.name)
        if joint.type not in JOINT_TYPES:
            raise ParseError(f"Joint '{joint.name}' has unsupported type '{joint.type}'")
        for role, link in (("parent", joint.parent), ("child", joint.child)):
            if link not in link_set:
                raise ParseError(f"Joint '{joint.name}' references unknown {role} link '{link}'")
        if joint.child in joint_by_child:
            raise ParseError(f"Link '{joint.child}' has more than one parent joint")
        joint_by_child[joint.child] = joint
        children[joint.parent].append(joint.child)

    roots = [name for name in all_links if name not in joint_by_child]
    if len(roots) != 1:
        raise ParseError(f"Expected exactly one root link, found: {roots}")

    # Breadth-first order from the root
    ordered: List[str] = []
    queue = deque(roots)
    while queue:
        current = queue.popleft()
        ordered.append(current)
        queue.extend(children[current])
    if len(ordered) != len(all_links):
        unreachable = sorted(link_set - set(ordered))
        raise ParseError(f"Links not connected to the root: {unreachable}")

    link_index = {name: i for i, name in enumerate(ordered)}

    parent_indices = []
    transforms = []
    axes = []
    actuated: List[Tuple[str, str, int, float, float]] = []
    for i, link_name in enumerate(ordered):
        joint = joint_by_child.get(link_name)
        if joint is None:
            parent_indices.append(i)
            transforms.append(np.eye(4))
            axes.append(np.zeros(6))
            continue

        parent_indices.append(link_index[joint.parent])
        origin = se3.from_xyz_rpy(jnp.asarray(tuple(joint.xyz) + tuple(joint.rpy), dtype=jnp.float64))
        transforms.append(np.asarray(origin))
        axes.append(_joint_twist(joint))

        if joint.type in ACTUATED_TYPES:
            lower, upper = _joint_limits(joint)
            actuated.append((joint.name, joint.type, i, lower, upper))

    return Topology(
        link_names=tuple(ordered),
        joint_names=tuple(name for name, *_ in actuated),
        joint_types=tuple(kind for _, kind, *_ in actuated),
        parent_indices=jnp.asarray(parent_indices, dtype=jnp.int32),
        joint_transforms=jnp.asarray(np.stack(transforms)),
        joint_axes=jnp.asarray(np.stack(axes)),
        joint_link_indices=jnp.asarray([link for _, _, link, _, _ in actuated], dtype=jnp.int32),
        lower_limits=jnp.asarray([lo for *_, lo, _ in actuated], dtype=jnp.float64),
        upper_limits=jnp.asarray([hi for *_, hi in actuated], dtype=jnp.float64),
    )


def _joint_twist(joint: JointSpec) -> np.ndarray:
    if joint.type == "fixed":
        return np.zeros(6)
    axis = np.asarray(joint.axis, dtype=np.float64)
    norm = np.linalg.norm(axis)
    if not np.isfinite(norm) or norm < 1e-12:
        raise ParseError(f"Joint '{joint.name}' has a degenerate axis {tuple(joint.axis)}")
    axis = axis / norm
    if joint.type == "prismatic":
        return np.concatenate([axis, np.zeros(3)])
    return np.concatenate([np.zeros(3), axis])


def _joint_limits(joint: JointSpec) -> Tuple[float, float]:
    if joint.type == "continuous":
        lower = -math.pi if joint.lower is None else joint.lower
        upper = math.pi if joint.upper is None else joint.upper
    else:
        if joint.lower is None or joint.upper is None:
            raise ParseError(f"Joint '{joint.name}' has no limits")
        lower, upper = joint.lower, joint.upper
    if not (math.isfinite(lower) and math.isfinite(upper)) or lower > upper:
        raise ParseError(f"Joint '{joint.name}' has invalid limits [{lower}, {upper}]")
    return float(lower), float(upper)
