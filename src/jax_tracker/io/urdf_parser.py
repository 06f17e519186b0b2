"""URDF parser for loading robot topologies.

This module reads the kinematic part of a URDF document (links, joints,
origins, axes and limits) and converts it into a Topology. Visual and
collision geometry is ignored.
"""

from typing import List, Optional, Tuple

from lxml import etree

from jax_tracker.core.topology import JointSpec, Topology, build_topology
from jax_tracker.errors import ParseError


def load_urdf(urdf_path: str) -> Topology:
    """Load a URDF file and convert it to a Topology.

    Args:
        urdf_path: Path to the URDF file to load.

    Returns:
        Topology: The robot's joint/link tree.

    Raises:
        ParseError: If the file is not valid XML or does not describe a
            well-formed robot tree.
    """
    try:
        tree = etree.parse(urdf_path)
    except (OSError, etree.XMLSyntaxError) as e:
        raise ParseError(f"Failed to read URDF '{urdf_path}': {e}") from e
    return _topology_from_root(tree.getroot())


def parse_urdf(urdf_string: str) -> Topology:
    """Parse a URDF document held in a string (e.g. a robot_description)."""
    try:
        root = etree.fromstring(urdf_string.encode("utf-8"))
    except etree.XMLSyntaxError as e:
        raise ParseError(f"Failed to parse URDF: {e}") from e
    return _topology_from_root(root)


def _topology_from_root(root) -> Topology:
    if root.tag != "robot":
        raise ParseError(f"Expected a <robot> root element, got <{root.tag}>")

    links = []
    for link in root.findall("link"):
        name = link.get("name")
        if not name:
            raise ParseError("Found a <link> without a name")
        links.append(name)

    joints = [_parse_joint(joint) for joint in root.findall("joint")]
    return build_topology(links, joints)


def _parse_joint(joint) -> JointSpec:
    name = joint.get("name")
    if not name:
        raise ParseError("Found a <joint> without a name")

    parent_elem = joint.find("parent")
    child_elem = joint.find("child")
    if parent_elem is None or child_elem is None:
        raise ParseError(f"Joint '{name}' is missing its parent or child link")

    origin_elem = joint.find("origin")
    xyz = _parse_vector(origin_elem, "xyz", name)
    rpy = _parse_vector(origin_elem, "rpy", name)

    axis_elem = joint.find("axis")
    axis = _parse_vector(axis_elem, "xyz", name, default=(0.0, 0.0, 1.0))

    lower: Optional[float] = None
    upper: Optional[float] = None
    joint_type = joint.get("type", "")
    limit_elem = joint.find("limit")
    # Continuous joints ignore <limit>; elsewhere a missing bound defaults to 0
    if limit_elem is not None and joint_type != "continuous":
        lower = _parse_float(limit_elem.get("lower", "0"), name)
        upper = _parse_float(limit_elem.get("upper", "0"), name)

    return JointSpec(
        name=name,
        type=joint_type,
        parent=parent_elem.get("link"),
        child=child_elem.get("link"),
        xyz=xyz,
        rpy=rpy,
        axis=axis,
        lower=lower,
        upper=upper,
    )


def _parse_vector(elem, attribute: str, joint_name: str,
                  default: Tuple[float, float, float] = (0.0, 0.0, 0.0)) -> Tuple[float, ...]:
    if elem is None or elem.get(attribute) is None:
        return default
    parts: List[str] = elem.get(attribute).split()
    if len(parts) != 3:
        raise ParseError(f"Joint '{joint_name}' has a malformed {attribute}: '{elem.get(attribute)}'")
    return tuple(_parse_float(p, joint_name) for p in parts)


def _parse_float(text: Optional[str], joint_name: str) -> Optional[float]:
    if text is None:
        return None
    try:
        return float(text)
    except ValueError as e:
        raise ParseError(f"Joint '{joint_name}' has a non-numeric value '{text}'") from e
