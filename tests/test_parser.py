"""Tests for topology construction and URDF parsing."""

from pathlib import Path

import jax
import jax.numpy as jnp
import numpy as np
import pytest

from jax_tracker.core import JointSpec, Topology, build_topology
from jax_tracker.errors import ParseError
from jax_tracker.io import load_urdf, parse_urdf

FIXTURES = Path(__file__).parent / "fixtures"


def test_load_three_joint_arm():
    """Load the test arm and verify the Topology structure."""
    topology = load_urdf(str(FIXTURES / "three_joint_arm.urdf"))

    assert isinstance(topology, Topology)
    assert topology.num_links == 6
    assert topology.joint_names == ("A", "B", "C")
    assert topology.joint_types == ("revolute", "revolute", "revolute")

    # Breadth-first from the root
    assert topology.link_names[0] == "base_link"
    assert topology.link_names.index("link_a") < topology.link_names.index("link_b")
    assert topology.link_names.index("link_b") < topology.link_names.index("link_c")

    # Root parents itself; every other parent precedes its child
    assert topology.parent_indices[0] == 0
    for i in range(1, topology.num_links):
        assert int(topology.parent_indices[i]) < i

    assert topology.joint_transforms.shape == (6, 4, 4)
    assert topology.joint_axes.shape == (6, 6)
    np.testing.assert_allclose(topology.lower_limits, [-1.0, -1.0, -1.0])
    np.testing.assert_allclose(topology.upper_limits, [1.0, 1.0, 1.0])


def test_joint_link_indices_point_at_moved_links():
    """Each actuated joint maps to the link it moves."""
    topology = load_urdf(str(FIXTURES / "three_joint_arm.urdf"))
    moved = [topology.link_names[int(i)] for i in topology.joint_link_indices]
    assert moved == ["link_a", "link_b", "link_c"]


def test_fixed_joints_have_zero_axes():
    """Fixed joints and the root carry no motion."""
    topology = load_urdf(str(FIXTURES / "three_joint_arm.urdf"))
    for name in ("base_link", "camera_link", "tool_link"):
        i = topology.link_names.index(name)
        np.testing.assert_array_equal(topology.joint_axes[i], jnp.zeros(6))


def test_prismatic_and_continuous_joints():
    """Prismatic axes are normalized into the linear part; continuous joints get [-pi, pi]."""
    topology = load_urdf(str(FIXTURES / "slider_pan.urdf"))
    assert topology.joint_names == ("slide", "pan")
    assert topology.joint_types == ("prismatic", "continuous")

    slide_link = int(topology.joint_link_indices[0])
    np.testing.assert_allclose(topology.joint_axes[slide_link], [1.0, 0.0, 0.0, 0.0, 0.0, 0.0])

    pan_link = int(topology.joint_link_indices[1])
    np.testing.assert_allclose(topology.joint_axes[pan_link], [0.0, 0.0, 0.0, 0.0, 0.0, 1.0])
    np.testing.assert_allclose(topology.lower_limits, [0.0, -np.pi])
    np.testing.assert_allclose(topology.upper_limits, [0.5, np.pi])


def test_topology_is_pytree():
    """Topology flattens and unflattens with JAX tree utilities."""
    topology = load_urdf(str(FIXTURES / "three_joint_arm.urdf"))
    leaves, treedef = jax.tree_util.tree_flatten(topology)
    rebuilt = jax.tree_util.tree_unflatten(treedef, leaves)
    assert rebuilt.link_names == topology.link_names
    assert rebuilt.joint_names == topology.joint_names
    np.testing.assert_array_equal(rebuilt.joint_transforms, topology.joint_transforms)


def test_parse_urdf_string_matches_file():
    """Parsing from a string and from a file agree."""
    text = (FIXTURES / "three_joint_arm.urdf").read_text()
    from_string = parse_urdf(text)
    from_file = load_urdf(str(FIXTURES / "three_joint_arm.urdf"))
    assert from_string.link_names == from_file.link_names
    np.testing.assert_array_equal(from_string.joint_transforms, from_file.joint_transforms)


def test_revolute_without_limits_is_fatal():
    """A revolute joint with no <limit> fails construction."""
    urdf = """
    <robot name="r">
      <link name="a"/><link name="b"/>
      <joint name="j" type="revolute">
        <parent link="a"/><child link="b"/><axis xyz="0 0 1"/>
      </joint>
    </robot>
    """
    with pytest.raises(ParseError, match="has no limits"):
        parse_urdf(urdf)


def test_joint_with_undefined_link_is_fatal():
    """A joint referencing a link that is not declared fails construction."""
    urdf = """
    <robot name="r">
      <link name="a"/>
      <joint name="j" type="fixed"><parent link="a"/><child link="ghost"/></joint>
    </robot>
    """
    with pytest.raises(ParseError, match="unknown child link 'ghost'"):
        parse_urdf(urdf)


def test_malformed_xml_is_fatal():
    """Broken XML raises ParseError rather than an lxml error."""
    with pytest.raises(ParseError):
        parse_urdf("<robot><link name='a'></robot>")


def test_missing_file_is_fatal(tmp_path):
    """A missing URDF file raises ParseError."""
    with pytest.raises(ParseError):
        load_urdf(str(tmp_path / "missing.urdf"))


def test_build_topology_rejects_two_roots():
    """Two disconnected trees are not a robot."""
    with pytest.raises(ParseError, match="exactly one root"):
        build_topology(["a", "b"], [])


def test_build_topology_rejects_inverted_limits():
    """lower > upper is invalid."""
    joints = [JointSpec(name="j", type="revolute", parent="a", child="b", lower=1.0, upper=-1.0)]
    with pytest.raises(ParseError, match="invalid limits"):
        build_topology(["a", "b"], joints)


def test_build_topology_rejects_unknown_type():
    """Only revolute, continuous, prismatic and fixed joints are supported."""
    joints = [JointSpec(name="j", type="planar", parent="a", child="b")]
    with pytest.raises(ParseError, match="unsupported type"):
        build_topology(["a", "b"], joints)


def test_build_topology_rejects_cycles():
    """A link reachable only through a cycle is never visited from the root."""
    joints = [
        JointSpec(name="ab", type="fixed", parent="a", child="b"),
        JointSpec(name="cd", type="fixed", parent="c", child="d"),
        JointSpec(name="dc", type="fixed", parent="d", child="c"),
    ]
    with pytest.raises(ParseError, match="not connected"):
        build_topology(["a", "b", "c", "d"], joints)


def test_limit_without_lower_defaults_to_zero():
    """A <limit> element missing one bound uses 0 for it."""
    urdf = """
    <robot name="r">
      <link name="a"/><link name="b"/><link name="c"/>
      <joint name="j" type="revolute">
        <parent link="a"/><child link="b"/><axis xyz="0 0 1"/>
        <limit upper="1.5" effort="1" velocity="1"/>
      </joint>
      <joint name="k" type="prismatic">
        <parent link="b"/><child link="c"/><axis xyz="1 0 0"/>
        <limit lower="-0.2" effort="1" velocity="1"/>
      </joint>
    </robot>
    """
    topology = parse_urdf(urdf)
    np.testing.assert_allclose(topology.lower_limits, [0.0, -0.2])
    np.testing.assert_allclose(topology.upper_limits, [1.5, 0.0])


def test_continuous_joint_ignores_limit_element():
    """Continuous joints keep [-pi, pi] even with an effort/velocity <limit>."""
    urdf = """
    <robot name="r">
      <link name="a"/><link name="b"/>
      <joint name="spin" type="continuous">
        <parent link="a"/><child link="b"/><axis xyz="0 0 1"/>
        <limit effort="1" velocity="1"/>
      </joint>
    </robot>
    """
    topology = parse_urdf(urdf)
    np.testing.assert_allclose(topology.lower_limits, [-np.pi])
    np.testing.assert_allclose(topology.upper_limits, [np.pi])
