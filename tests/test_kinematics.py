"""Tests for the cached KinematicModel."""

from pathlib import Path

import numpy as np
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from jax_tracker.errors import ParseError, UnknownJointError
from jax_tracker.io import load_urdf
from jax_tracker.kinematics import KinematicModel

FIXTURES = Path(__file__).parent / "fixtures"


def make_model(**kwargs) -> KinematicModel:
    topology = load_urdf(str(FIXTURES / "three_joint_arm.urdf"))
    return KinematicModel(topology, "camera_link", **kwargs)


def test_tables():
    """Joint and tracked-link tables follow topology order."""
    model = make_model()
    assert model.num_joints == 3
    assert model.joint_index("B") == 1
    assert model.root_frame == "base_link"
    assert model.link_names == ("link_a", "camera_link", "link_b", "link_c", "tool_link")
    assert model.link_name(4) == "tool_link"
    assert model.num_links == 5
    assert "(1 : B)" in model.describe()


def test_unknown_joint_index():
    """Unknown names raise UnknownJointError, which is also a KeyError."""
    model = make_model()
    with pytest.raises(UnknownJointError):
        model.joint_index("elbow")
    with pytest.raises(KeyError):
        model.joint_index("elbow")
    assert model.joint_order(["C", "elbow", "A"]) == [2, -1, 0]


def test_unknown_reference_frame_is_fatal():
    """Construction fails when the reference link does not exist."""
    topology = load_urdf(str(FIXTURES / "three_joint_arm.urdf"))
    with pytest.raises(ParseError):
        KinematicModel(topology, "kinect_link")
    with pytest.raises(ParseError):
        KinematicModel(topology, "camera_link", tracked_links=["tool_link", "gripper"])


def test_joint_vector_drops_unknown_names():
    """Unknown names are reported and the rest of the reading is kept."""
    model = make_model()
    vector, unknown = model.joint_vector({"A": 0.5, "XTION_X": 0.0, "C": -0.25})
    np.testing.assert_allclose(vector, [0.5, 0.0, -0.25])
    assert unknown == ["XTION_X"]


def test_round_trip_name_to_vector():
    """Indexing the vector at joint_index(name) gives the angle set under that name."""
    model = make_model()
    positions = {"A": 0.1, "B": -0.6, "C": 0.75}
    vector, _ = model.joint_vector(positions)
    for name, angle in positions.items():
        assert vector[model.joint_index(name)] == angle


def test_link_queries_before_set_raise():
    """Link poses are not available before the first computation."""
    model = make_model()
    with pytest.raises(RuntimeError):
        model.link_pose(0)


def test_link_pose_in_camera_frame():
    """Link frames are expressed relative to the camera."""
    model = make_model(tracked_links=["tool_link", "link_b"])
    model.set_joint_angles(np.zeros(3))

    np.testing.assert_allclose(model.link_position(0), [1.0, 0.0, 0.2], atol=1e-12)
    np.testing.assert_allclose(model.link_position(1), [1.0, 0.0, -0.2], atol=1e-12)
    # The camera is yawed by pi relative to the base
    quat = model.link_orientation(0)
    np.testing.assert_allclose(abs(np.dot(quat, [0.0, 0.0, 0.0, 1.0])), 1.0, atol=1e-12)
    np.testing.assert_allclose(model.link_pose(0).as_matrix()[:3, 3], [1.0, 0.0, 0.2], atol=1e-12)
    np.testing.assert_allclose(model.reference_pose[:3, 3], [1.0, 0.0, 0.5], atol=1e-12)
    assert set(model.link_poses()) == {"tool_link", "link_b"}


def test_set_joint_angles_is_idempotent():
    """A value-equal vector neither changes frames nor recomputes them."""
    model = make_model()
    angles = np.array([0.2, -0.3, 0.4])
    model.set_joint_angles(angles)
    assert model.fk_evaluations == 1
    before = model.link_poses()

    model.set_joint_angles(angles.copy())
    model.set_joint_angles(angles + 1e-15)
    assert model.fk_evaluations == 1
    after = model.link_poses()
    for name in before:
        np.testing.assert_array_equal(before[name].position, after[name].position)
        np.testing.assert_array_equal(before[name].rotation, after[name].rotation)

    model.set_joint_angles(angles + 1e-3)
    assert model.fk_evaluations == 2
    model.set_joint_angles(angles + 1e-3, offset=np.array([0.0, 0.0, 0.01, 0.0, 0.0, 0.0]))
    assert model.fk_evaluations == 3


def test_set_joint_angles_rejects_wrong_length():
    """The joint vector length is fixed by the topology."""
    model = make_model()
    with pytest.raises(ValueError):
        model.set_joint_angles(np.zeros(4))


def test_set_joint_angles_reproducible():
    """Recomputing the same vector after another one gives identical poses."""
    model = make_model()
    q = np.array([0.5, 0.25, -0.125])
    model.set_joint_angles(q)
    first = model.link_pose(4)
    model.set_joint_angles(np.zeros(3))
    model.set_joint_angles(q)
    second = model.link_pose(4)
    np.testing.assert_array_equal(first.position, second.position)
    np.testing.assert_array_equal(first.rotation, second.rotation)


@pytest.mark.parametrize("ratio", [0.0, 0.01, 0.2, 0.5, 1.0])
def test_perturb_stays_within_limits(ratio):
    """10,000 samples never leave [lower, upper]."""
    model = make_model(seed=7)
    samples = np.array([model.perturb(0, 0.9, ratio) for _ in range(10_000)])
    assert samples.min() >= -1.0
    assert samples.max() <= 1.0
    if ratio == 0.0:
        np.testing.assert_array_equal(samples, 0.9)


def test_perturb_spread_scales_with_range():
    """Standard deviation is ratio times the joint range."""
    model = make_model(seed=3)
    samples = np.array([model.perturb(1, 0.0, 0.05) for _ in range(10_000)])
    assert abs(samples.mean()) < 0.01
    assert abs(samples.std() - 0.1) < 0.01


def test_perturb_rejects_bad_ratio():
    model = make_model()
    with pytest.raises(ValueError):
        model.perturb(0, 0.0, 1.5)


@given(st.floats(min_value=-5.0, max_value=5.0, allow_nan=False),
       st.floats(min_value=0.0, max_value=1.0))
@settings(deadline=None, max_examples=50)
def test_perturb_clips_any_mean(angle, ratio):
    """Even a mean outside the limits is clipped into them."""
    model = make_model(seed=11)
    value = model.perturb(2, angle, ratio)
    assert -1.0 <= value <= 1.0


def test_initial_hypotheses():
    """The first hypothesis is the reading; the rest are perturbed copies."""
    model = make_model(seed=5)
    hypotheses = model.initial_hypotheses({"A": 0.5, "B": -0.5, "C": 0.9}, count=20, ratio=0.1, timestamp=3.0)
    assert len(hypotheses) == 20
    np.testing.assert_allclose(hypotheses[0].angles, [0.5, -0.5, 0.9])
    assert all(h.timestamp == 3.0 for h in hypotheses)
    assert any(not np.allclose(h.angles, hypotheses[0].angles) for h in hypotheses[1:])
    for h in hypotheses:
        assert np.all(h.angles >= -1.0) and np.all(h.angles <= 1.0)
