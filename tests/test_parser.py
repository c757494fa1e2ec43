"""Tests for URDF parser functionality."""

from pathlib import Path

import jax
import jax.numpy as jnp
import numpy as np
import pytest

from jax_shared_kindyn.core import RobotModel
from jax_shared_kindyn.errors import UnknownFrameError
from jax_shared_kindyn.io import load_urdf, load_urdf_string

URDF_PATH = Path(__file__).parent / "fixtures" / "simple_legged.urdf"

SLIDER_URDF = """
<robot name="slider">
  <link name="carriage">
    <inertial><mass value="2.0"/><inertia ixx="1" iyy="1" izz="1" ixy="0" ixz="0" iyz="0"/></inertial>
  </link>
  <link name="slide"/>
  <joint name="rail" type="prismatic">
    <parent link="carriage"/>
    <child link="slide"/>
    <origin xyz="0 0 0.1"/>
    <axis xyz="2 0 0"/>
  </joint>
</robot>
"""


def test_load_legged_urdf():
    robot = load_urdf(str(URDF_PATH))
    assert isinstance(robot, RobotModel)

    # 1 base, 3 links per leg and 2 fixed sole frames
    assert robot.num_links == 9
    assert robot.base_link == "base_link"
    for side in ("l", "r"):
        for link in ("hip", "thigh", "shin", "foot"):
            assert f"{side}_{link}" in robot.link_names

    # Fixed sole joints are not actuated; actuated joints keep document order
    assert robot.joint_names == (
        "l_hip_yaw", "l_hip_pitch", "l_knee", "r_hip_yaw", "r_hip_pitch", "r_knee")
    assert robot.num_dofs == 6

    num_links = robot.num_links
    assert robot.parent_indices.shape == (num_links,)
    assert robot.joint_transforms.shape == (num_links, 4, 4)
    assert robot.joint_axes.shape == (num_links, 6)
    assert robot.actuated_joint_to_link_idx.shape == (6,)

    # Root parents itself, every other parent precedes its child
    assert robot.parent_indices[0] == 0
    for i in range(1, num_links):
        assert robot.parent_indices[i] < i

    for i in range(num_links):
        T = robot.joint_transforms[i]
        np.testing.assert_allclose(T[3, :], jnp.array([0, 0, 0, 1]), atol=1e-12)
        np.testing.assert_allclose(T[:3, :3] @ T[:3, :3].T, jnp.eye(3), atol=1e-12)

    # Every actuated joint of the fixture is revolute
    for link_idx in robot.actuated_joint_to_link_idx:
        axis = robot.joint_axes[int(link_idx)]
        np.testing.assert_allclose(jnp.linalg.norm(axis[3:]), 1.0, atol=1e-12)
        np.testing.assert_allclose(axis[:3], jnp.zeros(3), atol=1e-12)

    foot_idx = robot.link_index("l_foot")
    np.testing.assert_allclose(robot.joint_axes[foot_idx], jnp.zeros(6))


def test_inertial_parameters():
    robot = load_urdf(str(URDF_PATH))

    np.testing.assert_allclose(robot.total_mass, 8.0 + 2 * (1.2 + 2.0 + 1.1))
    base = robot.link_index("base_link")
    np.testing.assert_allclose(robot.link_coms[base], jnp.array([0.0, 0.0, 0.05]))
    np.testing.assert_allclose(robot.link_inertias[base], jnp.diag(jnp.array([0.12, 0.09, 0.15])))

    # Frames without <inertial> are massless
    assert robot.link_masses[robot.link_index("l_foot")] == 0.0

    # Inertias given in a rotated inertial frame end up symmetric in link frame
    thigh = robot.link_inertias[robot.link_index("l_thigh")]
    np.testing.assert_allclose(thigh, thigh.T, atol=1e-12)
    np.testing.assert_allclose(jnp.trace(thigh), 0.02 + 0.02 + 0.003, atol=1e-12)


def test_prismatic_joint_from_string():
    robot = load_urdf_string(SLIDER_URDF)

    assert robot.joint_names == ("rail",)
    slide = robot.link_index("slide")
    # Axis is normalized and stored in the linear part
    np.testing.assert_allclose(robot.joint_axes[slide], jnp.array([1.0, 0.0, 0.0, 0.0, 0.0, 0.0]))
    np.testing.assert_allclose(robot.joint_transforms[slide][:3, 3], jnp.array([0.0, 0.0, 0.1]))


def test_unsupported_joint_type():
    xml = SLIDER_URDF.replace('type="prismatic"', 'type="floating"')
    with pytest.raises(ValueError, match="Unsupported joint type"):
        load_urdf_string(xml)


def test_multiple_roots_rejected():
    xml = SLIDER_URDF.replace('<link name="slide"/>', '<link name="slide"/><link name="orphan"/>')
    with pytest.raises(ValueError, match="exactly one root"):
        load_urdf_string(xml)


def test_unknown_link_index():
    robot = load_urdf(str(URDF_PATH))
    assert robot.has_link("r_shin")
    assert not robot.has_link("tail")
    with pytest.raises(UnknownFrameError, match="Link 'tail' not found in robot model"):
        robot.link_index("tail")


def test_model_round_trips_through_tree_utils():
    robot = load_urdf(str(URDF_PATH))

    leaves, structure = jax.tree_util.tree_flatten(robot)
    # Names are static metadata, only arrays are leaves
    assert all(isinstance(leaf, jax.Array) for leaf in leaves)
    rebuilt = jax.tree_util.tree_unflatten(structure, leaves)

    assert rebuilt.link_names == robot.link_names
    assert rebuilt.joint_names == robot.joint_names
    np.testing.assert_array_equal(rebuilt.parent_indices, robot.parent_indices)
    np.testing.assert_array_equal(rebuilt.link_inertias, robot.link_inertias)


def test_model_passes_through_jit():
    robot = load_urdf(str(URDF_PATH))

    @jax.jit
    def heaviest_link(model):
        return jnp.argmax(model.link_masses)

    assert robot.link_names[int(heaviest_link(robot))] == "base_link"
