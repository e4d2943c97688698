"""Tests for URDF parser functionality."""

import jax
import jax.numpy as jnp
import numpy as np
import pytest

from jax_proximity.core import MAX_JOINT_DOFS, RobotModel
from jax_proximity.io import load_collision_meshes, load_urdf
from jax_proximity.io.urdf_parser import CONTINUOUS_LIMITS


def test_load_urdf_structure(robot_model):
    """Links come in breadth-first order with one DOF per revolute joint."""
    assert isinstance(robot_model, RobotModel)
    assert robot_model.link_names == (
        "base_link", "link1", "link2", "link3", "link4", "link5", "link6", "tool_frame")
    assert robot_model.joint_names[0] == ""
    assert robot_model.joint_types[-1] == "fixed"
    assert robot_model.num_dofs == 6
    assert robot_model.actuated_joint_names == tuple(f"joint{k}" for k in range(1, 7))

    num_links = robot_model.num_links
    assert robot_model.parent_indices.shape == (num_links,)
    assert robot_model.joint_transforms.shape == (num_links, 4, 4)
    assert robot_model.joint_axes.shape == (num_links, MAX_JOINT_DOFS, 6)
    assert robot_model.joint_dof_indices.shape == (num_links, MAX_JOINT_DOFS)

    # Root parents itself, every other link its predecessor
    np.testing.assert_array_equal(robot_model.parent_indices, [0, 0, 1, 2, 3, 4, 5, 6])

    np.testing.assert_allclose(robot_model.lower_limits, [-3.1, -1.6, -2.6, -3.1, -1.6, -3.1])
    np.testing.assert_allclose(robot_model.upper_limits, [3.1, 1.6, 2.6, 3.1, 1.6, 3.1])


def test_revolute_axes(robot_model):
    """Revolute twists are pure rotations about unit axes."""
    for i in range(1, 7):
        twist = robot_model.joint_axes[i, 0]
        np.testing.assert_allclose(twist[:3], 0.0)
        np.testing.assert_allclose(jnp.linalg.norm(twist[3:]), 1.0, rtol=1e-12)
        np.testing.assert_allclose(robot_model.joint_axes[i, 1:], 0.0)
        assert robot_model.joint_dof_indices[i, 0] == i - 1
    # Fixed tool joint has no DOFs
    assert jnp.all(robot_model.joint_dof_indices[7] == -1)


def test_adjacency(robot_model):
    assert robot_model.are_adjacent(1, 2)
    assert robot_model.are_adjacent(2, 1)
    assert not robot_model.are_adjacent(1, 3)


def test_robot_model_is_pytree(robot_model):
    """Test that RobotModel is a valid JAX PyTree."""
    flat_robot, tree_def = jax.tree_util.tree_flatten(robot_model)
    reconstructed = jax.tree_util.tree_unflatten(tree_def, flat_robot)

    assert reconstructed.link_names == robot_model.link_names
    assert reconstructed.dof_joint_names == robot_model.dof_joint_names
    np.testing.assert_array_equal(reconstructed.parent_indices, robot_model.parent_indices)
    np.testing.assert_array_equal(reconstructed.joint_transforms, robot_model.joint_transforms)


def test_continuous_joint_default_limits(tmp_path):
    urdf = tmp_path / "wheel.urdf"
    urdf.write_text("""<?xml version="1.0"?>
<robot name="wheel">
  <link name="base"/>
  <link name="wheel"/>
  <joint name="spin" type="continuous">
    <parent link="base"/>
    <child link="wheel"/>
    <axis xyz="0 1 0"/>
  </joint>
</robot>
""")
    robot = load_urdf(str(urdf))
    np.testing.assert_allclose(robot.lower_limits, [CONTINUOUS_LIMITS[0]])
    np.testing.assert_allclose(robot.upper_limits, [CONTINUOUS_LIMITS[1]])


@pytest.mark.parametrize("body, message", [
    ('<link name="a"/><link name="b"/>', "exactly one root"),
    ('<link name="a"/><link name="b"/>'
     '<joint name="j" type="screw"><parent link="a"/><child link="b"/></joint>', "Unsupported joint type"),
    ('<link name="a"/><joint name="j" type="fixed"><parent link="a"/><child link="c"/></joint>', "unknown link"),
])
def test_malformed_urdf(tmp_path, body, message):
    urdf = tmp_path / "bad.urdf"
    urdf.write_text(f'<?xml version="1.0"?><robot name="bad">{body}</robot>')
    with pytest.raises(ValueError, match=message):
        load_urdf(str(urdf))


def test_collision_meshes(urdf_path, robot_model):
    meshes = load_collision_meshes(urdf_path, robot_model)
    assert len(meshes) == robot_model.num_links
    assert [len(pieces) for pieces in meshes] == [1, 1, 1, 1, 1, 2, 1, 0]

    # Base box spans z in [0, 0.12] after its origin offset
    base = meshes[0][0]
    np.testing.assert_allclose(base.bounds, [[-0.1, -0.1, 0.0], [0.1, 0.1, 0.12]], atol=1e-12)

    # link5 has a sphere at the origin and a box above it
    sphere, box = meshes[5]
    np.testing.assert_allclose(sphere.bounds, [[-0.04] * 3, [0.04] * 3], atol=1e-6)
    np.testing.assert_allclose(box.bounds, [[-0.02, -0.02, 0.0], [0.02, 0.02, 0.1]], atol=1e-12)


def test_unsupported_geometry_is_skipped(tmp_path, caplog):
    urdf = tmp_path / "mesh.urdf"
    urdf.write_text("""<?xml version="1.0"?>
<robot name="mesh">
  <link name="base">
    <collision><geometry><mesh filename="base.stl"/></geometry></collision>
    <collision><geometry><sphere radius="0.1"/></geometry></collision>
  </link>
</robot>
""")
    robot = load_urdf(str(urdf))
    with caplog.at_level("WARNING"):
        meshes = load_collision_meshes(str(urdf), robot)
    assert len(meshes[0]) == 1
    assert "unsupported collision geometry" in caplog.text
