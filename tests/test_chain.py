"""Tests for forward kinematics and Jacobian computation."""

import itertools

import jax
import jax.numpy as jnp
import jax.random as jrandom
import numpy as np
import pytest

from jax_proximity.chain import (
    forward_kinematics,
    forward_kinematics_world,
    jacobian,
    sample_configuration,
    within_limits,
)
from jax_proximity.errors import DimensionMismatchError
from jax_proximity.io import load_urdf
from jax_proximity.transforms import se3, so3


def test_fk_zero_configuration(robot_model):
    """At zero the arm is a vertical column of joint offsets."""
    poses = forward_kinematics(robot_model, jnp.zeros(6))

    assert len(poses) == len(robot_model.link_names)
    expected_heights = {
        "base_link": 0.0, "link1": 0.12, "link2": 0.42, "link3": 0.72,
        "link4": 1.02, "link5": 1.14, "link6": 1.24, "tool_frame": 1.30,
    }
    for name, z in expected_heights.items():
        T = poses[name]
        np.testing.assert_allclose(T[3, :], jnp.array([0, 0, 0, 1]), rtol=1e-6, atol=1e-6)
        np.testing.assert_allclose(T[:3, :3], jnp.eye(3), atol=1e-12)
        np.testing.assert_allclose(T[:3, 3], jnp.array([0.0, 0.0, z]), atol=1e-12)


def test_fk_single_joint_rotation(robot_model):
    """Rotating joint2 swings everything above it about the y axis."""
    q = jnp.array([0.0, 0.5, 0.0, 0.0, 0.0, 0.0])
    poses = forward_kinematics(robot_model, q)

    np.testing.assert_allclose(poses["link2"][:3, :3], so3.exp(jnp.array([0.0, 0.5, 0.0])), atol=1e-12)
    expected_link3 = jnp.array([0.3 * jnp.sin(0.5), 0.0, 0.42 + 0.3 * jnp.cos(0.5)])
    np.testing.assert_allclose(poses["link3"][:3, 3], expected_link3, atol=1e-12)
    # Links below the joint do not move
    np.testing.assert_allclose(poses["link1"][:3, 3], jnp.array([0.0, 0.0, 0.12]), atol=1e-12)


def test_fk_valid_transforms_random(robot_model):
    q = sample_configuration(robot_model, jrandom.PRNGKey(0))
    world_transforms = forward_kinematics_world(robot_model, q)
    assert world_transforms.shape == (len(robot_model.link_names), 4, 4)

    for T in world_transforms:
        np.testing.assert_allclose(T[3, :], jnp.array([0, 0, 0, 1]), rtol=1e-6, atol=1e-6)
        R = T[:3, :3]
        np.testing.assert_allclose(jnp.matmul(R, R.T), jnp.eye(3), rtol=1e-9, atol=1e-9)


def test_fk_jit_compatibility(robot_model):
    """Test that forward kinematics is JIT-compilable."""
    @jax.jit
    def jit_fk(q):
        return forward_kinematics_world(robot_model, q)

    q = jnp.array([0.1, -0.2, 0.3, -0.4, 0.5, -0.6])
    np.testing.assert_allclose(jit_fk(q), forward_kinematics_world(robot_model, q), atol=1e-12)


def test_fk_vmap(robot_model):
    qs = sample_configuration(robot_model, jrandom.PRNGKey(3), num_samples=4)
    batched = jax.vmap(forward_kinematics_world, in_axes=(None, 0))(robot_model, qs)
    assert batched.shape == (4, len(robot_model.link_names), 4, 4)
    np.testing.assert_allclose(batched[2], forward_kinematics_world(robot_model, qs[2]), atol=1e-12)


@pytest.mark.parametrize("length", [0, 5, 7])
def test_fk_dimension_mismatch(robot_model, length):
    with pytest.raises(DimensionMismatchError) as excinfo:
        forward_kinematics_world(robot_model, jnp.zeros(length))
    assert excinfo.value.expected == 6
    assert excinfo.value.got == length


def test_dimension_mismatch_is_value_error(robot_model):
    with pytest.raises(ValueError):
        forward_kinematics(robot_model, jnp.zeros(3))


def test_sample_configuration_within_limits(robot_model):
    qs = sample_configuration(robot_model, jrandom.PRNGKey(1), num_samples=50)
    assert qs.shape == (50, 6)
    assert all(within_limits(robot_model, q) for q in qs)


def test_within_limits(robot_model):
    assert within_limits(robot_model, jnp.zeros(6))
    assert not within_limits(robot_model, jnp.array([0.0, 2.0, 0.0, 0.0, 0.0, 0.0]))
    assert within_limits(robot_model, jnp.array([0.0, 1.61, 0.0, 0.0, 0.0, 0.0]), tolerance=0.02)


def test_jacobian_shape_and_variation(robot_model):
    J_zero = jacobian(robot_model, jnp.zeros(6), "link6")
    assert J_zero.shape == (6, 6)

    J_nonzero = jacobian(robot_model, jnp.array([0.1, -0.2, 0.3, -0.4, 0.5, -0.6]), "link6")
    assert jnp.linalg.norm(J_nonzero - J_zero) > 1e-6


def test_jacobian_numerical_verification(robot_model):
    """Central differences of log(pose) agree with the Jacobian."""
    q = jnp.array([0.1, -0.2, 0.3, -0.4, 0.5, -0.6])
    J = jacobian(robot_model, q, "link6")

    eps = 1e-6
    columns = []
    for k in range(6):
        dq = jnp.zeros(6).at[k].set(eps)
        plus = se3.log(forward_kinematics(robot_model, q + dq)["link6"])
        minus = se3.log(forward_kinematics(robot_model, q - dq)["link6"])
        columns.append((plus - minus) / (2 * eps))
    np.testing.assert_allclose(J, jnp.stack(columns, axis=1), atol=1e-6)


def test_jacobian_at_zero_configuration(robot_model):
    """Every joint at zero puts the rotations at the identity; the Jacobian stays exact there."""
    J = jacobian(robot_model, jnp.zeros(6), "link6")
    assert jnp.isfinite(J).all()

    eps = 1e-6
    columns = []
    for k in range(6):
        dq = jnp.zeros(6).at[k].set(eps)
        plus = se3.log(forward_kinematics(robot_model, dq)["link6"])
        minus = se3.log(forward_kinematics(robot_model, -dq)["link6"])
        columns.append((plus - minus) / (2 * eps))
    np.testing.assert_allclose(J, jnp.stack(columns, axis=1), atol=1e-6)
    # joint1 rotates link6 about z
    assert float(J[5, 0]) == pytest.approx(1.0)


def test_jacobian_random_configs(robot_model):
    """Property test: Jacobian is finite and varies across random configurations."""
    q_samples = sample_configuration(robot_model, jrandom.PRNGKey(0), num_samples=10)
    Js = [jacobian(robot_model, q, "tool_frame") for q in q_samples]

    for i, J in enumerate(Js):
        assert jnp.isfinite(J).all(), f"Jacobian {i} contains NaN/Inf"
        assert J.shape == (6, 6)

    assert any(jnp.linalg.norm(J_a - J_b) > 1e-6 for J_a, J_b in itertools.combinations(Js, 2))


def test_invalid_link_name(robot_model):
    with pytest.raises(ValueError, match="Link 'nonexistent_link' not found"):
        jacobian(robot_model, jnp.zeros(6), "nonexistent_link")


def test_multi_dof_joints(tmp_path):
    """Planar and floating joints expand into several DOFs."""
    urdf = tmp_path / "mobile.urdf"
    urdf.write_text("""<?xml version="1.0"?>
<robot name="mobile">
  <link name="world"/>
  <link name="cart"/>
  <link name="body"/>
  <joint name="slide" type="planar">
    <parent link="world"/>
    <child link="cart"/>
    <axis xyz="0 0 1"/>
  </joint>
  <joint name="free" type="floating">
    <parent link="cart"/>
    <child link="body"/>
    <origin xyz="0 0 0.5"/>
  </joint>
</robot>
""")
    robot = load_urdf(str(urdf))
    assert robot.num_dofs == 9
    assert robot.joint_dofs("slide") == (0, 1, 2)
    assert robot.joint_dofs("free") == (3, 4, 5, 6, 7, 8)

    q = jnp.zeros(9).at[3].set(0.25).at[8].set(0.3)
    body = forward_kinematics(robot, q)["body"]
    np.testing.assert_allclose(body[:3, 3], jnp.array([0.25, 0.0, 0.5]), atol=1e-12)
    np.testing.assert_allclose(body[:3, :3], so3.exp(jnp.array([0.0, 0.0, 0.3])), atol=1e-12)
