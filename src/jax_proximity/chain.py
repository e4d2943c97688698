"""Forward kinematics, Jacobians and configuration sampling.

Forward kinematics is a pure function of the configuration and the immutable
RobotModel, so it can be jitted, vmapped over configuration batches and
differentiated.
"""

from typing import Dict, Optional

import jax
import jax.numpy as jnp
from jax import Array

from .core import MAX_JOINT_DOFS, RobotModel
from .errors import DimensionMismatchError
from .transforms import se3


def _check_dimension(robot: RobotModel, q: Array) -> None:
    # Shapes are static under jit, so this raises at trace time as well
    if q.ndim != 1 or q.shape[0] != robot.num_dofs:
        raise DimensionMismatchError(robot.num_dofs, q.shape[-1] if q.ndim else 0)


def forward_kinematics(robot: RobotModel, q: Array) -> Dict[str, Array]:
    """Compute forward kinematics for all links in the robot.

    Args:
        robot: RobotModel containing the robot's kinematic structure
        q: Configuration of shape (num_dofs,)

    Returns:
        Dictionary mapping link names to their 4x4 SE(3) world poses
    """
    world_transforms = forward_kinematics_world(robot, q)
    return {name: world_transforms[i] for i, name in enumerate(robot.link_names)}


def forward_kinematics_world(robot: RobotModel, q: Array) -> Array:
    """World poses of all links, in the model's link order.

    Args:
        robot: RobotModel containing the robot's kinematic structure
        q: Configuration of shape (num_dofs,)

    Returns:
        Array of shape (num_links, 4, 4)

    Raises:
        DimensionMismatchError: If ``q`` does not have ``num_dofs`` entries.
    """
    q = jnp.asarray(q)
    _check_dimension(robot, q)
    num_links = robot.num_links

    # Index -1 marks an unused twist slot and reads the trailing zero
    q_padded = jnp.concatenate([q.astype(robot.joint_transforms.dtype),
                                jnp.zeros(1, dtype=robot.joint_transforms.dtype)])
    joint_values = q_padded[robot.joint_dof_indices]  # (num_links, MAX_JOINT_DOFS)

    world_transforms = jnp.broadcast_to(
        jnp.eye(4, dtype=robot.joint_transforms.dtype), (num_links, 4, 4))

    def scan_body(carry, i):
        """Processes link `i` using its parent's world pose from `carry`."""
        T_world_to_parent = carry[robot.parent_indices[i]]

        motions = se3.exp(robot.joint_axes[i] * joint_values[i][:, None])
        T_joint_motion = motions[0]
        for k in range(1, MAX_JOINT_DOFS):
            T_joint_motion = T_joint_motion @ motions[k]

        T_world_to_child = T_world_to_parent @ robot.joint_transforms[i] @ T_joint_motion
        return carry.at[i].set(T_world_to_child), None

    # Link 0 is the root; BFS order guarantees parents are filled first
    final_transforms, _ = jax.lax.scan(scan_body, world_transforms, jnp.arange(1, num_links))

    return final_transforms


def jacobian(robot: RobotModel, q: Array, link_name: str) -> Array:
    """Compute the 6D Jacobian of a link's pose twist w.r.t. the configuration.

    Args:
        robot: RobotModel containing the robot's kinematic structure
        q: Configuration of shape (num_dofs,)
        link_name: Name of the target link

    Returns:
        (6, num_dofs) Jacobian of se3.log(pose)
    """
    try:
        link_idx = robot.link_names.index(link_name)
    except ValueError:
        raise ValueError(f"Link '{link_name}' not found in robot model")

    def get_pose_twist(joint_values: Array) -> Array:
        return se3.log(forward_kinematics_world(robot, joint_values)[link_idx])

    return jax.jacrev(get_pose_twist)(jnp.asarray(q, dtype=robot.joint_transforms.dtype))


def sample_configuration(robot: RobotModel, key: Array, num_samples: Optional[int] = None) -> Array:
    """Draw configurations uniformly within the joint limits.

    Args:
        robot: RobotModel with finite limits
        key: jax.random key
        num_samples: If given, return a (num_samples, num_dofs) batch

    Returns:
        (num_dofs,) or (num_samples, num_dofs) configurations
    """
    shape = (robot.num_dofs,) if num_samples is None else (num_samples, robot.num_dofs)
    return jax.random.uniform(key, shape=shape, dtype=robot.lower_limits.dtype,
                              minval=robot.lower_limits, maxval=robot.upper_limits)


def within_limits(robot: RobotModel, q: Array, tolerance: float = 0.0) -> bool:
    """True if every DOF is within its limits (inclusive, widened by ``tolerance``)."""
    q = jnp.asarray(q)
    _check_dimension(robot, q)
    return bool(jnp.all((q >= robot.lower_limits - tolerance) & (q <= robot.upper_limits + tolerance)))
