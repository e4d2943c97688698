"""RobotModel PyTree data structure for JAX-native robot representation.

The chain topology is stored in a flattened, immutable form: links in
breadth-first order, integer parent indices, and fixed-width per-link
joint data so forward kinematics can run as a single ``lax.scan``.
"""

from typing import Tuple

from jax import Array
from flax import struct

# Widest joint supported (floating base)
MAX_JOINT_DOFS = 6


@struct.dataclass
class RobotModel:
    """Immutable PyTree representation of a robot's kinematic structure.

    Every link except the root is the child of exactly one joint; the root
    carries an identity joint with no DOFs. A joint with k DOFs is expanded
    into k elementary twists applied in order, so a revolute joint has one
    twist, a planar joint three and a floating joint six.

    Attributes:
        link_names: Link names in breadth-first order. Static.
        joint_names: Name of the joint that is the parent of each link
            (``""`` for the root). Static.
        joint_types: URDF joint type of each link's parent joint. Static.
        dof_joint_names: Name of the joint owning each DOF. Static.
        parent_indices: (num_links,) parent link index; the root parents itself.
        joint_transforms: (num_links, 4, 4) fixed transform from the parent
            link frame to the joint frame.
        joint_axes: (num_links, MAX_JOINT_DOFS, 6) elementary twists
            [vx, vy, vz, wx, wy, wz]; unused slots are zero.
        joint_dof_indices: (num_links, MAX_JOINT_DOFS) index into the
            configuration vector for each elementary twist, -1 when unused.
        lower_limits: (num_dofs,) lower joint limits.
        upper_limits: (num_dofs,) upper joint limits.
    """
    link_names: Tuple[str, ...] = struct.field(pytree_node=False)
    joint_names: Tuple[str, ...] = struct.field(pytree_node=False)
    joint_types: Tuple[str, ...] = struct.field(pytree_node=False)
    dof_joint_names: Tuple[str, ...] = struct.field(pytree_node=False)
    parent_indices: Array
    joint_transforms: Array
    joint_axes: Array
    joint_dof_indices: Array
    lower_limits: Array
    upper_limits: Array

    @property
    def num_links(self) -> int:
        return len(self.link_names)

    @property
    def num_dofs(self) -> int:
        return len(self.dof_joint_names)

    @property
    def actuated_joint_names(self) -> Tuple[str, ...]:
        """Joints with at least one DOF, in DOF order."""
        return tuple(dict.fromkeys(self.dof_joint_names))

    def joint_dofs(self, joint_name: str) -> Tuple[int, ...]:
        """DOF indices owned by a joint (empty for fixed joints)."""
        if joint_name not in self.joint_names:
            raise ValueError(f"Joint '{joint_name}' not found in robot model")
        return tuple(i for i, name in enumerate(self.dof_joint_names) if name == joint_name)

    def are_adjacent(self, link_a: int, link_b: int) -> bool:
        """True if one link is the parent of the other."""
        return (int(self.parent_indices[link_a]) == link_b
                or int(self.parent_indices[link_b]) == link_a)
