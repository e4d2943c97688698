"""Core robot model data structures.

The chain topology lives in a JAX-native, immutable pytree.
"""

from .robot_model import MAX_JOINT_DOFS, RobotModel

__all__ = ["MAX_JOINT_DOFS", "RobotModel"]
