"""
JAX Lie group transforms used by kinematics and proximity queries.

- SO(3) rotations (so3 module)
- SE(3) rigid body transforms and the two se(3) tangent encodings (se3 module)

All functions are pure, stateless and JIT-able.
"""

from . import so3
from . import se3
from .se3 import LieAlgMode

__all__ = [
    "so3",
    "se3",
    "LieAlgMode",
]
