"""
JAX Proximity: self-collision proximity queries for kinematic chains.

This library provides JIT-compilable forward kinematics and Lie group
transforms together with exact and incremental (Proxima) distance queries
between the collision shapes of a robot's links.
"""

import jax
jax.config.update("jax_enable_x64", True)

# Import core modules
from . import transforms
from . import core
from . import io
from . import proximity
from .errors import ConfigurationError, DimensionMismatchError, ProximityError, ShapeQueryFailure
from .feasibility import BoundsFeasibilityChecker, BVHFeasibilityChecker, NaiveFeasibilityChecker
from .robot import Robot

__version__ = "0.1.0"
__all__ = [
    "transforms",
    "core",
    "io",
    "proximity",
    "ConfigurationError",
    "DimensionMismatchError",
    "ProximityError",
    "ShapeQueryFailure",
    "BoundsFeasibilityChecker",
    "BVHFeasibilityChecker",
    "NaiveFeasibilityChecker",
    "Robot",
]
