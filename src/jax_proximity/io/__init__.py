"""Loading robot models and collision geometry from URDF."""

from .urdf_parser import load_collision_meshes, load_urdf

__all__ = ["load_collision_meshes", "load_urdf"]
