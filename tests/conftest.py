"""Shared fixtures: a six-joint arm with primitive collision geometry."""

from pathlib import Path

import numpy as np
import pytest

from jax_proximity.io import load_collision_meshes, load_urdf
from jax_proximity.proximity.link_shapes import LinkShapeMode, LinkShapesModule

URDF_PATH = Path(__file__).parent / "fixtures" / "six_dof_arm.urdf"

# Folds link3 back into link1
COLLIDING_CONFIG = np.array([0.0, 1.5, 2.5, 0.0, 0.0, 0.0])


@pytest.fixture(scope="session")
def urdf_path():
    return str(URDF_PATH)


@pytest.fixture(scope="session")
def robot_model(urdf_path):
    return load_urdf(urdf_path)


@pytest.fixture(scope="session")
def link_shapes(urdf_path, robot_model):
    return LinkShapesModule.from_link_meshes(robot_model.link_names, load_collision_meshes(urdf_path, robot_model))


def adjacency_skips(robot_model, link_shapes, mode=LinkShapeMode.FULL):
    """Skip table of shapes on the same or on parent/child links."""
    shape_to_link = link_shapes.shape_to_link(mode)
    n = len(shape_to_link)
    skips = np.zeros((n, n), dtype=bool)
    for i in range(n):
        for j in range(n):
            a, b = shape_to_link[i], shape_to_link[j]
            skips[i, j] = a == b or robot_model.are_adjacent(a, b)
    return skips


@pytest.fixture(scope="session")
def full_skips(robot_model, link_shapes):
    return adjacency_skips(robot_model, link_shapes)


@pytest.fixture(scope="session")
def colliding_config():
    return COLLIDING_CONFIG.copy()


@pytest.fixture(scope="session")
def decomposition_skips(robot_model, link_shapes):
    return adjacency_skips(robot_model, link_shapes, LinkShapeMode.DECOMPOSITION)
