"""Configuration-differentiable proximity through bounding spheres.

Sphere-sphere distances have a closed form, so the whole path from the
configuration to the proximity value is written in jax.numpy and works with
jax.grad, jax.jacfwd and jax.jit.
"""

from typing import Callable, Optional

import jax
import jax.numpy as jnp
import numpy as np

from ..chain import forward_kinematics_world
from ..core import RobotModel
from ..transforms import se3, so3
from .link_shapes import LinkShapeMode, LinkShapeRep, LinkShapesModule
from .loss import ProximityLoss, proximity_value
from .queries import enumerate_pairs

Array = jax.Array


def _sphere_data(link_shapes: LinkShapesModule, mode: LinkShapeMode):
    spheres = link_shapes.get_shapes(mode, LinkShapeRep.BOUNDING_SPHERE)
    centers = np.array([s.offset[:3, 3] if s.offset is not None else np.zeros(3) for s in spheres]).reshape(-1, 3)
    radii = np.array([float(s.shape.radius) for s in spheres])
    return centers, radii


def bounding_sphere_distances(
    robot: RobotModel,
    link_shapes: LinkShapesModule,
    q: Array,
    pairs=None,
    mode: LinkShapeMode = LinkShapeMode.FULL,
) -> Array:
    """
    Signed distances between the bounding spheres of shape pairs.

    Args:
        robot: Chain.
        link_shapes: Shapes of the chain's links.
        q: (num_dofs,) configuration, plain or traced.
        pairs: Optional (num_pairs, 2) shape pairs; default every pair.
        mode: Link-shape mode.

    Returns:
        (num_pairs,) distances, negative when the spheres overlap
    """
    centers, radii = _sphere_data(link_shapes, mode)
    if pairs is None:
        pairs = enumerate_pairs(len(radii))
    pairs = np.asarray(pairs, dtype=np.int64).reshape(-1, 2)

    link_poses = forward_kinematics_world(robot, q)
    shape_poses = link_poses[np.asarray(link_shapes.shape_to_link(mode), dtype=np.int64)]
    world_centers = se3.apply(shape_poses, jnp.asarray(centers))

    diff = world_centers[pairs[:, 0]] - world_centers[pairs[:, 1]]
    center_distance = so3.safe_norm(diff)
    return center_distance - radii[pairs[:, 0]] - radii[pairs[:, 1]]


def self_proximity_objective(
    robot: RobotModel,
    link_shapes: LinkShapesModule,
    loss: ProximityLoss,
    p_norm: float = 8.0,
    pairs=None,
    skips: Optional[np.ndarray] = None,
    mode: LinkShapeMode = LinkShapeMode.FULL,
) -> Callable[[Array], Array]:
    """
    Scalar proximity value as a function of the configuration.

    The returned function can be passed straight to jax.grad.

    Args:
        robot: Chain.
        link_shapes: Shapes of the chain's links.
        loss: Per-pair loss.
        p_norm: Norm exponent of the aggregate.
        pairs: Optional explicit (num_pairs, 2) pairs, overriding ``skips``.
        skips: Optional skip table used when ``pairs`` is None.
        mode: Link-shape mode.
    """
    if pairs is None:
        pairs = enumerate_pairs(link_shapes.num_shapes(mode), skips)

    def objective(q: Array) -> Array:
        return proximity_value(bounding_sphere_distances(robot, link_shapes, q, pairs, mode), loss, p_norm)

    return objective
