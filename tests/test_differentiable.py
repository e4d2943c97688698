"""Tests for the configuration-differentiable sphere proximity."""

import jax
import jax.numpy as jnp
import numpy as np

from jax_proximity.chain import forward_kinematics_world
from jax_proximity.proximity.differentiable import bounding_sphere_distances, self_proximity_objective
from jax_proximity.proximity.link_shapes import LinkShapeMode, LinkShapeRep
from jax_proximity.proximity.loss import ProximityLoss
from jax_proximity.proximity.queries import enumerate_pairs, self_distance

FULL = LinkShapeMode.FULL
Q = jnp.array([0.3, -0.4, 0.6, 0.2, -0.5, 0.1])


def _shape_poses(robot_model, link_shapes, q):
    return link_shapes.link_poses_to_shape_poses(np.asarray(forward_kinematics_world(robot_model, q)), FULL)


def test_matches_narrow_phase_on_spheres(robot_model, link_shapes, full_skips):
    pairs = enumerate_pairs(7, full_skips)
    distances = bounding_sphere_distances(robot_model, link_shapes, Q, pairs)

    spheres = link_shapes.get_shapes(FULL, LinkShapeRep.BOUNDING_SPHERE)
    exact = self_distance(spheres, _shape_poses(robot_model, link_shapes, Q), full_skips)
    np.testing.assert_allclose(distances, [r.distance for r in exact], atol=1e-5)


def test_spheres_underestimate_hull_distances(robot_model, link_shapes, full_skips):
    pairs = enumerate_pairs(7, full_skips)
    distances = np.asarray(bounding_sphere_distances(robot_model, link_shapes, jnp.zeros(6), pairs))

    hulls = link_shapes.get_shapes(FULL, LinkShapeRep.CONVEX_HULL)
    exact = self_distance(hulls, _shape_poses(robot_model, link_shapes, jnp.zeros(6)), full_skips)
    assert np.all(distances <= np.array([r.distance for r in exact]) + 1e-9)


def test_default_pairs(robot_model, link_shapes):
    """Every pair i < j when no pairs are given."""
    distances = bounding_sphere_distances(robot_model, link_shapes, Q)
    assert distances.shape == (21,)
    decomposition = bounding_sphere_distances(robot_model, link_shapes, Q, mode=LinkShapeMode.DECOMPOSITION)
    assert decomposition.shape == (28,)


def test_objective_gradient(robot_model, link_shapes, full_skips):
    objective = self_proximity_objective(robot_model, link_shapes, ProximityLoss.hinge(0.5), skips=full_skips)

    value = objective(Q)
    grad = jax.grad(objective)(Q)
    assert value > 0.0
    assert grad.shape == (6,)
    assert jnp.all(jnp.isfinite(grad))
    np.testing.assert_allclose(jax.jit(objective)(Q), value, rtol=1e-12)

    # Central differences agree with autodiff
    eps = 1e-6
    numeric = jnp.array([
        (objective(Q.at[k].add(eps)) - objective(Q.at[k].add(-eps))) / (2 * eps) for k in range(6)
    ])
    np.testing.assert_allclose(grad, numeric, atol=1e-5)


def test_objective_zero_far_from_threshold(robot_model, link_shapes, full_skips):
    objective = self_proximity_objective(robot_model, link_shapes, ProximityLoss.hinge(-1.0), skips=full_skips)
    assert float(objective(jnp.zeros(6))) == 0.0
    np.testing.assert_allclose(jax.grad(objective)(jnp.zeros(6)), 0.0)
