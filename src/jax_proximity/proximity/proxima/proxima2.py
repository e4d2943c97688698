"""Proxima2: first-order distance model with fitted error polynomials."""

from functools import partial
from typing import Sequence, Tuple

import jax
import jax.numpy as jnp
import numpy as np

from ...transforms import se3
from ...transforms.se3 import LieAlgMode
from ..error_models import NUM_COEFFICIENTS, LieAlgErrorModel
from ..lie_distance import distance_gradient
from ..shapes import OffsetShape
from .core import ProximaCache

# displacements at or below this norm reproduce the cached distance exactly
ZERO_DISPLACEMENT = 1e-12


@partial(jax.jit, static_argnames=("lie_mode",))
def proxima2_bounds(
    reference_relative: jax.Array,
    pair_poses: jax.Array,
    distances: jax.Array,
    gradients: jax.Array,
    lower_coefficients: jax.Array,
    upper_coefficients: jax.Array,
    lie_mode: LieAlgMode,
) -> Tuple[jax.Array, jax.Array, jax.Array]:
    """
    Taylor approximation and error-polynomial bounds of every pair.

    Args:
        reference_relative: (P, 4, 4) relative poses at the last measurement
        pair_poses: (P, 2, 4, 4) current variable poses
        distances: (P,) distances at the last measurement
        gradients: (P, 6) distance gradients at the last measurement
        lower_coefficients: (P, NUM_COEFFICIENTS) ascending-power coefficients
        upper_coefficients: (P, NUM_COEFFICIENTS) ascending-power coefficients
        lie_mode: Tangent encoding of the displacement

    Returns:
        (approximate, lower, upper), each (P,)
    """
    relative_current = se3.displacement(pair_poses[:, 0], pair_poses[:, 1])
    delta = se3.lie_ln(se3.displacement(reference_relative, relative_current), lie_mode)
    n = jnp.linalg.norm(delta, axis=-1)

    approximate = distances + jnp.sum(gradients * delta, axis=-1)
    powers = n[:, None] ** jnp.arange(NUM_COEFFICIENTS)
    p_lower = jnp.sum(lower_coefficients * powers, axis=-1)
    p_upper = jnp.sum(upper_coefficients * powers, axis=-1)

    still = n <= ZERO_DISPLACEMENT
    approximate = jnp.where(still, distances, approximate)
    lower = jnp.where(still, distances, approximate + jnp.minimum(p_lower, p_upper))
    upper = jnp.where(still, distances, approximate + jnp.maximum(p_lower, p_upper))
    return approximate, lower, upper


class Proxima2Cache(ProximaCache):
    """
    Proxima cache with a first-order model in a chosen tangent encoding.

    Each refresh stores the distance and its finite-difference gradient with
    respect to a right perturbation of the pair's relative pose. Bounds come
    from the pair's lower and upper error polynomials, so they are
    statistical rather than guaranteed.

    Args:
        shapes: Shapes of the group.
        mode: Link-shape mode the shapes were taken from.
        rep: Representation the shapes were taken from.
        error_model: Error polynomials of every shape pair for this
            (mode, rep, lie_mode).
        lie_mode: Tangent encoding.
        **kwargs: Passed to ProximaCache.
    """

    def __init__(self, shapes: Sequence[OffsetShape], mode, rep, error_model: LieAlgErrorModel,
                 lie_mode: LieAlgMode = LieAlgMode.STANDARD, **kwargs):
        super().__init__(shapes, mode, rep, **kwargs)
        self.lie_mode = lie_mode
        self.lower_coefficients, self.upper_coefficients = error_model.pair_coefficients(self.pairs)
        self.reference_relative = np.tile(np.eye(4), (self.num_pairs, 1, 1))
        self.gradients = np.zeros((self.num_pairs, 6))

    def _measure(self, k: int, pose_a: np.ndarray, pose_b: np.ndarray) -> float:
        i, j = self.pairs[k]
        # same world-frame query the exact pairwise checks make
        d = self.shapes[i].distance(pose_a, self.shapes[j], pose_b)
        relative = np.linalg.solve(pose_a, pose_b)
        gradient = distance_gradient(self.shapes[i], self.shapes[j], relative, self.lie_mode,
                                     step=self.settings.gradient_step)
        self.reference_relative[k] = relative
        self.gradients[k] = gradient
        return d

    def _evaluate(self, pair_poses: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        if self.num_pairs == 0:
            return np.zeros(0), np.zeros(0), np.zeros(0)
        approximate, lower, upper = proxima2_bounds(
            self.reference_relative, pair_poses, self.distances, self.gradients,
            self.lower_coefficients, self.upper_coefficients, self.lie_mode)
        return np.array(approximate), np.array(lower), np.array(upper)
