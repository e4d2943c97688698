"""Proxima1: closed-form geometric bounds.

With ``E = D_j^-1 D_k`` the change of the relative pose of a pair since its
last measurement, every point of the second shape moves at most
``||t_E|| + 2 h sin(angle(R_E) / 2)`` relative to the first, where ``h``
bounds the distance of the shapes' points from their frame origins. The
signed distance moves by no more than that, which gives provable bounds.
The witness points of the last measurement, carried along with the new
poses, give a second upper bound for separated pairs.
"""

from typing import Sequence, Tuple

import jax
import jax.numpy as jnp
import numpy as np

from ...transforms import se3, so3
from ..shapes import OffsetShape
from .core import ProximaCache, _Bounds


@jax.jit
def proxima1_bounds(
    reference_poses: jax.Array,
    pair_poses: jax.Array,
    distances: jax.Array,
    reach: jax.Array,
    witness_points: jax.Array,
    has_witness: jax.Array,
    interpolation: float,
) -> Tuple[jax.Array, jax.Array, jax.Array]:
    """
    Bounds of every pair from its last measurement.

    Args:
        reference_poses: (P, 2, 4, 4) variable poses at the last measurement
        pair_poses: (P, 2, 4, 4) current variable poses
        distances: (P,) distances at the last measurement
        reach: (P,) larger max distance from origin of the two shapes
        witness_points: (P, 2, 3) closest points in each shape's variable frame
        has_witness: (P,) whether the witness points are on the shapes
        interpolation: Position of the approximation between the bounds

    Returns:
        (approximate, lower, upper), each (P,)
    """
    relative_reference = se3.displacement(reference_poses[:, 0], reference_poses[:, 1])
    relative_current = se3.displacement(pair_poses[:, 0], pair_poses[:, 1])
    change = se3.displacement(relative_reference, relative_current)

    dm = jnp.linalg.norm(se3.get_position(change), axis=-1)
    dr = so3.angle(se3.get_rotation(change))
    psi = 2.0 * reach * jnp.sin(0.5 * dr)

    lower = distances - dm - psi
    upper = distances + dm + psi

    remapped_a = se3.apply(pair_poses[:, 0], witness_points[:, 0])
    remapped_b = se3.apply(pair_poses[:, 1], witness_points[:, 1])
    witness_distance = jnp.linalg.norm(remapped_a - remapped_b, axis=-1)
    upper = jnp.where(has_witness, jnp.minimum(upper, witness_distance), upper)

    approximate = (1.0 - interpolation) * lower + interpolation * upper
    return approximate, lower, upper


class Proxima1Cache(ProximaCache):
    """Proxima cache with provable bounds and a scalar interpolation.

    Pairs whose lower bound exceeds ``settings.cutoff_distance`` are left out
    of the outputs.
    """

    provable = True

    def __init__(self, shapes: Sequence[OffsetShape], mode, rep, **kwargs):
        super().__init__(shapes, mode, rep, **kwargs)
        reach = np.array([s.max_distance_from_origin for s in self.shapes])
        self.reach = np.maximum(reach[self.pairs[:, 0]], reach[self.pairs[:, 1]]) if self.num_pairs else np.zeros(0)
        self.witness_points = np.zeros((self.num_pairs, 2, 3))
        self.has_witness = np.zeros(self.num_pairs, dtype=bool)

    def _measure(self, k: int, pose_a: np.ndarray, pose_b: np.ndarray) -> float:
        i, j = self.pairs[k]
        info = self.shapes[i].contact(pose_a, self.shapes[j], pose_b)
        # witness points of a penetration are not guaranteed to lie on the shapes
        self.has_witness[k] = info.distance > 0.0
        if self.has_witness[k]:
            self.witness_points[k, 0] = np.linalg.solve(pose_a, np.append(info.point_a, 1.0))[:3]
            self.witness_points[k, 1] = np.linalg.solve(pose_b, np.append(info.point_b, 1.0))[:3]
        return info.distance

    def _evaluate(self, pair_poses: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        if self.num_pairs == 0:
            return np.zeros(0), np.zeros(0), np.zeros(0)
        approximate, lower, upper = proxima1_bounds(
            self.reference_poses, pair_poses, self.distances, self.reach,
            self.witness_points, self.has_witness, self.settings.interpolation)
        return np.array(approximate), np.array(lower), np.array(upper)

    def _visible(self, bounds: _Bounds) -> np.ndarray:
        return ~(bounds.lower > self.settings.cutoff_distance)
