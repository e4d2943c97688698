"""Shape-pair distance as a function of the relative pose in Lie coordinates.

Shape a sits at the identity and shape b at a relative variable pose ``D``.
Perturbations ``delta`` act on the right, ``D @ exp(delta)``, in the chosen
tangent encoding.
"""

from functools import partial
from typing import Tuple

import jax
import jax.numpy as jnp
import numpy as np

from ..transforms import se3
from ..transforms.se3 import LieAlgMode
from .shapes import OffsetShape

_IDENTITY = np.eye(4)


@partial(jax.jit, static_argnames=("lie_mode",))
def _right_perturbations(reference: jax.Array, deltas: jax.Array, lie_mode: LieAlgMode) -> jax.Array:
    return reference @ se3.lie_exp(deltas, lie_mode)


def relative_pose_from_tangent(t, lie_mode: LieAlgMode) -> np.ndarray:
    return np.asarray(se3.lie_exp(jnp.asarray(t, dtype=jnp.float64), lie_mode))


def relative_distance(shape_a: OffsetShape, shape_b: OffsetShape, relative_pose) -> float:
    return shape_a.distance(_IDENTITY, shape_b, relative_pose)


def perturbed_distance(shape_a: OffsetShape, shape_b: OffsetShape, reference, delta,
                       lie_mode: LieAlgMode) -> float:
    """Distance with shape b at ``reference @ exp(delta)``."""
    pose = _right_perturbations(jnp.asarray(reference), jnp.asarray(delta)[None], lie_mode)[0]
    return relative_distance(shape_a, shape_b, np.asarray(pose))


def distance_gradient(shape_a: OffsetShape, shape_b: OffsetShape, reference,
                      lie_mode: LieAlgMode, step: float = 1e-4) -> np.ndarray:
    """
    Gradient of the distance w.r.t. a right perturbation of ``reference``.

    Central finite difference with the given step, all twelve queries taken
    in the relative frame.

    Raises:
        ShapeQueryFailure: If any of the narrow-phase queries fails.
    """
    steps = step * np.eye(6)
    poses = np.asarray(_right_perturbations(jnp.asarray(reference), jnp.asarray(np.vstack([steps, -steps])), lie_mode))
    values = np.array([relative_distance(shape_a, shape_b, pose) for pose in poses])
    return (values[:6] - values[6:]) / (2.0 * step)


def distance_and_gradient(shape_a: OffsetShape, shape_b: OffsetShape, reference,
                          lie_mode: LieAlgMode, step: float = 1e-4) -> Tuple[float, np.ndarray]:
    """Relative-frame distance at ``reference`` and its distance_gradient()."""
    return (relative_distance(shape_a, shape_b, reference),
            distance_gradient(shape_a, shape_b, reference, lie_mode, step))
