"""Aggregate proximity scoring.

``proximity_value`` is written in jax.numpy so the same code scores plain
distances and traced ones inside jax.grad / jax.jit.
"""

import dataclasses
import enum
from typing import Iterable, Optional

import jax
import jax.numpy as jnp
import numpy as np

Array = jax.Array


class LossKind(enum.Enum):
    IDENTITY = "identity"
    HINGE = "hinge"


@dataclasses.dataclass(frozen=True)
class ProximityLoss:
    """Per-pair loss applied to a signed distance.

    ``hinge(t)`` gives ``t - d`` for ``d <= t`` and 0 otherwise.
    """
    kind: LossKind
    threshold: Optional[float] = None

    @classmethod
    def identity(cls) -> "ProximityLoss":
        return cls(LossKind.IDENTITY)

    @classmethod
    def hinge(cls, threshold: float) -> "ProximityLoss":
        return cls(LossKind.HINGE, float(threshold))

    def __call__(self, distances):
        if self.kind is LossKind.HINGE:
            return jnp.maximum(self.threshold - distances, 0.0)
        return distances


def proximity_value(distances: Array, loss: ProximityLoss, p_norm: float = 8.0) -> Array:
    """
    (sum |loss(d_i)|^p)^(1/p).

    Zero losses are handled without dividing by zero, so the value and its
    gradient stay finite for distances at or below zero and for an empty
    input.

    Args:
        distances: (num_pairs,) signed distances
        loss: Per-pair loss
        p_norm: Norm exponent p > 0

    Returns:
        Scalar proximity value
    """
    losses = jnp.abs(loss(jnp.asarray(distances, dtype=jnp.float64)))
    total = jnp.sum(jnp.where(losses > 0.0, losses, 0.0) ** p_norm)
    safe_total = jnp.where(total > 0.0, total, 1.0)
    return jnp.where(total > 0.0, safe_total ** (1.0 / p_norm), 0.0)


def _distances(results: Iterable) -> np.ndarray:
    values = []
    for r in results:
        # PairwiseResult carries `distance`, ProximaOutput `approximate_distance`
        values.append(r.approximate_distance if hasattr(r, "approximate_distance") else r.distance)
    return np.asarray(values, dtype=np.float64)


def to_proximity_value(results: Iterable, loss: ProximityLoss, p_norm: float = 8.0) -> float:
    """Proximity value of PairwiseResult or ProximaOutput records."""
    return float(proximity_value(_distances(results), loss, p_norm))


def to_intersection_result(results: Iterable) -> bool:
    """True if any record reports a distance at or below zero."""
    return bool(np.any(_distances(results) <= 0.0))
