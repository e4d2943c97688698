"""Shared state and query algorithms of the Proxima caches.

A cache holds, for every non-skipped shape pair, the exact distance measured
at the last refresh and the pose data it was measured at. On each query the
subclass bounds the current distance from that data in one batched call;
pairs whose bounds cannot settle the query are refreshed in order of
priority until the budget runs out.
"""

import dataclasses
import enum
import logging
import time
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ...config import ProximaSettings
from ...errors import ConfigurationError, ShapeQueryFailure
from ..loss import ProximityLoss, proximity_value
from ..queries import enumerate_pairs
from ..shapes import OffsetShape

logger = logging.getLogger(__name__)

# bound intervals narrower than this are treated as exact
DEGENERATE_WIDTH = 1e-9

_MIN_AVERAGE = 1e-5


class BudgetKind(enum.Enum):
    TIME = "time"
    ACCURACY = "accuracy"


@dataclasses.dataclass(frozen=True)
class ProximaBudget:
    """How much refreshing a single query may do.

    ``time(seconds)`` stops once the wall time of the query exceeds the
    target. ``accuracy(target)`` stops once the p-norm of the remaining
    per-pair loss errors falls under the target.
    """
    kind: BudgetKind
    value: float

    @classmethod
    def time(cls, seconds: float) -> "ProximaBudget":
        return cls(BudgetKind.TIME, float(seconds))

    @classmethod
    def accuracy(cls, target: float) -> "ProximaBudget":
        return cls(BudgetKind.ACCURACY, float(target))


class DistanceMode(enum.Enum):
    RAW = "raw"
    AVERAGE = "average"


@dataclasses.dataclass(frozen=True)
class ProximaOutput:
    shape_indices: Tuple[int, int]
    distance_mode: DistanceMode
    approximate_distance: float
    lower_bound_distance: float
    upper_bound_distance: float
    resolved: bool = True


@dataclasses.dataclass(frozen=True)
class ProximaQueryResult:
    """Outputs of one query and the pairs refreshed during it.

    Exactly one of ``intersect`` and ``proximity_value`` is set, depending
    on the query.
    """
    outputs: List[ProximaOutput]
    ground_truth_checks: List[Tuple[int, int]]
    intersect: Optional[bool] = None
    proximity_value: Optional[float] = None


class _Bounds:
    """Mutable per-query view of the bounds of every pair."""

    def __init__(self, approximate: np.ndarray, lower: np.ndarray, upper: np.ndarray, resolved: np.ndarray):
        self.approximate = approximate
        self.lower = lower
        self.upper = upper
        self.resolved = resolved

    def set_exact(self, k: int, distance: float) -> None:
        self.approximate[k] = self.lower[k] = self.upper[k] = distance
        self.resolved[k] = True

    def set_unresolved(self, k: int) -> None:
        self.approximate[k] = 0.0
        self.lower[k] = -np.inf
        self.upper[k] = np.inf
        self.resolved[k] = False

    def exact(self) -> np.ndarray:
        return self.resolved & (self.upper - self.lower <= DEGENERATE_WIDTH)


class ProximaCache:
    """
    Incremental distance bounds for the shape pairs of one group.

    Subclasses provide the bound model through ``_evaluate`` and the exact
    measurement through ``_measure``. The cache is sequential: one query at a
    time, with state arrays allocated once and updated in place.

    Args:
        shapes: Shapes of the group.
        mode: Link-shape mode the shapes were taken from.
        rep: Representation the shapes were taken from.
        skips: Optional (num_shapes, num_shapes) boolean skip table.
        settings: Runtime settings.
        averages: Optional (num_shapes, num_shapes) average distances, needed
            for ``DistanceMode.AVERAGE`` queries.
        frozen: If True, queries never refresh beyond the first measurement.
    """

    # True when lower and upper bounds are guaranteed, not statistical
    provable = False

    def __init__(
        self,
        shapes: Sequence[OffsetShape],
        mode,
        rep,
        skips: Optional[np.ndarray] = None,
        settings: ProximaSettings = ProximaSettings(),
        averages: Optional[np.ndarray] = None,
        frozen: bool = False,
    ):
        self.shapes = tuple(shapes)
        self.mode = mode
        self.rep = rep
        self.settings = settings
        self.frozen = frozen
        self.pairs = enumerate_pairs(len(self.shapes), skips)
        self.averages = None if averages is None else np.asarray(averages, dtype=np.float64)

        num_pairs = len(self.pairs)
        self.measured = np.zeros(num_pairs, dtype=bool)
        self.distances = np.zeros(num_pairs)
        self.reference_poses = np.tile(np.eye(4), (num_pairs, 2, 1, 1))
        self.num_queries = 0

    @property
    def num_pairs(self) -> int:
        return len(self.pairs)

    def check_compatible(self, mode, rep) -> None:
        if (mode, rep) != (self.mode, self.rep):
            raise ConfigurationError(
                f"Cache built for {self.mode.value}/{self.rep.value}, used with {mode.value}/{rep.value}")

    def reset(self) -> None:
        """Forget every measurement; the next query refreshes all pairs."""
        self.measured[:] = False

    def _measure(self, k: int, pose_a: np.ndarray, pose_b: np.ndarray) -> float:
        """Exact measurement of pair k; stores whatever the bound model needs."""
        raise NotImplementedError

    def _evaluate(self, pair_poses: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """(approximate, lower, upper) for every pair from the cached state."""
        raise NotImplementedError

    def _visible(self, bounds: _Bounds) -> np.ndarray:
        """Mask of the pairs reported in the outputs."""
        return np.ones(self.num_pairs, dtype=bool)

    def _refresh(self, k: int, pair_poses: np.ndarray, bounds: _Bounds) -> bool:
        i, j = self.pairs[k]
        try:
            d = self._measure(k, pair_poses[k, 0], pair_poses[k, 1])
        except ShapeQueryFailure as e:
            logger.warning("Unresolved shape pair (%d, %d): %s", i, j, e)
            self.measured[k] = False
            bounds.set_unresolved(k)
            return False
        self.distances[k] = d
        self.reference_poses[k] = pair_poses[k]
        self.measured[k] = True
        bounds.set_exact(k, d)
        return True

    def _pair_poses(self, poses) -> np.ndarray:
        poses = np.asarray(poses, dtype=np.float64)
        if poses.shape != (len(self.shapes), 4, 4):
            raise ValueError(f"Expected {len(self.shapes)} shape poses, got array of shape {poses.shape}")
        return poses[self.pairs]

    def _start(self, pair_poses: np.ndarray, checks: List[Tuple[int, int]]) -> _Bounds:
        """Measure never-measured pairs, then bound every pair."""
        self.num_queries += 1
        fresh = np.flatnonzero(~self.measured)
        bounds = _Bounds(np.zeros(self.num_pairs), np.zeros(self.num_pairs),
                         np.zeros(self.num_pairs), np.ones(self.num_pairs, dtype=bool))
        if len(fresh) < self.num_pairs:
            approximate, lower, upper = self._evaluate(pair_poses)
            bounds.approximate[:], bounds.lower[:], bounds.upper[:] = approximate, lower, upper
            failed = self.measured & ~(np.isfinite(approximate) & np.isfinite(lower) & np.isfinite(upper))
            for k in np.flatnonzero(failed):
                logger.warning("Unresolved shape pair (%d, %d): non-finite bounds", *self._pair(k))
                bounds.set_unresolved(k)
                checks.append(self._pair(k))
        for k in fresh:
            self._refresh(k, pair_poses, bounds)
            checks.append(self._pair(k))
        return bounds

    def _pair(self, k: int) -> Tuple[int, int]:
        return int(self.pairs[k, 0]), int(self.pairs[k, 1])

    def _scale(self, distance_mode: DistanceMode) -> np.ndarray:
        if distance_mode is DistanceMode.RAW:
            return np.ones(self.num_pairs)
        if self.averages is None:
            raise ConfigurationError("Average distances are required for DistanceMode.AVERAGE")
        return np.maximum(self.averages[self.pairs[:, 0], self.pairs[:, 1]], _MIN_AVERAGE)

    def _outputs(self, bounds: _Bounds, distance_mode: DistanceMode, scale: np.ndarray) -> List[ProximaOutput]:
        outputs = []
        for k in np.flatnonzero(self._visible(bounds)):
            outputs.append(ProximaOutput(
                shape_indices=self._pair(k),
                distance_mode=distance_mode,
                approximate_distance=float(bounds.approximate[k] / scale[k]),
                lower_bound_distance=float(bounds.lower[k] / scale[k]),
                upper_bound_distance=float(bounds.upper[k] / scale[k]),
                resolved=bool(bounds.resolved[k]),
            ))
        return outputs

    def intersect(self, poses, budget: Optional[ProximaBudget] = None, want_details: bool = True) -> ProximaQueryResult:
        """
        Whether any pair is in contact at the given shape poses.

        Returns True as soon as a pair is certainly colliding: an exact
        distance at or below zero, or a provable upper bound below zero.
        Otherwise pairs whose interval admits contact (or is wider than
        ``max_bound_width``) are refreshed by ascending lower bound. If the
        budget runs out first, the verdict is whether any approximate
        distance is at or below zero.

        Args:
            poses: (num_shapes, 4, 4) variable poses.
            budget: Optional refresh budget; None refreshes every candidate.
            want_details: Include per-pair outputs in the result.
        """
        start = time.perf_counter()
        pair_poses = self._pair_poses(poses)
        checks: List[Tuple[int, int]] = []
        bounds = self._start(pair_poses, checks)

        def finish(verdict: bool) -> ProximaQueryResult:
            logger.debug("Proxima intersect: %d pairs, %d ground-truth checks", self.num_pairs, len(checks))
            outputs = self._outputs(bounds, DistanceMode.RAW, np.ones(self.num_pairs)) if want_details else []
            return ProximaQueryResult(outputs, checks, intersect=verdict)

        if np.any(bounds.exact() & (bounds.approximate <= 0.0)):
            return finish(True)
        if self.provable and np.any(bounds.resolved & (bounds.upper < 0.0)):
            return finish(True)

        if not self.frozen:
            width = bounds.upper - bounds.lower
            too_wide = np.zeros(self.num_pairs, dtype=bool)
            if self.settings.max_bound_width is not None:
                too_wide = width > self.settings.max_bound_width
            candidates = np.flatnonzero(~bounds.exact() & bounds.resolved & ((bounds.lower <= 0.0) | too_wide))
            candidates = candidates[np.argsort(bounds.lower[candidates], kind="stable")]
            errors = np.maximum(np.abs(bounds.approximate - bounds.upper), np.abs(bounds.approximate - bounds.lower))

            tracker = _BudgetTracker(budget, start, errors[candidates], p_norm=8.0)
            for n, k in enumerate(candidates):
                if tracker.exhausted(n):
                    break
                ok = self._refresh(k, pair_poses, bounds)
                checks.append(self._pair(k))
                if ok and bounds.approximate[k] <= 0.0:
                    return finish(True)

        return finish(bool(np.any(bounds.approximate <= 0.0)))

    def proximity(
        self,
        poses,
        budget: Optional[ProximaBudget] = None,
        loss: ProximityLoss = ProximityLoss.identity(),
        p_norm: float = 8.0,
        distance_mode: DistanceMode = DistanceMode.RAW,
    ) -> ProximaQueryResult:
        """
        Aggregate proximity value at the given shape poses.

        Pairs are refreshed in descending order of their maximum possible
        loss error ``max(|L(a) - L(u)|, |L(a) - L(l)|)``; pairs with zero
        error are never refreshed.

        Args:
            poses: (num_shapes, 4, 4) variable poses.
            budget: Optional refresh budget; None refreshes every pair with
                nonzero error.
            loss: Per-pair loss.
            p_norm: Norm exponent of the aggregate.
            distance_mode: RAW distances or distances divided by the pair's
                average distance.
        """
        start = time.perf_counter()
        scale = self._scale(distance_mode)
        pair_poses = self._pair_poses(poses)
        checks: List[Tuple[int, int]] = []
        bounds = self._start(pair_poses, checks)

        if not self.frozen:
            errors = _loss_errors(bounds, scale, loss)
            candidates = np.flatnonzero(bounds.resolved & (errors > 0.0))
            candidates = candidates[np.argsort(-errors[candidates], kind="stable")]

            tracker = _BudgetTracker(budget, start, errors[candidates], p_norm)
            for n, k in enumerate(candidates):
                if tracker.exhausted(n):
                    break
                self._refresh(k, pair_poses, bounds)
                checks.append(self._pair(k))

        outputs = self._outputs(bounds, distance_mode, scale)
        value = float(proximity_value(np.array([o.approximate_distance for o in outputs]), loss, p_norm))
        logger.debug("Proxima proximity: %d pairs, %d ground-truth checks", self.num_pairs, len(checks))
        return ProximaQueryResult(outputs, checks, proximity_value=value)


def _loss_errors(bounds: _Bounds, scale: np.ndarray, loss: ProximityLoss) -> np.ndarray:
    a = np.asarray(loss(bounds.approximate / scale))
    u = np.asarray(loss(bounds.upper / scale))
    lo = np.asarray(loss(bounds.lower / scale))
    errors = np.maximum(np.abs(a - u), np.abs(a - lo))
    return np.where(np.isfinite(errors), errors, 0.0)


class _BudgetTracker:
    """Polled between refreshes of the candidates, in order."""

    def __init__(self, budget: Optional[ProximaBudget], start: float, errors: np.ndarray, p_norm: float):
        self.budget = budget
        self.start = start
        self.p_norm = p_norm
        # remaining[n] is the error p-norm of candidates n, n+1, ...
        powered = np.asarray(errors, dtype=np.float64) ** p_norm
        self.remaining = np.cumsum(powered[::-1])[::-1] ** (1.0 / p_norm) if len(powered) else powered

    def exhausted(self, n: int) -> bool:
        if self.budget is None:
            return False
        if self.budget.kind is BudgetKind.TIME:
            return time.perf_counter() - self.start > self.budget.value
        return self.remaining[n] < self.budget.value
