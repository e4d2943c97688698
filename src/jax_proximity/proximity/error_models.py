"""Error-bound polynomials for the Proxima2 first-order distance model.

For a shape pair at relative pose ``D``, Proxima2 predicts the distance at
``D @ exp(delta)`` as ``d(D) + g . delta``. The error of that prediction is
bounded below and above by polynomials in ``||delta||`` fit by quantile
regression on sampled data. The fit is the pinball-loss minimization solved
exactly as a linear program.
"""

import enum
import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
from pydantic import BaseModel
from scipy.optimize import linprog

from ..config import ErrorModelSettings
from ..errors import ConfigurationError, ShapeQueryFailure
from ..transforms.se3 import LieAlgMode
from .link_shapes import LinkShapeMode, LinkShapeRep, LinkShapesModule, table_key
from .shapes import OffsetShape
from .persistence import JsonModule
from .statistics import ALL_MODES, ALL_REPS
from . import lie_distance

logger = logging.getLogger(__name__)

# Ascending-power coefficient slots stored per pair
NUM_COEFFICIENTS = 5

# Linear fallbacks measured on reference robots, per encoding
REFERENCE_LINEAR_BOUNDS = {
    LieAlgMode.STANDARD: (-0.3244893534761935, 1.561538215120098),
    LieAlgMode.PSEUDO: (-0.33611397097921175, 1.5894634675072785),
}


class PolynomialFit(enum.Enum):
    LINEAR_NO_INTERCEPT = "linear_no_intercept"
    LINEAR = "linear"
    QUADRATIC = "quadratic"
    CUBIC = "cubic"
    QUARTIC = "quartic"

    @property
    def powers(self) -> Tuple[int, ...]:
        return {
            PolynomialFit.LINEAR_NO_INTERCEPT: (1,),
            PolynomialFit.LINEAR: (0, 1),
            PolynomialFit.QUADRATIC: (0, 1, 2),
            PolynomialFit.CUBIC: (0, 1, 2, 3),
            PolynomialFit.QUARTIC: (0, 1, 2, 3, 4),
        }[self]


def polynomial_value(coefficients: np.ndarray, x: np.ndarray) -> np.ndarray:
    """Evaluate ascending-power coefficients (..., NUM_COEFFICIENTS) at x (...,)."""
    powers = np.asarray(x)[..., None] ** np.arange(NUM_COEFFICIENTS)
    return np.sum(np.asarray(coefficients) * powers, axis=-1)


def quantile_fit(dataset: np.ndarray, q: float, polynomial: PolynomialFit = PolynomialFit.CUBIC) -> np.ndarray:
    """
    Quantile regression of a polynomial through (x, y) samples.

    Minimizes sum(q * u+ + (1 - q) * u-) subject to X b + u+ - u- = y,
    u+, u- >= 0, with the HiGHS LP solver.

    Args:
        dataset: (num_samples, 2) array of (x, y)
        q: Quantile in (0, 1)
        polynomial: Which powers of x are free

    Returns:
        (NUM_COEFFICIENTS,) ascending-power coefficients; unused powers are 0.
    """
    if not 0.0 < q < 1.0:
        raise ValueError(f"Quantile must be in (0, 1), got {q}")
    dataset = np.asarray(dataset, dtype=np.float64)
    x, y = dataset[:, 0], dataset[:, 1]
    n = len(x)
    powers = polynomial.powers
    X = np.stack([x ** p for p in powers], axis=1)
    k = X.shape[1]

    c = np.concatenate([np.zeros(k), np.full(n, q), np.full(n, 1.0 - q)])
    A_eq = np.hstack([X, np.eye(n), -np.eye(n)])
    bounds = [(None, None)] * k + [(0.0, None)] * (2 * n)
    result = linprog(c, A_eq=A_eq, b_eq=y, bounds=bounds, method="highs")
    if not result.success:
        raise RuntimeError(f"Quantile regression failed: {result.message}")

    coefficients = np.zeros(NUM_COEFFICIENTS)
    coefficients[list(powers)] = result.x[:k]
    return coefficients


def _random_ball_vectors(rng: np.random.Generator, num: int, norm_max: float) -> np.ndarray:
    directions = rng.uniform(-1.0, 1.0, size=(num, 6))
    directions /= np.linalg.norm(directions, axis=1, keepdims=True)
    return directions * rng.uniform(0.0, norm_max, size=(num, 1))


def taylor_error_dataset(
    shape_a: OffsetShape,
    shape_b: OffsetShape,
    lie_mode: LieAlgMode,
    settings: ErrorModelSettings = ErrorModelSettings(),
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """
    Samples of (||delta||, true - predicted) for one shape pair.

    ``t`` is drawn with norm up to ``t_norm_max`` and defines the reference
    relative pose exp(t); ``delta`` is drawn with norm up to
    ``delta_norm_max`` and applied on the right.

    Returns:
        (num_samples, 2) array
    """
    rng = rng if rng is not None else np.random.default_rng(settings.seed)
    rows = []
    for t in _random_ball_vectors(rng, settings.num_gradient_samples, settings.t_norm_max):
        reference = lie_distance.relative_pose_from_tangent(t, lie_mode)
        try:
            d0, gradient = lie_distance.distance_and_gradient(shape_a, shape_b, reference, lie_mode)
        except ShapeQueryFailure as e:
            logger.warning("Error-model sample dropped: %s", e)
            continue
        deltas = _random_ball_vectors(rng, settings.num_samples_per_gradient, settings.delta_norm_max)
        for delta in deltas:
            try:
                gt = lie_distance.perturbed_distance(shape_a, shape_b, reference, delta, lie_mode)
            except ShapeQueryFailure:
                continue
            rows.append((np.linalg.norm(delta), gt - (d0 + gradient @ delta)))
    return np.asarray(rows, dtype=np.float64).reshape(-1, 2)


class LieAlgErrorModel(BaseModel):
    """Lower and upper error polynomials of every shape pair.

    ``lower[i][j]`` and ``upper[i][j]`` hold NUM_COEFFICIENTS ascending-power
    coefficients.
    """
    lower: List[List[List[float]]]
    upper: List[List[List[float]]]

    def pair_coefficients(self, pairs: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """(num_pairs, NUM_COEFFICIENTS) lower and upper coefficients for index pairs."""
        lower = np.asarray(self.lower, dtype=np.float64)
        upper = np.asarray(self.upper, dtype=np.float64)
        pairs = np.asarray(pairs, dtype=np.int64).reshape(-1, 2)
        return lower[pairs[:, 0], pairs[:, 1]], upper[pairs[:, 0], pairs[:, 1]]


class LieAlgErrorModels(JsonModule):
    entries: Dict[str, LieAlgErrorModel]

    def get_model(self, mode: LinkShapeMode, rep: LinkShapeRep, lie_mode: LieAlgMode) -> LieAlgErrorModel:
        try:
            return self.entries[table_key(mode, rep, lie_mode)]
        except KeyError:
            raise ConfigurationError(f"No error model for {table_key(mode, rep, lie_mode)}") from None

    @classmethod
    def uniform(
        cls,
        link_shapes: LinkShapesModule,
        lower_coefficients: Optional[Sequence[float]] = None,
        upper_coefficients: Optional[Sequence[float]] = None,
        modes: Optional[Iterable[LinkShapeMode]] = None,
        reps: Optional[Iterable[LinkShapeRep]] = None,
        lie_modes: Iterable[LieAlgMode] = (LieAlgMode.STANDARD, LieAlgMode.PSEUDO),
    ) -> "LieAlgErrorModels":
        """
        The same polynomials for every pair.

        Without explicit coefficients, the reference linear bounds of each
        encoding are used.
        """
        entries = {}
        for mode in modes or ALL_MODES:
            n = link_shapes.num_shapes(mode)
            for rep in reps or ALL_REPS:
                for lie_mode in lie_modes:
                    ref_lower, ref_upper = REFERENCE_LINEAR_BOUNDS[lie_mode]
                    lower = _padded(lower_coefficients, ref_lower)
                    upper = _padded(upper_coefficients, ref_upper)
                    entries[table_key(mode, rep, lie_mode)] = LieAlgErrorModel(
                        lower=np.broadcast_to(lower, (n, n, NUM_COEFFICIENTS)).tolist(),
                        upper=np.broadcast_to(upper, (n, n, NUM_COEFFICIENTS)).tolist(),
                    )
        return cls(entries=entries)


def _padded(coefficients: Optional[Sequence[float]], linear: float) -> np.ndarray:
    out = np.zeros(NUM_COEFFICIENTS)
    if coefficients is None:
        out[1] = linear
    else:
        coefficients = np.asarray(coefficients, dtype=np.float64)
        out[:len(coefficients)] = coefficients
    return out


def build_error_models(
    link_shapes: LinkShapesModule,
    settings: ErrorModelSettings = ErrorModelSettings(),
    modes: Optional[Iterable[LinkShapeMode]] = None,
    reps: Optional[Iterable[LinkShapeRep]] = None,
    lie_modes: Iterable[LieAlgMode] = (LieAlgMode.STANDARD, LieAlgMode.PSEUDO),
    skips: Optional[Dict[str, np.ndarray]] = None,
) -> LieAlgErrorModels:
    """
    Fit lower/upper error polynomials for every shape pair.

    Args:
        link_shapes: Shapes to fit.
        settings: Dataset sizes, polynomial and quantiles.
        modes, reps, lie_modes: Tables to build (default: all).
        skips: Optional skip tables keyed by ``table_key(mode, rep)``;
            skipped pairs keep zero polynomials.

    Returns:
        LieAlgErrorModels with one entry per (mode, rep, lie_mode).
    """
    polynomial = PolynomialFit(settings.polynomial)
    rng = np.random.default_rng(settings.seed)
    entries = {}
    for mode in modes or ALL_MODES:
        for rep in reps or ALL_REPS:
            shapes = link_shapes.get_shapes(mode, rep)
            n = len(shapes)
            skip_table = (skips or {}).get(table_key(mode, rep))
            for lie_mode in lie_modes:
                lower = np.zeros((n, n, NUM_COEFFICIENTS))
                upper = np.zeros((n, n, NUM_COEFFICIENTS))
                for i in range(n):
                    for j in range(i + 1, n):
                        if skip_table is not None and skip_table[i, j]:
                            continue
                        dataset = taylor_error_dataset(shapes[i], shapes[j], lie_mode, settings, rng)
                        if len(dataset) == 0:
                            raise ConfigurationError(f"No valid error samples for pair ({i}, {j})")
                        lower[i, j] = lower[j, i] = quantile_fit(dataset, settings.lower_quantile, polynomial)
                        upper[i, j] = upper[j, i] = quantile_fit(dataset, settings.upper_quantile, polynomial)
                key = table_key(mode, rep, lie_mode)
                entries[key] = LieAlgErrorModel(lower=lower.tolist(), upper=upper.tolist())
                logger.info("Fit error models for %s (%d shapes)", key, n)
    return LieAlgErrorModels(entries=entries)
