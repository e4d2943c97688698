"""Stateless exact queries over the shape pairs of a single group.

These are the ground-truth baselines: every selected pair goes through the
narrow phase on every call. A pair whose narrow-phase query fails is reported
as unresolved with distance 0 so that it counts as possible contact.
"""

import dataclasses
import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..errors import ShapeQueryFailure
from .narrow_phase import ContactInfo
from .shapes import OffsetShape

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class PairwiseResult:
    """Exact result for one shape pair."""
    shape_indices: Tuple[int, int]
    distance: float
    contact: Optional[ContactInfo] = None
    resolved: bool = True


@dataclasses.dataclass(frozen=True)
class ContactResult:
    outputs: List[PairwiseResult]
    num_ground_truth_checks: int


def enumerate_pairs(num_shapes: int, skips: Optional[np.ndarray] = None,
                    symmetric: bool = True) -> np.ndarray:
    """
    Shape pairs to query, in row-major order.

    Args:
        num_shapes: Number of shapes in the group.
        skips: Optional (num_shapes, num_shapes) boolean table; True entries
            are left out.
        symmetric: If True only pairs i < j are produced, otherwise every
            ordered pair with i != j.

    Returns:
        (num_pairs, 2) integer array
    """
    if skips is not None:
        skips = np.asarray(skips, dtype=bool)
        if skips.shape != (num_shapes, num_shapes):
            raise ValueError(f"Skip table of shape {skips.shape} does not match {num_shapes} shapes")
    pairs = [
        (i, j)
        for i in range(num_shapes)
        for j in range(i + 1 if symmetric else 0, num_shapes)
        if i != j and (skips is None or not skips[i, j])
    ]
    return np.array(pairs, dtype=np.int64).reshape(-1, 2)


def _select_pairs(shapes, skips, pairs) -> np.ndarray:
    if pairs is None:
        return enumerate_pairs(len(shapes), skips)
    return np.asarray(pairs, dtype=np.int64).reshape(-1, 2)


def _check_poses(shapes: Sequence[OffsetShape], poses) -> np.ndarray:
    poses = np.asarray(poses, dtype=np.float64)
    if poses.shape != (len(shapes), 4, 4):
        raise ValueError(f"Expected {len(shapes)} shape poses, got array of shape {poses.shape}")
    return poses


def pair_contact(shapes: Sequence[OffsetShape], poses: np.ndarray, i: int, j: int,
                 max_distance: float = float("inf")) -> Optional[ContactInfo]:
    try:
        return shapes[i].contact(poses[i], shapes[j], poses[j], max_distance)
    except ShapeQueryFailure as e:
        e.shape_indices = (i, j)
        raise


def self_distance(shapes: Sequence[OffsetShape], poses, skips: Optional[np.ndarray] = None,
                  want_contact_details: bool = False, pairs=None) -> List[PairwiseResult]:
    """
    Exact signed distance of every non-skipped pair.

    Args:
        shapes: Shapes of the group.
        poses: (num_shapes, 4, 4) variable poses.
        skips: Optional skip table.
        want_contact_details: Attach the ContactInfo to each result.
        pairs: Optional explicit (num_pairs, 2) subset, overriding ``skips``.

    Returns:
        One PairwiseResult per queried pair.
    """
    return self_contact(shapes, poses, skips, want_contact_details, pairs=pairs).outputs


def self_contact(shapes: Sequence[OffsetShape], poses, skips: Optional[np.ndarray] = None,
                 want_contact_details: bool = False, max_distance: float = float("inf"),
                 pairs=None) -> ContactResult:
    """
    Naive contact scan: exact query on every selected pair.

    Pairs farther apart than ``max_distance`` are left out of the outputs but
    still count as ground-truth checks.
    """
    poses = _check_poses(shapes, poses)
    selected = _select_pairs(shapes, skips, pairs)

    outputs = []
    for i, j in selected:
        i, j = int(i), int(j)
        try:
            info = pair_contact(shapes, poses, i, j, max_distance)
        except ShapeQueryFailure as e:
            logger.warning("Unresolved shape pair (%d, %d): %s", i, j, e)
            outputs.append(PairwiseResult((i, j), 0.0, resolved=False))
            continue
        if info is None:
            continue
        outputs.append(PairwiseResult((i, j), info.distance, info if want_contact_details else None))

    logger.debug("self_contact: %d pairs checked, %d reported", len(selected), len(outputs))
    return ContactResult(outputs, len(selected))


def self_intersect(shapes: Sequence[OffsetShape], poses, skips: Optional[np.ndarray] = None,
                   early_stop: bool = True, pairs=None) -> bool:
    """
    True if any selected pair overlaps.

    A failed pair counts as overlapping. With ``early_stop`` the scan ends
    at the first overlap.
    """
    poses = _check_poses(shapes, poses)
    colliding = False
    for i, j in _select_pairs(shapes, skips, pairs):
        i, j = int(i), int(j)
        try:
            hit = shapes[i].intersect(poses[i], shapes[j], poses[j])
        except ShapeQueryFailure as e:
            logger.warning("Unresolved shape pair (%d, %d): %s", i, j, e)
            hit = True
        if hit:
            colliding = True
            if early_stop:
                break
    return colliding


def to_average_distances(results: Sequence[PairwiseResult], averages: np.ndarray) -> List[PairwiseResult]:
    """Divide each distance by its pair's average distance (floored at 1e-5)."""
    averages = np.asarray(averages, dtype=np.float64)
    return [
        dataclasses.replace(r, distance=r.distance / max(averages[r.shape_indices], 1e-5))
        for r in results
    ]
