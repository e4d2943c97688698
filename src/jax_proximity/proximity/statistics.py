"""Offline distance statistics and skip tables for link shapes.

Both are built by sampling random configurations within the joint limits,
and persisted as JSON documents validated by pydantic. Skips that rest on
sampling alone ("never in collision") are advisory until ``verify_skips``
has re-checked them on an independent sample set.
"""

import enum
import logging
from typing import Dict, Iterable, List, Optional, Tuple

import jax
import numpy as np
from pydantic import BaseModel

from ..chain import forward_kinematics_world, sample_configuration
from ..config import StatisticsSettings
from ..core import RobotModel
from ..errors import ConfigurationError, ShapeQueryFailure
from .link_shapes import LinkShapeMode, LinkShapeRep, LinkShapesModule, table_key
from .persistence import JsonModule

logger = logging.getLogger(__name__)

ALL_MODES = (LinkShapeMode.FULL, LinkShapeMode.DECOMPOSITION)
ALL_REPS = (LinkShapeRep.CONVEX_HULL, LinkShapeRep.OBB, LinkShapeRep.BOUNDING_SPHERE)

_batched_fk = jax.jit(jax.vmap(forward_kinematics_world, in_axes=(None, 0)))


def sample_link_poses(robot: RobotModel, num_samples: int, seed: int) -> np.ndarray:
    """(num_samples, num_links, 4, 4) link poses at random configurations."""
    configs = sample_configuration(robot, jax.random.PRNGKey(seed), num_samples)
    return np.asarray(_batched_fk(robot, configs))


class DistanceStatistics(BaseModel):
    """Average, minimum and maximum distance of every shape pair (diagonal 0)."""
    averages: List[List[float]]
    minimums: List[List[float]]
    maximums: List[List[float]]

    def averages_array(self) -> np.ndarray:
        return np.asarray(self.averages, dtype=np.float64)


class DistanceStatisticsModule(JsonModule):
    num_samples: int
    entries: Dict[str, DistanceStatistics]

    def get(self, mode: LinkShapeMode, rep: LinkShapeRep) -> DistanceStatistics:
        try:
            return self.entries[table_key(mode, rep)]
        except KeyError:
            raise ConfigurationError(f"No distance statistics for {table_key(mode, rep)}") from None


class SkipReason(enum.IntEnum):
    NONE = 0
    SAME_LINK = 1
    ADJACENT = 2
    ALWAYS_IN_COLLISION = 3
    NEVER_IN_COLLISION = 4


class SkipTable(BaseModel):
    """Skip reason of every shape pair; any reason other than NONE means skip."""
    reasons: List[List[int]]
    verified: bool = False

    def skips(self) -> np.ndarray:
        return np.asarray(self.reasons, dtype=np.int64) != SkipReason.NONE

    def reason_array(self) -> np.ndarray:
        return np.asarray(self.reasons, dtype=np.int64)

    @property
    def advisory(self) -> bool:
        """True when sampled skips are present and were never verified."""
        return not self.verified and bool(np.any(self.reason_array() == SkipReason.NEVER_IN_COLLISION))


class SkipsModule(JsonModule):
    safety_margin: float
    entries: Dict[str, SkipTable]

    def get_table(self, mode: LinkShapeMode, rep: LinkShapeRep) -> SkipTable:
        try:
            return self.entries[table_key(mode, rep)]
        except KeyError:
            raise ConfigurationError(f"No skip table for {table_key(mode, rep)}") from None

    def get_skips(self, mode: LinkShapeMode, rep: LinkShapeRep) -> np.ndarray:
        return self.get_table(mode, rep).skips()


def _mode_reps(modes: Optional[Iterable[LinkShapeMode]],
               reps: Optional[Iterable[LinkShapeRep]]) -> List[Tuple[LinkShapeMode, LinkShapeRep]]:
    return [(m, r) for m in (modes or ALL_MODES) for r in (reps or ALL_REPS)]


def build_distance_statistics(
    robot: RobotModel,
    link_shapes: LinkShapesModule,
    settings: StatisticsSettings = StatisticsSettings(),
    modes: Optional[Iterable[LinkShapeMode]] = None,
    reps: Optional[Iterable[LinkShapeRep]] = None,
) -> DistanceStatisticsModule:
    """
    Sample ``settings.num_samples`` configurations and record per-pair distances.

    Args:
        robot: Chain to sample.
        link_shapes: Shapes of the chain's links.
        settings: Sample count and seed.
        modes: Modes to build (default: all).
        reps: Representations to build (default: all).

    Returns:
        DistanceStatisticsModule with one entry per (mode, rep).
    """
    all_link_poses = sample_link_poses(robot, settings.num_samples, settings.seed)

    entries = {}
    for mode, rep in _mode_reps(modes, reps):
        shapes = link_shapes.get_shapes(mode, rep)
        n = len(shapes)
        sums = np.zeros((n, n))
        counts = np.zeros((n, n))
        minimums = np.full((n, n), np.inf)
        maximums = np.full((n, n), -np.inf)

        for link_poses in all_link_poses:
            poses = link_shapes.link_poses_to_shape_poses(link_poses, mode)
            for i in range(n):
                for j in range(i + 1, n):
                    try:
                        d = shapes[i].distance(poses[i], shapes[j], poses[j])
                    except ShapeQueryFailure as e:
                        logger.warning("Statistics sample dropped for pair (%d, %d): %s", i, j, e)
                        continue
                    sums[i, j] += d
                    counts[i, j] += 1
                    minimums[i, j] = min(minimums[i, j], d)
                    maximums[i, j] = max(maximums[i, j], d)

        valid = counts > 0
        averages = np.where(valid, sums / np.maximum(counts, 1), 0.0)
        minimums = np.where(valid, minimums, 0.0)
        maximums = np.where(valid, maximums, 0.0)
        # mirror the upper triangle
        averages, minimums, maximums = (m + m.T for m in (averages, minimums, maximums))

        entries[table_key(mode, rep)] = DistanceStatistics(
            averages=averages.tolist(), minimums=minimums.tolist(), maximums=maximums.tolist())
        logger.info("Distance statistics for %s: %d shapes, %d samples",
                    table_key(mode, rep), n, settings.num_samples)

    return DistanceStatisticsModule(num_samples=settings.num_samples, entries=entries)


def _never_collide_threshold(settings: StatisticsSettings, h_i: float, h_j: float) -> float:
    return settings.safety_margin + settings.approach_fraction * min(h_i, h_j)


def build_skips(
    robot: RobotModel,
    link_shapes: LinkShapesModule,
    statistics: DistanceStatisticsModule,
    settings: StatisticsSettings = StatisticsSettings(),
) -> SkipsModule:
    """
    Skip tables for every (mode, rep) present in ``statistics``.

    A pair is skipped if both shapes are on the same link, the links are
    parent and child (when ``skip_adjacent``), the pair was always in
    collision, or its minimum sampled distance exceeds the safety margin
    widened by ``approach_fraction`` of the smaller shape's reach. The last
    rule is statistical; the resulting table is unverified.
    """
    entries = {}
    for key, stats in statistics.entries.items():
        mode_value, rep_value = key.split("/")
        mode, rep = LinkShapeMode(mode_value), LinkShapeRep(rep_value)
        shape_to_link = link_shapes.shape_to_link(mode)
        reach = link_shapes.max_distances_from_origin(mode, rep)
        minimums = np.asarray(stats.minimums)
        maximums = np.asarray(stats.maximums)

        n = len(shape_to_link)
        reasons = np.zeros((n, n), dtype=np.int64)
        for i in range(n):
            for j in range(n):
                if i == j:
                    reason = SkipReason.SAME_LINK
                elif shape_to_link[i] == shape_to_link[j]:
                    reason = SkipReason.SAME_LINK
                elif settings.skip_adjacent and robot.are_adjacent(shape_to_link[i], shape_to_link[j]):
                    reason = SkipReason.ADJACENT
                elif maximums[i, j] <= settings.always_colliding_tolerance:
                    reason = SkipReason.ALWAYS_IN_COLLISION
                elif minimums[i, j] > _never_collide_threshold(settings, reach[i], reach[j]):
                    reason = SkipReason.NEVER_IN_COLLISION
                else:
                    reason = SkipReason.NONE
                reasons[i, j] = reason

        entries[key] = SkipTable(reasons=reasons.tolist())
        logger.info("Skip table for %s: %d of %d pairs skipped", key,
                    int(np.sum(np.triu(reasons != SkipReason.NONE, 1))), n * (n - 1) // 2)

    return SkipsModule(safety_margin=settings.safety_margin, entries=entries)


def verify_skips(
    robot: RobotModel,
    link_shapes: LinkShapesModule,
    skips: SkipsModule,
    settings: StatisticsSettings = StatisticsSettings(),
    num_samples: int = 1000,
    seed: int = 1,
) -> Tuple[SkipsModule, Dict[str, List[Tuple[int, int]]]]:
    """
    Re-check "never in collision" skips on an independent sample set.

    Pairs that come within their threshold are un-skipped. Every checked
    table is marked verified.

    Returns:
        (updated SkipsModule, violating pairs per table key)
    """
    all_link_poses = sample_link_poses(robot, num_samples, seed)

    entries, violations = {}, {}
    for key, table in skips.entries.items():
        mode_value, rep_value = key.split("/")
        mode, rep = LinkShapeMode(mode_value), LinkShapeRep(rep_value)
        shapes = link_shapes.get_shapes(mode, rep)
        reach = link_shapes.max_distances_from_origin(mode, rep)
        reasons = table.reason_array()

        candidates = [(int(i), int(j)) for i, j in zip(*np.nonzero(reasons == SkipReason.NEVER_IN_COLLISION)) if i < j]
        violating = set()
        for link_poses in all_link_poses:
            poses = link_shapes.link_poses_to_shape_poses(link_poses, mode)
            for i, j in candidates:
                if (i, j) in violating:
                    continue
                try:
                    d = shapes[i].distance(poses[i], shapes[j], poses[j])
                except ShapeQueryFailure:
                    d = 0.0
                if d <= _never_collide_threshold(settings, reach[i], reach[j]):
                    violating.add((i, j))

        for i, j in violating:
            reasons[i, j] = reasons[j, i] = SkipReason.NONE
        if violating:
            logger.warning("Skip table %s: %d sampled skips failed verification", key, len(violating))
        entries[key] = SkipTable(reasons=reasons.tolist(), verified=True)
        violations[key] = sorted(violating)

    return skips.model_copy(update={"entries": entries}), violations
