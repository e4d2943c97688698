"""Feasibility checkers: is a configuration within limits and collision free?

All checkers share ``is_feasible_state(config) -> bool``. The naive checker
queries every non-skipped shape pair; the BVH checker queries only the pairs
its broad phase reports.
"""

import logging
from typing import Optional

import jax
import numpy as np

from .chain import forward_kinematics_world, within_limits
from .core import RobotModel
from .proximity.bvh import BVH, BvhVolume
from .proximity.link_shapes import LinkShapeMode, LinkShapeRep, LinkShapesModule
from .proximity.queries import self_intersect

logger = logging.getLogger(__name__)

_fk = jax.jit(forward_kinematics_world)


class FeasibilityChecker:
    """Base class; subclasses implement ``is_feasible_state``."""

    def __init__(self, robot: RobotModel):
        self.robot = robot

    def is_feasible_state(self, config) -> bool:
        raise NotImplementedError


class BoundsFeasibilityChecker(FeasibilityChecker):
    """Feasible iff every DOF is within its joint limits."""

    def is_feasible_state(self, config) -> bool:
        return within_limits(self.robot, config)


class NaiveFeasibilityChecker(FeasibilityChecker):
    """
    Joint limits plus an exact check of every non-skipped shape pair.

    Args:
        robot: Chain to check.
        link_shapes: Shapes of the chain's links.
        mode: Link-shape mode.
        rep: Shape representation.
        skips: Optional (num_shapes, num_shapes) boolean skip table.
    """

    def __init__(self, robot: RobotModel, link_shapes: LinkShapesModule,
                 mode: LinkShapeMode = LinkShapeMode.FULL, rep: LinkShapeRep = LinkShapeRep.CONVEX_HULL,
                 skips: Optional[np.ndarray] = None):
        super().__init__(robot)
        self.link_shapes = link_shapes
        self.mode = mode
        self.shapes = link_shapes.get_shapes(mode, rep)
        self.skips = skips

    def shape_poses(self, config) -> np.ndarray:
        return self.link_shapes.link_poses_to_shape_poses(np.asarray(_fk(self.robot, config)), self.mode)

    def is_feasible_state(self, config) -> bool:
        if not within_limits(self.robot, config):
            return False
        return not self_intersect(self.shapes, self.shape_poses(config), self.skips)


class BVHFeasibilityChecker(NaiveFeasibilityChecker):
    """
    Joint limits plus broad phase, then exact checks of the candidates only.

    The hierarchy is rebuilt from scratch every ``rebuild_every`` queries and
    refit in between.

    Args:
        robot: Chain to check.
        link_shapes: Shapes of the chain's links.
        mode: Link-shape mode.
        rep: Shape representation.
        skips: Optional (num_shapes, num_shapes) boolean skip table.
        volume: Bounding volume of the hierarchy.
        rebuild_every: Number of queries between full rebuilds.
    """

    def __init__(self, robot: RobotModel, link_shapes: LinkShapesModule,
                 mode: LinkShapeMode = LinkShapeMode.FULL, rep: LinkShapeRep = LinkShapeRep.CONVEX_HULL,
                 skips: Optional[np.ndarray] = None, volume: BvhVolume = BvhVolume.AABB,
                 rebuild_every: int = 10):
        super().__init__(robot, link_shapes, mode, rep, skips)
        if rebuild_every < 1:
            raise ValueError(f"rebuild_every must be positive, got {rebuild_every}")
        self.bvh = BVH(self.shapes, volume)
        self.rebuild_every = rebuild_every
        self.num_queries = 0

    def is_feasible_state(self, config) -> bool:
        if not within_limits(self.robot, config):
            return False
        poses = self.shape_poses(config)
        if self.num_queries % self.rebuild_every == 0:
            self.bvh.build(poses)
            logger.info("Rebuilt BVH after %d queries", self.num_queries)
        else:
            self.bvh.refit(poses)
        self.num_queries += 1
        candidates = self.bvh.self_candidate_pairs(self.skips)
        return not self_intersect(self.shapes, poses, pairs=candidates)
