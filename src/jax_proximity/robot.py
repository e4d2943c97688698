"""Robot facade: a chain, its link shapes and their precomputed tables.

Queries take the per-link world poses produced by ``Robot.fk`` so that one
forward-kinematics call can feed several queries.
"""

import logging
from pathlib import Path
from typing import List, Optional, Union

import jax
import numpy as np

from .chain import forward_kinematics_world, sample_configuration
from .config import ProximaSettings
from .core import RobotModel
from .errors import ConfigurationError, DimensionMismatchError
from .io import load_collision_meshes, load_urdf
from .proximity.error_models import LieAlgErrorModels
from .proximity.link_shapes import LinkShapeMode, LinkShapeRep, LinkShapesModule
from .proximity.loss import ProximityLoss
from .proximity.proxima import (
    DistanceMode,
    Proxima1Cache,
    Proxima2Cache,
    ProximaBudget,
    ProximaCache,
    ProximaQueryResult,
)
from .proximity import queries
from .proximity.queries import ContactResult, PairwiseResult
from .proximity.statistics import DistanceStatisticsModule, SkipsModule
from .transforms.se3 import LieAlgMode

logger = logging.getLogger(__name__)

_fk = jax.jit(forward_kinematics_world)


class Robot:
    """
    A kinematic chain with collision shapes.

    Args:
        model: Chain topology and limits.
        link_shapes: Shapes of the chain's links.
        skips: Optional skip tables; without them no pair is skipped.
        statistics: Optional distance statistics, needed for average
            distance queries.
        error_models: Optional error models, needed for Proxima2 caches.
    """

    def __init__(
        self,
        model: RobotModel,
        link_shapes: LinkShapesModule,
        skips: Optional[SkipsModule] = None,
        statistics: Optional[DistanceStatisticsModule] = None,
        error_models: Optional[LieAlgErrorModels] = None,
    ):
        if tuple(link_shapes.link_names) != tuple(model.link_names):
            raise ConfigurationError("Link shapes were built for a different chain")
        self.model = model
        self.link_shapes = link_shapes
        self.skips = skips
        self.statistics = statistics
        self.error_models = error_models

        if skips is not None:
            for key, table in skips.entries.items():
                if table.advisory:
                    logger.warning("Skip table %s contains sampled skips that were never verified", key)

    @classmethod
    def from_urdf(
        cls,
        path: Union[str, Path],
        skips: Optional[SkipsModule] = None,
        statistics: Optional[DistanceStatisticsModule] = None,
        error_models: Optional[LieAlgErrorModels] = None,
    ) -> "Robot":
        """Load the chain and its collision geometry from a URDF file."""
        model = load_urdf(path)
        link_shapes = LinkShapesModule.from_link_meshes(model.link_names, load_collision_meshes(path, model))
        return cls(model, link_shapes, skips, statistics, error_models)

    @property
    def num_dofs(self) -> int:
        return self.model.num_dofs

    def fk(self, config) -> np.ndarray:
        """(num_links, 4, 4) world poses of every link."""
        config = np.asarray(config, dtype=np.float64)
        if config.shape != (self.num_dofs,):
            raise DimensionMismatchError(self.num_dofs, config.shape[-1] if config.ndim else 0)
        return np.asarray(_fk(self.model, config))

    def sample_configuration(self, key, num_samples: Optional[int] = None) -> np.ndarray:
        return np.asarray(sample_configuration(self.model, key, num_samples))

    def get_shapes(self, mode: LinkShapeMode, rep: LinkShapeRep):
        return self.link_shapes.get_shapes(mode, rep)

    def get_skips(self, mode: LinkShapeMode, rep: LinkShapeRep) -> Optional[np.ndarray]:
        """Boolean skip table, or None when the robot has no skip tables."""
        if self.skips is None:
            return None
        return self.skips.get_skips(mode, rep)

    def shape_poses(self, link_poses, mode: LinkShapeMode) -> np.ndarray:
        return self.link_shapes.link_poses_to_shape_poses(link_poses, mode)

    def self_distance(self, link_poses, mode: LinkShapeMode = LinkShapeMode.FULL,
                      rep: LinkShapeRep = LinkShapeRep.CONVEX_HULL,
                      want_contact_details: bool = False) -> List[PairwiseResult]:
        """Exact distance of every non-skipped shape pair."""
        return queries.self_distance(self.get_shapes(mode, rep), self.shape_poses(link_poses, mode),
                                     self.get_skips(mode, rep), want_contact_details)

    def self_contact(self, link_poses, mode: LinkShapeMode = LinkShapeMode.FULL,
                     rep: LinkShapeRep = LinkShapeRep.CONVEX_HULL, want_details: bool = False,
                     max_distance: float = float("inf")) -> ContactResult:
        return queries.self_contact(self.get_shapes(mode, rep), self.shape_poses(link_poses, mode),
                                    self.get_skips(mode, rep), want_details, max_distance)

    def self_intersect(self, link_poses, mode: LinkShapeMode = LinkShapeMode.FULL,
                       rep: LinkShapeRep = LinkShapeRep.CONVEX_HULL) -> bool:
        return queries.self_intersect(self.get_shapes(mode, rep), self.shape_poses(link_poses, mode),
                                      self.get_skips(mode, rep))

    def _averages(self, mode: LinkShapeMode, rep: LinkShapeRep) -> Optional[np.ndarray]:
        if self.statistics is None:
            return None
        return self.statistics.get(mode, rep).averages_array()

    def get_self_proxima1(self, config, mode: LinkShapeMode = LinkShapeMode.FULL,
                          rep: LinkShapeRep = LinkShapeRep.CONVEX_HULL,
                          settings: ProximaSettings = ProximaSettings(), frozen: bool = False) -> Proxima1Cache:
        """
        New Proxima1 cache for this robot.

        ``config`` is checked against the chain; every pair is measured on
        the cache's first query.
        """
        self.fk(config)
        return Proxima1Cache(self.get_shapes(mode, rep), mode, rep, skips=self.get_skips(mode, rep),
                             settings=settings, averages=self._averages(mode, rep), frozen=frozen)

    def get_self_proxima2(self, config, mode: LinkShapeMode = LinkShapeMode.FULL,
                          rep: LinkShapeRep = LinkShapeRep.CONVEX_HULL,
                          lie_mode: LieAlgMode = LieAlgMode.STANDARD,
                          settings: ProximaSettings = ProximaSettings(), frozen: bool = False) -> Proxima2Cache:
        """
        New Proxima2 cache for this robot.

        Raises:
            ConfigurationError: If there is no error model for
                (mode, rep, lie_mode).
        """
        self.fk(config)
        if self.error_models is None:
            raise ConfigurationError("Proxima2 requires error models")
        error_model = self.error_models.get_model(mode, rep, lie_mode)
        return Proxima2Cache(self.get_shapes(mode, rep), mode, rep, error_model, lie_mode,
                             skips=self.get_skips(mode, rep), settings=settings,
                             averages=self._averages(mode, rep), frozen=frozen)

    def self_intersect_proxima(self, cache: ProximaCache, link_poses, mode: LinkShapeMode = LinkShapeMode.FULL,
                               rep: LinkShapeRep = LinkShapeRep.CONVEX_HULL, want_details: bool = True,
                               budget: Optional[ProximaBudget] = None) -> ProximaQueryResult:
        cache.check_compatible(mode, rep)
        return cache.intersect(self.shape_poses(link_poses, mode), budget, want_details)

    def self_proximity_proxima(self, cache: ProximaCache, link_poses, mode: LinkShapeMode = LinkShapeMode.FULL,
                               rep: LinkShapeRep = LinkShapeRep.CONVEX_HULL,
                               budget: Optional[ProximaBudget] = None,
                               loss: ProximityLoss = ProximityLoss.identity(), p_norm: float = 8.0,
                               distance_mode: DistanceMode = DistanceMode.RAW) -> ProximaQueryResult:
        cache.check_compatible(mode, rep)
        return cache.proximity(self.shape_poses(link_poses, mode), budget, loss, p_norm, distance_mode)
