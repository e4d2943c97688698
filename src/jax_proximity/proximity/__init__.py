"""
Self-proximity queries for kinematic chains.

- Shapes and the fcl narrow phase (shapes, narrow_phase)
- Per-link shapes in every mode and representation (link_shapes)
- Offline statistics, skip tables and error models (statistics, error_models)
- Exact baselines and incremental Proxima caches (queries, proxima)
- Broad phase (bvh) and aggregate scoring (loss, differentiable)
"""

from .bvh import BVH, BvhVolume
from .differentiable import bounding_sphere_distances, self_proximity_objective
from .error_models import (
    LieAlgErrorModel,
    LieAlgErrorModels,
    PolynomialFit,
    build_error_models,
    quantile_fit,
    taylor_error_dataset,
)
from .link_shapes import LinkShapeMode, LinkShapeRep, LinkShapesModule
from .loss import ProximityLoss, proximity_value, to_intersection_result, to_proximity_value
from .narrow_phase import ContactInfo
from .proxima import (
    DistanceMode,
    Proxima1Cache,
    Proxima2Cache,
    ProximaBudget,
    ProximaCache,
    ProximaOutput,
    ProximaQueryResult,
)
from .queries import ContactResult, PairwiseResult, self_contact, self_distance, self_intersect
from .shapes import Ball, ConvexHull, Cuboid, OffsetShape
from .statistics import (
    DistanceStatisticsModule,
    SkipReason,
    SkipsModule,
    build_distance_statistics,
    build_skips,
    verify_skips,
)

__all__ = [
    "BVH",
    "BvhVolume",
    "bounding_sphere_distances",
    "self_proximity_objective",
    "LieAlgErrorModel",
    "LieAlgErrorModels",
    "PolynomialFit",
    "build_error_models",
    "quantile_fit",
    "taylor_error_dataset",
    "LinkShapeMode",
    "LinkShapeRep",
    "LinkShapesModule",
    "ProximityLoss",
    "proximity_value",
    "to_intersection_result",
    "to_proximity_value",
    "ContactInfo",
    "DistanceMode",
    "Proxima1Cache",
    "Proxima2Cache",
    "ProximaBudget",
    "ProximaCache",
    "ProximaOutput",
    "ProximaQueryResult",
    "ContactResult",
    "PairwiseResult",
    "self_contact",
    "self_distance",
    "self_intersect",
    "Ball",
    "ConvexHull",
    "Cuboid",
    "OffsetShape",
    "DistanceStatisticsModule",
    "SkipReason",
    "SkipsModule",
    "build_distance_statistics",
    "build_skips",
    "verify_skips",
]
