"""Per-link collision shapes in every mode and representation.

``FULL`` mode has one convex hull per link (over all of the link's pieces);
``DECOMPOSITION`` mode has one convex hull per piece. Each mode is available
as convex hulls, oriented bounding boxes or bounding spheres. Shapes of a
mode are indexed in link order, and ``shape_to_link`` maps them back.
"""

import dataclasses
import enum
import logging
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
import trimesh

from .shapes import ConvexHull, OffsetShape
from ..transforms.se3 import LieAlgMode

logger = logging.getLogger(__name__)


class LinkShapeMode(enum.Enum):
    FULL = "full"
    DECOMPOSITION = "decomposition"


class LinkShapeRep(enum.Enum):
    CONVEX_HULL = "convex_hull"
    OBB = "obb"
    BOUNDING_SPHERE = "bounding_sphere"


def table_key(mode: LinkShapeMode, rep: LinkShapeRep, lie_mode: Optional[LieAlgMode] = None) -> str:
    """Key of a persisted per-(mode, rep[, encoding]) table."""
    key = f"{mode.value}/{rep.value}"
    if lie_mode is not None:
        key += f"/{lie_mode.value}"
    return key


@dataclasses.dataclass(frozen=True, eq=False)
class LinkShapesModule:
    """Immutable collection of link shapes, shared read-only between queries."""
    link_names: Tuple[str, ...]
    shapes: Dict[Tuple[LinkShapeMode, LinkShapeRep], Tuple[OffsetShape, ...]]
    shape_to_link_indices: Dict[LinkShapeMode, Tuple[int, ...]]

    @classmethod
    def from_link_meshes(cls, link_names: Sequence[str],
                         link_meshes: Sequence[Sequence[trimesh.Trimesh]]) -> "LinkShapesModule":
        """Build every mode and representation from per-link mesh pieces.

        Args:
            link_names: Link names in model order.
            link_meshes: For each link, its mesh pieces in the link frame.
        """
        if len(link_names) != len(link_meshes):
            raise ValueError("link_names and link_meshes must have the same length")

        full, full_links = [], []
        decomposition, decomposition_links = [], []
        for link_idx, pieces in enumerate(link_meshes):
            if not pieces:
                continue
            points = np.vstack([np.asarray(piece.vertices) for piece in pieces])
            full.append(OffsetShape(ConvexHull.from_points(points)))
            full_links.append(link_idx)
            for piece in pieces:
                decomposition.append(OffsetShape(ConvexHull.from_points(np.asarray(piece.vertices))))
                decomposition_links.append(link_idx)

        shapes = {}
        for mode, hulls in ((LinkShapeMode.FULL, full), (LinkShapeMode.DECOMPOSITION, decomposition)):
            shapes[(mode, LinkShapeRep.CONVEX_HULL)] = tuple(hulls)
            shapes[(mode, LinkShapeRep.OBB)] = tuple(h.to_obb() for h in hulls)
            shapes[(mode, LinkShapeRep.BOUNDING_SPHERE)] = tuple(h.to_bounding_sphere() for h in hulls)

        logger.info("Built link shapes: %d full, %d decomposition", len(full), len(decomposition))
        return cls(
            link_names=tuple(link_names),
            shapes=shapes,
            shape_to_link_indices={
                LinkShapeMode.FULL: tuple(full_links),
                LinkShapeMode.DECOMPOSITION: tuple(decomposition_links),
            },
        )

    def get_shapes(self, mode: LinkShapeMode, rep: LinkShapeRep) -> Tuple[OffsetShape, ...]:
        return self.shapes[(mode, rep)]

    def num_shapes(self, mode: LinkShapeMode) -> int:
        return len(self.shape_to_link_indices[mode])

    def shape_to_link(self, mode: LinkShapeMode) -> Tuple[int, ...]:
        return self.shape_to_link_indices[mode]

    def link_poses_to_shape_poses(self, link_poses, mode: LinkShapeMode) -> np.ndarray:
        """(num_shapes, 4, 4) variable pose of every shape: its link's pose."""
        link_poses = np.asarray(link_poses, dtype=np.float64)
        if link_poses.shape != (len(self.link_names), 4, 4):
            raise ValueError(f"Expected link poses of shape ({len(self.link_names)}, 4, 4), got {link_poses.shape}")
        return link_poses[np.asarray(self.shape_to_link(mode), dtype=np.int64)]

    def max_distances_from_origin(self, mode: LinkShapeMode, rep: LinkShapeRep) -> np.ndarray:
        return np.array([s.max_distance_from_origin for s in self.get_shapes(mode, rep)])
