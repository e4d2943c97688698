"""Binary bounding-volume hierarchy over the posed shapes of one group.

The tree is built top-down by a median split of the leaf centers along their
longest axis. Nodes are stored so that every child comes after its parent,
which lets ``refit`` update the volumes in one reverse sweep.
"""

import enum
import logging
from typing import List, Optional, Sequence

import numpy as np
import trimesh

from .shapes import Ball, OffsetShape

logger = logging.getLogger(__name__)


class BvhVolume(enum.Enum):
    AABB = "aabb"
    BOUNDING_SPHERE = "bounding_sphere"


def _local_sphere(shape: OffsetShape):
    """Enclosing sphere (center, radius) in the shape's variable frame."""
    points = shape.points_in_link_frame
    if isinstance(shape.shape, Ball):
        return points[0], float(shape.shape.radius)
    center, radius = trimesh.nsphere.minimum_nsphere(points)
    return np.asarray(center, dtype=np.float64), float(radius)


class BVH:
    """
    Bounding-volume hierarchy for self-collision broad phase.

    Args:
        shapes: Shapes of the group; leaf k holds shape k.
        volume: Kind of bounding volume.
    """

    def __init__(self, shapes: Sequence[OffsetShape], volume: BvhVolume = BvhVolume.AABB):
        self.shapes = tuple(shapes)
        self.volume = volume
        self.left: List[int] = []
        self.right: List[int] = []
        self.leaf_shape: List[int] = []
        if volume is BvhVolume.BOUNDING_SPHERE:
            spheres = [_local_sphere(s) for s in self.shapes]
            self._sphere_centers = np.array([c for c, _ in spheres]).reshape(-1, 3)
            self._sphere_radii = np.array([r for _, r in spheres])
        self.lower = np.zeros((0, 3))
        self.upper = np.zeros((0, 3))
        self.centers = np.zeros((0, 3))
        self.radii = np.zeros(0)

    @property
    def num_nodes(self) -> int:
        return len(self.leaf_shape)

    def _leaf_volumes(self, shape_poses: np.ndarray):
        if self.volume is BvhVolume.AABB:
            boxes = [s.world_aabb(p) for s, p in zip(self.shapes, shape_poses)]
            lower = np.array([b[0] for b in boxes]).reshape(-1, 3)
            upper = np.array([b[1] for b in boxes]).reshape(-1, 3)
            return lower, upper
        centers = np.einsum("nij,nj->ni", shape_poses[:, :3, :3], self._sphere_centers) + shape_poses[:, :3, 3]
        return centers, self._sphere_radii

    def build(self, shape_poses) -> None:
        """Rebuild the topology and volumes for the given variable poses."""
        shape_poses = np.asarray(shape_poses, dtype=np.float64)
        if shape_poses.shape != (len(self.shapes), 4, 4):
            raise ValueError(f"Expected {len(self.shapes)} shape poses, got array of shape {shape_poses.shape}")
        a, b = self._leaf_volumes(shape_poses)
        leaf_centers = 0.5 * (a + b) if self.volume is BvhVolume.AABB else a

        self.left, self.right, self.leaf_shape = [], [], []
        if len(self.shapes):
            self._split(np.arange(len(self.shapes)), leaf_centers)
        self._fit(a, b)
        logger.debug("Built BVH: %d shapes, %d nodes", len(self.shapes), self.num_nodes)

    def _split(self, indices: np.ndarray, leaf_centers: np.ndarray) -> int:
        node = self.num_nodes
        self.left.append(-1)
        self.right.append(-1)
        self.leaf_shape.append(-1)
        if len(indices) == 1:
            self.leaf_shape[node] = int(indices[0])
            return node

        points = leaf_centers[indices]
        axis = int(np.argmax(points.max(axis=0) - points.min(axis=0)))
        order = indices[np.argsort(points[:, axis], kind="stable")]
        half = len(order) // 2
        self.left[node] = self._split(order[:half], leaf_centers)
        self.right[node] = self._split(order[half:], leaf_centers)
        return node

    def _fit(self, a: np.ndarray, b: np.ndarray) -> None:
        n = self.num_nodes
        if self.volume is BvhVolume.AABB:
            self.lower, self.upper = np.zeros((n, 3)), np.zeros((n, 3))
        else:
            self.centers, self.radii = np.zeros((n, 3)), np.zeros(n)

        for node in reversed(range(n)):
            leaf = self.leaf_shape[node]
            l, r = self.left[node], self.right[node]
            if self.volume is BvhVolume.AABB:
                if leaf >= 0:
                    self.lower[node], self.upper[node] = a[leaf], b[leaf]
                else:
                    self.lower[node] = np.minimum(self.lower[l], self.lower[r])
                    self.upper[node] = np.maximum(self.upper[l], self.upper[r])
            elif leaf >= 0:
                self.centers[node], self.radii[node] = a[leaf], b[leaf]
            else:
                center = 0.5 * (self.centers[l] + self.centers[r])
                self.centers[node] = center
                self.radii[node] = max(np.linalg.norm(self.centers[c] - center) + self.radii[c] for c in (l, r))

    def refit(self, shape_poses) -> None:
        """Update the volumes bottom-up for new poses, keeping the topology."""
        shape_poses = np.asarray(shape_poses, dtype=np.float64)
        if self.num_nodes == 0 and len(self.shapes):
            self.build(shape_poses)
            return
        self._fit(*self._leaf_volumes(shape_poses))

    def _overlap(self, m: int, n: int) -> bool:
        if self.volume is BvhVolume.AABB:
            return bool(np.all(self.lower[m] <= self.upper[n]) and np.all(self.lower[n] <= self.upper[m]))
        return bool(np.linalg.norm(self.centers[m] - self.centers[n]) <= self.radii[m] + self.radii[n])

    def _is_leaf(self, node: int) -> bool:
        return self.leaf_shape[node] >= 0

    def _cross(self, m: int, n: int, out: List) -> None:
        if not self._overlap(m, n):
            return
        if self._is_leaf(m) and self._is_leaf(n):
            out.append((self.leaf_shape[m], self.leaf_shape[n]))
        elif self._is_leaf(m):
            self._cross(m, self.left[n], out)
            self._cross(m, self.right[n], out)
        else:
            self._cross(self.left[m], n, out)
            self._cross(self.right[m], n, out)

    def _self(self, node: int, out: List) -> None:
        if self._is_leaf(node):
            return
        self._self(self.left[node], out)
        self._self(self.right[node], out)
        self._cross(self.left[node], self.right[node], out)

    def self_candidate_pairs(self, skips: Optional[np.ndarray] = None) -> np.ndarray:
        """
        Shape pairs whose leaf volumes overlap.

        Args:
            skips: Optional (num_shapes, num_shapes) boolean skip table.

        Returns:
            (num_pairs, 2) array with i < j, sorted
        """
        out: List = []
        if self.num_nodes:
            self._self(0, out)
        pairs = sorted((min(i, j), max(i, j)) for i, j in out)
        if skips is not None:
            skips = np.asarray(skips, dtype=bool)
            pairs = [(i, j) for i, j in pairs if not skips[i, j]]
        return np.array(pairs, dtype=np.int64).reshape(-1, 2)
