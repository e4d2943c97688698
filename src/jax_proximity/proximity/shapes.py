"""Shape descriptors: primitives plus an optional offset from the link frame.

The primitive set is closed (Ball, Cuboid, ConvexHull). An OffsetShape owns
one primitive and the fixed pose of the primitive's frame in its link frame;
the link pose that varies with the configuration is called the variable pose
throughout the package.
"""

import dataclasses
from functools import cached_property
from typing import Optional, Tuple, Union

import fcl
import numpy as np
import trimesh

from . import narrow_phase
from .narrow_phase import ContactInfo


@dataclasses.dataclass(frozen=True, eq=False)
class Ball:
    radius: float


@dataclasses.dataclass(frozen=True, eq=False)
class Cuboid:
    half_extents: np.ndarray


@dataclasses.dataclass(frozen=True, eq=False)
class ConvexHull:
    vertices: np.ndarray
    faces: np.ndarray

    @classmethod
    def from_points(cls, points: np.ndarray) -> "ConvexHull":
        """Convex hull of a point cloud (at least four non-coplanar points)."""
        hull = trimesh.convex.convex_hull(np.asarray(points, dtype=np.float64))
        return cls(np.asarray(hull.vertices, dtype=np.float64), np.asarray(hull.faces, dtype=np.int64))


Shape = Union[Ball, Cuboid, ConvexHull]


def _box_corners(half_extents: np.ndarray) -> np.ndarray:
    signs = np.array([[sx, sy, sz] for sx in (-1, 1) for sy in (-1, 1) for sz in (-1, 1)], dtype=np.float64)
    return signs * half_extents


def _translation(p: np.ndarray) -> np.ndarray:
    T = np.eye(4)
    T[:3, 3] = p
    return T


@dataclasses.dataclass(frozen=True, eq=False)
class OffsetShape:
    """A primitive and its optional fixed offset from the owning link frame.

    ``offset`` is None when the primitive is expressed directly in the link
    frame. The effective world pose for a variable (link) pose P is
    ``P @ offset``.
    """
    shape: Shape
    offset: Optional[np.ndarray] = None

    def get_transform(self, variable_pose) -> np.ndarray:
        variable_pose = np.asarray(variable_pose, dtype=np.float64)
        if self.offset is None:
            return variable_pose
        return variable_pose @ self.offset

    @cached_property
    def collision_geometry(self):
        """fcl geometry of the primitive, built once."""
        shape = self.shape
        if isinstance(shape, Ball):
            return fcl.Sphere(float(shape.radius))
        if isinstance(shape, Cuboid):
            return fcl.Box(*(2.0 * np.asarray(shape.half_extents, dtype=np.float64)))
        faces = np.asarray(shape.faces, dtype=np.int64)
        flat = np.hstack([np.full((len(faces), 1), 3, dtype=np.int64), faces]).ravel()
        return fcl.Convex(np.asarray(shape.vertices, dtype=np.float64), len(faces), flat)

    def _primitive_points(self) -> np.ndarray:
        """Points whose hull is the primitive (the center for a ball)."""
        shape = self.shape
        if isinstance(shape, Ball):
            return np.zeros((1, 3))
        if isinstance(shape, Cuboid):
            return _box_corners(np.asarray(shape.half_extents, dtype=np.float64))
        return np.asarray(shape.vertices, dtype=np.float64)

    def _radius(self) -> float:
        return float(self.shape.radius) if isinstance(self.shape, Ball) else 0.0

    @cached_property
    def points_in_link_frame(self) -> np.ndarray:
        points = self._primitive_points()
        if self.offset is None:
            return points
        return points @ self.offset[:3, :3].T + self.offset[:3, 3]

    def local_aabb(self) -> Tuple[np.ndarray, np.ndarray]:
        """(min, max) corners of the bounding box in the link frame."""
        r = self._radius()
        points = self.points_in_link_frame
        return points.min(axis=0) - r, points.max(axis=0) + r

    def support_point(self, direction, variable_pose=None) -> np.ndarray:
        """Farthest point of the posed shape along ``direction`` (world frame)."""
        pose = self.get_transform(np.eye(4) if variable_pose is None else variable_pose)
        direction = np.asarray(direction, dtype=np.float64)
        local_dir = pose[:3, :3].T @ direction
        points = self._primitive_points()
        best = points[np.argmax(points @ local_dir)]
        n = np.linalg.norm(local_dir)
        if self._radius() > 0.0 and n > 0.0:
            best = best + self._radius() * local_dir / n
        return pose[:3, :3] @ best + pose[:3, 3]

    def world_aabb(self, variable_pose) -> Tuple[np.ndarray, np.ndarray]:
        """Axis-aligned bounds of the posed shape from six support points."""
        axes = np.eye(3)
        upper = np.array([self.support_point(axes[k], variable_pose)[k] for k in range(3)])
        lower = np.array([self.support_point(-axes[k], variable_pose)[k] for k in range(3)])
        return lower, upper

    @cached_property
    def max_distance_from_origin(self) -> float:
        """Largest distance from the link-frame origin to any point of the shape."""
        return float(np.max(np.linalg.norm(self.points_in_link_frame, axis=1)) + self._radius())

    def to_obb(self) -> "OffsetShape":
        """Oriented bounding box as a Cuboid with a center offset."""
        shape = self.shape
        if isinstance(shape, Cuboid):
            return self
        if isinstance(shape, Ball):
            return OffsetShape(Cuboid(np.full(3, float(shape.radius))), self.offset)
        to_origin, extents = trimesh.bounds.oriented_bounds(np.asarray(shape.vertices))
        box_pose = np.linalg.inv(to_origin)
        if self.offset is not None:
            box_pose = self.offset @ box_pose
        return OffsetShape(Cuboid(0.5 * np.asarray(extents, dtype=np.float64)), box_pose)

    def to_bounding_sphere(self) -> "OffsetShape":
        """Minimum enclosing sphere as a Ball with a center offset."""
        if isinstance(self.shape, Ball):
            return self
        center, radius = trimesh.nsphere.minimum_nsphere(self._primitive_points())
        sphere_pose = _translation(np.asarray(center, dtype=np.float64))
        if self.offset is not None:
            sphere_pose = self.offset @ sphere_pose
        return OffsetShape(Ball(float(radius)), sphere_pose)

    def contact(self, pose_a, other: "OffsetShape", pose_b,
                max_distance: float = float("inf")) -> Optional[ContactInfo]:
        """Exact contact with ``other``; None if farther apart than ``max_distance``.

        Args:
            pose_a: Variable pose of this shape.
            other: The second shape.
            pose_b: Variable pose of ``other``.
            max_distance: Cutoff beyond which no contact is reported.

        Raises:
            ShapeQueryFailure: If the narrow phase fails.
        """
        info = narrow_phase.contact(self.collision_geometry, self.get_transform(pose_a),
                                    other.collision_geometry, other.get_transform(pose_b))
        if info.distance > max_distance:
            return None
        return info

    def distance(self, pose_a, other: "OffsetShape", pose_b) -> float:
        """Signed distance to ``other`` (negative when penetrating)."""
        return self.contact(pose_a, other, pose_b).distance

    def intersect(self, pose_a, other: "OffsetShape", pose_b) -> bool:
        return narrow_phase.intersect(self.collision_geometry, self.get_transform(pose_a),
                                      other.collision_geometry, other.get_transform(pose_b))
