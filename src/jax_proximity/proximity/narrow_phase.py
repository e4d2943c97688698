"""Exact pairwise distance and contact through python-fcl.

Every function here takes already-built fcl geometries plus world poses.
Failures inside fcl and non-finite results are turned into
ShapeQueryFailure so callers can isolate them per pair.
"""

import dataclasses

import fcl
import numpy as np

from ..errors import ShapeQueryFailure


@dataclasses.dataclass(frozen=True)
class ContactInfo:
    """Result of an exact narrow-phase query.

    Attributes:
        distance: Signed distance; negative values are penetration depths.
        point_a: (3,) witness point on shape a, world frame.
        point_b: (3,) witness point on shape b, world frame.
        normal: (3,) unit vector pointing from a towards b.
    """
    distance: float
    point_a: np.ndarray
    point_b: np.ndarray
    normal: np.ndarray


def _collision_object(geometry, pose) -> fcl.CollisionObject:
    pose = np.asarray(pose, dtype=np.float64)
    if not np.all(np.isfinite(pose)):
        raise ValueError("non-finite pose")
    return fcl.CollisionObject(geometry, fcl.Transform(pose[:3, :3], pose[:3, 3]))


def _unit(v: np.ndarray) -> np.ndarray:
    n = np.linalg.norm(v)
    if n < 1e-12:
        return np.zeros(3)
    return v / n


def contact(geometry_a, pose_a, geometry_b, pose_b) -> ContactInfo:
    """Signed distance and witness points between two posed geometries.

    Separated shapes use fcl.distance with nearest points; overlapping
    shapes fall back to fcl.collide with one contact to get the
    penetration depth.

    Raises:
        ShapeQueryFailure: If fcl raises or returns a non-finite value.
    """
    try:
        o1 = _collision_object(geometry_a, pose_a)
        o2 = _collision_object(geometry_b, pose_b)

        request = fcl.DistanceRequest(enable_nearest_points=True)
        result = fcl.DistanceResult()
        distance = fcl.distance(o1, o2, request, result)

        if distance > 0.0:
            point_a = np.array(result.nearest_points[0], dtype=np.float64)
            point_b = np.array(result.nearest_points[1], dtype=np.float64)
            info = ContactInfo(float(distance), point_a, point_b, _unit(point_b - point_a))
        else:
            c_request = fcl.CollisionRequest(num_max_contacts=1, enable_contact=True)
            c_result = fcl.CollisionResult()
            fcl.collide(o1, o2, c_request, c_result)
            if not c_result.contacts:
                # Touching without a reported contact
                point = np.array(result.nearest_points[0], dtype=np.float64)
                info = ContactInfo(0.0, point, point.copy(), np.zeros(3))
            else:
                c = c_result.contacts[0]
                depth = float(c.penetration_depth)
                normal = _unit(np.array(c.normal, dtype=np.float64))
                pos = np.array(c.pos, dtype=np.float64)
                info = ContactInfo(-depth, pos + 0.5 * depth * normal, pos - 0.5 * depth * normal, normal)
    except (RuntimeError, ValueError) as e:
        raise ShapeQueryFailure(f"fcl query failed: {e}") from e

    if not (np.isfinite(info.distance) and np.all(np.isfinite(info.point_a))
            and np.all(np.isfinite(info.point_b))):
        raise ShapeQueryFailure(f"Non-finite narrow-phase result (distance={info.distance})")
    return info


def intersect(geometry_a, pose_a, geometry_b, pose_b) -> bool:
    """Boolean overlap test with fcl.collide.

    Raises:
        ShapeQueryFailure: If fcl raises.
    """
    try:
        o1 = _collision_object(geometry_a, pose_a)
        o2 = _collision_object(geometry_b, pose_b)
        return fcl.collide(o1, o2, fcl.CollisionRequest(), fcl.CollisionResult()) > 0
    except (RuntimeError, ValueError) as e:
        raise ShapeQueryFailure(f"fcl query failed: {e}") from e
