"""URDF parser for loading robot models into JAX-native data structures.

``load_urdf`` builds the kinematic RobotModel (topology, joint twists and
limits). ``load_collision_meshes`` turns each link's ``<collision>``
primitives into trimesh pieces expressed in the link frame, which is the
input of the link-shapes module.
"""

import logging
from collections import deque
from typing import Dict, List, Optional, Tuple

import jax.numpy as jnp
import numpy as np
import trimesh
from lxml import etree

from jax_proximity.core.robot_model import MAX_JOINT_DOFS, RobotModel
from jax_proximity.transforms import se3, so3

logger = logging.getLogger(__name__)

# Ranges used when the URDF leaves a DOF unbounded
CONTINUOUS_LIMITS = (-np.pi, np.pi)
FLOATING_TRANSLATION_LIMITS = (-1.0, 1.0)

_JOINT_TYPES = ("fixed", "revolute", "continuous", "prismatic", "planar", "floating")


def _parse_floats(text: Optional[str], default: str) -> np.ndarray:
    return np.array([float(x) for x in (text or default).split()])


def _parse_origin(elem) -> np.ndarray:
    """4x4 transform of an optional <origin> child."""
    origin_elem = elem.find('origin')
    if origin_elem is None:
        return np.eye(4)
    xyz = _parse_floats(origin_elem.get('xyz'), '0 0 0')
    rpy = _parse_floats(origin_elem.get('rpy'), '0 0 0')
    return np.asarray(se3.from_position_and_rotation(jnp.array(xyz), so3.from_rpy(jnp.array(rpy))))


def _plane_basis(axis: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Two unit vectors spanning the plane normal to ``axis``."""
    helper = np.array([1.0, 0.0, 0.0]) if abs(axis[0]) < 0.9 else np.array([0.0, 1.0, 0.0])
    u = np.cross(axis, helper)
    u /= np.linalg.norm(u)
    return u, np.cross(axis, u)


def _joint_twists_and_limits(joint_elem, joint_type: str) -> Tuple[List[np.ndarray], List[Tuple[float, float]]]:
    """Elementary twists and per-DOF limits of one joint."""
    if joint_type == 'fixed':
        return [], []

    axis_elem = joint_elem.find('axis')
    axis = _parse_floats(axis_elem.get('xyz') if axis_elem is not None else None, '1 0 0')
    axis = axis / np.linalg.norm(axis)
    zero = np.zeros(3)

    limit_elem = joint_elem.find('limit')
    lower = float(limit_elem.get('lower', 0.0)) if limit_elem is not None else 0.0
    upper = float(limit_elem.get('upper', 0.0)) if limit_elem is not None else 0.0

    if joint_type == 'revolute':
        return [np.concatenate([zero, axis])], [(lower, upper)]
    if joint_type == 'continuous':
        return [np.concatenate([zero, axis])], [CONTINUOUS_LIMITS]
    if joint_type == 'prismatic':
        return [np.concatenate([axis, zero])], [(lower, upper)]

    eye = np.eye(3)
    if joint_type == 'planar':
        u, v = _plane_basis(axis)
        twists = [np.concatenate([u, zero]), np.concatenate([v, zero]), np.concatenate([zero, axis])]
        return twists, [FLOATING_TRANSLATION_LIMITS, FLOATING_TRANSLATION_LIMITS, CONTINUOUS_LIMITS]

    # floating: x, y, z translation then roll, pitch, yaw about the moved frame
    twists = [np.concatenate([eye[k], zero]) for k in range(3)]
    twists += [np.concatenate([zero, eye[k]]) for k in range(3)]
    return twists, [FLOATING_TRANSLATION_LIMITS] * 3 + [CONTINUOUS_LIMITS] * 3


def _parse_tree(root) -> Tuple[List[str], Dict[str, dict]]:
    """BFS-ordered link names and the joint info of every child link."""
    all_links = [link.get('name') for link in root.findall('link')]

    joint_by_child: Dict[str, dict] = {}
    children: Dict[str, List[str]] = {name: [] for name in all_links}
    for joint in root.findall('joint'):
        joint_type = joint.get('type')
        if joint_type not in _JOINT_TYPES:
            raise ValueError(f"Unsupported joint type '{joint_type}' for joint '{joint.get('name')}'")

        parent_elem = joint.find('parent')
        child_elem = joint.find('child')
        if parent_elem is None or child_elem is None:
            raise ValueError(f"Joint '{joint.get('name')}' is missing a parent or child")
        parent_name = parent_elem.get('link')
        child_name = child_elem.get('link')
        if parent_name not in children or child_name not in children:
            raise ValueError(f"Joint '{joint.get('name')}' references an unknown link")
        if child_name in joint_by_child:
            raise ValueError(f"Link '{child_name}' has more than one parent joint")

        joint_by_child[child_name] = {
            'name': joint.get('name'),
            'type': joint_type,
            'parent': parent_name,
            'elem': joint,
        }
        children[parent_name].append(child_name)

    root_links = [name for name in all_links if name not in joint_by_child]
    if len(root_links) != 1:
        raise ValueError(f"Expected exactly one root link, found: {root_links}")

    ordered_links = []
    queue = deque(root_links)
    while queue:
        current_link = queue.popleft()
        ordered_links.append(current_link)
        queue.extend(children[current_link])

    if len(ordered_links) != len(all_links):
        raise ValueError("URDF link graph is not a tree")

    return ordered_links, joint_by_child


def load_urdf(urdf_path: str) -> RobotModel:
    """Load a URDF file and convert it to a RobotModel PyTree.

    Args:
        urdf_path: Path to the URDF file to load.

    Returns:
        RobotModel: A JAX-native robot representation.

    Raises:
        ValueError: If the file does not describe a single kinematic tree
            or uses an unsupported joint type.
    """
    root = etree.parse(str(urdf_path)).getroot()
    ordered_links, joint_by_child = _parse_tree(root)
    link_index = {name: i for i, name in enumerate(ordered_links)}

    parent_indices, joint_transforms, joint_axes, joint_dof_indices = [], [], [], []
    joint_names, joint_types = [], []
    dof_joint_names, lower_limits, upper_limits = [], [], []

    for i, link_name in enumerate(ordered_links):
        axes = np.zeros((MAX_JOINT_DOFS, 6))
        dof_indices = np.full(MAX_JOINT_DOFS, -1, dtype=np.int32)

        joint_info = joint_by_child.get(link_name)
        if joint_info is None:
            parent_indices.append(i)  # Root parents itself
            joint_transforms.append(np.eye(4))
            joint_names.append("")
            joint_types.append("fixed")
        else:
            parent_indices.append(link_index[joint_info['parent']])
            joint_transforms.append(_parse_origin(joint_info['elem']))
            joint_names.append(joint_info['name'])
            joint_types.append(joint_info['type'])

            twists, limits = _joint_twists_and_limits(joint_info['elem'], joint_info['type'])
            for k, (twist, (lower, upper)) in enumerate(zip(twists, limits)):
                axes[k] = twist
                dof_indices[k] = len(dof_joint_names)
                dof_joint_names.append(joint_info['name'])
                lower_limits.append(lower)
                upper_limits.append(upper)

        joint_axes.append(axes)
        joint_dof_indices.append(dof_indices)

    logger.debug("Loaded %s: %d links, %d dofs", urdf_path, len(ordered_links), len(dof_joint_names))

    return RobotModel(
        link_names=tuple(ordered_links),
        joint_names=tuple(joint_names),
        joint_types=tuple(joint_types),
        dof_joint_names=tuple(dof_joint_names),
        parent_indices=jnp.array(parent_indices, dtype=jnp.int32),
        joint_transforms=jnp.array(np.stack(joint_transforms)),
        joint_axes=jnp.array(np.stack(joint_axes)),
        joint_dof_indices=jnp.array(np.stack(joint_dof_indices), dtype=jnp.int32),
        lower_limits=jnp.array(lower_limits, dtype=jnp.float64),
        upper_limits=jnp.array(upper_limits, dtype=jnp.float64),
    )


def _primitive_mesh(geometry_elem) -> Optional[trimesh.Trimesh]:
    box = geometry_elem.find('box')
    if box is not None:
        return trimesh.creation.box(extents=_parse_floats(box.get('size'), '0 0 0'))
    sphere = geometry_elem.find('sphere')
    if sphere is not None:
        return trimesh.creation.icosphere(subdivisions=2, radius=float(sphere.get('radius')))
    cylinder = geometry_elem.find('cylinder')
    if cylinder is not None:
        return trimesh.creation.cylinder(radius=float(cylinder.get('radius')),
                                         height=float(cylinder.get('length')), sections=24)
    capsule = geometry_elem.find('capsule')
    if capsule is not None:
        return trimesh.creation.capsule(radius=float(capsule.get('radius')),
                                        height=float(capsule.get('length')))
    return None


def load_collision_meshes(urdf_path: str, robot: RobotModel) -> List[List[trimesh.Trimesh]]:
    """Collision geometry of every link as primitive meshes in the link frame.

    Args:
        urdf_path: Path to the URDF file the robot was loaded from.
        robot: RobotModel from ``load_urdf`` on the same file.

    Returns:
        One list of meshes per link, in ``robot.link_names`` order. Links
        without collision geometry get an empty list; ``<mesh>`` geometry
        is not loaded.
    """
    root = etree.parse(str(urdf_path)).getroot()
    link_elems = {link.get('name'): link for link in root.findall('link')}

    meshes = []
    for link_name in robot.link_names:
        pieces = []
        for collision in link_elems[link_name].findall('collision'):
            geometry = collision.find('geometry')
            mesh = _primitive_mesh(geometry) if geometry is not None else None
            if mesh is None:
                logger.warning("Skipping unsupported collision geometry on link '%s'", link_name)
                continue
            mesh.apply_transform(_parse_origin(collision))
            pieces.append(mesh)
        meshes.append(pieces)
    return meshes
