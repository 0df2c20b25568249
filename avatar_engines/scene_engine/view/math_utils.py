"""Math utilities for the 3D view engine.

All matrices are row-major 4x4 numpy arrays applied to column vectors
(``M @ [x, y, z, 1]``).
"""
from __future__ import annotations

import math
from typing import Dict, Iterator, Optional, Tuple

import numpy as np

from avatar_engines.scene_engine.core.geometry import EulerAngles, Transform, Vector3
from avatar_engines.scene_engine.core.scene import SceneNode


def identity() -> np.ndarray:
    return np.eye(4, dtype=np.float64)


def translation(x: float, y: float, z: float) -> np.ndarray:
    m = identity()
    m[0, 3] = x
    m[1, 3] = y
    m[2, 3] = z
    return m


def euler_to_matrix(rx: float, ry: float, rz: float) -> np.ndarray:
    # XYZ order: R = Rx * Ry * Rz, matching intrinsic XYZ rotation
    cx, sx = math.cos(rx), math.sin(rx)
    cy, sy = math.cos(ry), math.sin(ry)
    cz, sz = math.cos(rz), math.sin(rz)

    m = identity()
    m[0, 0] = cy * cz
    m[0, 1] = -cy * sz
    m[0, 2] = sy
    m[1, 0] = cx * sz + sx * sy * cz
    m[1, 1] = cx * cz - sx * sy * sz
    m[1, 2] = -sx * cy
    m[2, 0] = sx * sz - cx * sy * cz
    m[2, 1] = sx * cz + cx * sy * sz
    m[2, 2] = cx * cy
    return m


def compose_trs(p: Vector3, r: EulerAngles, s: Vector3) -> np.ndarray:
    """T * R * S with ``r`` in radians."""
    ms = np.diag([s.x, s.y, s.z, 1.0])
    mr = euler_to_matrix(r.x, r.y, r.z)
    mt = translation(p.x, p.y, p.z)
    return mt @ mr @ ms


def local_matrix(transform: Transform) -> np.ndarray:
    return compose_trs(transform.position, transform.rotation, transform.scale)


def transform_points(matrix: np.ndarray, points: np.ndarray) -> np.ndarray:
    if len(points) == 0:
        return points.reshape(0, 3)
    homo = np.hstack([points, np.ones((len(points), 1))])
    out = homo @ matrix.T
    return out[:, :3]


def transform_directions(matrix: np.ndarray, dirs: np.ndarray) -> np.ndarray:
    """Transform normals by the inverse-transpose of the upper 3x3."""
    if len(dirs) == 0:
        return dirs.reshape(0, 3)
    normal_matrix = np.linalg.inv(matrix[:3, :3]).T
    out = dirs @ normal_matrix.T
    lengths = np.linalg.norm(out, axis=1, keepdims=True)
    lengths[lengths == 0] = 1.0
    return out / lengths


def iter_world_matrices(
    node: SceneNode, parent: Optional[np.ndarray] = None
) -> Iterator[Tuple[SceneNode, np.ndarray]]:
    world = local_matrix(node.transform) if parent is None else parent @ local_matrix(node.transform)
    yield node, world
    for child in node.children:
        yield from iter_world_matrices(child, world)


def world_matrices(root: SceneNode) -> Dict[str, np.ndarray]:
    return {node.id: world for node, world in iter_world_matrices(root)}


def world_matrix_of(root: SceneNode, node_id: str) -> np.ndarray:
    path = root.path_to(node_id)
    if path is None:
        raise KeyError(node_id)
    m = identity()
    for node in path:
        m = m @ local_matrix(node.transform)
    return m


def look_at(eye: Vector3, center: Vector3, up: Vector3) -> np.ndarray:
    e = eye.to_array()
    f = center.to_array() - e
    f /= np.linalg.norm(f) or 1.0
    s = np.cross(f, up.to_array())
    s /= np.linalg.norm(s) or 1.0
    u = np.cross(s, f)

    m = identity()
    m[0, :3] = s
    m[1, :3] = u
    m[2, :3] = -f
    m[0, 3] = -np.dot(s, e)
    m[1, 3] = -np.dot(u, e)
    m[2, 3] = np.dot(f, e)
    return m


def perspective(fov_deg: float, aspect: float, near: float, far: float) -> np.ndarray:
    f = 1.0 / math.tan(math.radians(fov_deg) / 2.0)
    nf = 1.0 / (near - far)

    m = np.zeros((4, 4), dtype=np.float64)
    m[0, 0] = f / aspect
    m[1, 1] = f
    m[2, 2] = (far + near) * nf
    m[2, 3] = 2 * far * near * nf
    m[3, 2] = -1.0
    return m
