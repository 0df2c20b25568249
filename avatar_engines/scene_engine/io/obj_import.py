"""Wavefront OBJ import into a scene subtree."""
from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

import numpy as np
from pydantic import BaseModel, Field

from avatar_engines.scene_engine.core.geometry import Mesh
from avatar_engines.scene_engine.core.scene import SceneNode

logger = logging.getLogger(__name__)

DEFAULT_GROUP = "default"

# (vertex, uv, normal) indices into the global pools, already resolved to 0-based
Corner = Tuple[int, Optional[int], Optional[int]]


class ObjImportOptions(BaseModel):
    generate_missing_normals: bool = True
    root_name: str = "Model"


class _Group(BaseModel):
    name: str
    # material name -> triangles (3 corners each), insertion-ordered
    faces: Dict[Optional[str], List[Tuple[Corner, Corner, Corner]]] = Field(default_factory=dict)


def _resolve(index: str, pool_size: int) -> Optional[int]:
    if not index:
        return None
    value = int(index)
    if value < 0:
        value = pool_size + value
    else:
        value -= 1
    if value < 0 or value >= pool_size:
        raise ValueError(f"OBJ index {index} out of range (pool of {pool_size})")
    return value


def _parse_corner(token: str, nv: int, nt: int, nn: int) -> Corner:
    parts = token.split("/")
    v = _resolve(parts[0], nv)
    if v is None:
        raise ValueError(f"OBJ face corner without vertex index: {token}")
    t = _resolve(parts[1], nt) if len(parts) > 1 else None
    n = _resolve(parts[2], nn) if len(parts) > 2 else None
    return (v, t, n)


class ObjDocument(BaseModel):
    positions: List[Tuple[float, float, float]] = Field(default_factory=list)
    uvs: List[Tuple[float, float]] = Field(default_factory=list)
    normals: List[Tuple[float, float, float]] = Field(default_factory=list)
    groups: List[_Group] = Field(default_factory=list)
    mtllibs: List[str] = Field(default_factory=list)


def parse_obj(text: str) -> ObjDocument:
    """Parse OBJ text. Polygons are fan-triangulated; groups come from ``o``/``g``."""
    doc = ObjDocument()
    groups_by_name: Dict[str, _Group] = {}
    current: Optional[_Group] = None
    material: Optional[str] = None

    def group_named(name: str) -> _Group:
        group = groups_by_name.get(name)
        if group is None:
            group = _Group(name=name)
            groups_by_name[name] = group
            doc.groups.append(group)
        return group

    for lineno, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        parts = line.split()
        key, args = parts[0], parts[1:]

        if key == "v":
            doc.positions.append((float(args[0]), float(args[1]), float(args[2])))
        elif key == "vt":
            u = float(args[0]) if args else 0.0
            v = float(args[1]) if len(args) > 1 else 0.0
            doc.uvs.append((u, v))
        elif key == "vn":
            doc.normals.append((float(args[0]), float(args[1]), float(args[2])))
        elif key in ("o", "g"):
            current = group_named(" ".join(args) if args else DEFAULT_GROUP)
        elif key == "usemtl":
            material = " ".join(args) if args else None
        elif key == "mtllib":
            doc.mtllibs.extend(args)
        elif key == "f":
            if len(args) < 3:
                logger.debug("Skipping degenerate face on line %d", lineno)
                continue
            if current is None:
                current = group_named(DEFAULT_GROUP)
            corners = [
                _parse_corner(tok, len(doc.positions), len(doc.uvs), len(doc.normals))
                for tok in args
            ]
            tris = current.faces.setdefault(material, [])
            for i in range(1, len(corners) - 1):
                tris.append((corners[0], corners[i], corners[i + 1]))
        # s, l, p and unknown statements are ignored

    return doc


def _flat_normals(vertices: np.ndarray) -> np.ndarray:
    tris = vertices.reshape(-1, 3, 3)
    n = np.cross(tris[:, 1] - tris[:, 0], tris[:, 2] - tris[:, 0])
    lengths = np.linalg.norm(n, axis=1, keepdims=True)
    lengths[lengths == 0] = 1.0
    n = n / lengths
    return np.repeat(n, 3, axis=0)


def _build_mesh(
    doc: ObjDocument,
    mesh_id: str,
    name: str,
    material_id: Optional[str],
    triangles: List[Tuple[Corner, Corner, Corner]],
    options: ObjImportOptions,
) -> Mesh:
    corners = [corner for tri in triangles for corner in tri]
    positions = np.asarray(doc.positions, dtype=np.float64)
    vertices = positions[[c[0] for c in corners]]

    uvs = None
    if doc.uvs and any(c[1] is not None for c in corners):
        uv_pool = np.asarray(doc.uvs, dtype=np.float64)
        uvs = np.zeros((len(corners), 2), dtype=np.float64)
        for i, c in enumerate(corners):
            if c[1] is not None:
                uvs[i] = uv_pool[c[1]]

    normals = None
    if doc.normals and all(c[2] is not None for c in corners):
        normal_pool = np.asarray(doc.normals, dtype=np.float64)
        normals = normal_pool[[c[2] for c in corners]]
    elif options.generate_missing_normals:
        normals = _flat_normals(vertices)

    return Mesh(id=mesh_id, name=name, material_id=material_id, vertices=vertices, normals=normals, uvs=uvs)


def obj_to_scene(
    doc: ObjDocument,
    material_ids: Optional[Dict[str, str]] = None,
    options: Optional[ObjImportOptions] = None,
) -> Tuple[SceneNode, Dict[str, Mesh]]:
    """Build a root node with one child per group and one mesh per (group, material).

    ``material_ids`` maps OBJ material names to scene material ids; names not
    present are kept as-is.
    """
    opts = options or ObjImportOptions()
    material_ids = material_ids or {}
    root = SceneNode(name=opts.root_name)
    meshes: Dict[str, Mesh] = {}

    for g_index, group in enumerate(doc.groups):
        node = SceneNode(name=group.name, meta={"source_group": group.name})
        for m_index, (mat_name, triangles) in enumerate(group.faces.items()):
            if not triangles:
                continue
            mesh_id = f"mesh_{g_index}_{m_index}"
            material_id = material_ids.get(mat_name, mat_name) if mat_name is not None else None
            meshes[mesh_id] = _build_mesh(doc, mesh_id, group.name, material_id, triangles, opts)
            node.mesh_ids.append(mesh_id)
        root.children.append(node)

    return root, meshes


def obj_text_to_scene(
    text: str,
    material_ids: Optional[Dict[str, str]] = None,
    options: Optional[ObjImportOptions] = None,
) -> Tuple[SceneNode, Dict[str, Mesh]]:
    return obj_to_scene(parse_obj(text), material_ids, options)
