"""Body-part inference, pivot wrappers and pose application."""
from __future__ import annotations

import logging
import math
from typing import Dict, List, Optional

import numpy as np

from avatar_engines.common.errors import InvalidInput, PoseUnavailable
from avatar_engines.scene_engine.avatar.models import (
    PLAYER_GROUP_TABLE,
    BodyPart,
    BodyPartMap,
    ClaimedPart,
    PoseDefinition,
)
from avatar_engines.scene_engine.avatar.poses import PoseLibrary
from avatar_engines.scene_engine.core.geometry import (
    BoundingBox,
    EulerAngles,
    Mesh,
    Transform,
    Vector3,
)
from avatar_engines.scene_engine.core.scene import SceneNode, insert_parent
from avatar_engines.scene_engine.view.math_utils import (
    transform_points,
    world_matrices,
    world_matrix_of,
)

logger = logging.getLogger(__name__)

WRAPPER_SUFFIX = "_Pivot"

# longest first so "LeftUpperArm" is tried before any shorter name it contains
_SUBSTRING_ORDER: List[BodyPart] = sorted(BodyPart, key=lambda p: len(p.value), reverse=True)


def _is_wrapper(node: SceneNode) -> bool:
    return bool(node.meta.get("pivot_wrapper"))


def match_exact(name: Optional[str]) -> Optional[BodyPart]:
    if not name:
        return None
    return PLAYER_GROUP_TABLE.get(name.strip())


def match_substring(name: Optional[str], claimed: Dict[BodyPart, ClaimedPart]) -> Optional[BodyPart]:
    if not name:
        return None
    lowered = name.lower()
    for part in _SUBSTRING_ORDER:
        if part not in claimed and part.value.lower() in lowered:
            return part
    return None


def infer_body_parts(scope: SceneNode) -> BodyPartMap:
    """Claim descendants of ``scope`` as canonical body parts.

    The export's ``PlayerN`` names are matched over every node first, then
    the remaining nodes are matched by case-insensitive canonical substring.
    Each canonical part and each node is claimed at most once.
    """
    candidates = [n for n in scope.walk() if n is not scope and not _is_wrapper(n)]
    claimed: Dict[BodyPart, ClaimedPart] = {}
    taken: set = set()

    def claim(node: SceneNode, part: BodyPart) -> None:
        claimed[part] = ClaimedPart(
            part=part,
            node_id=node.id,
            node_name=node.name or node.id,
            original_rotation=node.transform.rotation.model_copy(),
        )
        taken.add(node.id)

    for node in candidates:
        part = match_exact(node.name)
        if part is not None and part not in claimed:
            claim(node, part)

    for node in candidates:
        if node.id in taken:
            continue
        part = match_substring(node.name, claimed)
        if part is not None:
            claim(node, part)

    # keep a stable, canonical ordering
    ordered = {part: claimed[part] for part in BodyPart if part in claimed}
    logger.debug("Claimed %d body parts: %s", len(ordered), [p.value for p in ordered])
    return BodyPartMap(parts=ordered)


def subtree_world_bounds(
    root: SceneNode, node_id: str, meshes: Dict[str, Mesh]
) -> Optional[BoundingBox]:
    node = root.find(node_id)
    if node is None:
        return None
    worlds = world_matrices(root)
    bounds: Optional[BoundingBox] = None
    for sub in node.walk():
        world = worlds[sub.id]
        for mesh_id in sub.mesh_ids:
            mesh = meshes.get(mesh_id)
            if mesh is None or len(mesh.vertices) == 0:
                continue
            box = BoundingBox.from_points(transform_points(world, mesh.vertices))
            bounds = box if bounds is None else bounds.union(box)
    return bounds


def pivot_for(part: BodyPart, bounds: BoundingBox) -> Vector3:
    """World-space joint position for ``part`` from its world bounding box.

    After reconstruction the model faces +Z, so the character's left side is
    +X: left limbs hinge on their ``min.x`` edge, right limbs on ``max.x``.
    """
    c = bounds.center()
    if part.is_arm:
        x = bounds.min.x if part.is_left else bounds.max.x
        return Vector3(x=x, y=bounds.max.y, z=c.z)
    if part.is_leg:
        return Vector3(x=c.x, y=bounds.max.y, z=c.z)
    if part is BodyPart.HEAD:
        return Vector3(x=c.x, y=bounds.min.y, z=c.z)
    return c


def insert_pivot_wrapper(
    root: SceneNode, node_id: str, pivot_world: Vector3, name: str
) -> SceneNode:
    """Re-parent ``node_id`` under a new wrapper placed at ``pivot_world``.

    The node's world placement is unchanged; rotating the wrapper turns the
    node around the pivot.
    """
    parent = root.find_parent(node_id)
    if parent is None:
        raise ValueError(f"Node {node_id} has no parent to attach a pivot under")
    node = root.find(node_id)

    parent_world = world_matrix_of(root, parent.id)
    local_pivot = transform_points(np.linalg.inv(parent_world), pivot_world.to_array()[None, :])[0]
    pivot = Vector3.from_array(local_pivot)

    wrapper = SceneNode(
        name=f"{name}{WRAPPER_SUFFIX}",
        transform=Transform(position=pivot),
        meta={"pivot_wrapper": True, "body_part": name},
    )
    insert_parent(root, node_id, wrapper)
    node.transform = node.transform.model_copy(
        update={"position": node.transform.position.sub(pivot)}
    )
    return wrapper


def rotation_with_delta(baseline: EulerAngles, degrees) -> EulerAngles:
    dx, dy, dz = degrees
    return EulerAngles(
        x=baseline.x + math.radians(dx),
        y=baseline.y + math.radians(dy),
        z=baseline.z + math.radians(dz),
        order=baseline.order,
    )


class AvatarArticulator:
    """Makes a reconstructed session posable.

    Construction claims body parts under the session's model node and wraps
    each claimed node in a pivot wrapper. Poses rotate only the wrappers.
    """

    def __init__(self, session):
        self.session = session
        self.root: SceneNode = session.root
        scope = session.model if session.model is not None else session.root
        self.parts = infer_body_parts(scope)
        self.current_pose: Optional[str] = None
        self._wrappers: Dict[BodyPart, SceneNode] = {}
        if len(self.parts):
            self._build_pivots()

    def _build_pivots(self) -> None:
        # pivots come from the untouched layout; wrapper insertion preserves world placement
        pivots = {}
        for part, claimed in self.parts.parts.items():
            bounds = subtree_world_bounds(self.root, claimed.node_id, self.session.meshes)
            if bounds is None:
                logger.debug("Body part %s has no geometry; pivot at its origin", part.value)
                origin = world_matrix_of(self.root, claimed.node_id)[:3, 3]
                pivots[part] = Vector3.from_array(origin)
            else:
                pivots[part] = pivot_for(part, bounds)

        for part, claimed in self.parts.parts.items():
            wrapper = insert_pivot_wrapper(self.root, claimed.node_id, pivots[part], part.value)
            claimed.wrapper_id = wrapper.id
            claimed.pivot = pivots[part]
            claimed.baseline_rotation = wrapper.transform.rotation.model_copy()
            self._wrappers[part] = wrapper

    def has_body_parts(self) -> bool:
        return len(self.parts) > 0

    def wrapper(self, part: BodyPart) -> Optional[SceneNode]:
        return self._wrappers.get(part)

    def rotations(self) -> Dict[BodyPart, EulerAngles]:
        return {part: w.transform.rotation.model_copy() for part, w in self._wrappers.items()}

    def reset(self) -> None:
        for part, claimed in self.parts.parts.items():
            wrapper = self._wrappers[part]
            wrapper.transform.rotation = claimed.baseline_rotation.model_copy()

    def apply_definition(self, pose: PoseDefinition) -> None:
        self.reset()
        for part, degrees in pose.rotations.items():
            claimed = self.parts.get(part)
            if claimed is None:
                logger.debug("Pose %s skips absent part %s", pose.id, part.value)
                continue
            self._wrappers[part].transform.rotation = rotation_with_delta(claimed.baseline_rotation, degrees)
        self.current_pose = pose.id

    def apply_pose(self, pose_id: str) -> None:
        if not self.has_body_parts():
            raise PoseUnavailable(
                "Posing is unavailable: no body parts were recognised in this model",
                details={"pose": pose_id},
            )
        pose = PoseLibrary.get(pose_id)
        if pose is None:
            raise InvalidInput(
                f"Unknown pose '{pose_id}'", details={"pose": pose_id, "available": PoseLibrary.ids()}
            )
        self.apply_definition(pose)
        logger.info("Applied pose %s to %s", pose.id, getattr(self.session, "base_name", "scene"))
