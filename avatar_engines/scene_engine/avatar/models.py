"""Data models for R15 body-part inference and posing."""
from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from avatar_engines.scene_engine.core.geometry import EulerAngles, Vector3


class BodyPart(str, Enum):
    HEAD = "Head"
    UPPER_TORSO = "UpperTorso"
    LOWER_TORSO = "LowerTorso"
    LEFT_UPPER_ARM = "LeftUpperArm"
    LEFT_LOWER_ARM = "LeftLowerArm"
    LEFT_HAND = "LeftHand"
    RIGHT_UPPER_ARM = "RightUpperArm"
    RIGHT_LOWER_ARM = "RightLowerArm"
    RIGHT_HAND = "RightHand"
    LEFT_UPPER_LEG = "LeftUpperLeg"
    LEFT_LOWER_LEG = "LeftLowerLeg"
    LEFT_FOOT = "LeftFoot"
    RIGHT_UPPER_LEG = "RightUpperLeg"
    RIGHT_LOWER_LEG = "RightLowerLeg"
    RIGHT_FOOT = "RightFoot"

    @property
    def is_left(self) -> bool:
        return self.value.startswith("Left")

    @property
    def is_arm(self) -> bool:
        return self.value.endswith(("Arm", "Hand"))

    @property
    def is_leg(self) -> bool:
        return self.value.endswith(("Leg", "Foot"))


# Group names used by the 3D export, Player1..Player15 in R15 order.
PLAYER_GROUP_TABLE: Dict[str, BodyPart] = {
    f"Player{i}": part for i, part in enumerate(BodyPart, start=1)
}


class LimbHierarchy:
    """Fixed parent/child table of the 15 R15 parts, rooted at LowerTorso."""

    def __init__(self, parents: Dict[BodyPart, Optional[BodyPart]]):
        self._parents = dict(parents)
        roots = [p for p, parent in self._parents.items() if parent is None]
        if len(roots) != 1:
            raise ValueError(f"Limb hierarchy must have exactly one root, got {roots}")
        self.root = roots[0]

    def parent_of(self, part: BodyPart) -> Optional[BodyPart]:
        return self._parents.get(part)

    def children_of(self, part: BodyPart) -> Tuple[BodyPart, ...]:
        return tuple(p for p, parent in self._parents.items() if parent == part)

    def propagation_order(self) -> List[BodyPart]:
        """Parts ordered so every parent precedes its children."""
        order: List[BodyPart] = []
        queue = [self.root]
        while queue:
            part = queue.pop(0)
            order.append(part)
            queue.extend(self.children_of(part))
        return order

    def __contains__(self, part: object) -> bool:
        return part in self._parents


LIMB_HIERARCHY = LimbHierarchy({
    BodyPart.LOWER_TORSO: None,
    BodyPart.UPPER_TORSO: BodyPart.LOWER_TORSO,
    BodyPart.HEAD: BodyPart.UPPER_TORSO,
    BodyPart.LEFT_UPPER_ARM: BodyPart.UPPER_TORSO,
    BodyPart.LEFT_LOWER_ARM: BodyPart.LEFT_UPPER_ARM,
    BodyPart.LEFT_HAND: BodyPart.LEFT_LOWER_ARM,
    BodyPart.RIGHT_UPPER_ARM: BodyPart.UPPER_TORSO,
    BodyPart.RIGHT_LOWER_ARM: BodyPart.RIGHT_UPPER_ARM,
    BodyPart.RIGHT_HAND: BodyPart.RIGHT_LOWER_ARM,
    BodyPart.LEFT_UPPER_LEG: BodyPart.LOWER_TORSO,
    BodyPart.LEFT_LOWER_LEG: BodyPart.LEFT_UPPER_LEG,
    BodyPart.LEFT_FOOT: BodyPart.LEFT_LOWER_LEG,
    BodyPart.RIGHT_UPPER_LEG: BodyPart.LOWER_TORSO,
    BodyPart.RIGHT_LOWER_LEG: BodyPart.RIGHT_UPPER_LEG,
    BodyPart.RIGHT_FOOT: BodyPart.RIGHT_LOWER_LEG,
})


class PoseDefinition(BaseModel):
    id: str
    name: str
    # per-part rotation deltas in degrees around the wrapper's local X/Y/Z
    rotations: Dict[BodyPart, Tuple[float, float, float]] = Field(default_factory=dict)


class ClaimedPart(BaseModel):
    part: BodyPart
    node_id: str
    node_name: str
    wrapper_id: Optional[str] = None
    # the claimed node's own local rotation, recorded before any re-parenting
    original_rotation: EulerAngles = Field(default_factory=EulerAngles)
    # rotation the wrapper returns to before every pose
    baseline_rotation: EulerAngles = Field(default_factory=EulerAngles)
    pivot: Optional[Vector3] = None


class BodyPartMap(BaseModel):
    parts: Dict[BodyPart, ClaimedPart] = Field(default_factory=dict)

    def __contains__(self, part: object) -> bool:
        return part in self.parts

    def __len__(self) -> int:
        return len(self.parts)

    def get(self, part: BodyPart) -> Optional[ClaimedPart]:
        return self.parts.get(part)

    @property
    def node_ids(self) -> List[str]:
        return [claimed.node_id for claimed in self.parts.values()]
