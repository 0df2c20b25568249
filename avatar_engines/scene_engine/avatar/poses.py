"""Avatar pose catalog.

Angles are degrees around each part's pivot wrapper, expressed in the model's
local frame (the character faces -Z there, its left side is -X). Raising a
left arm sideways is therefore a negative Z rotation, a right arm a positive
one; swinging a limb forward is a positive X rotation.
"""
from __future__ import annotations

from typing import Dict, List, Optional

from avatar_engines.scene_engine.avatar.models import BodyPart, PoseDefinition


class PoseLibrary:
    """Registry of named poses."""

    DEFAULT = PoseDefinition(id="default", name="Default", rotations={})

    WAVE = PoseDefinition(
        id="wave",
        name="Wave",
        rotations={
            BodyPart.RIGHT_UPPER_ARM: (0.0, 0.0, 150.0),
            BodyPart.RIGHT_LOWER_ARM: (0.0, 0.0, 20.0),
            BodyPart.RIGHT_HAND: (0.0, 0.0, 10.0),
            BodyPart.LEFT_UPPER_ARM: (0.0, 0.0, -8.0),
            BodyPart.HEAD: (0.0, 10.0, 5.0),
        },
    )

    HERO = PoseDefinition(
        id="hero",
        name="Hero",
        rotations={
            BodyPart.LEFT_UPPER_ARM: (0.0, 0.0, -35.0),
            BodyPart.RIGHT_UPPER_ARM: (0.0, 0.0, 35.0),
            BodyPart.LEFT_LOWER_ARM: (0.0, 0.0, 30.0),
            BodyPart.RIGHT_LOWER_ARM: (0.0, 0.0, -30.0),
            BodyPart.LEFT_UPPER_LEG: (0.0, 0.0, -8.0),
            BodyPart.RIGHT_UPPER_LEG: (0.0, 0.0, 8.0),
            BodyPart.HEAD: (-5.0, 0.0, 0.0),
        },
    )

    RELAXED = PoseDefinition(
        id="relaxed",
        name="Relaxed",
        rotations={
            BodyPart.LEFT_UPPER_ARM: (5.0, 0.0, -6.0),
            BodyPart.RIGHT_UPPER_ARM: (5.0, 0.0, 6.0),
            BodyPart.LEFT_LOWER_ARM: (10.0, 0.0, 0.0),
            BodyPart.RIGHT_LOWER_ARM: (10.0, 0.0, 0.0),
            BodyPart.HEAD: (5.0, -8.0, 0.0),
            BodyPart.UPPER_TORSO: (2.0, 0.0, 0.0),
        },
    )

    SITTING = PoseDefinition(
        id="sitting",
        name="Sitting",
        rotations={
            BodyPart.LEFT_UPPER_LEG: (90.0, 0.0, 0.0),
            BodyPart.RIGHT_UPPER_LEG: (90.0, 0.0, 0.0),
            BodyPart.LEFT_LOWER_LEG: (10.0, 0.0, 0.0),
            BodyPart.RIGHT_LOWER_LEG: (10.0, 0.0, 0.0),
            BodyPart.LEFT_UPPER_ARM: (30.0, 0.0, 0.0),
            BodyPart.RIGHT_UPPER_ARM: (30.0, 0.0, 0.0),
        },
    )

    _registry: Dict[str, PoseDefinition] = {
        p.id: p for p in (DEFAULT, WAVE, HERO, RELAXED, SITTING)
    }

    @classmethod
    def get(cls, pose_id: Optional[str]) -> Optional[PoseDefinition]:
        if not pose_id:
            return None
        return cls._registry.get(pose_id.strip().lower())

    @classmethod
    def ids(cls) -> List[str]:
        return list(cls._registry)

    @classmethod
    def list_poses(cls) -> Dict[str, str]:
        return {p.id: p.name for p in cls._registry.values()}
