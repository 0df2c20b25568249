"""R15 body-part inference and posing."""
from .models import LIMB_HIERARCHY, BodyPart, BodyPartMap, PoseDefinition
from .poses import PoseLibrary
from .service import AvatarArticulator, infer_body_parts

__all__ = [
    "LIMB_HIERARCHY",
    "BodyPart",
    "BodyPartMap",
    "PoseDefinition",
    "PoseLibrary",
    "AvatarArticulator",
    "infer_body_parts",
]
