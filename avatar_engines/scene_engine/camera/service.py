"""Camera framing and the fixed three-point lighting rig."""
from __future__ import annotations

import math
from typing import Dict, List

from avatar_engines.scene_engine.camera.models import (
    Camera,
    CameraRig,
    FramingMode,
    Light,
    LightKind,
)
from avatar_engines.scene_engine.core.geometry import BoundingBox, Vector3

FIELD_OF_VIEW_DEG = 45.0

# extra distance so the model never touches the frame edge
FRAMING_MULTIPLIER: Dict[FramingMode, float] = {
    FramingMode.INTERACTIVE: 1.5,
    FramingMode.BATCH: 1.4,
}

AMBIENT_INTENSITY = 0.6
KEY_INTENSITY = 1.0
FILL_INTENSITY = 0.5
RIM_INTENSITY = 0.4

# key: front-upper-right, fill: front-upper-left, rim: behind-above
KEY_POSITION = Vector3(x=5.0, y=10.0, z=7.0)
FILL_POSITION = Vector3(x=-5.0, y=5.0, z=5.0)
RIM_POSITION = Vector3(x=0.0, y=5.0, z=-10.0)


def framing_distance(bounds: BoundingBox, fov_deg: float = FIELD_OF_VIEW_DEG, multiplier: float = 1.0) -> float:
    max_dim = bounds.max_dimension()
    if max_dim <= 0:
        max_dim = 1.0
    return (max_dim / 2.0) / math.tan(math.radians(fov_deg) / 2.0) * multiplier


def frame_camera(bounds: BoundingBox, mode: FramingMode = FramingMode.INTERACTIVE) -> Camera:
    """Camera on +Z looking at the origin, far enough to fit ``bounds``."""
    distance = framing_distance(bounds, FIELD_OF_VIEW_DEG, FRAMING_MULTIPLIER[mode])
    return Camera(
        id=f"cam_{mode.value}",
        fov_deg=FIELD_OF_VIEW_DEG,
        near=distance / 100.0,
        far=distance * 100.0,
        position=Vector3(x=0.0, y=0.0, z=distance),
        target=Vector3(x=0.0, y=0.0, z=0.0),
    )


def default_lights() -> List[Light]:
    return [
        Light(id="ambient", kind=LightKind.AMBIENT, intensity=AMBIENT_INTENSITY),
        Light(id="key", kind=LightKind.DIRECTIONAL, intensity=KEY_INTENSITY, position=KEY_POSITION),
        Light(id="fill", kind=LightKind.DIRECTIONAL, intensity=FILL_INTENSITY, position=FILL_POSITION),
        Light(id="rim", kind=LightKind.DIRECTIONAL, intensity=RIM_INTENSITY, position=RIM_POSITION),
    ]


def build_camera_rig(bounds: BoundingBox, mode: FramingMode = FramingMode.INTERACTIVE) -> CameraRig:
    return CameraRig(camera=frame_camera(bounds, mode), lights=default_lights(), meta={"mode": mode.value})
