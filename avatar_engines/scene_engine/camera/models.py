"""Camera and lighting models."""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from avatar_engines.scene_engine.core.geometry import Vector3


class FramingMode(str, Enum):
    INTERACTIVE = "interactive"
    BATCH = "batch"


class Camera(BaseModel):
    id: str
    name: Optional[str] = None
    fov_deg: float = 45.0
    near: float = 0.1
    far: float = 1000.0
    position: Vector3
    target: Vector3
    up: Vector3 = Vector3(x=0.0, y=1.0, z=0.0)
    meta: Dict[str, Any] = Field(default_factory=dict)


class LightKind(str, Enum):
    AMBIENT = "ambient"
    DIRECTIONAL = "directional"


class Light(BaseModel):
    id: str
    name: Optional[str] = None
    kind: LightKind = LightKind.DIRECTIONAL
    color: Vector3 = Vector3(x=1.0, y=1.0, z=1.0)
    intensity: float = 1.0
    # directional lights shine from ``position`` towards ``target``
    position: Optional[Vector3] = None
    target: Vector3 = Vector3(x=0.0, y=0.0, z=0.0)
    meta: Dict[str, Any] = Field(default_factory=dict)

    def direction(self) -> Vector3:
        """Unit vector of travel for the light rays."""
        if self.position is None:
            return Vector3(x=0.0, y=-1.0, z=0.0)
        return self.target.sub(self.position).normalize()


class CameraRig(BaseModel):
    camera: Camera
    lights: List[Light] = Field(default_factory=list)
    meta: Dict[str, Any] = Field(default_factory=dict)

    def light(self, light_id: str) -> Optional[Light]:
        return next((l for l in self.lights if l.id == light_id), None)
