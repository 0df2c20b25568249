"""Core geometry types for the avatar scene engine."""
from __future__ import annotations

import math
from typing import Any, Dict, Optional, Tuple

import numpy as np
from pydantic import BaseModel, ConfigDict, Field


class Vector3(BaseModel):
    x: float
    y: float
    z: float

    @classmethod
    def zero(cls) -> Vector3:
        return cls(x=0.0, y=0.0, z=0.0)

    @classmethod
    def from_array(cls, values) -> Vector3:
        return cls(x=float(values[0]), y=float(values[1]), z=float(values[2]))

    def to_array(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z], dtype=np.float64)

    def add(self, other: Vector3) -> Vector3:
        return Vector3(x=self.x + other.x, y=self.y + other.y, z=self.z + other.z)

    def sub(self, other: Vector3) -> Vector3:
        return Vector3(x=self.x - other.x, y=self.y - other.y, z=self.z - other.z)

    def mul(self, scalar: float) -> Vector3:
        return Vector3(x=self.x * scalar, y=self.y * scalar, z=self.z * scalar)

    def magnitude(self) -> float:
        return math.sqrt(self.x * self.x + self.y * self.y + self.z * self.z)

    def normalize(self) -> Vector3:
        m = self.magnitude()
        if m == 0:
            return Vector3(x=0, y=0, z=0)
        return self.mul(1.0 / m)


class EulerAngles(BaseModel):
    """Rotation in radians, applied in XYZ order."""
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    order: str = "XYZ"

    def as_tuple(self) -> Tuple[float, float, float]:
        return (self.x, self.y, self.z)


class Transform(BaseModel):
    position: Vector3 = Field(default_factory=Vector3.zero)
    rotation: EulerAngles = Field(default_factory=EulerAngles)
    scale: Vector3 = Field(default_factory=lambda: Vector3(x=1.0, y=1.0, z=1.0))


class BoundingBox(BaseModel):
    min: Vector3
    max: Vector3

    @classmethod
    def from_points(cls, points: np.ndarray) -> Optional[BoundingBox]:
        if points is None or len(points) == 0:
            return None
        lo = points.min(axis=0)
        hi = points.max(axis=0)
        return cls(min=Vector3.from_array(lo), max=Vector3.from_array(hi))

    def union(self, other: Optional[BoundingBox]) -> BoundingBox:
        if other is None:
            return self
        return BoundingBox(
            min=Vector3(x=min(self.min.x, other.min.x), y=min(self.min.y, other.min.y), z=min(self.min.z, other.min.z)),
            max=Vector3(x=max(self.max.x, other.max.x), y=max(self.max.y, other.max.y), z=max(self.max.z, other.max.z)),
        )

    def center(self) -> Vector3:
        return self.min.add(self.max).mul(0.5)

    def size(self) -> Vector3:
        return self.max.sub(self.min)

    def max_dimension(self) -> float:
        s = self.size()
        return max(s.x, s.y, s.z)


class Material(BaseModel):
    """Parsed material definition plus the shading policy decided for it."""
    id: str
    name: Optional[str] = None
    ambient: Vector3 = Field(default_factory=Vector3.zero)
    base_color: Vector3 = Field(default_factory=lambda: Vector3(x=1.0, y=1.0, z=1.0))
    specular: Vector3 = Field(default_factory=Vector3.zero)
    shininess: float = 0.0
    opacity: float = 1.0
    # 0 disables the cutout test
    alpha_test: float = 0.0
    transparent: bool = False
    depth_write: bool = True
    double_sided: bool = True
    # keys are texture slots ("albedo", "alpha"), values are resource addresses
    texture_slots: Dict[str, str] = Field(default_factory=dict)
    meta: Dict[str, Any] = Field(default_factory=dict)


class Mesh(BaseModel):
    """Triangle soup for one (group, material) pair.

    Arrays are per-corner: ``vertices`` and ``normals`` are ``(n * 3, 3)``,
    ``uvs`` is ``(n * 3, 2)`` or None.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    name: Optional[str] = None
    material_id: Optional[str] = None
    vertices: np.ndarray
    normals: Optional[np.ndarray] = None
    uvs: Optional[np.ndarray] = None

    @property
    def triangle_count(self) -> int:
        return len(self.vertices) // 3
