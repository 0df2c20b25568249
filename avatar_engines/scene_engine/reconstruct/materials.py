"""Shading policy applied to parsed MTL definitions."""
from __future__ import annotations

from typing import Dict, Optional

from avatar_engines.scene_engine.core.geometry import Material, Vector3
from avatar_engines.scene_engine.io.mtl_import import MaterialDefinition, RGB

# map_d without an explicit threshold cuts out at half coverage
DEFAULT_ALPHA_CUTOFF = 0.5
# opacity-only materials discard only fragments that are effectively invisible
TRANSLUCENT_ALPHA_CUTOFF = 0.05


def _vec(rgb: Optional[RGB], default: Vector3) -> Vector3:
    if rgb is None:
        return default
    return Vector3(x=rgb[0], y=rgb[1], z=rgb[2])


def alpha_cutoff(defn: MaterialDefinition) -> float:
    if defn.alpha_test is not None and defn.alpha_test > 0:
        return defn.alpha_test
    if defn.map_alpha:
        return DEFAULT_ALPHA_CUTOFF
    if defn.opacity is not None and defn.opacity < 1.0:
        return TRANSLUCENT_ALPHA_CUTOFF
    return 0.0


def to_material(defn: MaterialDefinition) -> Material:
    """Translucent or cutout definitions become alpha-tested with depth writes kept on."""
    opacity = 1.0 if defn.opacity is None else max(0.0, min(1.0, defn.opacity))
    cutoff = alpha_cutoff(defn)
    transparent = cutoff > 0.0

    slots: Dict[str, str] = {}
    if defn.map_diffuse:
        slots["albedo"] = defn.map_diffuse
    if defn.map_alpha:
        slots["alpha"] = defn.map_alpha

    return Material(
        id=defn.name,
        name=defn.name,
        ambient=_vec(defn.ambient, Vector3.zero()),
        base_color=_vec(defn.diffuse, Vector3(x=1.0, y=1.0, z=1.0)),
        specular=_vec(defn.specular, Vector3.zero()),
        shininess=defn.shininess or 0.0,
        opacity=opacity,
        alpha_test=cutoff,
        transparent=transparent,
        depth_write=True,
        double_sided=True,
        texture_slots=slots,
        meta={"illum": defn.illum} if defn.illum is not None else {},
    )
