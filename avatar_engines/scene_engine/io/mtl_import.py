"""Wavefront MTL parsing."""
from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel

logger = logging.getLogger(__name__)

RGB = Tuple[float, float, float]


class MaterialDefinition(BaseModel):
    """One ``newmtl`` block as written in the file, before any policy."""
    name: str
    ambient: Optional[RGB] = None
    diffuse: Optional[RGB] = None
    specular: Optional[RGB] = None
    shininess: Optional[float] = None
    opacity: Optional[float] = None
    alpha_test: Optional[float] = None
    illum: Optional[int] = None
    map_diffuse: Optional[str] = None
    map_alpha: Optional[str] = None


def _floats(args: List[str], count: int) -> Optional[Tuple[float, ...]]:
    try:
        values = tuple(float(a) for a in args[:count])
    except ValueError:
        return None
    if len(values) == 1 and count == 3:
        # "Kd 0.5" is shorthand for a grey
        values = values * 3
    return values if len(values) == count else None


def _map_path(args: List[str]) -> Optional[str]:
    # texture options ("-bm 1", "-clamp on") precede the file name
    return args[-1] if args else None


def parse_mtl(text: str) -> Dict[str, MaterialDefinition]:
    materials: Dict[str, MaterialDefinition] = {}
    current: Optional[MaterialDefinition] = None

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        parts = line.split()
        key, args = parts[0], parts[1:]
        lowered = key.lower()

        if lowered == "newmtl":
            name = " ".join(args) if args else f"material_{len(materials)}"
            current = MaterialDefinition(name=name)
            materials[name] = current
            continue
        if current is None:
            logger.debug("MTL statement %s before any newmtl ignored", key)
            continue

        if lowered == "ka":
            current.ambient = _floats(args, 3)
        elif lowered == "kd":
            current.diffuse = _floats(args, 3)
        elif lowered == "ks":
            current.specular = _floats(args, 3)
        elif lowered == "ns":
            value = _floats(args, 1)
            current.shininess = value[0] if value else None
        elif lowered == "d":
            value = _floats([a for a in args if not a.startswith("-")], 1)
            current.opacity = value[0] if value else None
        elif lowered == "tr":
            value = _floats(args, 1)
            if value:
                current.opacity = 1.0 - value[0]
        elif lowered == "alphatest":
            value = _floats(args, 1)
            current.alpha_test = value[0] if value else None
        elif lowered == "illum":
            try:
                current.illum = int(args[0])
            except (IndexError, ValueError):
                current.illum = None
        elif lowered == "map_kd":
            current.map_diffuse = _map_path(args)
        elif lowered == "map_d":
            current.map_alpha = _map_path(args)

    return materials
