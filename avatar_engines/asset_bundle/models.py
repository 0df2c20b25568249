"""Data models for packaged avatar asset bundles."""
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

MESH_EXT = ".obj"
MATERIAL_EXT = ".mtl"
MANIFEST_SUFFIX = "_meta.json"
TEXTURE_EXTS = (".png", ".jpg", ".jpeg")


def texture_file_name(index: int) -> str:
    """Synthetic texture name for the 0-based descriptor index."""
    return f"texture_{index + 1}.png"


class TextureEntry(BaseModel):
    filename: str
    data: bytes


class AssetBundle(BaseModel):
    base_name: str
    mesh_text: Optional[str] = None
    material_text: Optional[str] = None
    textures: List[TextureEntry] = Field(default_factory=list)
    manifest: Dict[str, Any] = Field(default_factory=dict)

    @property
    def mesh_name(self) -> str:
        return f"{self.base_name}{MESH_EXT}"

    @property
    def material_name(self) -> str:
        return f"{self.base_name}{MATERIAL_EXT}"

    @property
    def manifest_name(self) -> str:
        return f"{self.base_name}{MANIFEST_SUFFIX}"

    def texture_names(self) -> List[str]:
        return [t.filename for t in self.textures]

    def entries(self) -> List[Tuple[str, bytes]]:
        """Named byte entries in archive order: material, textures, mesh, manifest."""
        out: List[Tuple[str, bytes]] = []
        if self.material_text is not None:
            out.append((self.material_name, self.material_text.encode("utf-8")))
        for tex in self.textures:
            out.append((tex.filename, tex.data))
        if self.mesh_text is not None:
            out.append((self.mesh_name, self.mesh_text.encode("utf-8")))
        out.append((self.manifest_name, json.dumps(self.manifest, indent=2).encode("utf-8")))
        return out
