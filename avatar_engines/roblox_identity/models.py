"""Data models for identity and 3D descriptor resolution."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from avatar_engines.common.errors import MissingAssets

UNNAMED_OUTFIT = "Unnamed Outfit"


class ThumbnailEntry(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    target_id: Optional[int] = Field(default=None, alias="targetId")
    state: Optional[str] = None
    image_url: Optional[str] = Field(default=None, alias="imageUrl")

    @property
    def usable(self) -> bool:
        return bool(self.image_url)


class ThumbnailPayload(BaseModel):
    """Upstream 3D thumbnail response.

    The API answers either ``{"data": [entry, ...]}`` or a flat entry. A
    non-empty ``data`` list wins and its first element is the entry;
    otherwise the payload itself is read as the entry.
    """
    model_config = ConfigDict(extra="allow")

    data: Optional[List[Dict[str, Any]]] = None

    @classmethod
    def parse(cls, raw: Any) -> "ThumbnailPayload":
        if not isinstance(raw, dict):
            return cls()
        data = raw.get("data")
        payload = dict(raw)
        payload["data"] = data if isinstance(data, list) else None
        return cls.model_validate(payload)

    def select_entry(self) -> ThumbnailEntry:
        if self.data:
            first = self.data[0]
            return ThumbnailEntry.model_validate(first if isinstance(first, dict) else {})
        flat = self.model_dump(exclude={"data"})
        return ThumbnailEntry.model_validate(flat)


class AssetDescriptor(BaseModel):
    """Hashes naming the mesh, material and textures of one 3D asset."""
    model_config = ConfigDict(frozen=True)

    mesh_hash: Optional[str] = None
    material_hash: Optional[str] = None
    texture_hashes: List[str] = Field(default_factory=list)
    # verbatim upstream manifest, kept for provenance
    manifest: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_manifest(cls, manifest: Any) -> "AssetDescriptor":
        if not isinstance(manifest, dict):
            raise MissingAssets()
        obj = manifest.get("obj")
        mtl = manifest.get("mtl")
        textures = manifest.get("textures")
        if not obj and not mtl and not textures:
            raise MissingAssets()
        texture_hashes = [str(t) for t in textures if t] if isinstance(textures, list) else []
        return cls(
            mesh_hash=str(obj) if obj else None,
            material_hash=str(mtl) if mtl else None,
            texture_hashes=texture_hashes,
            manifest=manifest,
        )


class UserLookupEntry(BaseModel):
    """First entry of the username lookup response."""
    model_config = ConfigDict(extra="allow")

    id: int
    name: Optional[str] = None


class OutfitSummary(BaseModel):
    id: int
    name: str = UNNAMED_OUTFIT


class OutfitList(BaseModel):
    userId: str
    total: int
    fetched: int
    outfits: List[OutfitSummary] = Field(default_factory=list)
