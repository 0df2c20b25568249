"""Request/response bodies for the avatar HTTP surface."""
from __future__ import annotations

from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class UserIdRequest(BaseModel):
    username: Optional[str] = None


class UserIdResponse(BaseModel):
    id: int


class OutfitsRequest(BaseModel):
    userId: Optional[Union[int, str]] = None


class OutfitDownloadRequest(BaseModel):
    outfitId: Optional[Union[int, str]] = None
    outfitName: Optional[str] = None


class PlayerDownloadRequest(BaseModel):
    userId: Optional[Union[int, str]] = None
    username: Optional[str] = None


class AvatarThumbnailRequest(BaseModel):
    userId: Optional[Union[int, str]] = None
    username: Optional[str] = None


class OutfitThumbnailRequest(BaseModel):
    outfitId: Optional[Union[int, str]] = None


class OutfitRenderRequest(BaseModel):
    outfitId: Optional[Union[int, str]] = None
    outfitName: Optional[str] = None
    pose: Optional[str] = None


class ExportMode(str, Enum):
    RENDER = "render"
    BUNDLE = "bundle"
    THUMBNAIL = "thumbnail"


class ExportOutfit(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Union[int, str]
    name: Optional[str] = None


class ExportRequest(BaseModel):
    outfits: List[ExportOutfit] = Field(default_factory=list)
    mode: ExportMode = ExportMode.RENDER
    pose: Optional[str] = None
