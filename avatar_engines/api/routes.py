"""HTTP routes for the avatar asset service."""
from __future__ import annotations

import logging
from typing import Dict, List, Optional, Union

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response

from avatar_engines.api.schemas import (
    AvatarThumbnailRequest,
    ExportMode,
    ExportRequest,
    OutfitDownloadRequest,
    OutfitRenderRequest,
    OutfitThumbnailRequest,
    OutfitsRequest,
    PlayerDownloadRequest,
    UserIdRequest,
    UserIdResponse,
)
from avatar_engines.api.stores import ServiceContainer, get_container
from avatar_engines.asset_bundle.archive import pack_bundle
from avatar_engines.asset_bundle.service import outfit_base_name, safe_file_name, user_base_name
from avatar_engines.common.errors import InvalidInput
from avatar_engines.config import runtime_config
from avatar_engines.hardening.rate_limit import caller_identity
from avatar_engines.outfit_export.service import ExportItem
from avatar_engines.roblox_identity.models import OutfitList
from avatar_engines.roblox_identity.service import normalize_numeric_id
from avatar_engines.scene_engine.avatar.poses import PoseLibrary

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["avatar"])

ZIP_MEDIA_TYPE = "application/zip"
PNG_MEDIA_TYPE = "image/png"


def _attachment(data: bytes, filename: str, media_type: str) -> Response:
    return Response(
        content=data,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def _admit(request: Request, container: ServiceContainer) -> str:
    caller = caller_identity(request)
    container.rate_limiter.check(caller)
    return caller


def _forward_headers(caller: str) -> Dict[str, str]:
    return {"X-Forwarded-For": caller, "Roblox-Id": "true"}


def _validate_pose(pose: Optional[str]) -> Optional[str]:
    if not pose:
        return None
    definition = PoseLibrary.get(pose)
    if definition is None:
        raise InvalidInput(f"Unknown pose '{pose}'", details={"available": PoseLibrary.ids()})
    return definition.id


@router.get("/poses")
async def list_poses() -> Dict[str, str]:
    return PoseLibrary.list_poses()


@router.post("/userid", response_model=UserIdResponse)
async def resolve_user_id(
    req: Optional[UserIdRequest] = None,
    container: ServiceContainer = Depends(get_container),
) -> UserIdResponse:
    req = req or UserIdRequest()
    user_id = await container.resolver.username_to_id(req.username or "")
    return UserIdResponse(id=user_id)


async def _outfits(user_id: Optional[Union[int, str]], container: ServiceContainer) -> OutfitList:
    uid = normalize_numeric_id(user_id, "userId")
    key = f"outfits:{uid}"
    cached = container.outfit_cache.get(key)
    if cached is not None:
        logger.debug("Outfit list cache hit for %s", uid)
        return cached
    result = await container.resolver.list_outfits(uid)
    container.outfit_cache.set(key, result)
    return result


@router.get("/outfits", response_model=OutfitList)
async def list_outfits(
    userId: Optional[str] = None,
    container: ServiceContainer = Depends(get_container),
) -> OutfitList:
    return await _outfits(userId, container)


@router.post("/outfits", response_model=OutfitList)
async def list_outfits_post(
    userId: Optional[str] = None,
    req: Optional[OutfitsRequest] = None,
    container: ServiceContainer = Depends(get_container),
) -> OutfitList:
    return await _outfits(userId if userId is not None else (req.userId if req else None), container)


@router.post("/outfit-download")
async def outfit_download(
    request: Request,
    req: Optional[OutfitDownloadRequest] = None,
    container: ServiceContainer = Depends(get_container),
) -> Response:
    caller = _admit(request, container)
    req = req or OutfitDownloadRequest()
    outfit_id = normalize_numeric_id(req.outfitId, "outfitId")
    forward = _forward_headers(caller)

    resolver = container.resolver.with_forward_headers(forward)
    builder = container.builder.with_forward_headers(forward)
    descriptor = await resolver.resolve_outfit_descriptor(outfit_id)
    bundle = await builder.build(descriptor, outfit_base_name(outfit_id, req.outfitName))
    return _attachment(pack_bundle(bundle), f"{bundle.base_name}.zip", ZIP_MEDIA_TYPE)


@router.post("/player-download")
async def player_download(
    request: Request,
    req: Optional[PlayerDownloadRequest] = None,
    container: ServiceContainer = Depends(get_container),
) -> Response:
    _admit(request, container)
    req = req or PlayerDownloadRequest()
    user_id = normalize_numeric_id(req.userId, "userId")
    descriptor = await container.resolver.resolve_avatar_descriptor(user_id)
    bundle = await container.builder.build(descriptor, user_base_name(user_id, req.username))
    return _attachment(pack_bundle(bundle), f"{bundle.base_name}.zip", ZIP_MEDIA_TYPE)


@router.post("/avatar-thumbnail")
async def avatar_thumbnail(
    request: Request,
    req: Optional[AvatarThumbnailRequest] = None,
    container: ServiceContainer = Depends(get_container),
) -> Response:
    caller = _admit(request, container)
    req = req or AvatarThumbnailRequest()
    user_id = normalize_numeric_id(req.userId, "userId")
    resolver = container.resolver.with_forward_headers(_forward_headers(caller))
    png = await resolver.fetch_avatar_thumbnail(user_id)
    return _attachment(png, f"Render_{safe_file_name(req.username, 'User')}_{user_id}.png", PNG_MEDIA_TYPE)


@router.post("/outfit-thumbnail")
async def outfit_thumbnail(
    request: Request,
    req: Optional[OutfitThumbnailRequest] = None,
    container: ServiceContainer = Depends(get_container),
) -> Response:
    caller = _admit(request, container)
    req = req or OutfitThumbnailRequest()
    outfit_id = normalize_numeric_id(req.outfitId, "outfitId")
    resolver = container.resolver.with_forward_headers(_forward_headers(caller))
    png = await resolver.fetch_outfit_thumbnail(outfit_id)
    return _attachment(png, f"Render_Outfit_{outfit_id}.png", PNG_MEDIA_TYPE)


@router.post("/outfit-render")
async def outfit_render(
    request: Request,
    req: Optional[OutfitRenderRequest] = None,
    container: ServiceContainer = Depends(get_container),
) -> Response:
    caller = _admit(request, container)
    req = req or OutfitRenderRequest()
    outfit_id = normalize_numeric_id(req.outfitId, "outfitId")
    pose = _validate_pose(req.pose)
    async with container.render_guard.hold():
        png = await container.exporter(_forward_headers(caller)).render_outfit(
            int(outfit_id), req.outfitName, pose, strict_pose=True
        )
    filename = f"Render_{outfit_id}_{safe_file_name(req.outfitName)}.png"
    return _attachment(png, filename, PNG_MEDIA_TYPE)


@router.post("/outfits/export")
async def export_outfits(
    request: Request,
    req: ExportRequest,
    container: ServiceContainer = Depends(get_container),
) -> Response:
    caller = _admit(request, container)
    if not req.outfits:
        raise InvalidInput("No outfits selected")
    items: List[ExportItem] = [
        ExportItem(id=int(normalize_numeric_id(o.id, "outfit id")), name=o.name) for o in req.outfits
    ]
    pose = _validate_pose(req.pose)

    async with container.export_guard.hold():
        exporter = container.exporter(_forward_headers(caller))
        if req.mode == ExportMode.BUNDLE:
            data = await exporter.export_bundles(items, batch_size=runtime_config.get_download_batch_size())
            filename = "Outfits_Bundles.zip"
        elif req.mode == ExportMode.THUMBNAIL:
            data = await exporter.export_thumbnails(items, batch_size=runtime_config.get_thumbnail_batch_size())
            filename = "Outfits_Thumbnails.zip"
        else:
            data = await exporter.export_renders(
                items, pose=pose, batch_size=runtime_config.get_render_batch_size()
            )
            filename = "Outfits_Renders.zip"
    return _attachment(data, filename, ZIP_MEDIA_TYPE)
