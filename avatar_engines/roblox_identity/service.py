"""Identity and 3D descriptor resolution against the public avatar APIs."""
from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Dict, Iterable, Optional

import httpx
from pydantic import ValidationError

from avatar_engines.asset_fetch.retry import (
    BINARY_POLICY,
    JSON_POLICY,
    SNIPPET_LENGTH,
    SleepFn,
    default_policy,
    fetch_bytes,
    fetch_json,
)
from avatar_engines.common.errors import (
    AvatarEngineError,
    BadUpstream,
    InvalidInput,
    ModeratedContent,
    NotFound,
)
from avatar_engines.config import runtime_config
from avatar_engines.roblox_identity.models import (
    UNNAMED_OUTFIT,
    AssetDescriptor,
    OutfitList,
    OutfitSummary,
    ThumbnailEntry,
    ThumbnailPayload,
    UserLookupEntry,
)

logger = logging.getLogger(__name__)

_NUMERIC_ID = re.compile(r"^\d+$")

THUMBNAIL_CHUNK_SIZE = 50


def normalize_numeric_id(value: object, label: str) -> str:
    """Strip whitespace and require a purely numeric identifier."""
    cleaned = re.sub(r"\s+", "", str(value if value is not None else ""))
    if not _NUMERIC_ID.match(cleaned):
        raise InvalidInput(f"Invalid {label}")
    return cleaned


def unexpected_shape(what: str, payload: Any) -> BadUpstream:
    return BadUpstream(
        f"Unexpected {what} response",
        details={"raw": json.dumps(payload, default=str)[:SNIPPET_LENGTH]},
    )


def thumbnail_entry(payload: Any) -> ThumbnailEntry:
    try:
        return ThumbnailPayload.parse(payload).select_entry()
    except ValidationError as exc:
        raise unexpected_shape("thumbnail", payload) from exc


class RobloxIdentityResolver:
    """Turns usernames and outfit ids into 3D asset descriptors."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        sleep: SleepFn = asyncio.sleep,
        forward_headers: Optional[Dict[str, str]] = None,
    ):
        self.client = client
        self.sleep = sleep
        self.forward_headers = dict(forward_headers or {})
        self.json_policy = default_policy(JSON_POLICY)
        # tolerate 404 while the outfit 3D endpoint warms up
        self.outfit_policy = self.json_policy.with_overrides(retry_statuses=frozenset({404}))

    def with_forward_headers(self, headers: Dict[str, str]) -> "RobloxIdentityResolver":
        return RobloxIdentityResolver(self.client, sleep=self.sleep, forward_headers=headers)

    async def _get_json(self, url: str, policy=None):
        return await fetch_json(
            self.client,
            url,
            policy=policy or self.json_policy,
            sleep=self.sleep,
            headers=self.forward_headers or None,
        )

    async def username_to_id(self, username: str) -> int:
        name = str(username or "").strip()
        if not name:
            raise InvalidInput("username required")

        payload = await fetch_json(
            self.client,
            runtime_config.get_users_api_url(),
            method="POST",
            policy=self.json_policy,
            sleep=self.sleep,
            json={"usernames": [name], "excludeBannedUsers": False},
        )
        if not isinstance(payload, dict):
            raise unexpected_shape("user lookup", payload)
        data = payload.get("data")
        first = data[0] if isinstance(data, list) and data else None
        if not isinstance(first, dict) or not first.get("id"):
            raise NotFound("user not found", details={"username": name})
        try:
            entry = UserLookupEntry.model_validate(first)
        except ValidationError as exc:
            raise unexpected_shape("user lookup", payload) from exc
        logger.info("Resolved username %s -> %s", name, entry.id)
        return entry.id

    async def list_outfits(self, user_id: object) -> OutfitList:
        uid = normalize_numeric_id(user_id, "userId")
        url = (
            f"{runtime_config.get_avatar_api_base()}/v2/avatar/users/{uid}/outfits"
            "?page=1&itemsPerPage=999&isEditable=true"
        )
        payload = await self._get_json(url)
        if not isinstance(payload, dict):
            raise unexpected_shape("outfit list", payload)
        raw_items = payload.get("data")
        outfits = []
        for item in raw_items if isinstance(raw_items, list) else []:
            if not isinstance(item, dict) or item.get("id") is None:
                continue
            try:
                outfits.append(OutfitSummary(id=item["id"], name=item.get("name") or UNNAMED_OUTFIT))
            except ValidationError:
                logger.warning("Skipping malformed outfit entry for user %s: %r", uid, item)
        total = payload.get("total")
        return OutfitList(
            userId=uid,
            total=total if isinstance(total, int) else len(outfits),
            fetched=len(outfits),
            outfits=outfits,
        )

    async def _resolve_descriptor(self, thumb_url: str, missing: AvatarEngineError, policy) -> AssetDescriptor:
        raw = await self._get_json(thumb_url, policy=policy)
        entry = thumbnail_entry(raw)
        if not entry.usable:
            raise missing
        manifest = await self._get_json(entry.image_url)
        descriptor = AssetDescriptor.from_manifest(manifest)
        logger.info(
            "Descriptor resolved: mesh=%s material=%s textures=%d",
            descriptor.mesh_hash,
            descriptor.material_hash,
            len(descriptor.texture_hashes),
        )
        return descriptor

    async def resolve_avatar_descriptor(self, user_id: object) -> AssetDescriptor:
        uid = normalize_numeric_id(user_id, "userId")
        url = f"{runtime_config.get_thumbnails_api_base()}/v1/users/avatar-3d?userId={uid}"
        return await self._resolve_descriptor(
            url,
            NotFound("No 3D data available for this user", details={"userId": uid}),
            self.json_policy,
        )

    async def resolve_outfit_descriptor(self, outfit_id: object) -> AssetDescriptor:
        oid = normalize_numeric_id(outfit_id, "outfitId")
        url = f"{runtime_config.get_thumbnails_api_base()}/v1/users/outfit-3d?outfitId={oid}"
        return await self._resolve_descriptor(
            url,
            ModeratedContent(details={"outfitId": oid}),
            self.outfit_policy,
        )

    # --- 2D thumbnails ---

    async def fetch_outfit_thumbnail_urls(self, outfit_ids: Iterable[object]) -> Dict[str, str]:
        """Map outfit id -> completed thumbnail URL; failed chunks are skipped."""
        ids = [str(i) for i in outfit_ids]
        found: Dict[str, str] = {}
        for start in range(0, len(ids), THUMBNAIL_CHUNK_SIZE):
            chunk = ids[start:start + THUMBNAIL_CHUNK_SIZE]
            url = (
                f"{runtime_config.get_thumbnails_api_base()}/v1/users/outfits"
                f"?userOutfitIds={','.join(chunk)}&size=420x420&format=Png&isCircular=false"
            )
            try:
                payload = await self._get_json(url)
            except AvatarEngineError as exc:
                logger.warning("Thumbnail chunk starting at %s failed: %s", start, exc)
                continue
            for item in (payload.get("data") or []) if isinstance(payload, dict) else []:
                if not isinstance(item, dict):
                    continue
                target = str(item.get("targetId") or "")
                state = str(item.get("state") or "").lower()
                if target and state == "completed" and item.get("imageUrl"):
                    found[target] = item["imageUrl"]
        return found

    async def fetch_render_image(self, image_url: str) -> bytes:
        return await fetch_bytes(
            self.client,
            image_url,
            policy=default_policy(BINARY_POLICY),
            sleep=self.sleep,
            headers=self.forward_headers or None,
        )

    async def _fetch_completed_render(self, url: str, what: str) -> bytes:
        payload = await self._get_json(url)
        entry = thumbnail_entry(payload)
        if entry.state != "Completed" or not entry.usable:
            raise NotFound(f"Render not available or pending for this {what}.")
        return await self.fetch_render_image(entry.image_url)

    async def fetch_avatar_thumbnail(self, user_id: object) -> bytes:
        uid = normalize_numeric_id(user_id, "userId")
        url = (
            f"{runtime_config.get_thumbnails_api_base()}/v1/users/avatar"
            f"?userIds={uid}&size=720x720&format=Png&isCircular=false"
        )
        return await self._fetch_completed_render(url, "user")

    async def fetch_outfit_thumbnail(self, outfit_id: object) -> bytes:
        oid = normalize_numeric_id(outfit_id, "outfitId")
        url = (
            f"{runtime_config.get_thumbnails_api_base()}/v1/users/outfits"
            f"?userOutfitIds={oid}&size=420x420&format=Png&isCircular=false"
        )
        return await self._fetch_completed_render(url, "outfit")
