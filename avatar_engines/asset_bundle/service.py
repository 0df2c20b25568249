"""Asset bundle builder: download and relink the mesh/material/texture triad."""
from __future__ import annotations

import asyncio
import logging
import re
from typing import Dict, List, Optional, Tuple

import httpx

from avatar_engines.asset_bundle.models import AssetBundle, TextureEntry, texture_file_name
from avatar_engines.asset_fetch.cdn import hash_url
from avatar_engines.asset_fetch.retry import BINARY_POLICY, SleepFn, default_policy, fetch_bytes, fetch_text
from avatar_engines.roblox_identity.models import AssetDescriptor

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-z0-9]", re.IGNORECASE)
MAX_NAME_LENGTH = 60


def safe_file_name(name: Optional[str], fallback: str = "Outfit", max_length: int = MAX_NAME_LENGTH) -> str:
    return _UNSAFE_CHARS.sub("_", str(name or fallback))[:max_length]


def outfit_base_name(outfit_id: object, outfit_name: Optional[str]) -> str:
    return f"Outfit_{outfit_id}_{safe_file_name(outfit_name, 'Outfit')}"


def user_base_name(user_id: object, username: Optional[str]) -> str:
    return f"User_{user_id}_{safe_file_name(username, 'User')}"


def rewrite_material_textures(material_text: str, texture_hashes: List[str]) -> Tuple[str, List[Tuple[str, str]]]:
    """Replace every texture hash in the material text with its local file name.

    Returns the rewritten text and ``(filename, hash)`` pairs in descriptor
    order.
    """
    rewritten = material_text
    tasks: List[Tuple[str, str]] = []
    for index, tex_hash in enumerate(texture_hashes):
        filename = texture_file_name(index)
        rewritten = rewritten.replace(tex_hash, filename)
        tasks.append((filename, tex_hash))
    return rewritten, tasks


class AssetBundleBuilder:
    """Fetches the assets named by a descriptor and packages them.

    Fetches are sequential: the material comes first so the texture list is
    known, then textures one at a time in descriptor order, then the mesh.
    Any failure aborts the whole build.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        sleep: SleepFn = asyncio.sleep,
        forward_headers: Optional[Dict[str, str]] = None,
        host_template: Optional[str] = None,
    ):
        self.client = client
        self.sleep = sleep
        self.forward_headers = dict(forward_headers or {})
        self.host_template = host_template
        self.policy = default_policy(BINARY_POLICY)

    def with_forward_headers(self, headers: Dict[str, str]) -> "AssetBundleBuilder":
        return AssetBundleBuilder(
            self.client, sleep=self.sleep, forward_headers=headers, host_template=self.host_template
        )

    def _url(self, asset_hash: str) -> str:
        return hash_url(asset_hash, host_template=self.host_template)

    async def _text(self, asset_hash: str) -> str:
        return await fetch_text(
            self.client, self._url(asset_hash), policy=self.policy, sleep=self.sleep,
            headers=self.forward_headers or None,
        )

    async def _bytes(self, asset_hash: str) -> bytes:
        return await fetch_bytes(
            self.client, self._url(asset_hash), policy=self.policy, sleep=self.sleep,
            headers=self.forward_headers or None,
        )

    async def build(self, descriptor: AssetDescriptor, base_name: str) -> AssetBundle:
        bundle = AssetBundle(base_name=base_name, manifest=descriptor.manifest)

        if descriptor.material_hash:
            material_text = await self._text(descriptor.material_hash)
            rewritten, tasks = rewrite_material_textures(material_text, descriptor.texture_hashes)
            bundle.material_text = rewritten
            for filename, tex_hash in tasks:
                data = await self._bytes(tex_hash)
                bundle.textures.append(TextureEntry(filename=filename, data=data))
                logger.debug("Fetched %s (%d bytes) for %s", filename, len(data), base_name)

        if descriptor.mesh_hash:
            bundle.mesh_text = await self._text(descriptor.mesh_hash)

        logger.info(
            "Built bundle %s: mesh=%s material=%s textures=%d",
            base_name,
            bundle.mesh_text is not None,
            bundle.material_text is not None,
            len(bundle.textures),
        )
        return bundle
