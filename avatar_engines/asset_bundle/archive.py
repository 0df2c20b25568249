"""Zip packaging for asset bundles and batch exports."""
from __future__ import annotations

import io
import json
import logging
import zipfile
from typing import Iterable, Tuple

from avatar_engines.asset_bundle.models import (
    MANIFEST_SUFFIX,
    MATERIAL_EXT,
    MESH_EXT,
    TEXTURE_EXTS,
    AssetBundle,
    TextureEntry,
)
from avatar_engines.common.errors import MalformedBundle

logger = logging.getLogger(__name__)


def pack_entries(entries: Iterable[Tuple[str, bytes]]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, data in entries:
            zf.writestr(name, data)
    return buf.getvalue()


def pack_bundle(bundle: AssetBundle) -> bytes:
    return pack_entries(bundle.entries())


def _strip(name: str, suffix: str) -> str:
    return name[: -len(suffix)] if name.lower().endswith(suffix) else name


def unpack_bundle(data: bytes) -> AssetBundle:
    """Classify archive entries by extension back into an AssetBundle.

    Missing mesh or material entries are allowed here; the scene
    reconstructor decides whether the bundle is usable.
    """
    try:
        zf = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as exc:
        raise MalformedBundle("Bundle is not a valid zip archive") from exc

    base_name = None
    mesh_text = None
    material_text = None
    manifest = {}
    textures = []
    with zf:
        for info in zf.infolist():
            if info.is_dir():
                continue
            name = info.filename.rsplit("/", 1)[-1]
            lower = name.lower()
            payload = zf.read(info)
            if lower.endswith(MESH_EXT):
                mesh_text = payload.decode("utf-8", errors="replace")
                base_name = base_name or _strip(name, MESH_EXT)
            elif lower.endswith(MATERIAL_EXT):
                material_text = payload.decode("utf-8", errors="replace")
                base_name = base_name or _strip(name, MATERIAL_EXT)
            elif lower.endswith(MANIFEST_SUFFIX):
                try:
                    manifest = json.loads(payload.decode("utf-8"))
                except ValueError as exc:
                    raise MalformedBundle(f"Manifest {name} is not valid JSON") from exc
                base_name = base_name or _strip(name, MANIFEST_SUFFIX)
            elif lower.endswith(TEXTURE_EXTS):
                textures.append(TextureEntry(filename=name, data=payload))
            else:
                logger.debug("Ignoring unrecognized bundle entry %s", name)

    return AssetBundle(
        base_name=base_name or "bundle",
        mesh_text=mesh_text,
        material_text=material_text,
        textures=textures,
        manifest=manifest if isinstance(manifest, dict) else {},
    )
