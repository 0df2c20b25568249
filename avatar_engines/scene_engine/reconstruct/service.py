"""Scene reconstruction from packaged OBJ/MTL/texture bundles."""
from __future__ import annotations

import asyncio
import logging
import math
import shutil
import tempfile
import uuid
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from PIL import Image, UnidentifiedImageError

from avatar_engines.asset_bundle.archive import unpack_bundle
from avatar_engines.asset_bundle.models import AssetBundle, TextureEntry
from avatar_engines.common.errors import MalformedBundle
from avatar_engines.scene_engine.camera.models import CameraRig, FramingMode
from avatar_engines.scene_engine.camera.service import build_camera_rig
from avatar_engines.scene_engine.core.geometry import (
    BoundingBox,
    EulerAngles,
    Material,
    Mesh,
    Transform,
    Vector3,
)
from avatar_engines.scene_engine.core.scene import SceneNode
from avatar_engines.scene_engine.io.mtl_import import parse_mtl
from avatar_engines.scene_engine.io.obj_import import ObjImportOptions, obj_text_to_scene
from avatar_engines.scene_engine.reconstruct.materials import to_material
from avatar_engines.scene_engine.view.math_utils import iter_world_matrices, transform_points

logger = logging.getLogger(__name__)

MODEL_NODE_NAME = "Model"


class SceneSession:
    """A reconstructed model plus the resources it owns.

    ``dispose()`` releases the materialized texture files and decoded images;
    it is safe to call more than once and runs on context-manager exit.
    """

    def __init__(self, base_name: str, temp_dir: Path, framing: FramingMode):
        self.base_name = base_name
        self.temp_dir = temp_dir
        self.framing = framing
        self.root = SceneNode(name="Scene")
        self.model: Optional[SceneNode] = None
        self.meshes: Dict[str, Mesh] = {}
        self.materials: Dict[str, Material] = {}
        self.textures: Dict[str, Image.Image] = {}
        # synthetic filename -> resource address
        self.texture_addresses: Dict[str, str] = {}
        self.bounds: Optional[BoundingBox] = None
        self.rig: Optional[CameraRig] = None
        self.ready = False
        self.disposed = False

    def dispose(self) -> None:
        if self.disposed:
            return
        self.disposed = True
        self.ready = False
        for image in self.textures.values():
            image.close()
        self.textures.clear()
        shutil.rmtree(self.temp_dir, ignore_errors=True)
        logger.debug("Disposed scene session %s", self.base_name)

    def texture(self, address: Optional[str]) -> Optional[Image.Image]:
        if address is None:
            return None
        return self.textures.get(address)

    def world_bounds(self) -> Optional[BoundingBox]:
        """Bounds of every mesh under the current transforms."""
        bounds: Optional[BoundingBox] = None
        for node, world in iter_world_matrices(self.root):
            for mesh_id in node.mesh_ids:
                mesh = self.meshes.get(mesh_id)
                if mesh is None or len(mesh.vertices) == 0:
                    continue
                box = BoundingBox.from_points(transform_points(world, mesh.vertices))
                bounds = box if bounds is None else bounds.union(box)
        return bounds

    def __enter__(self) -> SceneSession:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.dispose()


def materialize_textures(
    temp_dir: Path, textures: List[TextureEntry]
) -> Dict[str, Tuple[str, Path]]:
    """Write each texture under an opaque name; returns filename -> (address, path)."""
    out: Dict[str, Tuple[str, Path]] = {}
    for tex in textures:
        suffix = Path(tex.filename).suffix or ".png"
        path = temp_dir / f"{uuid.uuid4().hex}{suffix}"
        path.write_bytes(tex.data)
        out[tex.filename] = (path.as_uri(), path)
    return out


def rewrite_texture_references(material_text: str, addresses: Dict[str, str]) -> str:
    # longer names first so texture_1.png never clobbers texture_10.png
    for filename in sorted(addresses, key=len, reverse=True):
        material_text = material_text.replace(filename, addresses[filename])
    return material_text


def _decode_texture(path: Path, filename: str) -> Image.Image:
    try:
        with Image.open(path) as img:
            return img.convert("RGBA")
    except (UnidentifiedImageError, OSError) as exc:
        raise MalformedBundle(f"Texture {filename} could not be decoded", details={"texture": filename}) from exc


async def load_textures(resources: Dict[str, Tuple[str, Path]]) -> Dict[str, Image.Image]:
    """Decode every texture concurrently and wait for all of them."""
    if not resources:
        return {}
    items = list(resources.items())
    images = await asyncio.gather(
        *(asyncio.to_thread(_decode_texture, path, filename) for filename, (_, path) in items)
    )
    return {address: image for (_, (address, _)), image in zip(items, images)}


def _model_bounds(model: SceneNode, meshes: Dict[str, Mesh]) -> Optional[BoundingBox]:
    bounds: Optional[BoundingBox] = None
    for node in model.walk():
        for mesh_id in node.mesh_ids:
            box = BoundingBox.from_points(meshes[mesh_id].vertices)
            if box is not None:
                bounds = box if bounds is None else bounds.union(box)
    return bounds


def center_model(model: SceneNode, bounds: BoundingBox) -> None:
    """Turn the model to face +Z and put its bounding-box center on the origin."""
    c = bounds.center()
    # R_y(pi) maps (x, y, z) to (-x, y, -z); position = -R * c
    model.transform = Transform(
        position=Vector3(x=c.x, y=-c.y, z=c.z),
        rotation=EulerAngles(y=math.pi),
    )


async def reconstruct_scene(
    bundle: Union[AssetBundle, bytes],
    *,
    framing: FramingMode = FramingMode.INTERACTIVE,
) -> SceneSession:
    if isinstance(bundle, (bytes, bytearray)):
        bundle = unpack_bundle(bytes(bundle))

    if not bundle.mesh_text:
        raise MalformedBundle("Bundle has no mesh entry", details={"bundle": bundle.base_name})
    if not bundle.material_text:
        raise MalformedBundle("Bundle has no material entry", details={"bundle": bundle.base_name})

    session = SceneSession(bundle.base_name, Path(tempfile.mkdtemp(prefix="avatar_scene_")), framing)
    try:
        resources = materialize_textures(session.temp_dir, bundle.textures)
        session.texture_addresses = {name: address for name, (address, _) in resources.items()}
        material_text = rewrite_texture_references(bundle.material_text, session.texture_addresses)

        session.textures = await load_textures(resources)

        definitions = parse_mtl(material_text)
        session.materials = {name: to_material(defn) for name, defn in definitions.items()}
        for material in session.materials.values():
            for slot, address in material.texture_slots.items():
                if address not in session.textures:
                    logger.warning(
                        "Material %s references unknown texture %s (%s)", material.id, address, slot
                    )

        try:
            model, meshes = obj_text_to_scene(
                bundle.mesh_text, options=ObjImportOptions(root_name=MODEL_NODE_NAME)
            )
        except (ValueError, IndexError) as exc:
            raise MalformedBundle(f"Mesh could not be parsed: {exc}") from exc

        for mesh in meshes.values():
            if mesh.material_id is not None and mesh.material_id not in session.materials:
                logger.warning("Mesh %s uses undefined material %s", mesh.id, mesh.material_id)

        bounds = _model_bounds(model, meshes)
        if bounds is None:
            raise MalformedBundle("Mesh has no faces", details={"bundle": bundle.base_name})

        center_model(model, bounds)
        session.model = model
        session.meshes = meshes
        session.root.children.append(model)
        session.bounds = session.world_bounds()
        session.rig = build_camera_rig(session.bounds, framing)
        session.ready = True
    except BaseException:
        session.dispose()
        raise

    logger.info(
        "Reconstructed %s: %d meshes, %d materials, %d textures",
        bundle.base_name,
        len(session.meshes),
        len(session.materials),
        len(session.textures),
    )
    return session
