"""CPU triangle rasterizer for reconstructed avatar scenes.

Z-buffered, perspective-correct UVs, nearest-texel sampling, Lambert shading
from the rig's ambient and directional lights. Opaque materials draw first;
transparent ones (alpha-tested or translucent) draw afterwards back to front
and blend over what is already there. The background stays transparent.
"""
from __future__ import annotations

import io
import logging
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np
from PIL import Image

from avatar_engines.scene_engine.camera.models import Camera, Light, LightKind
from avatar_engines.scene_engine.core.geometry import Material, Mesh
from avatar_engines.scene_engine.view.math_utils import (
    iter_world_matrices,
    look_at,
    perspective,
    transform_directions,
    transform_points,
)

logger = logging.getLogger(__name__)

TONE_MAPPING_NONE = "none"
TONE_MAPPING_ACES = "aces"

GAMMA = 2.2

_FALLBACK_MATERIAL = Material(id="__fallback__")


class _Framebuffer:
    def __init__(self, width: int, height: int):
        self.width = width
        self.height = height
        # premultiplied linear colour
        self.color = np.zeros((height, width, 3), dtype=np.float64)
        self.alpha = np.zeros((height, width), dtype=np.float64)
        self.depth = np.full((height, width), np.inf, dtype=np.float64)


class _Batch:
    """Screen-space triangles of one mesh, ready to scan-convert."""

    def __init__(self, material: Material, screen, ndc_z, inv_w, light, uvs, albedo, alpha_map):
        self.material = material
        self.screen = screen  # (T, 3, 2)
        self.ndc_z = ndc_z  # (T, 3)
        self.inv_w = inv_w  # (T, 3)
        self.light = light  # (T, 3, 3) per-corner irradiance
        self.uvs = uvs  # (T, 3, 2) or None
        self.albedo = albedo  # (h, w, 4) linear RGBA or None
        self.alpha_map = alpha_map  # (h, w) or None


def texture_to_array(image: Image.Image) -> np.ndarray:
    """sRGB RGBA image -> linear float RGBA."""
    data = np.asarray(image.convert("RGBA"), dtype=np.float64) / 255.0
    data[..., :3] = np.power(data[..., :3], GAMMA)
    return data


def alpha_map_to_array(image: Image.Image) -> np.ndarray:
    """Coverage from a map_d texture: its alpha channel when present, else luminance."""
    rgba = np.asarray(image.convert("RGBA"), dtype=np.float64) / 255.0
    if np.any(rgba[..., 3] < 1.0):
        return rgba[..., 3]
    return np.asarray(image.convert("L"), dtype=np.float64) / 255.0


def aces_filmic(x: np.ndarray) -> np.ndarray:
    a, b, c, d, e = 2.51, 0.03, 2.43, 0.59, 0.14
    return np.clip((x * (a * x + b)) / (x * (c * x + d) + e), 0.0, 1.0)


def _lighting(normals: np.ndarray, to_eye: np.ndarray, lights: Iterable[Light]) -> np.ndarray:
    """Per-corner irradiance, with normals flipped towards the viewer."""
    facing = np.einsum("ij,ij->i", normals, to_eye)
    normals = np.where((facing < 0)[:, None], -normals, normals)

    out = np.zeros((len(normals), 3), dtype=np.float64)
    for light in lights:
        color = light.color.to_array() * light.intensity
        if light.kind == LightKind.AMBIENT:
            out += color
            continue
        towards_light = -light.direction().to_array()
        lambert = np.clip(normals @ towards_light, 0.0, None)
        out += lambert[:, None] * color[None, :]
    return out


def _sample(texture: np.ndarray, uv: np.ndarray) -> np.ndarray:
    h, w = texture.shape[:2]
    u = np.mod(uv[..., 0], 1.0)
    v = np.mod(uv[..., 1], 1.0)
    tx = np.clip((u * w).astype(np.int64), 0, w - 1)
    ty = np.clip(((1.0 - v) * h).astype(np.int64), 0, h - 1)
    return texture[ty, tx]


def prepare_batches(session, camera: Camera, lights: List[Light], width: int, height: int) -> List[_Batch]:
    """Snapshot the posed scene as screen-space triangle batches.

    The batches own their arrays, so they can be drawn later without
    touching the scene graph, the camera or the lights again.
    """
    view = look_at(camera.position, camera.target, camera.up)
    proj = perspective(camera.fov_deg, width / float(height), camera.near, camera.far)
    view_proj = proj @ view
    eye = camera.position.to_array()

    textures: Dict[str, np.ndarray] = {}
    alpha_maps: Dict[str, np.ndarray] = {}
    batches: List[_Batch] = []

    for node, world in iter_world_matrices(session.root):
        for mesh_id in node.mesh_ids:
            mesh: Optional[Mesh] = session.meshes.get(mesh_id)
            if mesh is None or mesh.triangle_count == 0:
                continue
            material = session.materials.get(mesh.material_id) or _FALLBACK_MATERIAL

            positions = transform_points(world, mesh.vertices)
            if mesh.normals is not None:
                normals = transform_directions(world, mesh.normals)
            else:
                tris = positions.reshape(-1, 3, 3)
                face_n = np.cross(tris[:, 1] - tris[:, 0], tris[:, 2] - tris[:, 0])
                lengths = np.linalg.norm(face_n, axis=1, keepdims=True)
                lengths[lengths == 0] = 1.0
                normals = np.repeat(face_n / lengths, 3, axis=0)

            to_eye = eye[None, :] - positions
            light = _lighting(normals, to_eye, lights)

            homo = np.hstack([positions, np.ones((len(positions), 1))]) @ view_proj.T
            w = homo[:, 3]
            # corners at or behind the near plane drop the whole triangle
            keep = (w.reshape(-1, 3) > camera.near * 0.5).all(axis=1)
            if not keep.any():
                continue
            w_safe = np.where(w > 1e-12, w, 1.0)
            ndc = homo[:, :3] / w_safe[:, None]
            sx = (ndc[:, 0] + 1.0) * 0.5 * width
            sy = (1.0 - ndc[:, 1]) * 0.5 * height

            screen = np.stack([sx, sy], axis=1).reshape(-1, 3, 2)[keep]
            ndc_z = ndc[:, 2].reshape(-1, 3)[keep]
            inv_w = (1.0 / w_safe).reshape(-1, 3)[keep]
            light = light.reshape(-1, 3, 3)[keep]
            uvs = mesh.uvs.reshape(-1, 3, 2)[keep] if mesh.uvs is not None else None

            albedo = None
            address = material.texture_slots.get("albedo")
            if address is not None:
                if address not in textures:
                    image = session.texture(address)
                    if image is not None:
                        textures[address] = texture_to_array(image)
                albedo = textures.get(address)

            alpha_map = None
            address = material.texture_slots.get("alpha")
            if address is not None:
                if address not in alpha_maps:
                    image = session.texture(address)
                    if image is not None:
                        alpha_maps[address] = alpha_map_to_array(image)
                alpha_map = alpha_maps.get(address)

            batches.append(_Batch(material, screen, ndc_z, inv_w, light, uvs, albedo, alpha_map))
    return batches


def _draw_triangle(fb: _Framebuffer, batch: _Batch, t: int, blend: bool) -> None:
    (x0, y0), (x1, y1), (x2, y2) = batch.screen[t]
    area = (x1 - x0) * (y2 - y0) - (x2 - x0) * (y1 - y0)
    if abs(area) < 1e-12:
        return

    xmin = max(int(np.floor(min(x0, x1, x2))), 0)
    xmax = min(int(np.ceil(max(x0, x1, x2))), fb.width - 1)
    ymin = max(int(np.floor(min(y0, y1, y2))), 0)
    ymax = min(int(np.ceil(max(y0, y1, y2))), fb.height - 1)
    if xmin > xmax or ymin > ymax:
        return

    px, py = np.meshgrid(np.arange(xmin, xmax + 1) + 0.5, np.arange(ymin, ymax + 1) + 0.5)
    b0 = ((x1 - px) * (y2 - py) - (x2 - px) * (y1 - py)) / area
    b1 = ((x2 - px) * (y0 - py) - (x0 - px) * (y2 - py)) / area
    b2 = 1.0 - b0 - b1
    inside = (b0 >= 0) & (b1 >= 0) & (b2 >= 0)
    if not inside.any():
        return

    z = b0 * batch.ndc_z[t, 0] + b1 * batch.ndc_z[t, 1] + b2 * batch.ndc_z[t, 2]
    region = (slice(ymin, ymax + 1), slice(xmin, xmax + 1))
    mask = inside & (z >= -1.0) & (z <= 1.0) & (z < fb.depth[region])
    if not mask.any():
        return

    iw = batch.inv_w[t]
    pw = b0 * iw[0] + b1 * iw[1] + b2 * iw[2]
    p0 = (b0 * iw[0] / pw)[mask]
    p1 = (b1 * iw[1] / pw)[mask]
    p2 = (b2 * iw[2] / pw)[mask]

    material = batch.material
    light = batch.light[t]
    irradiance = p0[:, None] * light[0] + p1[:, None] * light[1] + p2[:, None] * light[2]

    base = material.base_color.to_array()
    if batch.albedo is not None or batch.alpha_map is not None:
        if batch.uvs is not None:
            uv = batch.uvs[t]
            frag_uv = p0[:, None] * uv[0] + p1[:, None] * uv[1] + p2[:, None] * uv[2]
        else:
            frag_uv = np.zeros((len(p0), 2))
    alpha = np.full(len(p0), material.opacity)
    if batch.albedo is not None:
        texel = _sample(batch.albedo, frag_uv)
        color = irradiance * base[None, :] * texel[:, :3]
        alpha = alpha * texel[:, 3]
    else:
        color = irradiance * base[None, :]
    if batch.alpha_map is not None:
        alpha = alpha * _sample(batch.alpha_map, frag_uv)

    if material.alpha_test > 0:
        passed = alpha >= material.alpha_test
        if not passed.any():
            return
        color, alpha, z_frag = color[passed], alpha[passed], z[mask][passed]
        ys, xs = np.nonzero(mask)
        ys, xs = ys[passed] + ymin, xs[passed] + xmin
    else:
        z_frag = z[mask]
        ys, xs = np.nonzero(mask)
        ys, xs = ys + ymin, xs + xmin

    if blend:
        dst_c = fb.color[ys, xs]
        dst_a = fb.alpha[ys, xs]
        fb.color[ys, xs] = color * alpha[:, None] + dst_c * (1.0 - alpha[:, None])
        fb.alpha[ys, xs] = alpha + dst_a * (1.0 - alpha)
    else:
        fb.color[ys, xs] = color
        fb.alpha[ys, xs] = 1.0
    if material.depth_write:
        fb.depth[ys, xs] = z_frag


def rasterize(
    session,
    camera: Camera,
    lights: List[Light],
    width: int,
    height: int,
    *,
    tone_mapping: str = TONE_MAPPING_NONE,
    exposure: float = 1.0,
) -> np.ndarray:
    """Draw ``session`` and return an ``(height, width, 4)`` uint8 RGBA array."""
    batches = prepare_batches(session, camera, lights, width, height)
    return draw_batches(batches, width, height, tone_mapping=tone_mapping, exposure=exposure)


def draw_batches(
    batches: List[_Batch],
    width: int,
    height: int,
    *,
    tone_mapping: str = TONE_MAPPING_NONE,
    exposure: float = 1.0,
) -> np.ndarray:
    fb = _Framebuffer(width, height)

    opaque = [b for b in batches if not b.material.transparent]
    transparent = [b for b in batches if b.material.transparent]

    for batch in opaque:
        for t in range(len(batch.screen)):
            _draw_triangle(fb, batch, t, blend=False)

    # back to front by mean NDC depth
    pending: List[Tuple[float, int, int]] = []
    for b_index, batch in enumerate(transparent):
        depths = batch.ndc_z.mean(axis=1)
        pending.extend((float(d), b_index, t) for t, d in enumerate(depths))
    pending.sort(key=lambda item: item[0], reverse=True)
    for _, b_index, t in pending:
        _draw_triangle(fb, transparent[b_index], t, blend=True)

    covered = fb.alpha > 0
    color = np.zeros_like(fb.color)
    color[covered] = fb.color[covered] / fb.alpha[covered][:, None]
    color = color * exposure
    if tone_mapping == TONE_MAPPING_ACES:
        color = aces_filmic(color)
    color = np.power(np.clip(color, 0.0, 1.0), 1.0 / GAMMA)

    out = np.zeros((height, width, 4), dtype=np.uint8)
    out[..., :3] = np.round(color * 255.0).astype(np.uint8)
    out[..., 3] = np.round(np.clip(fb.alpha, 0.0, 1.0) * 255.0).astype(np.uint8)
    logger.debug(
        "Rasterized %d batches (%d transparent) at %dx%d", len(batches), len(transparent), width, height
    )
    return out


def encode_png(pixels: np.ndarray) -> bytes:
    buf = io.BytesIO()
    Image.fromarray(pixels).save(buf, format="PNG")
    return buf.getvalue()
