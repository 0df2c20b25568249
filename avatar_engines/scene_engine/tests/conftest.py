"""Shared fixtures: a blocky R15 figure exported the way the 3D API does."""
import io
from types import SimpleNamespace

import pytest
from PIL import Image

from avatar_engines.asset_bundle.models import AssetBundle, TextureEntry

# part -> (center, size) in the exported OBJ frame, where the figure faces -Z
# and its left side is -X
R15_LAYOUT = {
    "Head": ((0.0, 4.5, 0.0), (1.2, 1.2, 1.2)),
    "UpperTorso": ((0.0, 3.2, 0.0), (2.0, 1.2, 1.0)),
    "LowerTorso": ((0.0, 2.3, 0.0), (2.0, 0.6, 1.0)),
    "LeftUpperArm": ((-1.5, 3.3, 0.0), (1.0, 1.0, 1.0)),
    "LeftLowerArm": ((-1.5, 2.4, 0.0), (1.0, 0.8, 1.0)),
    "LeftHand": ((-1.5, 1.8, 0.0), (1.0, 0.4, 1.0)),
    "RightUpperArm": ((1.5, 3.3, 0.0), (1.0, 1.0, 1.0)),
    "RightLowerArm": ((1.5, 2.4, 0.0), (1.0, 0.8, 1.0)),
    "RightHand": ((1.5, 1.8, 0.0), (1.0, 0.4, 1.0)),
    "LeftUpperLeg": ((-0.5, 1.5, 0.0), (1.0, 1.0, 1.0)),
    "LeftLowerLeg": ((-0.5, 0.75, 0.0), (1.0, 0.5, 1.0)),
    "LeftFoot": ((-0.5, 0.25, 0.0), (1.0, 0.5, 1.0)),
    "RightUpperLeg": ((0.5, 1.5, 0.0), (1.0, 1.0, 1.0)),
    "RightLowerLeg": ((0.5, 0.75, 0.0), (1.0, 0.5, 1.0)),
    "RightFoot": ((0.5, 0.25, 0.0), (1.0, 0.5, 1.0)),
}
R15_ORDER = list(R15_LAYOUT)

SKIN_MTL = """newmtl skin
Ka 0 0 0
Kd 0.8 0.6 0.4
illum 2
map_Kd texture_1.png
"""


def box_obj(groups, material="skin"):
    """OBJ text with one axis-aligned box per ``(group_name, center, size)``."""
    lines = []
    if material:
        lines.append(f"usemtl {material}")
    for index, (name, (cx, cy, cz), (sx, sy, sz)) in enumerate(groups):
        lines.append(f"g {name}")
        hx, hy, hz = sx / 2.0, sy / 2.0, sz / 2.0
        for dx in (-hx, hx):
            for dy in (-hy, hy):
                for dz in (-hz, hz):
                    lines.append(f"v {cx + dx} {cy + dy} {cz + dz}")
        lines.append("vt 0.25 0.25")
        o = index * 8
        t = index + 1
        # corners: 1(---) 2(--+) 3(-+-) 4(-++) 5(+--) 6(+-+) 7(++-) 8(+++)
        for quad in ((1, 2, 4, 3), (5, 7, 8, 6), (1, 5, 6, 2), (3, 4, 8, 7), (1, 3, 7, 5), (2, 6, 8, 4)):
            lines.append("f " + " ".join(f"{o + q}/{t}" for q in quad))
    return "\n".join(lines) + "\n"


def r15_groups(naming="player", parts=None):
    wanted = parts or R15_ORDER
    groups = []
    for index, part in enumerate(R15_ORDER, start=1):
        if part not in wanted:
            continue
        center, size = R15_LAYOUT[part]
        name = f"Player{index}" if naming == "player" else part
        groups.append((name, center, size))
    return groups


def png_bytes(color=(255, 0, 0, 255), size=(4, 4)):
    buf = io.BytesIO()
    Image.new("RGBA", size, color).save(buf, format="PNG")
    return buf.getvalue()


def make_bundle(mesh_text, material_text=SKIN_MTL, textures=None, base_name="Outfit_1_Test"):
    if textures is None:
        textures = [TextureEntry(filename="texture_1.png", data=png_bytes())]
    return AssetBundle(
        base_name=base_name,
        mesh_text=mesh_text,
        material_text=material_text,
        textures=textures,
        manifest={"obj": "o", "mtl": "m", "textures": ["t"]},
    )


@pytest.fixture
def r15_bundle():
    return make_bundle(box_obj(r15_groups()))


@pytest.fixture
def canonical_bundle():
    return make_bundle(box_obj(r15_groups(naming="canonical")))


@pytest.fixture
def scene_kit():
    """Builders for ad-hoc bundles inside a test."""
    return SimpleNamespace(
        box_obj=box_obj,
        r15_groups=r15_groups,
        png_bytes=png_bytes,
        make_bundle=make_bundle,
        layout=R15_LAYOUT,
        skin_mtl=SKIN_MTL,
    )
