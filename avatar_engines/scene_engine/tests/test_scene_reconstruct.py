"""Tests for scene reconstruction from asset bundles."""
import asyncio
import math
import tempfile
from pathlib import Path

import pytest

from avatar_engines.asset_bundle.archive import pack_bundle
from avatar_engines.asset_bundle.models import TextureEntry
from avatar_engines.common.errors import MalformedBundle
from avatar_engines.scene_engine.camera.models import FramingMode
from avatar_engines.scene_engine.reconstruct import reconstruct_scene
from avatar_engines.scene_engine.reconstruct.service import rewrite_texture_references


def _reconstruct(bundle, **kwargs):
    return asyncio.run(reconstruct_scene(bundle, **kwargs))


def test_rewrite_prefers_longest_names():
    text = "map_Kd texture_1.png\nmap_Kd texture_10.png\n"
    out = rewrite_texture_references(text, {"texture_1.png": "A", "texture_10.png": "B"})
    assert out == "map_Kd A\nmap_Kd B\n"


def test_reconstruct_centers_and_rotates_model(r15_bundle):
    session = _reconstruct(r15_bundle)
    with session:
        assert session.ready
        assert session.model is not None
        assert session.model.transform.rotation.y == pytest.approx(math.pi)
        center = session.bounds.center()
        assert (center.x, center.y, center.z) == pytest.approx((0.0, 0.0, 0.0), abs=1e-9)
        size = session.bounds.size()
        assert (size.x, size.y, size.z) == pytest.approx((4.0, 5.1, 1.2))
        assert len(session.model.children) == 15


def test_textures_are_materialized_and_rewritten(r15_bundle):
    session = _reconstruct(r15_bundle)
    with session:
        address = session.texture_addresses["texture_1.png"]
        assert address.startswith("file://")
        assert session.materials["skin"].texture_slots["albedo"] == address
        assert session.texture(address).mode == "RGBA"
        files = list(session.temp_dir.iterdir())
        assert len(files) == 1
        # opaque name, not the synthetic one
        assert files[0].name != "texture_1.png"
        temp_dir = session.temp_dir
    assert session.disposed
    assert not temp_dir.exists()
    assert session.textures == {}


def test_camera_rig_frames_the_model(r15_bundle):
    session = _reconstruct(r15_bundle)
    with session:
        expected = (5.1 / 2.0) / math.tan(math.radians(22.5)) * 1.5
        camera = session.rig.camera
        assert camera.fov_deg == 45.0
        assert camera.position.z == pytest.approx(expected)
        assert (camera.target.x, camera.target.y, camera.target.z) == (0.0, 0.0, 0.0)
        intensities = {light.id: light.intensity for light in session.rig.lights}
        assert intensities == {"ambient": 0.6, "key": 1.0, "fill": 0.5, "rim": 0.4}


def test_batch_framing_uses_tighter_multiplier(r15_bundle):
    session = _reconstruct(r15_bundle, framing=FramingMode.BATCH)
    with session:
        expected = (5.1 / 2.0) / math.tan(math.radians(22.5)) * 1.4
        assert session.rig.camera.position.z == pytest.approx(expected)


def test_reconstruct_from_archive_bytes(r15_bundle):
    session = _reconstruct(pack_bundle(r15_bundle))
    with session:
        assert session.ready
        assert session.base_name == r15_bundle.base_name
        assert len(session.meshes) == 15


def test_missing_mesh_is_malformed(scene_kit):
    bundle = scene_kit.make_bundle(None)
    with pytest.raises(MalformedBundle):
        _reconstruct(bundle)


def test_missing_material_is_malformed(scene_kit):
    bundle = scene_kit.make_bundle(scene_kit.box_obj(scene_kit.r15_groups()), material_text=None)
    with pytest.raises(MalformedBundle):
        _reconstruct(bundle)


def test_mesh_without_faces_is_malformed(scene_kit):
    bundle = scene_kit.make_bundle("v 0 0 0\nv 1 0 0\n")
    with pytest.raises(MalformedBundle):
        _reconstruct(bundle)


def test_bad_texture_disposes_session(scene_kit, monkeypatch, tmp_path):
    scene_dir = tmp_path / "scene"

    def fake_mkdtemp(prefix=None):
        scene_dir.mkdir()
        return str(scene_dir)

    monkeypatch.setattr(tempfile, "mkdtemp", fake_mkdtemp)
    bundle = scene_kit.make_bundle(
        scene_kit.box_obj(scene_kit.r15_groups()),
        textures=[TextureEntry(filename="texture_1.png", data=b"not an image")],
    )
    with pytest.raises(MalformedBundle):
        _reconstruct(bundle)
    assert not scene_dir.exists()


def test_unknown_texture_reference_only_warns(scene_kit, caplog):
    bundle = scene_kit.make_bundle(
        scene_kit.box_obj(scene_kit.r15_groups(parts=["Head"])),
        material_text="newmtl skin\nmap_Kd texture_9.png\n",
    )
    session = _reconstruct(bundle)
    with session:
        assert session.ready
        assert session.materials["skin"].texture_slots["albedo"] == "texture_9.png"
    assert any("unknown texture" in r.getMessage() for r in caplog.records)


def test_bundle_without_textures_is_ready(scene_kit):
    bundle = scene_kit.make_bundle(
        scene_kit.box_obj(scene_kit.r15_groups(parts=["Head"])),
        material_text="newmtl skin\nKd 1 0 0\n",
        textures=[],
    )
    session = _reconstruct(bundle)
    with session:
        assert session.ready
        assert session.textures == {}


def test_dispose_is_idempotent(r15_bundle):
    session = _reconstruct(r15_bundle)
    session.dispose()
    session.dispose()
    assert session.disposed
    assert not session.ready
    assert not Path(session.temp_dir).exists()
