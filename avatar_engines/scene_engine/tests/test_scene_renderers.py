"""Tests for the rasterizer, batch renderer and interactive renderer."""
import asyncio
import io
import math
import threading

import numpy as np
import pytest
from PIL import Image

from avatar_engines.asset_bundle.models import TextureEntry
from avatar_engines.common.errors import InvalidInput, SceneNotReady
from avatar_engines.scene_engine.avatar import AvatarArticulator
from avatar_engines.scene_engine.camera.service import default_lights, frame_camera
from avatar_engines.scene_engine.camera.models import Camera, FramingMode
from avatar_engines.scene_engine.core.geometry import Vector3
from avatar_engines.scene_engine.reconstruct import reconstruct_scene
from avatar_engines.scene_engine.view import service as view_service
from avatar_engines.scene_engine.view.rasterizer import aces_filmic, rasterize
from avatar_engines.scene_engine.view.service import (
    MAX_ORBIT_DISTANCE,
    MIN_ORBIT_DISTANCE,
    BatchRenderer,
    InteractiveRenderer,
    LightingControls,
    OrbitControls,
)

QUAD_OBJ = """v -1 -1 0
v 1 -1 0
v 1 1 0
v -1 1 0
vt 0 0
vt 1 0
vt 1 1
vt 0 1
g Player2
usemtl skin
f 1/1 2/2 3/3 4/4
"""


def _session(bundle):
    return asyncio.run(reconstruct_scene(bundle))


def test_batch_render_is_png_with_transparent_background(r15_bundle):
    with _session(r15_bundle) as session:
        png = BatchRenderer(width=64, height=64).render(session)
    assert png.startswith(b"\x89PNG")
    image = Image.open(io.BytesIO(png))
    assert image.size == (64, 64)
    assert image.mode == "RGBA"
    pixels = np.asarray(image)
    assert pixels[32, 32, 3] == 255
    assert pixels[0, 0, 3] == 0


def test_textured_quad_samples_albedo(scene_kit):
    blue = TextureEntry(filename="texture_1.png", data=scene_kit.png_bytes((0, 0, 255, 255)))
    bundle = scene_kit.make_bundle(QUAD_OBJ, textures=[blue])
    with _session(bundle) as session:
        camera = frame_camera(session.bounds, FramingMode.BATCH)
        pixels = rasterize(session, camera, default_lights(), 32, 32)
    r, g, b, a = (int(v) for v in pixels[16, 16])
    assert a == 255
    assert b > 0
    assert r == 0 and g == 0


def test_translucent_material_blends(scene_kit):
    bundle = scene_kit.make_bundle(QUAD_OBJ, material_text="newmtl skin\nKd 1 1 1\nd 0.5\n", textures=[])
    with _session(bundle) as session:
        camera = frame_camera(session.bounds, FramingMode.BATCH)
        pixels = rasterize(session, camera, default_lights(), 16, 16)
    # off the shared diagonal so only one triangle covers it
    assert pixels[11, 4, 3] == 128


def test_translucent_material_discards_nearly_invisible_fragments(scene_kit):
    faint = TextureEntry(filename="texture_1.png", data=scene_kit.png_bytes((255, 255, 255, 5)))
    bundle = scene_kit.make_bundle(
        QUAD_OBJ, material_text="newmtl skin\nd 0.5\nmap_Kd texture_1.png\n", textures=[faint]
    )
    with _session(bundle) as session:
        camera = frame_camera(session.bounds, FramingMode.BATCH)
        pixels = rasterize(session, camera, default_lights(), 16, 16)
    assert not pixels[..., 3].any()


def test_alpha_map_cuts_out_coverage(scene_kit):
    transparent_png = scene_kit.png_bytes((255, 255, 255, 0))
    bundle = scene_kit.make_bundle(
        QUAD_OBJ,
        material_text="newmtl skin\nmap_Kd texture_1.png\nmap_d texture_1.png\n",
        textures=[TextureEntry(filename="texture_1.png", data=transparent_png)],
    )
    with _session(bundle) as session:
        camera = frame_camera(session.bounds, FramingMode.BATCH)
        pixels = rasterize(session, camera, default_lights(), 16, 16)
    assert not pixels[..., 3].any()


def test_aces_curve_is_bounded():
    values = aces_filmic(np.array([0.0, 0.5, 10.0, 1000.0]))
    assert values[0] == pytest.approx(0.0, abs=1e-6)
    assert np.all(values <= 1.0)
    assert np.all(np.diff(values) >= 0)


def test_render_refuses_unready_and_disposed_sessions(r15_bundle):
    session = _session(r15_bundle)
    renderer = BatchRenderer(width=8, height=8)
    session.ready = False
    with pytest.raises(SceneNotReady):
        renderer.render(session)
    session.ready = True
    session.dispose()
    with pytest.raises(SceneNotReady):
        renderer.render(session)


def test_orbit_controls_clamp_distance_and_polar():
    orbit = OrbitControls(target=Vector3.zero(), distance=10.0)
    orbit.set_distance(500.0)
    assert orbit.distance == MAX_ORBIT_DISTANCE
    orbit.zoom(0.0001)
    assert orbit.distance == MIN_ORBIT_DISTANCE
    with pytest.raises(InvalidInput):
        orbit.zoom(0)
    orbit.rotate(0.0, 10.0)
    assert 0 < orbit.polar < math.pi
    orbit.rotate(-20.0 * math.pi, 0.0)
    assert 0 <= orbit.azimuth < 2 * math.pi


def test_orbit_from_camera_round_trips_position():
    camera = Camera(id="c", position=Vector3(x=0.0, y=0.0, z=12.0), target=Vector3.zero())
    orbit = OrbitControls.from_camera(camera)
    pos = orbit.position()
    assert (pos.x, pos.y, pos.z) == pytest.approx((0.0, 0.0, 12.0), abs=1e-9)


def test_lighting_controls():
    controls = LightingControls(default_lights())
    controls.set_intensity("key", 2.5)
    lights = {light.id: light.intensity for light in controls.apply(default_lights())}
    assert lights["key"] == 2.5
    assert lights["fill"] == 0.5
    with pytest.raises(InvalidInput):
        controls.set_intensity("sun", 1.0)
    with pytest.raises(InvalidInput):
        controls.set_intensity("key", -1.0)
    controls.reset()
    assert controls.intensity("key") == 1.0


def test_interactive_draw_follows_lighting(r15_bundle):
    with _session(r15_bundle) as session:
        renderer = InteractiveRenderer(session, width=32, height=32)
        lit = renderer.draw().astype(np.int64)
        for light_id in ("ambient", "key", "fill", "rim"):
            renderer.lighting.set_intensity(light_id, 0.0)
        dark = renderer.draw()
        assert renderer.frame_count == 2
        assert dark[..., :3].max() == 0
        assert lit[..., :3].sum() > 0
        # coverage does not depend on lighting
        assert np.array_equal(dark[..., 3], lit[..., 3])


def test_capture_counts_as_a_frame(r15_bundle):
    with _session(r15_bundle) as session:
        renderer = InteractiveRenderer(session, width=16, height=16)
        png = renderer.capture()
        assert png.startswith(b"\x89PNG")
        assert renderer.frame_count == 1
        assert renderer.last_frame.shape == (16, 16, 4)


def test_run_loop_stops_on_event(r15_bundle):
    async def scenario(session):
        renderer = InteractiveRenderer(session, width=8, height=8)
        stop = asyncio.Event()
        task = asyncio.create_task(renderer.run(stop, fps=200.0))
        while renderer.frame_count < 2:
            await asyncio.sleep(0.01)
        stop.set()
        drawn = await task
        return drawn, renderer.frame_count

    with _session(r15_bundle) as session:
        drawn, frames = asyncio.run(scenario(session))
    assert drawn >= 2
    assert drawn == frames


def test_pose_change_during_a_frame_lands_on_the_next_frame(r15_bundle, monkeypatch):
    entered = threading.Event()
    release = threading.Event()
    real_draw = view_service.draw_batches

    def gated_draw(*args, **kwargs):
        entered.set()
        release.wait(5)
        return real_draw(*args, **kwargs)

    async def scenario(renderer, articulator):
        stop = asyncio.Event()
        task = asyncio.create_task(renderer.run(stop, fps=200.0))
        while not entered.is_set():
            await asyncio.sleep(0.005)
        articulator.apply_pose("wave")
        renderer.lighting.set_intensity("key", 3.0)
        stop.set()
        release.set()
        await task
        return renderer.last_frame

    with _session(r15_bundle) as session:
        articulator = AvatarArticulator(session)
        renderer = InteractiveRenderer(session, width=24, height=24)
        baseline = renderer.draw()
        monkeypatch.setattr(view_service, "draw_batches", gated_draw)
        in_flight = asyncio.run(scenario(renderer, articulator))
        after = renderer.draw()
    assert np.array_equal(in_flight, baseline)
    assert not np.array_equal(after, baseline)
