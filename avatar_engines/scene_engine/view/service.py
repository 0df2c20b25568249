"""Batch and interactive renderers on top of the CPU rasterizer."""
from __future__ import annotations

import asyncio
import logging
import math
from typing import Dict, List, Optional

import numpy as np

from avatar_engines.common.errors import InvalidInput, SceneNotReady
from avatar_engines.scene_engine.camera.models import Camera, FramingMode, Light
from avatar_engines.scene_engine.camera.service import default_lights, frame_camera
from avatar_engines.scene_engine.core.geometry import Vector3
from avatar_engines.scene_engine.view.rasterizer import (
    TONE_MAPPING_ACES,
    TONE_MAPPING_NONE,
    draw_batches,
    encode_png,
    prepare_batches,
    rasterize,
)

logger = logging.getLogger(__name__)

BATCH_SIZE_PX = 1024
BATCH_EXPOSURE = 1.0

MIN_ORBIT_DISTANCE = 0.5
MAX_ORBIT_DISTANCE = 50.0
# keeps the camera off the poles so the up vector stays well defined
POLAR_EPSILON = 0.01


def _require_drawable(session) -> None:
    if getattr(session, "disposed", False):
        raise SceneNotReady("Scene session has been disposed")
    if not getattr(session, "ready", False):
        raise SceneNotReady("Scene session is still loading textures")


class BatchRenderer:
    """Single deterministic draw with the default camera and lights."""

    def __init__(
        self,
        width: int = BATCH_SIZE_PX,
        height: int = BATCH_SIZE_PX,
        exposure: float = BATCH_EXPOSURE,
        tone_mapping: str = TONE_MAPPING_ACES,
    ):
        self.width = width
        self.height = height
        self.exposure = exposure
        self.tone_mapping = tone_mapping

    def render_pixels(self, session) -> np.ndarray:
        _require_drawable(session)
        camera = frame_camera(session.bounds, FramingMode.BATCH)
        return rasterize(
            session,
            camera,
            default_lights(),
            self.width,
            self.height,
            tone_mapping=self.tone_mapping,
            exposure=self.exposure,
        )

    def render(self, session) -> bytes:
        png = encode_png(self.render_pixels(session))
        logger.info("Batch render of %s: %d bytes", getattr(session, "base_name", "scene"), len(png))
        return png

    async def render_async(self, session) -> bytes:
        return await asyncio.to_thread(self.render, session)


class OrbitControls:
    """Spherical camera around a target with bounded distance."""

    def __init__(
        self,
        target: Vector3,
        distance: float,
        azimuth: float = 0.0,
        polar: float = math.pi / 2,
        min_distance: float = MIN_ORBIT_DISTANCE,
        max_distance: float = MAX_ORBIT_DISTANCE,
    ):
        self.target = target
        self.min_distance = min_distance
        self.max_distance = max_distance
        self.azimuth = azimuth
        self.polar = self._clamp_polar(polar)
        self.distance = self._clamp_distance(distance)

    @classmethod
    def from_camera(cls, camera: Camera) -> OrbitControls:
        offset = camera.position.sub(camera.target)
        distance = offset.magnitude() or 1.0
        polar = math.acos(max(-1.0, min(1.0, offset.y / distance)))
        azimuth = math.atan2(offset.x, offset.z)
        return cls(target=camera.target, distance=distance, azimuth=azimuth, polar=polar)

    def _clamp_distance(self, distance: float) -> float:
        return max(self.min_distance, min(self.max_distance, distance))

    @staticmethod
    def _clamp_polar(polar: float) -> float:
        return max(POLAR_EPSILON, min(math.pi - POLAR_EPSILON, polar))

    def rotate(self, d_azimuth: float, d_polar: float) -> None:
        self.azimuth = (self.azimuth + d_azimuth) % (2 * math.pi)
        self.polar = self._clamp_polar(self.polar + d_polar)

    def zoom(self, factor: float) -> None:
        """Scale the distance; factors below 1 move closer."""
        if factor <= 0:
            raise InvalidInput("Zoom factor must be positive", details={"factor": factor})
        self.distance = self._clamp_distance(self.distance * factor)

    def set_distance(self, distance: float) -> None:
        self.distance = self._clamp_distance(distance)

    def position(self) -> Vector3:
        sin_p = math.sin(self.polar)
        offset = Vector3(
            x=self.distance * sin_p * math.sin(self.azimuth),
            y=self.distance * math.cos(self.polar),
            z=self.distance * sin_p * math.cos(self.azimuth),
        )
        return self.target.add(offset)

    def apply(self, camera: Camera) -> Camera:
        return camera.model_copy(update={"position": self.position(), "target": self.target})


class LightingControls:
    """Live light intensities, read on every interactive frame."""

    def __init__(self, lights: List[Light]):
        self._defaults: Dict[str, float] = {light.id: light.intensity for light in lights}
        self._values: Dict[str, float] = dict(self._defaults)

    def set_intensity(self, light_id: str, intensity: float) -> None:
        if light_id not in self._values:
            raise InvalidInput(f"Unknown light '{light_id}'", details={"available": list(self._values)})
        if intensity < 0:
            raise InvalidInput("Light intensity cannot be negative", details={"light": light_id})
        self._values[light_id] = float(intensity)

    def intensity(self, light_id: str) -> Optional[float]:
        return self._values.get(light_id)

    def reset(self) -> None:
        self._values = dict(self._defaults)

    def apply(self, lights: List[Light]) -> List[Light]:
        return [
            light.model_copy(update={"intensity": self._values.get(light.id, light.intensity)})
            for light in lights
        ]


class InteractiveRenderer:
    """Continuous redraw loop with orbit navigation and adjustable lighting."""

    def __init__(self, session, width: int = 800, height: int = 600):
        self.session = session
        self.width = width
        self.height = height
        rig = session.rig
        base_camera = rig.camera if rig is not None else frame_camera(session.bounds, FramingMode.INTERACTIVE)
        base_lights = rig.lights if rig is not None else default_lights()
        self._base_camera = base_camera
        self._base_lights = base_lights
        self.orbit = OrbitControls.from_camera(base_camera)
        self.lighting = LightingControls(base_lights)
        self.frame_count = 0
        self.last_frame: Optional[np.ndarray] = None

    def camera(self) -> Camera:
        return self.orbit.apply(self._base_camera)

    def lights(self) -> List[Light]:
        return self.lighting.apply(self._base_lights)

    def _snapshot(self):
        _require_drawable(self.session)
        return prepare_batches(self.session, self.camera(), self.lights(), self.width, self.height)

    def _record(self, frame: np.ndarray) -> np.ndarray:
        self.frame_count += 1
        self.last_frame = frame
        return frame

    def draw(self) -> np.ndarray:
        frame = draw_batches(self._snapshot(), self.width, self.height, tone_mapping=TONE_MAPPING_NONE)
        return self._record(frame)

    def capture(self) -> bytes:
        """One extra draw outside the loop's cadence, returned as PNG."""
        return encode_png(self.draw())

    async def run(self, stop_event: asyncio.Event, fps: float = 30.0) -> int:
        """Redraw until ``stop_event`` is set; returns the number of frames drawn."""
        interval = 1.0 / fps if fps > 0 else 0.0
        drawn = 0
        while not stop_event.is_set():
            # pose, camera and lights are read here; the worker only fills pixels
            batches = self._snapshot()
            frame = await asyncio.to_thread(
                draw_batches, batches, self.width, self.height, tone_mapping=TONE_MAPPING_NONE
            )
            self._record(frame)
            drawn += 1
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue
        logger.debug("Interactive loop stopped after %d frames", drawn)
        return drawn
