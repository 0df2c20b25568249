"""Camera Engine Module."""
from .models import Camera, CameraRig, FramingMode, Light, LightKind
from .service import build_camera_rig, default_lights, frame_camera, framing_distance

__all__ = [
    "Camera", "CameraRig", "FramingMode", "Light", "LightKind",
    "build_camera_rig", "default_lights", "frame_camera", "framing_distance"
]
