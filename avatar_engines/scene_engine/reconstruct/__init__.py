"""Bundle to scene reconstruction."""
from .service import SceneSession, reconstruct_scene

__all__ = ["SceneSession", "reconstruct_scene"]
