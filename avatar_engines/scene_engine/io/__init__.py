"""Scene Input/Output Utilities."""
from .mtl_import import MaterialDefinition, parse_mtl
from .obj_import import ObjImportOptions, obj_text_to_scene, parse_obj

__all__ = ["MaterialDefinition", "parse_mtl", "ObjImportOptions", "obj_text_to_scene", "parse_obj"]
