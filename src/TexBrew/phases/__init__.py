"""Output phases that run after texture conversion."""

from .material import GodotMaterialGenerator, godot_uid, read_import_sidecar

__all__ = ["GodotMaterialGenerator", "godot_uid", "read_import_sidecar"]
