"""Define typed configuration models for a conversion run.

Use `RunConfig` to load, validate, and persist runtime settings.
"""

import dataclasses
import logging
import os
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

import yaml

logger = logging.getLogger("texture_pipeline.config")


class ChannelKind(Enum):
    """Enumerate PBR texture roles a source image can fill."""

    ALBEDO = "albedo"
    NORMAL = "normal"
    ROUGHNESS = "roughness"
    METALLIC = "metallic"
    AO = "ao"
    HEIGHT = "height"
    EMISSION = "emission"
    UNKNOWN = "unknown"


# Rule order is priority order. Tokens are matched after a separator at the
# end of the file stem; longer tokens are tried first within a kind.
CHANNEL_PATTERNS: Dict[ChannelKind, List[str]] = {
    ChannelKind.ALBEDO:    ["albedo", "basecolor", "base_color", "diffuse", "diff", "color", "col"],
    ChannelKind.NORMAL:    ["normal", "nrm", "norm"],
    ChannelKind.ROUGHNESS: ["roughness", "rough"],
    ChannelKind.METALLIC:  ["metallic", "metalness", "metal"],
    ChannelKind.AO:        ["ambientocclusion", "ambient_occlusion", "occlusion", "ao"],
    ChannelKind.HEIGHT:    ["displacement", "height", "disp", "bump"],
    ChannelKind.EMISSION:  ["emissive", "emission", "emit", "glow"],
}


@dataclass
class ConversionConfig:
    """Store JPEG encoder settings."""

    jpeg_quality: int = 95
    subsampling: int = 0  # 0 = 4:4:4, 1 = 4:2:2, 2 = 4:2:0
    optimize: bool = True
    output_extension: str = ".jpg"


@dataclass
class MaterialConfig:
    """Store settings for Godot material descriptor generation."""

    extension: str = ".tres"
    # Godot project root; textures below it are referenced as res:// paths.
    res_root: Optional[str] = None
    use_import_uids: bool = True


_SUPPORTED_CONFIG_VERSION = 1


def _default_workers() -> int:
    return max(1, min(os.cpu_count() or 1, 8))


@dataclass
class RunConfig:
    """Master configuration for one conversion run.

    The CLI layer fills ``input_paths`` and validates the result before the
    pipeline starts; the pipeline never mutates it.
    """

    config_version: int = 1
    input_paths: List[str] = field(default_factory=list)
    destination_dir: Optional[str] = None
    allow_overwrite: bool = False
    preview: bool = False
    generate_material: bool = False

    max_workers: int = field(default_factory=_default_workers)
    log_level: str = "INFO"
    report_path: Optional[str] = None
    max_image_pixels: int = 268435456  # 16384x16384

    conversion: ConversionConfig = field(default_factory=ConversionConfig)
    material: MaterialConfig = field(default_factory=MaterialConfig)

    @classmethod
    def from_yaml(cls, path: str) -> "RunConfig":
        """Load run configuration from YAML or return defaults."""
        if not os.path.exists(path):
            logger.info("Config file '%s' not found. Using defaults.", path)
            config = cls()
            config.validate()
            return config
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(
                f"Failed to parse YAML config '{path}': {exc}"
            ) from exc
        if not isinstance(data, dict):
            raise ValueError(
                f"Config file '{path}' must contain a YAML mapping, "
                f"got {type(data).__name__}"
            )
        yaml_version = data.get("config_version", 1)
        if isinstance(yaml_version, int) and yaml_version > _SUPPORTED_CONFIG_VERSION:
            logger.warning(
                "Config file '%s' has config_version=%d, but this build only "
                "supports up to version %d. Some settings may be ignored.",
                path, yaml_version, _SUPPORTED_CONFIG_VERSION,
            )
        config = cls()
        _merge_dict_to_dataclass(config, data)
        try:
            config.validate()
        except ValueError as exc:
            raise ValueError(f"{path}: {exc}") from exc
        return config

    def to_yaml(self, path: str):
        """Write run configuration to a YAML file."""
        data = dataclasses.asdict(self)
        # Input paths come from the command line, not from config files.
        data.pop("input_paths", None)
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        ext = os.path.splitext(path)[1]
        tmp_path = f"{path}.tmp.{os.getpid()}.{threading.get_ident()}{ext}"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
            os.replace(tmp_path, path)
        finally:
            if os.path.exists(tmp_path):
                try:
                    os.remove(tmp_path)
                except OSError:
                    pass

    def validate(self):
        """Validate configuration values. Raises ValueError on invalid config."""
        errors = []

        valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if self.log_level.upper() not in valid_log_levels:
            errors.append(
                f"log_level must be one of {sorted(valid_log_levels)}, "
                f"got '{self.log_level}'"
            )

        if self.max_workers < 1:
            errors.append("max_workers must be >= 1")
        if self.max_workers > 128:
            errors.append("max_workers must be <= 128")
        if self.max_image_pixels < 0:
            errors.append("max_image_pixels must be >= 0 (0 = unlimited)")

        if self.destination_dir and os.path.isfile(self.destination_dir):
            errors.append(
                f"destination_dir points to an existing file: {self.destination_dir}"
            )
        if self.report_path and os.path.isdir(self.report_path):
            errors.append(f"report_path points to a directory: {self.report_path}")

        conv = self.conversion
        if not (1 <= conv.jpeg_quality <= 100):
            errors.append(
                f"conversion.jpeg_quality must be in [1, 100], got {conv.jpeg_quality}"
            )
        if conv.subsampling not in (0, 1, 2):
            errors.append(
                f"conversion.subsampling must be 0, 1 or 2, got {conv.subsampling}"
            )
        if conv.output_extension.lower() not in (".jpg", ".jpeg"):
            errors.append(
                "conversion.output_extension must be '.jpg' or '.jpeg', "
                f"got '{conv.output_extension}'"
            )

        mat = self.material
        if not mat.extension.startswith(".") or len(mat.extension) < 2:
            errors.append(
                f"material.extension must start with '.', got '{mat.extension}'"
            )
        elif mat.extension.lower() == conv.output_extension.lower():
            errors.append("material.extension must differ from conversion.output_extension")
        if mat.res_root and not os.path.isdir(mat.res_root):
            logger.warning(
                "material.res_root '%s' does not exist; textures outside it "
                "will be referenced by relative path.",
                mat.res_root,
            )

        if self.preview and self.report_path:
            logger.warning(
                "report_path is set but preview mode writes nothing; "
                "the JSON report will not be saved."
            )

        if errors:
            raise ValueError(
                "Configuration validation failed:\n" +
                "\n".join(f"  - {e}" for e in errors)
            )


def _merge_dict_to_dataclass(obj, data: dict, _path: str = ""):
    for key, value in data.items():
        full_key = f"{_path}{key}"
        if not hasattr(obj, key):
            logger.warning("Unknown config key ignored: '%s'", full_key)
            continue
        field_val = getattr(obj, key)
        if dataclasses.is_dataclass(field_val) and isinstance(value, dict):
            _merge_dict_to_dataclass(field_val, value, f"{full_key}.")
            continue
        if value is None and field_val is not None:
            logger.warning(
                "Config key '%s' is null but field default is %s. Using default value.",
                full_key, type(field_val).__name__,
            )
            continue
        expected_type = type(field_val)
        # Optional fields default to None and accept any value.
        if (field_val is not None
                and not isinstance(value, expected_type)
                and not (expected_type is float and isinstance(value, int))
                and not (expected_type is int
                         and isinstance(value, float)
                         and value == int(value))):
            logger.warning(
                "Config type mismatch for '%s': expected %s, got %s (%r). "
                "Using default value.",
                full_key, expected_type.__name__, type(value).__name__, value,
            )
            continue
        if expected_type is int and isinstance(value, float):
            value = int(value)
        setattr(obj, key, value)
