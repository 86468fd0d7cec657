"""Generate Godot 4 ``StandardMaterial3D`` resources for converted texture sets.

Each material group whose textures were converted (or would be, in preview)
gets a ``.tres`` text resource next to its JPEGs that wires every present
channel into the matching material slot. Godot assigns textures a UID when it
imports them; if that has already happened the ``.import`` sidecar next to
the JPEG is read so the material references the existing resource.
"""

import hashlib
import logging
import os
import re
from pathlib import Path, PurePath
from typing import List, Mapping, NamedTuple, Optional

from ..config import ChannelKind, RunConfig
from ..core.errors import TexBrewError
from ..core.paths import OutputResolver
from ..core.records import (
    ConversionResult, MaterialDescriptor, MaterialGroup, MaterialResult, Outcome,
)

logger = logging.getLogger("texture_pipeline.material")

_USABLE_OUTCOMES = (Outcome.CONVERTED, Outcome.SKIPPED_EXISTS, Outcome.SKIPPED_PREVIEW)

_IMPORT_UID_RE = re.compile(r'\buid="uid://([^"]+)"')
_IMPORT_SOURCE_RE = re.compile(r'\bsource_file="(res://[^"]+)"')

_UID_ALPHABET = "abcdefghijklmnopqrstuvwxyz0123456789"
_UID_LENGTH = 12

# Material properties per channel, in the order they are written.
_CHANNEL_PROPERTIES = {
    ChannelKind.ALBEDO: ((), "albedo_texture"),
    ChannelKind.NORMAL: (("normal_enabled = true",), "normal_texture"),
    ChannelKind.ROUGHNESS: ((), "roughness_texture"),
    ChannelKind.METALLIC: (("metallic = 1.0",), "metallic_texture"),
    ChannelKind.AO: (("ao_enabled = true",), "ao_texture"),
    ChannelKind.HEIGHT: (("heightmap_enabled = true",), "heightmap_texture"),
    ChannelKind.EMISSION: (("emission_enabled = true",), "emission_texture"),
}


class TextureRef(NamedTuple):
    """One ``ext_resource`` entry of a material."""

    kind: ChannelKind
    path: str
    resource_id: str
    uid: Optional[str] = None


class ImportInfo(NamedTuple):
    uid: Optional[str]
    source_file: Optional[str]


def godot_uid(seed: str, length: int = _UID_LENGTH) -> str:
    """Derive a stable Godot-style resource UID from ``seed``."""
    value = int.from_bytes(hashlib.sha256(seed.encode("utf-8")).digest(), "big")
    chars = []
    for _ in range(length):
        value, rem = divmod(value, len(_UID_ALPHABET))
        chars.append(_UID_ALPHABET[rem])
    return "".join(chars)


def read_import_sidecar(texture_path: Path) -> Optional[ImportInfo]:
    """Read ``uid`` and ``source_file`` from ``<texture>.import`` if present.

    Godot writes the sidecar when it first imports the texture. A missing or
    unreadable sidecar is not an error; the caller falls back to a path
    reference.
    """
    import_path = texture_path.with_name(texture_path.name + ".import")
    if not import_path.is_file():
        return None
    try:
        text = import_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Could not read %s: %s", import_path, exc)
        return None
    uid = source_file = None
    for line in text.splitlines():
        m = _IMPORT_UID_RE.search(line)
        if m and uid is None:
            uid = m.group(1)
        m = _IMPORT_SOURCE_RE.search(line)
        if m and source_file is None:
            source_file = m.group(1)
    if uid is None and source_file is None:
        logger.debug("%s holds no uid or source_file entry", import_path)
        return None
    return ImportInfo(uid=uid, source_file=source_file)


def _res_path(texture: Path, res_root: str) -> Optional[str]:
    """Return ``res://`` path of ``texture`` when it lies under ``res_root``."""
    root = os.path.abspath(res_root)
    target = os.path.abspath(str(texture))
    try:
        if os.path.commonpath([root, target]) != root:
            return None
    except ValueError:
        # Different drives on Windows.
        return None
    rel = os.path.relpath(target, root)
    return "res://" + PurePath(rel).as_posix()


def _relative_path(texture: Path, descriptor_dir: Path) -> str:
    try:
        rel = os.path.relpath(os.path.abspath(str(texture)), os.path.abspath(str(descriptor_dir)))
    except ValueError:
        return Path(os.path.abspath(str(texture))).as_posix()
    return PurePath(rel).as_posix()


class GodotMaterialGenerator:
    """Build and write ``StandardMaterial3D`` descriptors for material groups."""

    def __init__(self, config: RunConfig, resolver: OutputResolver):
        self.config = config
        self.resolver = resolver
        self.extension = config.material.extension
        self.res_root = config.material.res_root
        self.use_import_uids = config.material.use_import_uids

    def usable_channels(self, results: Mapping[ChannelKind, ConversionResult]):
        """Channel -> destination for members whose texture exists or would exist."""
        return {
            kind: result.destination
            for kind, result in results.items()
            if kind is not ChannelKind.UNKNOWN and result.outcome in _USABLE_OUTCOMES
        }

    def texture_refs(self, channels: Mapping[ChannelKind, Path],
                     descriptor_path: Path) -> List[TextureRef]:
        refs = []
        for kind in _CHANNEL_PROPERTIES:
            destination = channels.get(kind)
            if destination is None:
                continue
            resource_id = f"{len(refs) + 1}_{kind.value}"
            info = read_import_sidecar(destination) if self.use_import_uids else None
            path = None
            if info is not None and info.source_file:
                path = info.source_file
            elif self.res_root:
                path = _res_path(destination, self.res_root)
            if path is None:
                path = _relative_path(destination, descriptor_path.parent)
            refs.append(TextureRef(
                kind=kind,
                path=path,
                resource_id=resource_id,
                uid=info.uid if info is not None else None,
            ))
        return refs

    def render(self, base_name: str, refs: List[TextureRef]) -> str:
        """Render the ``.tres`` text for ``refs``."""
        lines = [
            f'[gd_resource type="StandardMaterial3D" load_steps={len(refs) + 1} '
            f'format=3 uid="uid://{godot_uid(base_name)}"]',
            "",
        ]
        for ref in refs:
            uid_attr = f' uid="uid://{ref.uid}"' if ref.uid else ""
            lines.append(
                f'[ext_resource type="Texture2D"{uid_attr} path="{ref.path}" '
                f'id="{ref.resource_id}"]'
            )
        lines.extend(["", "[resource]", f'resource_name = "{base_name}"'])
        for ref in refs:
            flags, texture_property = _CHANNEL_PROPERTIES[ref.kind]
            lines.extend(flags)
            lines.append(f'{texture_property} = ExtResource("{ref.resource_id}")')
        return "\n".join(lines) + "\n"

    def build(self, group: MaterialGroup,
              results: Mapping[ChannelKind, ConversionResult]) -> Optional[MaterialDescriptor]:
        """Assemble the descriptor for ``group`` without touching the disk.

        Returns ``None`` when no recognized channel has a usable texture.
        """
        channels = self.usable_channels(results)
        if not channels:
            logger.debug("No usable channels for '%s'; no material", group.base_name)
            return None
        descriptor_path = self.resolver.descriptor_path_for(group, self.extension)
        refs = self.texture_refs(channels, descriptor_path)
        descriptor = MaterialDescriptor(
            base_name=group.base_name,
            channels={ref.kind: channels[ref.kind] for ref in refs},
            path=descriptor_path,
            content=self.render(group.base_name, refs),
        )
        if not descriptor.complete:
            logger.warning(
                "Material '%s' has no albedo texture; descriptor is incomplete",
                group.base_name,
            )
        return descriptor

    def generate(self, group: MaterialGroup,
                 results: Mapping[ChannelKind, ConversionResult]) -> Optional[MaterialResult]:
        """Build the descriptor and write it under the resolver's rules."""
        descriptor = self.build(group, results)
        if descriptor is None:
            return None
        try:
            self.resolver.claim_descriptor(descriptor.path, group)
            outcome = self.resolver.commit(descriptor.content.encode("utf-8"), descriptor.path)
        except TexBrewError as exc:
            logger.error("Material '%s' failed: %s", group.base_name, exc)
            return MaterialResult(
                descriptor=descriptor,
                outcome=Outcome.FAILED,
                reason=exc.reason,
                message=str(exc),
            )
        message = ""
        if outcome is Outcome.SKIPPED_PREVIEW and self.resolver.would_overwrite(descriptor.path):
            message = "destination exists"
        elif outcome is Outcome.CONVERTED:
            logger.info("Wrote material %s", descriptor.path)
        return MaterialResult(descriptor=descriptor, outcome=outcome, message=message)
