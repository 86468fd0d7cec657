"""Record types shared by the pipeline stages and the run report."""

import json
import logging
import os
import threading
from dataclasses import dataclass, field
from enum import Enum
from functools import cached_property
from pathlib import Path
from types import MappingProxyType
from typing import List, Mapping, Optional, Tuple

from ..config import ChannelKind

logger = logging.getLogger("texture_pipeline")


class Outcome(Enum):
    """Terminal state of one file or descriptor."""

    CONVERTED = "converted"
    SKIPPED_EXISTS = "skipped-exists"
    SKIPPED_PREVIEW = "skipped-preview"
    FAILED = "failed"


class FailureReason(Enum):
    """Why a file or descriptor ended in ``Outcome.FAILED``."""

    DECODE_ERROR = "DecodeError"
    ENCODE_ERROR = "EncodeError"
    OUTPUT_CONFLICT = "OutputConflict"
    DUPLICATE_CHANNEL = "DuplicateChannel"
    FILESYSTEM_ERROR = "FilesystemError"
    CANCELLED = "Cancelled"


@dataclass(frozen=True)
class InputImage:
    """Single classified source file."""

    path: Path
    index: int
    base_name: str
    channel: ChannelKind = ChannelKind.UNKNOWN

    @property
    def filename(self) -> str:
        return self.path.name

    @property
    def stem(self) -> str:
        return self.path.stem

    @cached_property
    def size_bytes(self) -> int:
        """Source size on disk, read on first access."""
        return os.path.getsize(self.path)


@dataclass(frozen=True)
class MaterialGroup:
    """Images sharing one base name, at most one per channel kind."""

    base_name: str
    channels: Mapping[ChannelKind, InputImage]

    def __post_init__(self) -> None:
        object.__setattr__(self, "channels", MappingProxyType(dict(self.channels)))

    @property
    def members(self) -> Tuple[InputImage, ...]:
        """Member images in discovery order."""
        return tuple(sorted(self.channels.values(), key=lambda img: img.index))

    @property
    def is_complete(self) -> bool:
        """Whether the minimum viable material (an albedo map) is present."""
        return ChannelKind.ALBEDO in self.channels

    @property
    def has_recognized_channels(self) -> bool:
        return any(kind is not ChannelKind.UNKNOWN for kind in self.channels)


@dataclass(frozen=True)
class ConversionResult:
    """Per-file outcome collected into the run report."""

    source: InputImage
    destination: Path
    outcome: Outcome
    reason: Optional[FailureReason] = None
    message: str = ""
    notes: Tuple[str, ...] = ()

    @property
    def failed(self) -> bool:
        return self.outcome is Outcome.FAILED

    def to_dict(self) -> dict:
        return {
            "source": str(self.source.path),
            "destination": str(self.destination),
            "base_name": self.source.base_name,
            "channel": self.source.channel.value,
            "outcome": self.outcome.value,
            "reason": self.reason.value if self.reason else None,
            "message": self.message,
            "notes": list(self.notes),
        }


@dataclass(frozen=True)
class MaterialDescriptor:
    """Rendered material resource for one group."""

    base_name: str
    channels: Mapping[ChannelKind, Path]
    path: Path
    content: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "channels", MappingProxyType(dict(self.channels)))

    @property
    def complete(self) -> bool:
        return ChannelKind.ALBEDO in self.channels


@dataclass(frozen=True)
class MaterialResult:
    """Per-group descriptor outcome collected into the run report."""

    descriptor: MaterialDescriptor
    outcome: Outcome
    reason: Optional[FailureReason] = None
    message: str = ""

    @property
    def base_name(self) -> str:
        return self.descriptor.base_name

    @property
    def path(self) -> Path:
        return self.descriptor.path

    @property
    def complete(self) -> bool:
        return self.descriptor.complete

    @property
    def failed(self) -> bool:
        return self.outcome is Outcome.FAILED

    def to_dict(self) -> dict:
        return {
            "base_name": self.base_name,
            "path": str(self.path),
            "channels": {
                kind.value: str(path) for kind, path in self.descriptor.channels.items()
            },
            "complete": self.complete,
            "outcome": self.outcome.value,
            "reason": self.reason.value if self.reason else None,
            "message": self.message,
        }


@dataclass
class RunReport:
    """Aggregate of every file and material outcome of one run."""

    preview: bool = False
    cancelled: bool = False
    files: List[ConversionResult] = field(default_factory=list)
    materials: List[MaterialResult] = field(default_factory=list)

    def _count(self, *outcomes: Outcome) -> int:
        return sum(1 for r in self.files if r.outcome in outcomes)

    @property
    def converted(self) -> int:
        return self._count(Outcome.CONVERTED)

    @property
    def skipped(self) -> int:
        return self._count(Outcome.SKIPPED_EXISTS, Outcome.SKIPPED_PREVIEW)

    @property
    def failed(self) -> int:
        return self._count(Outcome.FAILED)

    @property
    def failed_materials(self) -> int:
        return sum(1 for m in self.materials if m.failed)

    @property
    def incomplete_materials(self) -> List[MaterialResult]:
        return [m for m in self.materials if not m.complete]

    @property
    def has_failures(self) -> bool:
        return self.failed > 0 or self.failed_materials > 0

    def result_for(self, path) -> Optional[ConversionResult]:
        """Return the file result whose source is ``path``, if any."""
        target = Path(path)
        for result in self.files:
            if result.source.path == target:
                return result
        return None

    def material_for(self, base_name: str) -> Optional[MaterialResult]:
        for result in self.materials:
            if result.base_name == base_name:
                return result
        return None

    def to_dict(self) -> dict:
        return {
            "preview": self.preview,
            "cancelled": self.cancelled,
            "counts": {
                "converted": self.converted,
                "skipped": self.skipped,
                "failed": self.failed,
                "materials": len(self.materials),
                "incomplete_materials": len(self.incomplete_materials),
                "failed_materials": self.failed_materials,
            },
            "files": [r.to_dict() for r in self.files],
            "materials": [m.to_dict() for m in self.materials],
        }

    def save_json(self, path: str) -> None:
        """Write the report as JSON via temp file + ``os.replace``."""
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        tmp_path = f"{path}.tmp.{os.getpid()}.{threading.get_ident()}"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(self.to_dict(), f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        finally:
            if os.path.exists(tmp_path):
                try:
                    os.remove(tmp_path)
                except OSError:
                    pass
        logger.info("Report saved: %s", path)
