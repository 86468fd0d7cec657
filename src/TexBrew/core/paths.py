"""Output path resolution and guarded writes."""

import logging
import os
import threading
from pathlib import Path
from typing import Dict, Optional

from .errors import FilesystemError, OutputConflictError
from .records import InputImage, MaterialGroup, Outcome

logger = logging.getLogger("texture_pipeline.paths")


def _path_key(path) -> str:
    """Canonical key for comparing destinations on case-insensitive hosts."""
    return os.path.normcase(os.path.abspath(str(path)))


def atomic_write_bytes(path: str, data: bytes) -> None:
    """Write ``data`` to ``path`` via temp file + ``os.replace``."""
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    ext = os.path.splitext(path)[1]
    tmp_path = f"{path}.tmp.{os.getpid()}.{threading.get_ident()}{ext}"
    try:
        with open(tmp_path, "wb") as f:
            f.write(data)
        os.replace(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            try:
                os.remove(tmp_path)
            except OSError:
                pass


class OutputResolver:
    """Decide where outputs go and whether they may be written.

    One resolver serves one run. Destination claims are recorded in the
    order ``claim`` is called, so the caller decides which of two colliding
    inputs wins by claiming in discovery order.
    """

    def __init__(self, destination_dir: Optional[str] = None,
                 allow_overwrite: bool = False, preview: bool = False,
                 extension: str = ".jpg"):
        self.destination_dir = Path(destination_dir) if destination_dir else None
        self.allow_overwrite = allow_overwrite
        self.preview = preview
        self.extension = extension
        self._claims: Dict[str, InputImage] = {}
        self._descriptor_claims: Dict[str, MaterialGroup] = {}
        self._claims_lock = threading.Lock()
        self._path_locks: Dict[str, threading.Lock] = {}
        self._path_locks_guard = threading.Lock()

    @classmethod
    def from_config(cls, config) -> "OutputResolver":
        return cls(
            destination_dir=config.destination_dir,
            allow_overwrite=config.allow_overwrite,
            preview=config.preview,
            extension=config.conversion.output_extension,
        )

    def destination_for(self, image: InputImage) -> Path:
        """Return ``<stem><ext>`` in the destination dir or beside the source."""
        name = image.stem + self.extension
        if self.destination_dir is not None:
            return self.destination_dir / name
        return image.path.with_name(name)

    def descriptor_path_for(self, group: MaterialGroup, extension: str = ".tres") -> Path:
        """Return ``<base><extension>`` next to the group's converted textures."""
        name = Path(group.base_name + extension).name
        if self.destination_dir is not None:
            return self.destination_dir / name
        return group.members[0].path.with_name(name)

    def claim(self, destination: Path, image: InputImage) -> None:
        """Reserve ``destination`` for ``image``.

        Raises:
            OutputConflictError: a different source already holds it.
        """
        key = _path_key(destination)
        with self._claims_lock:
            holder = self._claims.get(key)
            if holder is None:
                self._claims[key] = image
                return
        if holder.path == image.path:
            return
        raise OutputConflictError(
            f"{image.filename} and {holder.filename} both map to {destination}; "
            f"keeping {holder.filename}"
        )

    def claim_descriptor(self, descriptor_path: Path, group: MaterialGroup) -> None:
        """Reserve ``descriptor_path`` for ``group``.

        Raises:
            OutputConflictError: another group already holds it.
        """
        key = _path_key(descriptor_path)
        with self._claims_lock:
            holder = self._descriptor_claims.setdefault(key, group)
        if holder.base_name == group.base_name:
            return
        raise OutputConflictError(
            f"Materials '{group.base_name}' and '{holder.base_name}' both map to "
            f"{descriptor_path}; keeping '{holder.base_name}'"
        )

    def _lock_for(self, path: Path) -> threading.Lock:
        key = _path_key(path)
        with self._path_locks_guard:
            lock = self._path_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._path_locks[key] = lock
            return lock

    def commit(self, data: bytes, destination: Path) -> Outcome:
        """Write ``data`` unless preview or overwrite rules forbid it.

        Raises:
            FilesystemError: the directory or file could not be written.
        """
        if self.preview:
            logger.debug("Preview: would write %s", destination)
            return Outcome.SKIPPED_PREVIEW
        with self._lock_for(destination):
            if destination.exists() and not self.allow_overwrite:
                logger.info("Skipping %s: destination exists", destination)
                return Outcome.SKIPPED_EXISTS
            try:
                atomic_write_bytes(str(destination), data)
            except OSError as exc:
                raise FilesystemError(f"Failed to write {destination}: {exc}") from exc
        logger.debug("Wrote %s (%d bytes)", destination, len(data))
        return Outcome.CONVERTED

    def would_overwrite(self, destination: Path) -> bool:
        return destination.exists()
