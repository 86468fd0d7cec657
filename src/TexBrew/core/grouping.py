"""Partition classified inputs into material groups."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from ..config import ChannelKind
from .records import ConversionResult, FailureReason, InputImage, MaterialGroup, Outcome

logger = logging.getLogger("texture_pipeline.grouping")


@dataclass
class GroupingResult:
    """Groups in first-occurrence order plus duplicate-channel failures."""

    groups: Dict[str, MaterialGroup] = field(default_factory=dict)
    conflicts: List[ConversionResult] = field(default_factory=list)

    def __iter__(self):
        return iter(self.groups.values())

    def __len__(self) -> int:
        return len(self.groups)


def _default_destination(image: InputImage) -> Path:
    return image.path.with_suffix(".jpg")


def _free_key(pending: Dict[str, Dict[ChannelKind, InputImage]], image: InputImage) -> str:
    """Return a group key for ``image`` that no other group holds yet."""
    key = str(image.path)
    suffix = image.index
    while key in pending:
        key = f"{image.path}#{suffix}"
        suffix += 1
    return key


def group_images(
    images: Iterable[InputImage],
    destination_for: Optional[Callable[[InputImage], Path]] = None,
) -> GroupingResult:
    """Group images by base name.

    The first image seen for a ``(base_name, kind)`` pair wins; later ones
    are reported as ``FAILED(DuplicateChannel)``. Images of unknown kind
    each get a singleton group keyed by their full stem, falling back to
    their full path (suffixed with the input index if that is taken too)
    when that key is already held.

    Args:
        images: Classified inputs in discovery order.
        destination_for: Maps an image to its would-be output path, so that
            conflict entries in the report carry a destination.
    """
    destination_for = destination_for or _default_destination
    pending: Dict[str, Dict[ChannelKind, InputImage]] = {}
    conflicts: List[ConversionResult] = []
    unknown_by_path: Dict[Path, InputImage] = {}

    for image in images:
        if image.channel is ChannelKind.UNKNOWN:
            existing = unknown_by_path.get(image.path)
            if existing is None:
                key = image.stem if image.stem not in pending else _free_key(pending, image)
                pending[key] = {ChannelKind.UNKNOWN: image}
                unknown_by_path[image.path] = image
                continue
        else:
            channels = pending.get(image.base_name)
            if channels is not None and ChannelKind.UNKNOWN in channels:
                # An unknown singleton holds this key; rekey it in place.
                new_key = _free_key(pending, channels[ChannelKind.UNKNOWN])
                pending = {
                    (new_key if k == image.base_name else k): v
                    for k, v in pending.items()
                }
                channels = None
            if channels is None:
                channels = pending.setdefault(image.base_name, {})
            existing = channels.get(image.channel)

        if existing is not None:
            message = (
                f"{image.filename} duplicates the {image.channel.value} channel of "
                f"'{image.base_name}' already provided by {existing.filename}"
            )
            logger.error(message)
            conflicts.append(ConversionResult(
                source=image,
                destination=destination_for(image),
                outcome=Outcome.FAILED,
                reason=FailureReason.DUPLICATE_CHANNEL,
                message=message,
            ))
            continue
        channels[image.channel] = image

    groups = {key: MaterialGroup(base_name=key, channels=chans) for key, chans in pending.items()}
    logger.info(
        "Grouped %d image(s) into %d group(s) (%d duplicate channel(s))",
        sum(len(g.channels) for g in groups.values()) + len(conflicts),
        len(groups),
        len(conflicts),
    )
    return GroupingResult(groups=groups, conflicts=conflicts)
