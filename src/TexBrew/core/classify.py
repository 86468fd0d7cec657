"""Texture channel classification by filename suffix patterns."""

import logging
import re
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from ..config import CHANNEL_PATTERNS, ChannelKind
from .records import InputImage

logger = logging.getLogger("texture_pipeline.classify")

# Separators that may precede a channel token: wall_albedo, wall-albedo,
# wall.albedo, "wall albedo".
_SEPARATOR = r"[_\-. ]"

Rule = Tuple[Callable[[str], Optional[re.Match]], ChannelKind]


def _suffix_rule(tokens: Sequence[str]) -> Callable[[str], Optional[re.Match]]:
    """Build a predicate matching ``<separator><token>`` at the end of a stem."""
    alternatives = "|".join(
        re.escape(token) for token in sorted(tokens, key=len, reverse=True)
    )
    return re.compile(rf"{_SEPARATOR}(?:{alternatives})$", re.IGNORECASE).search


CHANNEL_RULES: List[Rule] = [
    (_suffix_rule(tokens), kind) for kind, tokens in CHANNEL_PATTERNS.items()
]


def classify_channel(filepath: str, rules: Sequence[Rule] = None) -> Tuple[str, ChannelKind]:
    """Return ``(base_name, kind)`` for a file name.

    Rules are evaluated in priority order and the first match wins. The
    matched segment, separator included, is cut from the stem to form the
    base name. Names without a recognized suffix keep their full stem and
    classify as ``ChannelKind.UNKNOWN``.
    """
    stem = Path(filepath).stem
    for predicate, kind in (rules if rules is not None else CHANNEL_RULES):
        match = predicate(stem)
        if match is None:
            continue
        base_name = stem[:match.start()]
        if not base_name:
            # "_albedo.tif" has nothing left to group on.
            logger.debug("Suffix match on %s leaves an empty base name; ignoring", filepath)
            break
        return base_name, kind
    return stem, ChannelKind.UNKNOWN


def classify_texture(filepath: str) -> ChannelKind:
    """Classify only the channel kind of a file name."""
    return classify_channel(filepath)[1]


def classify_inputs(paths: Iterable[str]) -> List[InputImage]:
    """Build one ``InputImage`` per input path, in the given order."""
    images = []
    for index, raw in enumerate(paths):
        path = Path(raw)
        base_name, kind = classify_channel(path.name)
        logger.debug("Classified %s as %s (base '%s')", path.name, kind.value, base_name)
        images.append(InputImage(path=path, index=index, base_name=base_name, channel=kind))
    return images
