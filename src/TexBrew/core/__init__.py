"""Core utilities -- re-exports all public symbols for convenience."""

from .records import (
    ConversionResult,
    FailureReason,
    InputImage,
    MaterialDescriptor,
    MaterialGroup,
    MaterialResult,
    Outcome,
    RunReport,
)
from .errors import (
    TexBrewError,
    DecodeError,
    EncodeError,
    OutputConflictError,
    FilesystemError,
)
from .classify import classify_channel, classify_texture, classify_inputs
from .grouping import GroupingResult, group_images
from .io import decode_tiff, encode_jpeg, convert_to_jpeg, EncodedImage
from .paths import OutputResolver, atomic_write_bytes
from .logging import setup_logging

__all__ = [
    "ConversionResult", "FailureReason", "InputImage", "MaterialDescriptor",
    "MaterialGroup", "MaterialResult", "Outcome", "RunReport",
    "TexBrewError", "DecodeError", "EncodeError", "OutputConflictError",
    "FilesystemError",
    "classify_channel", "classify_texture", "classify_inputs",
    "GroupingResult", "group_images",
    "decode_tiff", "encode_jpeg", "convert_to_jpeg", "EncodedImage",
    "OutputResolver", "atomic_write_bytes",
    "setup_logging",
]
