"""Per-file error types raised by the conversion and output stages."""

from .records import FailureReason


class TexBrewError(Exception):
    """Base class for recoverable per-file failures."""

    reason: FailureReason = FailureReason.FILESYSTEM_ERROR


class DecodeError(TexBrewError):
    """Source bytes are not a decodable TIFF image."""

    reason = FailureReason.DECODE_ERROR


class EncodeError(TexBrewError):
    """The JPEG encoder failed on decoded pixel data."""

    reason = FailureReason.ENCODE_ERROR


class OutputConflictError(TexBrewError):
    """Another input already claimed the same destination path."""

    reason = FailureReason.OUTPUT_CONFLICT


class FilesystemError(TexBrewError):
    """Creating a directory or writing an output file failed."""

    reason = FailureReason.FILESYSTEM_ERROR
