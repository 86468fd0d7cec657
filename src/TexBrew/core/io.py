"""Image I/O -- decode TIFF sources and encode JPEG buffers in memory."""

import logging
import struct
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Optional, Tuple

import numpy as np
from PIL import Image, UnidentifiedImageError

from .errors import DecodeError, EncodeError

# Disable Pillow's global decompression bomb check; decode_tiff() validates
# the pixel count per call against the configured limit instead.
Image.MAX_IMAGE_PIXELS = None

logger = logging.getLogger("texture_pipeline.io")

TIFF_FORMAT = "TIFF"

_SIXTEEN_BIT_MODES = {"I;16", "I;16B", "I;16L", "I;16N"}
_HIGH_DEPTH_MODES = _SIXTEEN_BIT_MODES | {"I", "F"}
_ALPHA_TO_COLOR = {"RGBA": "RGB", "RGBa": "RGB", "LA": "L", "La": "L", "PA": "RGB"}
_TO_RGB = {"CMYK", "YCbCr", "RGBX", "HSV"}


@dataclass(frozen=True)
class DecodedImage:
    """Decoded pixels normalized to a JPEG-compatible mode."""

    image: Image.Image
    source_mode: str
    alpha_dropped: bool = False
    frames: int = 1
    icc_profile: Optional[bytes] = None


@dataclass(frozen=True)
class EncodedImage:
    """JPEG bytes plus what happened on the way there."""

    data: bytes
    width: int
    height: int
    mode: str
    source_mode: str
    alpha_dropped: bool = False
    frames: int = 1

    @property
    def notes(self) -> Tuple[str, ...]:
        notes = []
        if self.alpha_dropped:
            notes.append("alpha channel dropped")
        if self.source_mode in _HIGH_DEPTH_MODES:
            notes.append(f"downscaled {self.source_mode} to 8-bit")
        if self.frames > 1:
            notes.append(f"converted first of {self.frames} pages")
        return tuple(notes)


def _infer_integer_mode_bit_depth(img: Image.Image) -> int:
    """Infer bit depth for Pillow mode ``I`` images from file metadata."""
    bits_info = img.info.get("bits")
    if isinstance(bits_info, int) and bits_info > 0:
        return bits_info

    # TIFF BitsPerSample tag
    tag_v2 = getattr(img, "tag_v2", None)
    if tag_v2 is not None:
        bits_tag = tag_v2.get(258)
        if isinstance(bits_tag, tuple) and bits_tag:
            bits_tag = bits_tag[0]
        if isinstance(bits_tag, int) and bits_tag > 0:
            return bits_tag

    # TIFF "I" is most often 16-bit data promoted to 32-bit storage.
    return 16


def _high_depth_to_8bit(img: Image.Image, path: str) -> Image.Image:
    """Downscale 16/32-bit integer or float grayscale to 8-bit ``L``."""
    arr = np.asarray(img, dtype=np.float32)
    if img.mode in _SIXTEEN_BIT_MODES:
        arr = arr / 65535.0
    elif img.mode == "I":
        bit_depth = _infer_integer_mode_bit_depth(img)
        max_value = float((1 << min(bit_depth, 32)) - 1)
        arr = arr / max_value
        logger.debug("Mode I source %s scaled with inferred bit depth %d", path, bit_depth)
    else:
        amin = float(arr.min()) if arr.size else 0.0
        amax = float(arr.max()) if arr.size else 0.0
        if amin < 0.0 or amax > 1.0:
            span = amax - amin
            logger.info(
                "Float image '%s' has range [%.6f, %.6f]; stretching to 8-bit.",
                path, amin, amax,
            )
            arr = (arr - amin) / span if span > 0 else np.zeros_like(arr)
    arr = np.nan_to_num(arr, nan=0.0)
    out = np.round(np.clip(arr, 0.0, 1.0) * 255.0).astype(np.uint8)
    return Image.fromarray(out)


def _to_jpeg_mode(img: Image.Image, path: str) -> Tuple[Image.Image, bool]:
    """Return ``(image, alpha_dropped)`` in a mode the JPEG encoder accepts."""
    mode = img.mode
    if mode in ("RGB", "L"):
        return img.copy(), False
    if mode in _ALPHA_TO_COLOR:
        if mode == "PA":
            return img.convert("RGBA").convert("RGB"), True
        return img.convert(_ALPHA_TO_COLOR[mode]), True
    if mode == "P":
        if "transparency" in img.info:
            return img.convert("RGBA").convert("RGB"), True
        return img.convert("RGB"), False
    if mode == "1":
        return img.convert("L"), False
    if mode in _TO_RGB:
        return img.convert("RGB"), False
    if mode in _HIGH_DEPTH_MODES:
        return _high_depth_to_8bit(img, path), False
    raise DecodeError(f"Unsupported pixel mode '{mode}' in {path}")


def decode_tiff(path: str, max_pixels: int = 0) -> DecodedImage:
    """Decode the first page of a TIFF file into a JPEG-compatible image.

    Alpha channels are dropped (JPEG has none) and high bit depths are
    reduced to 8 bits; both are reported on the returned record rather than
    treated as failures.

    Raises:
        DecodeError: the file is missing, not a TIFF, truncated, too large,
            or uses a pixel mode with no JPEG equivalent.
    """
    try:
        with Image.open(path) as img:
            if img.format != TIFF_FORMAT:
                raise DecodeError(f"Not a TIFF image ({img.format}): {path}")
            width, height = img.size
            if max_pixels > 0 and width * height > max_pixels:
                raise DecodeError(
                    f"Image too large: {width}x{height} = {width * height:,} "
                    f"pixels (max {max_pixels:,}): {path}"
                )
            frames = int(getattr(img, "n_frames", 1) or 1)
            img.load()
            source_mode = img.mode
            icc_profile = img.info.get("icc_profile")
            converted, alpha_dropped = _to_jpeg_mode(img, path)
    except DecodeError:
        raise
    except (UnidentifiedImageError, OSError, ValueError, SyntaxError,
            EOFError, IndexError, KeyError, struct.error) as exc:
        logger.debug("Failed to decode '%s': %s", path, exc)
        raise DecodeError(f"Failed to decode {Path(path).name}: {exc}") from exc

    if alpha_dropped:
        logger.info("Dropping alpha channel of %s (%s); JPEG has none", path, source_mode)
    if frames > 1:
        logger.info("%s has %d pages; converting the first only", path, frames)
    # ICC profiles only describe the original color space.
    if converted.mode != source_mode and source_mode not in _ALPHA_TO_COLOR:
        icc_profile = None
    return DecodedImage(
        image=converted,
        source_mode=source_mode,
        alpha_dropped=alpha_dropped,
        frames=frames,
        icc_profile=icc_profile,
    )


def encode_jpeg(img: Image.Image, quality: int = 95, subsampling: int = 0,
                optimize: bool = True, icc_profile: Optional[bytes] = None) -> bytes:
    """Encode an ``RGB`` or ``L`` image as JPEG bytes.

    Raises:
        EncodeError: the encoder rejected the image or failed internally.
    """
    if img.mode not in ("RGB", "L"):
        raise EncodeError(f"Cannot encode mode '{img.mode}' as JPEG")
    params = {"quality": quality, "optimize": optimize}
    if img.mode == "RGB":
        params["subsampling"] = subsampling
    if icc_profile:
        params["icc_profile"] = icc_profile
    buffer = BytesIO()
    try:
        img.save(buffer, format="JPEG", **params)
    except (OSError, ValueError, KeyError) as exc:
        raise EncodeError(f"JPEG encoder failed: {exc}") from exc
    return buffer.getvalue()


def convert_to_jpeg(path: str, quality: int = 95, subsampling: int = 0,
                    optimize: bool = True, max_pixels: int = 0) -> EncodedImage:
    """Decode one TIFF and re-encode it as JPEG, entirely in memory.

    Writing the bytes to disk is the output resolver's job.
    """
    decoded = decode_tiff(path, max_pixels=max_pixels)
    img = decoded.image
    try:
        data = encode_jpeg(
            img,
            quality=quality,
            subsampling=subsampling,
            optimize=optimize,
            icc_profile=decoded.icc_profile,
        )
        return EncodedImage(
            data=data,
            width=img.width,
            height=img.height,
            mode=img.mode,
            source_mode=decoded.source_mode,
            alpha_dropped=decoded.alpha_dropped,
            frames=decoded.frames,
        )
    finally:
        img.close()
