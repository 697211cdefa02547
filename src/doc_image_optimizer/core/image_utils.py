"""Pillow and numpy helpers used by the image compressor."""

import io
import math
from typing import Optional, Tuple

import numpy as np
from PIL import Image

from .error_handling import DECODE_ERRORS, with_error_handling
from .models import Dimensions, ImageRole, OutputFormat

_PIL_FORMATS = {
    OutputFormat.JPEG: "JPEG",
    OutputFormat.PNG: "PNG",
    OutputFormat.WEBP: "WEBP",
}

# Native formats that can carry an alpha channel, mapped to the encoder we keep.
_ALPHA_NATIVE_FORMATS = {
    "PNG": OutputFormat.PNG,
    "WEBP": OutputFormat.WEBP,
    "GIF": OutputFormat.PNG,
}

PSNR_CEILING = 100.0


@with_error_handling
def decode_image(data: bytes) -> Image.Image:
    """Open and fully load image bytes."""
    image = Image.open(io.BytesIO(data))
    image.load()
    return image


def read_dimensions(data: bytes) -> Tuple[int, int]:
    """Width and height from the image header, or (0, 0) when it cannot be read."""
    try:
        with Image.open(io.BytesIO(data)) as image:
            return image.size
    except DECODE_ERRORS:
        return 0, 0


def target_dimensions(width: int, height: int, max_dimensions: Dimensions) -> Tuple[int, int]:
    """
    Uniformly scale ``width`` x ``height`` to fit inside ``max_dimensions``.

    The aspect ratio is preserved and images are never scaled up. Each axis is
    rounded to the nearest pixel, then clamped to the maximum and to at least 1.
    """
    scale = min(max_dimensions.width / width, max_dimensions.height / height, 1.0)
    if scale >= 1.0:
        return width, height
    target_width = max(1, min(max_dimensions.width, round(width * scale)))
    target_height = max(1, min(max_dimensions.height, round(height * scale)))
    return target_width, target_height


def is_below_minimum(width: int, height: int, min_dimensions: Dimensions) -> bool:
    """True when both axes fall under the minimum-dimension floor."""
    return width < min_dimensions.width and height < min_dimensions.height


def has_transparency(image: Image.Image) -> bool:
    """True when any pixel of the image is not fully opaque."""
    if image.mode == "P":
        if "transparency" not in image.info:
            return False
        image = image.convert("RGBA")
    elif image.mode == "LA":
        image = image.convert("RGBA")
    if image.mode in ("RGBA", "RGBa", "PA"):
        low, _ = image.getchannel("A").getextrema()
        return low < 255
    return "transparency" in image.info


def native_format_name(image: Image.Image) -> str:
    return (image.format or "unknown").lower()


def choose_output_format(
    role: ImageRole,
    native_format: Optional[str],
    transparent: bool,
    preferred: OutputFormat,
) -> OutputFormat:
    """
    Pick the encoder for an image.

    Photos always use the preferred format. Images carrying transparency keep
    an alpha-capable format: the preferred one when it supports alpha, else
    their native format, else PNG.
    """
    if role is ImageRole.PHOTO or not transparent:
        return preferred
    if preferred.supports_transparency:
        return preferred
    return _ALPHA_NATIVE_FORMATS.get((native_format or "").upper(), OutputFormat.PNG)


def flatten_to_rgb(image: Image.Image, background=(255, 255, 255)) -> Image.Image:
    """Composite any alpha over a solid background and return an RGB image."""
    if image.mode in ("P", "LA", "PA") or (image.mode == "L" and "transparency" in image.info):
        image = image.convert("RGBA")
    if image.mode == "RGBA":
        canvas = Image.new("RGB", image.size, background)
        canvas.paste(image, mask=image.getchannel("A"))
        return canvas
    if image.mode != "RGB":
        return image.convert("RGB")
    return image


def prepare_for_format(
    image: Image.Image, output_format: OutputFormat, transparent: bool
) -> Image.Image:
    """Convert pixel mode to something ``output_format`` can encode."""
    if output_format is OutputFormat.JPEG:
        if transparent:
            return flatten_to_rgb(image)
        if image.mode not in ("RGB", "L"):
            return image.convert("RGB")
        return image
    if transparent:
        return image if image.mode == "RGBA" else image.convert("RGBA")
    return image if image.mode == "RGB" else flatten_to_rgb(image)


def png_colors_for_quality(quality: int) -> int:
    """Palette size used for lossy PNG encoding at a given quality."""
    return max(2, min(256, round(256 * quality / 100)))


@with_error_handling
def encode_image(image: Image.Image, output_format: OutputFormat, quality: int) -> bytes:
    """
    Encode ``image`` deterministically and without metadata.

    JPEG is progressive and Huffman-optimized, PNG is palette-quantized with
    a palette size derived from ``quality``, WebP uses the slowest method.
    """
    buffer = io.BytesIO()
    pil_format = _PIL_FORMATS[output_format]

    if output_format is OutputFormat.JPEG:
        image.save(buffer, format=pil_format, quality=quality, optimize=True, progressive=True)
    elif output_format is OutputFormat.PNG:
        method = (
            Image.Quantize.FASTOCTREE if image.mode == "RGBA" else Image.Quantize.MEDIANCUT
        )
        source = image if image.mode in ("RGB", "RGBA") else image.convert("RGB")
        quantized = source.quantize(colors=png_colors_for_quality(quality), method=method)
        quantized.save(buffer, format=pil_format, optimize=True)
    else:
        image.save(buffer, format=pil_format, quality=quality, method=6)

    return buffer.getvalue()


def compute_psnr(reference: Image.Image, encoded: bytes) -> float:
    """
    Peak signal-to-noise ratio of ``encoded`` against ``reference``, in dB.

    Both images are flattened to RGB; identical images report PSNR_CEILING.
    """
    expected = np.asarray(flatten_to_rgb(reference), dtype=np.float64)
    actual = np.asarray(flatten_to_rgb(decode_image(encoded)), dtype=np.float64)
    if expected.shape != actual.shape:
        return 0.0
    mse = float(np.mean((expected - actual) ** 2))
    if mse == 0.0:
        return PSNR_CEILING
    return round(min(PSNR_CEILING, 10.0 * math.log10(255.0 ** 2 / mse)), 2)
