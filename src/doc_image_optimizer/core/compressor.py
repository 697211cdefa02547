"""Content-aware lossy compression of a single image."""

import time
from typing import Optional

from PIL import Image

from .exceptions import CompressionError
from .image_utils import (
    choose_output_format,
    compute_psnr,
    decode_image,
    encode_image,
    has_transparency,
    is_below_minimum,
    native_format_name,
    prepare_for_format,
    target_dimensions,
)
from .models import ImageRole, OptimizationProfile, OptimizedImage, OutputFormat, Technique
from .observability import LogContext, create_logger
from .protocols import LoggerProtocol


class ImageCompressor:
    """
    Compresses one image under an optimization profile.

    The compressor holds no mutable state, so a single instance can be shared
    by every worker of the pool (and pickled into worker processes).
    """

    def __init__(self, logger: Optional[LoggerProtocol] = None):
        self._logger = logger or create_logger("compressor")

    def compress(
        self,
        data: bytes,
        role: ImageRole,
        profile: OptimizationProfile,
        attempt: int = 0,
    ) -> OptimizedImage:
        """
        Compress ``data`` for ``role``.

        ``attempt`` is the retry index; every retry starts one quality step
        lower than the previous one.

        Raises:
            CompressionError: The input cannot be decoded or encoding failed.
        """
        start_time = time.perf_counter()
        context = LogContext(operation="compress", component="compressor").with_metadata(
            role=role.value, attempt=attempt
        )

        if not data:
            raise CompressionError("Empty image buffer")

        image = decode_image(data)
        width, height = image.size
        source_format = native_format_name(image)

        if is_below_minimum(width, height, profile.min_dimensions):
            self._logger.debug(
                f"Image {width}x{height} below minimum dimensions, passing through",
                context,
            )
            return self._passthrough(data, role, width, height, source_format, start_time)

        transparent = has_transparency(image)
        if image.mode not in ("RGB", "RGBA", "L"):
            # Pillow only resamples palette images with NEAREST.
            image = image.convert("RGBA" if transparent else "RGB")

        target_width, target_height = target_dimensions(width, height, profile.max_dimensions)
        resized_any = (target_width, target_height) != (width, height)
        if resized_any:
            resized = image.resize((target_width, target_height), Image.Resampling.LANCZOS)
        else:
            resized = image

        output_format = choose_output_format(
            role, source_format, transparent, profile.preferred_format
        )
        prepared = prepare_for_format(resized, output_format, transparent)

        quality_range = profile.quality_for(role)
        quality = quality_range.clamp(quality_range.default - attempt * profile.quality_step)
        encoded = encode_image(prepared, output_format, quality)

        if profile.aggressive_mode:
            budget = int(profile.size_budget_bpp * target_width * target_height)
            while len(encoded) > budget and quality > quality_range.min:
                quality = max(quality_range.min, quality - profile.quality_step)
                encoded = encode_image(prepared, output_format, quality)

        if (
            len(encoded) >= len(data)
            and role is not ImageRole.PHOTO
            and output_format is not OutputFormat.PNG
        ):
            # Flat artwork compresses far better as palette PNG than as JPEG.
            candidate = encode_image(
                prepare_for_format(resized, OutputFormat.PNG, transparent),
                OutputFormat.PNG,
                quality,
            )
            if len(candidate) < len(encoded):
                encoded, output_format = candidate, OutputFormat.PNG

        if len(encoded) >= len(data) and not resized_any:
            self._logger.debug(
                "Re-encoding did not shrink the image, keeping the original bytes",
                context,
                original_size=len(data),
                encoded_size=len(encoded),
            )
            return self._passthrough(data, role, width, height, source_format, start_time)

        psnr = compute_psnr(resized, encoded)
        original_size = len(data)
        result = OptimizedImage(
            data=encoded,
            original_size=original_size,
            optimized_size=len(encoded),
            compression_ratio=(original_size - len(encoded)) / original_size,
            original_width=width,
            original_height=height,
            width=target_width,
            height=target_height,
            format=output_format.value,
            quality_used=quality,
            processing_time=time.perf_counter() - start_time,
            technique=profile.technique,
            role=role,
            psnr=psnr,
        )

        self._logger.debug(
            "Compressed image",
            context,
            size=f"{width}x{height}->{target_width}x{target_height}",
            format=f"{source_format}->{output_format.value}",
            quality=quality,
            ratio=f"{result.compression_ratio:.3f}",
        )
        return result

    @staticmethod
    def _passthrough(
        data: bytes,
        role: ImageRole,
        width: int,
        height: int,
        source_format: str,
        start_time: float,
    ) -> OptimizedImage:
        """The original bytes, unchanged."""
        return OptimizedImage(
            data=data,
            original_size=len(data),
            optimized_size=len(data),
            compression_ratio=0.0,
            original_width=width,
            original_height=height,
            width=width,
            height=height,
            format=source_format,
            quality_used=None,
            processing_time=time.perf_counter() - start_time,
            technique=Technique.PASSTHROUGH,
            role=role,
        )
