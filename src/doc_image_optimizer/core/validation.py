"""Invariant checks applied to every compression attempt."""

from typing import List

from .exceptions import ValidationError
from .models import OptimizationProfile, OptimizedImage, Technique

ASPECT_RATIO_TOLERANCE = 0.05


class ValidationService:
    """Decides whether a compression attempt is acceptable or must be retried."""

    def __init__(self, aspect_ratio_tolerance: float = ASPECT_RATIO_TOLERANCE):
        self.aspect_ratio_tolerance = aspect_ratio_tolerance

    def check(self, image: OptimizedImage, profile: OptimizationProfile) -> List[str]:
        """Return the list of violated invariants, empty when the image is valid."""
        if image.technique is Technique.FALLBACK:
            return []

        if image.technique is Technique.PASSTHROUGH:
            errors = []
            if image.compression_ratio != 0:
                errors.append("pass-through image must report a compression ratio of 0")
            if image.optimized_size != image.original_size:
                errors.append("pass-through image must keep its original bytes")
            return errors

        errors = []
        max_dims = profile.max_dimensions

        if not image.data or image.optimized_size <= 0:
            errors.append("optimized image is empty")
        if image.width > max_dims.width or image.height > max_dims.height:
            errors.append(
                f"dimensions {image.width}x{image.height} exceed maximum "
                f"{max_dims.width}x{max_dims.height}"
            )
        if image.width > image.original_width or image.height > image.original_height:
            errors.append(
                f"dimensions {image.width}x{image.height} upscale original "
                f"{image.original_width}x{image.original_height}"
            )

        quality_range = profile.quality_for(image.role)
        if image.quality_used is None or not (
            quality_range.min <= image.quality_used <= quality_range.max
        ):
            errors.append(
                f"quality {image.quality_used} outside "
                f"[{quality_range.min}, {quality_range.max}] for {image.role.value}"
            )

        if image.optimized_size > image.original_size:
            errors.append(
                f"optimized size {image.optimized_size} exceeds original size "
                f"{image.original_size}"
            )
        if not 0 <= image.compression_ratio < 1:
            errors.append(f"compression ratio {image.compression_ratio:.3f} outside [0, 1)")

        if not self._aspect_ratio_preserved(image):
            errors.append(
                f"aspect ratio changed from {image.original_width}x{image.original_height} "
                f"to {image.width}x{image.height}"
            )

        return errors

    def validate(self, image: OptimizedImage, profile: OptimizationProfile) -> None:
        """
        Raise ValidationError when ``image`` violates any profile invariant.
        """
        errors = self.check(image, profile)
        if errors:
            raise ValidationError(errors)

    def _aspect_ratio_preserved(self, image: OptimizedImage) -> bool:
        ow, oh = image.original_width, image.original_height
        w, h = image.width, image.height
        if min(ow, oh, w, h) <= 0:
            return False
        original_ratio = ow / oh
        if abs(w / h - original_ratio) / original_ratio <= self.aspect_ratio_tolerance:
            return True
        # Each axis may be off by up to one pixel of rounding.
        return abs(w * oh - h * ow) <= ow + oh
