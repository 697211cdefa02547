"""Shared data models for the document image optimizer."""

import hashlib
import json
import uuid
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ImageRole(str, Enum):
    """Semantic role of an image inside a generated document."""

    PHOTO = "photo"
    LOGO = "logo"
    GRAPHICS = "graphics"
    TEXT = "text"


class OutputFormat(str, Enum):
    """Encodings the compressor can produce."""

    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"

    @property
    def supports_transparency(self) -> bool:
        return self is not OutputFormat.JPEG


class Technique(str, Enum):
    """Which branch of the compression algorithm produced an image."""

    STANDARD = "standard"
    AGGRESSIVE = "aggressive"
    PASSTHROUGH = "passthrough"
    FALLBACK = "fallback"


class BatchStatus(str, Enum):
    """Outcome of one batch job."""

    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"


class QualityRange(BaseModel):
    """Quality bounds for one image role."""

    model_config = ConfigDict(frozen=True)

    min: int = Field(ge=1, le=100)
    max: int = Field(ge=1, le=100)
    default: int = Field(ge=1, le=100)

    @model_validator(mode="after")
    def _check_order(self) -> "QualityRange":
        if not self.min <= self.default <= self.max:
            raise ValueError(
                f"quality must satisfy min <= default <= max, "
                f"got min={self.min} default={self.default} max={self.max}"
            )
        return self

    def clamp(self, quality: int) -> int:
        return max(self.min, min(self.max, quality))


class RoleQualities(BaseModel):
    """One quality range per role; lookups are exhaustive over ImageRole."""

    model_config = ConfigDict(frozen=True)

    photo: QualityRange = QualityRange(min=40, max=75, default=55)
    logo: QualityRange = QualityRange(min=50, max=85, default=75)
    graphics: QualityRange = QualityRange(min=45, max=80, default=65)
    text: QualityRange = QualityRange(min=50, max=85, default=70)

    def for_role(self, role: ImageRole) -> QualityRange:
        return getattr(self, role.value)


class Dimensions(BaseModel):
    """Width and height in pixels."""

    model_config = ConfigDict(frozen=True)

    width: int = Field(gt=0)
    height: int = Field(gt=0)


class OptimizationProfile(BaseModel):
    """Immutable settings shared by every asset of one document job."""

    model_config = ConfigDict(frozen=True)

    quality: RoleQualities = Field(default_factory=RoleQualities)
    max_dimensions: Dimensions = Dimensions(width=300, height=300)
    min_dimensions: Dimensions = Dimensions(width=50, height=50)
    aggressive_mode: bool = True
    preferred_format: OutputFormat = OutputFormat.JPEG
    max_retries: int = Field(default=3, ge=0)
    quality_step: int = Field(default=5, ge=1, le=50)
    size_budget_bpp: float = Field(default=0.2, gt=0)
    timeout_seconds: float = Field(default=10.0, gt=0)
    failure_threshold: float = Field(default=0.5, ge=0, le=1)

    @model_validator(mode="after")
    def _check_dimensions(self) -> "OptimizationProfile":
        if (
            self.min_dimensions.width >= self.max_dimensions.width
            or self.min_dimensions.height >= self.max_dimensions.height
        ):
            raise ValueError(
                "min_dimensions must be smaller than max_dimensions on both axes"
            )
        return self

    @property
    def technique(self) -> Technique:
        """Technique applied to every encoded image under this profile."""
        return Technique.AGGRESSIVE if self.aggressive_mode else Technique.STANDARD

    def quality_for(self, role: ImageRole) -> QualityRange:
        return self.quality.for_role(role)

    def quality_drift(self, role: ImageRole) -> int:
        """How far below its role default an image's quality may have been stepped."""
        quality_range = self.quality_for(role)
        headroom = quality_range.default - quality_range.min
        if self.aggressive_mode:
            return headroom
        return min(self.max_retries * self.quality_step, headroom)

    def quality_tolerance(self, role_a: ImageRole, role_b: ImageRole) -> int:
        """
        Largest quality difference allowed between two images of one batch.

        Role targets may differ by their defaults; on top of that each image
        may have been stepped down by retries, or by the size budget in
        aggressive mode.
        """
        defaults_gap = abs(self.quality_for(role_a).default - self.quality_for(role_b).default)
        return defaults_gap + max(self.quality_drift(role_a), self.quality_drift(role_b))

    def signature(self, role: ImageRole) -> str:
        """Stable digest of every setting that influences output for a role."""
        payload = {
            "role": role.value,
            "quality": self.quality_for(role).model_dump(),
            "max_dimensions": self.max_dimensions.model_dump(),
            "min_dimensions": self.min_dimensions.model_dump(),
            "format": self.preferred_format.value,
            "aggressive": self.aggressive_mode,
            "quality_step": self.quality_step,
            "max_retries": self.max_retries,
            "size_budget_bpp": self.size_budget_bpp,
        }
        encoded = json.dumps(payload, sort_keys=True).encode("utf-8")
        return hashlib.sha256(encoded).hexdigest()[:16]


class ImageAsset(BaseModel):
    """An image to embed in a document, with its resolved bytes."""

    identifier: str
    data: bytes = Field(repr=False)
    role: Optional[ImageRole] = None
    width: Optional[int] = None
    height: Optional[int] = None


class AssetReference(BaseModel):
    """An image identifier that still has to be fetched."""

    identifier: str
    role: Optional[ImageRole] = None


class OptimizedImage(BaseModel):
    """Result of optimizing a single image."""

    model_config = ConfigDict(frozen=True)

    data: bytes = Field(repr=False)
    original_size: int
    optimized_size: int
    compression_ratio: float
    original_width: int = 0
    original_height: int = 0
    width: int = 0
    height: int = 0
    format: str
    quality_used: Optional[int] = None
    processing_time: float = 0.0
    degraded: bool = False
    technique: Technique
    role: ImageRole
    psnr: Optional[float] = None

    @property
    def is_encoded(self) -> bool:
        """True when the image went through the encoder successfully."""
        return self.technique in (Technique.STANDARD, Technique.AGGRESSIVE)


class BatchJob(BaseModel):
    """All assets of one document plus the profile they share."""

    job_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    assets: List[ImageAsset]
    profile: OptimizationProfile


class BatchStats(BaseModel):
    """Aggregated statistics for one batch."""

    total_images: int = 0
    total_original_size: int = 0
    total_optimized_size: int = 0
    overall_compression_ratio: float = 0.0
    success_count: int = 0
    degraded_count: int = 0
    omitted_count: int = 0
    passthrough_count: int = 0
    cache_hits: int = 0
    deduplicated: int = 0
    retry_count: int = 0
    processing_time: float = 0.0


class BatchResult(BaseModel):
    """Everything the document assembler receives for one job."""

    job_id: str
    status: BatchStatus
    results: List[OptimizedImage] = Field(default_factory=list)
    stats: BatchStats = Field(default_factory=BatchStats)
    omitted: List[str] = Field(default_factory=list)
    errors: Dict[str, str] = Field(default_factory=dict)
