"""Tests for the shared data models."""

import pytest
from pydantic import ValidationError as PydanticValidationError

from doc_image_optimizer.core.models import (
    BatchJob,
    BatchResult,
    BatchStatus,
    Dimensions,
    ImageAsset,
    ImageRole,
    OptimizationProfile,
    OptimizedImage,
    OutputFormat,
    QualityRange,
    RoleQualities,
    Technique,
)


class TestQualityRange:
    """Tests for QualityRange."""

    def test_valid_range(self):
        quality = QualityRange(min=40, max=75, default=60)
        assert (quality.min, quality.max, quality.default) == (40, 75, 60)

    def test_default_outside_range_rejected(self):
        with pytest.raises(PydanticValidationError):
            QualityRange(min=40, max=75, default=80)

    def test_min_above_max_rejected(self):
        with pytest.raises(PydanticValidationError):
            QualityRange(min=80, max=75, default=78)

    @pytest.mark.parametrize("value", [0, 101])
    def test_bounds_outside_1_to_100_rejected(self, value):
        with pytest.raises(PydanticValidationError):
            QualityRange(min=value, max=100, default=100)

    def test_clamp(self):
        quality = QualityRange(min=40, max=75, default=60)
        assert quality.clamp(10) == 40
        assert quality.clamp(90) == 75
        assert quality.clamp(55) == 55

    def test_frozen(self):
        quality = QualityRange(min=40, max=75, default=60)
        with pytest.raises(PydanticValidationError):
            quality.min = 10


class TestRoleQualities:
    """Tests for RoleQualities."""

    def test_every_role_has_a_range(self):
        qualities = RoleQualities()
        for role in ImageRole:
            assert isinstance(qualities.for_role(role), QualityRange)

    def test_defaults(self):
        qualities = RoleQualities()
        assert qualities.photo == QualityRange(min=40, max=75, default=55)
        assert qualities.logo.default == 75


class TestOptimizationProfile:
    """Tests for OptimizationProfile."""

    def test_defaults(self):
        profile = OptimizationProfile()
        assert profile.aggressive_mode is True
        assert profile.max_dimensions == Dimensions(width=300, height=300)
        assert profile.min_dimensions == Dimensions(width=50, height=50)
        assert profile.preferred_format is OutputFormat.JPEG
        assert profile.max_retries == 3
        assert profile.timeout_seconds == 10.0

    def test_min_dimensions_must_be_below_max(self):
        with pytest.raises(PydanticValidationError, match="min_dimensions"):
            OptimizationProfile(
                max_dimensions=Dimensions(width=100, height=100),
                min_dimensions=Dimensions(width=100, height=50),
            )

    def test_negative_retries_rejected(self):
        with pytest.raises(PydanticValidationError):
            OptimizationProfile(max_retries=-1)

    def test_technique_follows_aggressive_mode(self):
        assert OptimizationProfile().technique is Technique.AGGRESSIVE
        assert OptimizationProfile(aggressive_mode=False).technique is Technique.STANDARD

    def test_profile_is_immutable(self):
        profile = OptimizationProfile()
        with pytest.raises(PydanticValidationError):
            profile.aggressive_mode = False

    def test_signature_is_stable(self):
        assert OptimizationProfile().signature(ImageRole.PHOTO) == OptimizationProfile().signature(
            ImageRole.PHOTO
        )

    def test_signature_differs_by_role(self):
        profile = OptimizationProfile()
        assert profile.signature(ImageRole.PHOTO) != profile.signature(ImageRole.LOGO)

    def test_signature_changes_with_output_settings(self):
        base = OptimizationProfile()
        smaller = OptimizationProfile(max_dimensions=Dimensions(width=200, height=200))
        webp = OptimizationProfile(preferred_format=OutputFormat.WEBP)
        standard = OptimizationProfile(aggressive_mode=False)
        signatures = {
            p.signature(ImageRole.PHOTO) for p in (base, smaller, webp, standard)
        }
        assert len(signatures) == 4

    def test_signature_ignores_other_roles_quality(self):
        base = OptimizationProfile()
        changed_logo = OptimizationProfile(
            quality=RoleQualities(logo=QualityRange(min=60, max=90, default=80))
        )
        assert base.signature(ImageRole.PHOTO) == changed_logo.signature(ImageRole.PHOTO)
        assert base.signature(ImageRole.LOGO) != changed_logo.signature(ImageRole.LOGO)

    def test_quality_tolerance_same_role(self):
        profile = OptimizationProfile()
        # photo: default 55, min 40
        assert profile.quality_tolerance(ImageRole.PHOTO, ImageRole.PHOTO) == 15

    def test_quality_tolerance_across_roles(self):
        profile = OptimizationProfile()
        # photo 55/40 and logo 75/50: |55 - 75| + max(15, 25)
        assert profile.quality_tolerance(ImageRole.PHOTO, ImageRole.LOGO) == 45

    def test_standard_tolerance_is_bounded_by_retries(self):
        profile = OptimizationProfile(aggressive_mode=False, max_retries=1)
        assert profile.quality_drift(ImageRole.PHOTO) == 5
        assert profile.quality_tolerance(ImageRole.PHOTO, ImageRole.PHOTO) == 5
        # |55 - 75| + one step of 5
        assert profile.quality_tolerance(ImageRole.PHOTO, ImageRole.LOGO) == 25

    def test_standard_drift_never_exceeds_role_headroom(self):
        profile = OptimizationProfile(aggressive_mode=False, max_retries=10)
        assert profile.quality_drift(ImageRole.PHOTO) == 15

    def test_signature_changes_with_max_retries(self):
        assert OptimizationProfile(max_retries=1).signature(
            ImageRole.PHOTO
        ) != OptimizationProfile(max_retries=3).signature(ImageRole.PHOTO)


class TestImageAsset:
    """Tests for ImageAsset and related models."""

    def test_role_is_optional(self):
        asset = ImageAsset(identifier="a.jpg", data=b"123")
        assert asset.role is None

    def test_repr_hides_bytes(self):
        asset = ImageAsset(identifier="a.jpg", data=b"secret-bytes")
        assert "secret-bytes" not in repr(asset)

    def test_batch_job_gets_an_id(self):
        job_a = BatchJob(assets=[], profile=OptimizationProfile())
        job_b = BatchJob(assets=[], profile=OptimizationProfile())
        assert job_a.job_id and job_a.job_id != job_b.job_id


class TestOptimizedImage:
    """Tests for OptimizedImage."""

    def _image(self, technique):
        return OptimizedImage(
            data=b"x",
            original_size=10,
            optimized_size=1,
            compression_ratio=0.9,
            format="jpeg",
            technique=technique,
            role=ImageRole.PHOTO,
        )

    @pytest.mark.parametrize(
        "technique,expected",
        [
            (Technique.STANDARD, True),
            (Technique.AGGRESSIVE, True),
            (Technique.PASSTHROUGH, False),
            (Technique.FALLBACK, False),
        ],
    )
    def test_is_encoded(self, technique, expected):
        assert self._image(technique).is_encoded is expected

    def test_batch_result_defaults(self):
        result = BatchResult(job_id="abc", status=BatchStatus.ABORTED)
        assert result.results == []
        assert result.omitted == []
        assert result.stats.total_images == 0
