"""Testing utilities and fakes for the document image optimizer."""

from .fakes import (
    FakeAssetFetcher,
    FakeLogger,
    FakeMetricsExporter,
    FakeS3Client,
    S3Bucket,
    S3Object,
    create_test_image,
    create_transparent_image,
    setup_test_s3_environment,
)

__all__ = [
    "FakeAssetFetcher",
    "FakeLogger",
    "FakeMetricsExporter",
    "FakeS3Client",
    "S3Bucket",
    "S3Object",
    "create_test_image",
    "create_transparent_image",
    "setup_test_s3_environment",
]
