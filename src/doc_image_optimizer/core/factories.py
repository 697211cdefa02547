"""Factory classes for wiring the optimizer at process bootstrap."""

from typing import TYPE_CHECKING, Any, Optional

import boto3

from .cache import CompressedImageCache
from .compressor import ImageCompressor
from .coordinator import BatchOptimizationCoordinator
from .metrics import MetricsRecorder
from .protocols import AssetFetcherProtocol, LoggerProtocol, S3ClientProtocol
from .services import S3AssetFetcher
from .validation import ValidationService
from ..processors.common import WorkerPool, create_worker_pool

if TYPE_CHECKING:
    from mypy_boto3_s3.client import S3Client


class S3ClientFactory:
    """Factory for creating S3 client instances."""

    @staticmethod
    def create_s3_client(**kwargs: Any) -> "S3Client":
        session = boto3.Session()
        return session.client("s3", **kwargs)


class OptimizerFactory:
    """Builds the long-lived optimizer components shared by every batch job."""

    @staticmethod
    def create_s3_fetcher(
        bucket: str,
        prefix: str = "",
        s3_client: Optional[S3ClientProtocol] = None,
        logger: Optional[LoggerProtocol] = None,
    ) -> S3AssetFetcher:
        if s3_client is None:
            s3_client = S3ClientFactory.create_s3_client()
        return S3AssetFetcher(s3_client, bucket, prefix=prefix, logger=logger)

    @staticmethod
    def create_coordinator(
        pool: Optional[WorkerPool] = None,
        cache: Optional[CompressedImageCache] = None,
        metrics: Optional[MetricsRecorder] = None,
        fetcher: Optional[AssetFetcherProtocol] = None,
        logger: Optional[LoggerProtocol] = None,
        pool_kind: str = "multithread",
        max_workers: Optional[int] = None,
    ) -> BatchOptimizationCoordinator:
        """
        Create a coordinator with default collaborators for anything not given.

        The caller owns the pool's lifetime; shut it down at process exit.
        """
        if pool is None:
            pool = create_worker_pool(pool_kind, max_workers=max_workers)

        return BatchOptimizationCoordinator(
            compressor=ImageCompressor(),
            validator=ValidationService(),
            cache=cache if cache is not None else CompressedImageCache(),
            metrics=metrics if metrics is not None else MetricsRecorder(),
            pool=pool,
            fetcher=fetcher,
            logger=logger,
        )
