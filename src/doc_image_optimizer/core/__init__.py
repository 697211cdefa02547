"""Core components of the document image optimizer."""

from .logging_config import (
    configure_multiprocessing_logging,
    get_logger,
    setup_logger,
)
from .exceptions import (
    CompressionError,
    ConfigError,
    ConsistencyError,
    FetchError,
    ImageOptimizerError,
    ValidationError,
)
from .models import (
    AssetReference,
    BatchJob,
    BatchResult,
    BatchStats,
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
from .error_handling import BatchOperationContextManager, retry_s3_operation, with_error_handling
from .classifier import classify, infer_role
from .config import ConfigProvider, EnvironmentConfigSource, MappingConfigSource, resolve_profile
from .cache import CompressedImageCache, Reservation, ReservationKind, make_key
from .compressor import ImageCompressor
from .validation import ValidationService
from .metrics import BatchRecord, MetricsRecorder
from .coordinator import BatchOptimizationCoordinator
from .services import LocalFileAssetFetcher, S3AssetFetcher
from .factories import OptimizerFactory

__all__ = [
    "setup_logger",
    "get_logger",
    "configure_multiprocessing_logging",
    "ImageOptimizerError",
    "ConfigError",
    "FetchError",
    "CompressionError",
    "ValidationError",
    "ConsistencyError",
    "AssetReference",
    "BatchJob",
    "BatchResult",
    "BatchStats",
    "BatchStatus",
    "Dimensions",
    "ImageAsset",
    "ImageRole",
    "OptimizationProfile",
    "OptimizedImage",
    "OutputFormat",
    "QualityRange",
    "RoleQualities",
    "Technique",
    "BatchOperationContextManager",
    "retry_s3_operation",
    "with_error_handling",
    "classify",
    "infer_role",
    "ConfigProvider",
    "EnvironmentConfigSource",
    "MappingConfigSource",
    "resolve_profile",
    "CompressedImageCache",
    "Reservation",
    "ReservationKind",
    "make_key",
    "ImageCompressor",
    "ValidationService",
    "BatchRecord",
    "MetricsRecorder",
    "BatchOptimizationCoordinator",
    "LocalFileAssetFetcher",
    "S3AssetFetcher",
    "OptimizerFactory",
]
