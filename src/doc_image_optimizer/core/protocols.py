"""Protocol definitions for dependency injection and testability."""

from typing import Any, Dict, Optional, Protocol


class S3ClientProtocol(Protocol):
    """The subset of the S3 client used by the asset fetcher."""

    def get_object(self, Bucket: str, Key: str) -> Dict[str, Any]:
        """Get object from S3."""
        ...


class LoggerProtocol(Protocol):
    """Protocol for logging operations."""

    def debug(self, message: str, context: Any = None, **kwargs: Any) -> None:
        ...

    def info(self, message: str, context: Any = None, **kwargs: Any) -> None:
        ...

    def warning(self, message: str, context: Any = None, **kwargs: Any) -> None:
        ...

    def error(self, message: str, context: Any = None, **kwargs: Any) -> None:
        ...


class AssetFetcherProtocol(Protocol):
    """Resolves an image identifier to raw bytes."""

    def fetch(self, identifier: str) -> bytes:
        """Return the image bytes or raise FetchError."""
        ...


class ConfigSourceProtocol(Protocol):
    """Raw key/value configuration consumed by the config provider."""

    def get(self, key: str) -> Optional[str]:
        ...


class MetricsExporterProtocol(Protocol):
    """Receives metric snapshots for external observability systems."""

    def export(self, snapshot: Dict[str, Any]) -> None:
        ...
