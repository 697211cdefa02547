"""Asset fetchers that resolve image identifiers to raw bytes."""

from pathlib import Path
from typing import Optional, Union

from botocore.exceptions import ClientError

from .error_handling import retry_s3_operation, with_error_handling
from .exceptions import FetchError
from .observability import LogContext, create_logger
from .protocols import LoggerProtocol, S3ClientProtocol

_MISSING_KEY_CODES = ("NoSuchKey", "404", "NotFound")


class S3AssetFetcher:
    """Fetches image bytes from an S3 bucket, one object per identifier."""

    def __init__(
        self,
        s3_client: S3ClientProtocol,
        bucket: str,
        prefix: str = "",
        logger: Optional[LoggerProtocol] = None,
    ):
        self._s3_client = s3_client
        self._bucket = bucket
        self._prefix = prefix.strip("/")
        self._logger = logger or create_logger("fetcher")

    def object_key(self, identifier: str) -> str:
        key = identifier.lstrip("/")
        return f"{self._prefix}/{key}" if self._prefix else key

    def fetch(self, identifier: str) -> bytes:
        key = self.object_key(identifier)
        context = LogContext(operation="fetch_asset", component="s3_fetcher").with_metadata(
            bucket=self._bucket, key=key
        )
        self._logger.debug("Downloading image", context)
        try:
            data = self._get_object_bytes(key)
        except FetchError as e:
            cause = e.__cause__
            if isinstance(cause, ClientError):
                code = cause.response.get("Error", {}).get("Code")
                if code in _MISSING_KEY_CODES:
                    raise FetchError(
                        f"Image not found: s3://{self._bucket}/{key}"
                    ) from cause
            raise
        if not data:
            raise FetchError(f"Image is empty: s3://{self._bucket}/{key}")
        return data

    @retry_s3_operation(max_attempts=3)
    @with_error_handling
    def _get_object_bytes(self, key: str) -> bytes:
        response = self._s3_client.get_object(Bucket=self._bucket, Key=key)
        return response["Body"].read()


class LocalFileAssetFetcher:
    """Fetches image bytes from the local filesystem."""

    def __init__(self, base_dir: Optional[Union[str, Path]] = None):
        self._base_dir = Path(base_dir) if base_dir is not None else None

    def path_for(self, identifier: str) -> Path:
        path = Path(identifier)
        if self._base_dir is not None and not path.is_absolute():
            path = self._base_dir / path
        return path

    def fetch(self, identifier: str) -> bytes:
        path = self.path_for(identifier)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise FetchError(f"Cannot read image {path}: {e}") from e
        if not data:
            raise FetchError(f"Image is empty: {path}")
        return data
