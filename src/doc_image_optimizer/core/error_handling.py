"""Decorators and context managers that standardize optimizer error handling."""

import functools
import logging
import time
from typing import Dict, List

from botocore.exceptions import ClientError as BotocoreClientError
from PIL import Image, UnidentifiedImageError

from .exceptions import CompressionError, FetchError, ImageOptimizerError

RETRYABLE_S3_ERROR_CODES = (
    "ProvisionedThroughputExceededException",
    "ThrottlingException",
    "SlowDown",
    "RequestTimeout",
    "InternalError",
)

DECODE_ERRORS = (
    UnidentifiedImageError,
    Image.DecompressionBombError,
    OSError,
    SyntaxError,
    ValueError,
)


def with_error_handling(func):
    """
    Translate library exceptions raised by ``func`` into optimizer errors.

    Pillow decode failures become ``CompressionError`` and botocore client
    errors become ``FetchError``. Optimizer errors pass through unchanged.
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger = logging.getLogger(func.__module__ + "." + func.__name__)
        try:
            return func(*args, **kwargs)
        except ImageOptimizerError:
            raise
        except BotocoreClientError as e:
            logger.error(f"Error in '{func.__name__}': {e}", exc_info=True)
            raise FetchError(f"S3 operation failed in {func.__name__}: {e}") from e
        except DECODE_ERRORS as e:
            logger.error(f"Error in '{func.__name__}': {e}", exc_info=True)
            raise CompressionError(
                f"Failed to decode or encode image in {func.__name__}: {e}"
            ) from e

    return wrapper


def _is_retryable_fetch_error(error: FetchError) -> bool:
    cause = error.__cause__
    if isinstance(cause, BotocoreClientError):
        code = cause.response.get("Error", {}).get("Code")
        return code in RETRYABLE_S3_ERROR_CODES
    return False


def retry_s3_operation(max_attempts=3, initial_delay=0.5, backoff_factor=2):
    """
    Retry an S3 read with exponential backoff on throttling-style errors.

    Only ``FetchError`` caused by a retryable botocore error code is retried;
    anything else is raised on the first failure.
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            logger = logging.getLogger(func.__module__ + "." + func.__name__)
            delay = initial_delay
            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except FetchError as e:
                    if not _is_retryable_fetch_error(e):
                        logger.error(
                            f"S3 operation '{func.__name__}' failed with non-retryable error: {e}"
                        )
                        raise
                    if attempt >= max_attempts:
                        logger.error(
                            f"S3 operation '{func.__name__}' failed after {max_attempts} attempts. Error: {e}"
                        )
                        raise
                    logger.info(
                        f"S3 operation '{func.__name__}' failed. Attempt {attempt}/{max_attempts}. "
                        f"Retrying in {delay:.2f}s. Error: {e}"
                    )
                    time.sleep(delay)
                    delay *= backoff_factor

        return wrapper

    return decorator


class BatchOperationContextManager:
    """
    Collects per-asset errors of a batch and summarizes them on exit.
    """

    def __init__(self, operation_name="Batch Operation"):
        self.operation_name = operation_name
        self.errors: List[Dict[str, str]] = []
        self.logger = logging.getLogger(
            self.__class__.__module__ + "." + self.__class__.__name__
        )

    def __enter__(self):
        self.logger.info(f"Starting {self.operation_name}.")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.errors:
            self.logger.warning(
                f"{self.operation_name} completed with {len(self.errors)} error(s)."
            )
            for i, error_detail in enumerate(self.errors):
                self.logger.error(
                    f"  Error {i + 1}/{len(self.errors)} for item "
                    f"'{error_detail['item']}': {error_detail['error']}"
                )
        if exc_type:
            self.logger.error(
                f"{self.operation_name} failed due to an unhandled exception: {exc_val}",
                exc_info=(exc_type, exc_val, exc_tb),
            )
        elif not self.errors:
            self.logger.info(f"{self.operation_name} completed successfully.")
        return False

    def add_error(self, error_message, item_identifier: str = "Unknown item"):
        """Report an error for a specific item inside the ``with`` block."""
        self.errors.append({"item": item_identifier, "error": str(error_message)})
        self.logger.debug(
            f"Error added for item '{item_identifier}' in {self.operation_name}: {error_message}"
        )

    def as_dict(self) -> Dict[str, str]:
        """Last error message per item."""
        return {entry["item"]: entry["error"] for entry in self.errors}
