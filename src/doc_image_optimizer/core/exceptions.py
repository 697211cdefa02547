"""Custom exceptions for the document image optimizer."""

from typing import Iterable, List


class ImageOptimizerError(Exception):
    """Base exception for all optimizer errors."""


class ConfigError(ImageOptimizerError):
    """Malformed or self-contradictory optimization profile."""


class FetchError(ImageOptimizerError):
    """Raw image bytes could not be resolved for an asset."""


class CompressionError(ImageOptimizerError):
    """Compressing a single image failed."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class ValidationError(ImageOptimizerError):
    """An optimized image violates one or more profile invariants."""

    def __init__(self, errors: Iterable[str]):
        self.errors: List[str] = list(errors)
        super().__init__("; ".join(self.errors) or "validation failed")


class ConsistencyError(ImageOptimizerError):
    """Images of one batch were not optimized under the same technique."""
