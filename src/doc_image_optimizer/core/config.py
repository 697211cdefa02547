"""Optimization profile resolution from operator configuration."""

import os
from typing import Any, Callable, Dict, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError

from .exceptions import ConfigError
from .logging_config import get_logger
from .models import ImageRole, OptimizationProfile
from .protocols import ConfigSourceProtocol

_TRUE_VALUES = ("true", "1", "yes", "on")
_FALSE_VALUES = ("false", "0", "no", "off")


class EnvironmentConfigSource:
    """Reads configuration from process environment variables."""

    def get(self, key: str) -> Optional[str]:
        return os.environ.get(key)


class MappingConfigSource:
    """Reads configuration from a plain mapping."""

    def __init__(self, values: Optional[Mapping[str, str]] = None):
        self._values = dict(values or {})

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)


def _parse_bool(key: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigError(f"{key} must be a boolean, got {raw!r}")


def _parse_int(key: str, raw: str) -> int:
    try:
        return int(raw.strip())
    except ValueError as e:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from e


def _parse_float(key: str, raw: str) -> float:
    try:
        return float(raw.strip())
    except ValueError as e:
        raise ConfigError(f"{key} must be a number, got {raw!r}") from e


def _deep_merge(base: Dict[str, Any], overrides: Mapping[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class ConfigProvider:
    """
    Builds exactly one validated ``OptimizationProfile`` per document job.

    Values come from a config source (environment variables by default) and
    can be overridden per job through the ``context`` mapping passed to
    ``resolve_profile``. Any invalid or contradictory value raises
    ``ConfigError`` before a batch starts.
    """

    # (env key, path into the profile dict, parser)
    _SCALAR_KEYS = (
        ("IMAGE_OPTIMIZATION_ENABLED", ("aggressive_mode",), _parse_bool),
        ("IMAGE_MAX_WIDTH", ("max_dimensions", "width"), _parse_int),
        ("IMAGE_MAX_HEIGHT", ("max_dimensions", "height"), _parse_int),
        ("IMAGE_MIN_WIDTH", ("min_dimensions", "width"), _parse_int),
        ("IMAGE_MIN_HEIGHT", ("min_dimensions", "height"), _parse_int),
        ("IMAGE_PREFERRED_FORMAT", ("preferred_format",), lambda k, v: v.strip().lower()),
        ("IMAGE_OPTIMIZATION_RETRIES", ("max_retries",), _parse_int),
        ("IMAGE_QUALITY_STEP", ("quality_step",), _parse_int),
        ("IMAGE_SIZE_BUDGET_BPP", ("size_budget_bpp",), _parse_float),
        ("IMAGE_FAILURE_THRESHOLD", ("failure_threshold",), _parse_float),
    )

    def __init__(self, source: Optional[ConfigSourceProtocol] = None):
        self._source = source or EnvironmentConfigSource()
        self._logger = get_logger("doc-image-optimizer.config")

    def _read(self, key: str, parser: Callable[[str, str], Any]) -> Any:
        raw = self._source.get(key)
        if raw is None or raw == "":
            return None
        return parser(key, raw)

    def load_settings(self) -> Dict[str, Any]:
        """Collect profile fields present in the config source."""
        defaults = OptimizationProfile().model_dump(mode="json")
        settings: Dict[str, Any] = {}

        for key, path, parser in self._SCALAR_KEYS:
            value = self._read(key, parser)
            if value is None:
                continue
            target = settings
            for part in path[:-1]:
                target = target.setdefault(part, dict(defaults[part]))
            target[path[-1]] = value

        timeout_ms = self._read("IMAGE_OPTIMIZATION_TIMEOUT", _parse_int)
        if timeout_ms is not None:
            settings["timeout_seconds"] = timeout_ms / 1000.0

        for role in ImageRole:
            prefix = f"IMAGE_{role.value.upper()}"
            role_values = {
                "default": self._read(f"{prefix}_QUALITY", _parse_int),
                "min": self._read(f"{prefix}_MIN_QUALITY", _parse_int),
                "max": self._read(f"{prefix}_MAX_QUALITY", _parse_int),
            }
            role_values = {k: v for k, v in role_values.items() if v is not None}
            if role_values:
                quality = settings.setdefault("quality", {})
                quality[role.value] = {**defaults["quality"][role.value], **role_values}

        return settings

    def resolve_profile(
        self, context: Optional[Mapping[str, Any]] = None
    ) -> OptimizationProfile:
        """
        Resolve the profile for one document job.

        Args:
            context: Per-job overrides using profile field names, e.g.
                ``{"aggressive_mode": False, "max_dimensions": {"width": 400}}``.

        Returns:
            A frozen, validated OptimizationProfile.

        Raises:
            ConfigError: If any value is malformed or contradictory.
        """
        defaults = OptimizationProfile().model_dump(mode="json")
        settings = _deep_merge(defaults, self.load_settings())
        if context:
            settings = _deep_merge(settings, context)

        try:
            profile = OptimizationProfile.model_validate(settings)
        except PydanticValidationError as e:
            messages = [
                f"{'.'.join(str(p) for p in err['loc']) or 'profile'}: {err['msg']}"
                for err in e.errors()
            ]
            raise ConfigError("Invalid optimization profile: " + "; ".join(messages)) from e

        self._log_warnings(profile)
        return profile

    def _log_warnings(self, profile: OptimizationProfile) -> None:
        if profile.max_dimensions.width < 100 or profile.max_dimensions.height < 100:
            self._logger.warning(
                "Very small maximum dimensions may result in unreadable images"
            )
        if profile.quality.photo.default < 50:
            self._logger.warning("Very low photo quality may result in poor visual quality")
        if profile.timeout_seconds < 5:
            self._logger.warning(
                "Short timeout may cause optimization failures for large images"
            )


def resolve_profile(
    context: Optional[Mapping[str, Any]] = None,
    source: Optional[ConfigSourceProtocol] = None,
) -> OptimizationProfile:
    """Resolve a profile using a one-off provider."""
    return ConfigProvider(source).resolve_profile(context)
