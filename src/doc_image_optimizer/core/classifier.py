"""Content classification of document images."""

import re
from typing import Tuple

from .models import ImageAsset, ImageRole

# Checked in order; the first matching pattern wins.
_ROLE_PATTERNS: Tuple[Tuple[ImageRole, "re.Pattern[str]"], ...] = (
    (ImageRole.LOGO, re.compile(r"logo|brand|favicon")),
    (
        ImageRole.GRAPHICS,
        re.compile(
            r"(?<![a-z])(icons?|badges?|qr|barcodes?|charts?|diagrams?)(?![a-z])"
            r"|\.(svg|gif)$"
        ),
    ),
    (
        ImageRole.TEXT,
        re.compile(r"(?<![a-z])(text|signatures?|labels?|scans?|receipts?)(?![a-z])"),
    ),
)


def infer_role(identifier: str) -> ImageRole:
    """Guess the role of an image from its source path or URL."""
    lowered = identifier.lower()
    for role, pattern in _ROLE_PATTERNS:
        if pattern.search(lowered):
            return role
    return ImageRole.PHOTO


def classify(asset: ImageAsset) -> ImageRole:
    """
    Return the role an asset is optimized for.

    A role declared by the caller always wins; otherwise the role is inferred
    from the identifier, defaulting to photo.
    """
    if asset.role is not None:
        return ImageRole(asset.role)
    return infer_role(asset.identifier)
