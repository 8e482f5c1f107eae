"""Report photo and location validation.

Photos arrive as inline ``data:image/...;base64,`` URLs (or already-stored
http(s) URLs). The caps are enforced here, not only in the browser.
"""

from __future__ import annotations

import base64
import binascii
import re
from collections.abc import Sequence

from wastewatch.config import get_settings

_DATA_URL = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)(?:;[\w.+-]+=[\w.+-]+)*;base64,(?P<data>.*)$", re.DOTALL)
_COORDS = re.compile(r"^\s*(-?\d{1,3}(?:\.\d+)?)\s*,\s*(-?\d{1,3}(?:\.\d+)?)\s*$")


class ImageValidationError(ValueError):
    """Too many images, an oversized image, or something that is not an image."""


def decoded_size(data: str) -> int:
    """Byte length of a base64 payload."""
    try:
        return len(base64.b64decode(data, validate=True))
    except (binascii.Error, ValueError) as e:
        msg = "Image data is not valid base64"
        raise ImageValidationError(msg) from e


def validate_image(image: str, index: int = 1) -> None:
    if image.startswith(("https://", "http://")):
        return
    match = _DATA_URL.match(image)
    if match is None:
        msg = f"Image {index} is not a valid image upload"
        raise ImageValidationError(msg)
    if not match.group("mime").lower().startswith("image/"):
        msg = f"Image {index} is not an image"
        raise ImageValidationError(msg)

    limit = get_settings().report_max_image_bytes
    if decoded_size(match.group("data")) > limit:
        msg = f"Image {index} exceeds the {limit // (1024 * 1024)} MB limit"
        raise ImageValidationError(msg)


def validate_images(images: Sequence[str], existing: int = 0) -> list[str]:
    """
    Check a batch of uploads against the per-report caps.

    Args:
        images: New images to attach.
        existing: How many images the report already carries.

    Raises:
        ImageValidationError: the total would exceed the cap, or an image is
            invalid or too large.
    """
    cap = get_settings().report_max_images
    if existing + len(images) > cap:
        msg = f"You can upload at most {cap} images"
        raise ImageValidationError(msg)
    for i, image in enumerate(images, start=existing + 1):
        validate_image(image, i)
    return list(images)


def parse_coordinates(location: str) -> tuple[float, float] | None:
    """Parse a ``"lat,lng"`` location string; None for free-text locations."""
    match = _COORDS.match(location)
    if match is None:
        return None
    lat, lng = float(match.group(1)), float(match.group(2))
    if not (-90 <= lat <= 90 and -180 <= lng <= 180):
        return None
    return lat, lng
