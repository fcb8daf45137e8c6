"""Content addressing for image payloads."""

import hashlib
import io
from typing import Optional

from PIL import Image, UnidentifiedImageError

DEFAULT_MIME_TYPE = "image/png"


def content_hash(payload: bytes) -> str:
    """SHA-256 hex digest of the exact bytes; the cache and dedup key."""
    return hashlib.sha256(payload).hexdigest()


def probe_image(payload: bytes) -> tuple[str, Optional[int], Optional[int]]:
    """
    Return (mime_type, width, height) for an image payload.

    Formats Pillow cannot decode (SVG, truncated data) fall back to
    DEFAULT_MIME_TYPE with unknown dimensions.
    """
    try:
        with Image.open(io.BytesIO(payload)) as image:
            mime = Image.MIME.get(image.format or "", DEFAULT_MIME_TYPE)
            width, height = image.size
            return mime, width, height
    except (UnidentifiedImageError, OSError, ValueError):
        return DEFAULT_MIME_TYPE, None, None
