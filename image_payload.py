"""
Inbound image decoding for the vision endpoints.

Clients send either a bare base64 blob or a ``data:image/<fmt>;base64,<data>``
URI.  decode_image_payload() turns that into raw bytes plus a format tag and
enforces the size ceiling, so an oversized or corrupt image never reaches
the model.
"""

import base64
import binascii
import logging
from typing import Tuple

from service_errors import (
    EmptyImage,
    ImageTooLarge,
    InvalidImageEncoding,
    InvalidImageFormat,
)
from settings import DEFAULT_MAX_IMAGE_BYTES

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_FORMAT = "jpeg"
DATA_URI_IMAGE_PREFIX = "data:image/"

_FORMAT_ALIASES = {"jpg": "jpeg"}


def _split_data_uri(payload: str) -> Tuple[str, str]:
    """Return (format, base64_data) for a data-URI payload."""
    segments = payload.split(",")
    if len(segments) != 2:
        raise InvalidImageFormat("Invalid image format in data URI")

    header, data = segments
    meta = header.split(";")
    if len(meta) != 2 or not meta[0].startswith(DATA_URI_IMAGE_PREFIX):
        raise InvalidImageFormat("Invalid image format in data URI")

    fmt = meta[0][len(DATA_URI_IMAGE_PREFIX):].strip().lower()
    if not fmt:
        raise InvalidImageFormat("Invalid image format in data URI")
    return fmt, data


def decode_image_payload(
    payload: str,
    max_bytes: int = DEFAULT_MAX_IMAGE_BYTES,
) -> Tuple[bytes, str]:
    """Decode a base64 or data-URI image into (raw_bytes, format_tag).

    Raises:
        EmptyImage: payload is empty or decodes to nothing.
        InvalidImageFormat: a data-URI prefix is present but malformed.
        InvalidImageEncoding: the base64 data does not decode.
        ImageTooLarge: the decoded image exceeds ``max_bytes``.
    """
    if not isinstance(payload, str) or not payload.strip():
        raise EmptyImage("Image data is empty")

    payload = payload.strip()
    if "," in payload or payload.startswith("data:"):
        fmt, data = _split_data_uri(payload)
    else:
        fmt, data = DEFAULT_IMAGE_FORMAT, payload

    # Line-wrapped base64 is common from mobile encoders.
    data = "".join(data.split())
    try:
        raw = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidImageEncoding(f"Failed to decode base64 data: {e}") from e

    if not raw:
        raise EmptyImage("Image data is empty")

    if len(raw) > max_bytes:
        logger.warning("Rejected image of %d bytes (limit %d)", len(raw), max_bytes)
        raise ImageTooLarge(
            f"Image size exceeds maximum limit of {max_bytes / 1024 / 1024:g}MB"
        )

    return raw, fmt


def image_mime_type(fmt: str) -> str:
    """MIME type for a format tag, e.g. ``jpg`` -> ``image/jpeg``."""
    fmt = (fmt or DEFAULT_IMAGE_FORMAT).lower()
    return f"image/{_FORMAT_ALIASES.get(fmt, fmt)}"
