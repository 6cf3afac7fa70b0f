"""Image encoding and aspect-ratio helpers for the Gemini transfer format."""

import asyncio
import base64
import binascii
import io
from pathlib import Path

from google.genai import types
from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel, ConfigDict

from ..errors import CodecError
from ..models import AspectRatio, ImageSource


SUFFIX_MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".gif": "image/gif",
}


class ImagePayload(BaseModel):
    """Base64 image data (no data-URI prefix) ready to send inline."""

    model_config = ConfigDict(frozen=True)

    data: str
    mime_type: str = "image/png"

    def to_part(self) -> types.Part:
        """Build the inline-data part for a ``generate_content`` call."""
        return types.Part.from_bytes(data=base64.b64decode(self.data), mime_type=self.mime_type)


def detect_mime_type(data: bytes, suffix: str = "") -> str:
    """Detect the image format from magic bytes, falling back to the file suffix."""
    if data[:3] == b'\xff\xd8\xff':
        return "image/jpeg"
    if data[:8] == b'\x89PNG\r\n\x1a\n':
        return "image/png"
    if data[:4] == b'RIFF' and data[8:12] == b'WEBP':
        return "image/webp"
    if data[:6] in (b'GIF87a', b'GIF89a'):
        return "image/gif"
    return SUFFIX_MIME_TYPES.get(suffix.lower(), "image/png")


def read_image_bytes(source: ImageSource) -> bytes:
    """Read raw bytes from a caller-owned path or pass bytes through untouched."""
    if isinstance(source, (bytes, bytearray)):
        data = bytes(source)
    else:
        try:
            data = Path(source).read_bytes()
        except OSError as e:
            raise CodecError(f"Could not read image {source}: {e}") from e

    if not data:
        raise CodecError("Image is empty.")
    return data


def encode_bytes(data: bytes, suffix: str = "") -> ImagePayload:
    """Encode raw image bytes into an inline payload."""
    return ImagePayload(
        data=base64.b64encode(data).decode("utf-8"),
        mime_type=detect_mime_type(data, suffix),
    )


def decode_data_url(value: str) -> bytes:
    """Decode a ``data:`` URL or a bare base64 string."""
    if value.startswith("data:"):
        # Remove data URL prefix (e.g., "data:image/png;base64,")
        _, value = value.split(",", 1)
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise CodecError("Image data is not valid base64.") from e


def aspect_ratio_for(width: int, height: int) -> AspectRatio:
    """Quantize pixel dimensions to the nearest supported aspect ratio bucket.

    Only five buckets are accepted by the edit model, so the exact source
    ratio is not preserved.
    """
    if width <= 0 or height <= 0:
        raise CodecError(f"Invalid image dimensions {width}x{height}")

    ratio = width / height
    if ratio > 1.5:
        return AspectRatio.WIDE
    if ratio > 1.2:
        return AspectRatio.LANDSCAPE
    if ratio < 0.6:
        return AspectRatio.TALL
    if ratio < 0.85:
        return AspectRatio.PORTRAIT
    return AspectRatio.SQUARE


def image_dimensions(data: bytes) -> tuple[int, int]:
    """Return ``(width, height)`` of encoded image bytes."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.size
    except (UnidentifiedImageError, OSError) as e:
        raise CodecError("Could not decode image dimensions.") from e


class ImageCodec:
    """Async adapter around the helpers above; file I/O runs in a worker thread."""

    async def encode(self, source: ImageSource) -> ImagePayload:
        data = await asyncio.to_thread(read_image_bytes, source)
        suffix = "" if isinstance(source, (bytes, bytearray)) else Path(source).suffix
        return encode_bytes(data, suffix)

    async def infer_aspect_ratio(self, source: ImageSource) -> AspectRatio:
        data = await asyncio.to_thread(read_image_bytes, source)
        width, height = await asyncio.to_thread(image_dimensions, data)
        return aspect_ratio_for(width, height)
